"""006: create fundi_wallets and payout_requests tables

Revision ID: 006
Revises: 005
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "006"
down_revision: Union[str, None] = "005"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE fundi_wallets (
            fundi_id            VARCHAR(64)     PRIMARY KEY,
            balance_tzs         BIGINT          NOT NULL DEFAULT 0,
            pending_tzs         BIGINT          NOT NULL DEFAULT 0,
            total_earned_tzs    BIGINT          NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_wallet_balance_gte_0  CHECK (balance_tzs >= 0),
            CONSTRAINT ck_wallet_pending_gte_0  CHECK (pending_tzs >= 0),
            CONSTRAINT ck_wallet_earned_gte_0   CHECK (total_earned_tzs >= 0)
        );
    """)
    op.execute("""
        CREATE TRIGGER trg_fundi_wallets_updated_at
            BEFORE UPDATE ON fundi_wallets
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("""
        CREATE TABLE payout_requests (
            id                  VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::TEXT,
            fundi_id            VARCHAR(64)     NOT NULL REFERENCES fundi_wallets (fundi_id),
            amount_tzs          BIGINT          NOT NULL,
            payout_network      VARCHAR(20)     NOT NULL,
            payout_number       VARCHAR(20)     NOT NULL,
            status              VARCHAR(20)     NOT NULL DEFAULT 'pending',
            gateway_reference   VARCHAR(128),
            failure_reason      VARCHAR(500),
            requested_at        TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            processed_at        TIMESTAMPTZ,
            CONSTRAINT ck_payout_amount_gt_0    CHECK (amount_tzs > 0),
            CONSTRAINT ck_payout_status         CHECK (
                status IN ('pending', 'processing', 'completed', 'failed')
            )
        );
    """)
    op.execute("CREATE INDEX idx_payout_fundi ON payout_requests (fundi_id, requested_at DESC);")
    op.execute("""
        CREATE INDEX idx_payout_pending
        ON payout_requests (requested_at)
        WHERE status = 'pending';
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payout_requests CASCADE;")
    op.execute("DROP TABLE IF EXISTS fundi_wallets CASCADE;")
