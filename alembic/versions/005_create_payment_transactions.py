"""005: create payment_transactions table

At most one customer escrow payment per job can be open (initiated,
processing or held) at a time.

Revision ID: 005
Revises: 004
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "005"
down_revision: Union[str, None] = "004"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE payment_transactions (
            id                      VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::TEXT,
            job_id                  VARCHAR(64)     NOT NULL REFERENCES jobs (id),
            idempotency_key         VARCHAR(128)    NOT NULL,
            amount_tzs              BIGINT          NOT NULL,
            platform_fee_tzs        BIGINT          NOT NULL DEFAULT 0,
            vat_tzs                 BIGINT          NOT NULL DEFAULT 0,
            net_to_fundi_tzs        BIGINT          NOT NULL DEFAULT 0,
            direction               VARCHAR(30)     NOT NULL,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'initiated',
            payer_id                VARCHAR(64),
            payee_id                VARCHAR(64),
            payment_method          VARCHAR(20),
            phone_number            VARCHAR(20),
            gateway_reference       VARCHAR(128),
            gateway_raw_response    JSONB,
            failure_reason          VARCHAR(500),
            retry_count             INT             NOT NULL DEFAULT 0,
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_payment_idempotency_key   UNIQUE (idempotency_key),
            CONSTRAINT ck_payment_amount_gt_0       CHECK (amount_tzs > 0),
            CONSTRAINT ck_payment_direction         CHECK (
                direction IN ('customer_to_escrow', 'escrow_to_fundi', 'platform_fee', 'tip', 'refund')
            ),
            CONSTRAINT ck_payment_status            CHECK (
                status IN ('initiated', 'processing', 'held_escrow', 'released', 'refunded', 'failed')
            )
        );
    """)
    op.execute("""
        CREATE UNIQUE INDEX uq_payment_open_escrow
        ON payment_transactions (job_id)
        WHERE direction = 'customer_to_escrow'
          AND status IN ('initiated', 'processing', 'held_escrow');
    """)
    op.execute("CREATE INDEX idx_payment_job ON payment_transactions (job_id, created_at);")
    op.execute("""
        CREATE TRIGGER trg_payment_transactions_updated_at
            BEFORE UPDATE ON payment_transactions
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS payment_transactions CASCADE;")
