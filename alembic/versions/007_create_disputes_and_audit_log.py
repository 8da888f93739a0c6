"""007: create disputes and audit_log tables

Revision ID: 007
Revises: 006
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "007"
down_revision: Union[str, None] = "006"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE disputes (
            id                              VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::TEXT,
            job_id                          VARCHAR(64)     NOT NULL REFERENCES jobs (id),
            raised_by_id                    VARCHAR(64)     NOT NULL,
            status                          VARCHAR(20)     NOT NULL DEFAULT 'open',
            decision                        VARCHAR(30),
            customer_statement              TEXT,
            fundi_statement                 TEXT,
            customer_evidence               TEXT[]          NOT NULL DEFAULT '{}',
            fundi_evidence                  TEXT[]          NOT NULL DEFAULT '{}',
            resolution_notes                TEXT,
            resolved_by_id                  VARCHAR(64),
            resolved_at                     TIMESTAMPTZ,
            resolution_amount_customer_tzs  BIGINT,
            resolution_amount_fundi_tzs     BIGINT,
            created_at                      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at                      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_disputes_job          UNIQUE (job_id),
            CONSTRAINT ck_disputes_status       CHECK (
                status IN ('open', 'under_review', 'resolved_customer', 'resolved_fundi', 'escalated')
            ),
            CONSTRAINT ck_disputes_decision     CHECK (
                decision IS NULL
                OR decision IN ('release_to_fundi', 'refund_customer', 'split', 'escalate')
            )
        );
    """)
    op.execute("CREATE INDEX idx_disputes_status ON disputes (status, created_at DESC);")
    op.execute("""
        CREATE TRIGGER trg_disputes_updated_at
            BEFORE UPDATE ON disputes
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("""
        CREATE TABLE audit_log (
            id              BIGSERIAL       PRIMARY KEY,
            actor_id        VARCHAR(64)     NOT NULL,
            action          VARCHAR(64)     NOT NULL,
            entity_type     VARCHAR(32)     NOT NULL,
            entity_id       VARCHAR(64)     NOT NULL,
            old_value       JSONB,
            new_value       JSONB,
            created_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW()
        );
    """)
    op.execute("CREATE INDEX idx_audit_log_entity ON audit_log (entity_type, entity_id, created_at);")
    op.execute("COMMENT ON TABLE audit_log IS 'Append-only record of admin actions';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS audit_log CASCADE;")
    op.execute("DROP TABLE IF EXISTS disputes CASCADE;")
