"""003: create jobs table

Revision ID: 003
Revises: 002
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "003"
down_revision: Union[str, None] = "002"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE jobs (
            id                      VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::TEXT,
            job_reference           VARCHAR(20)     NOT NULL,
            customer_id             VARCHAR(64)     NOT NULL,
            fundi_id                VARCHAR(64),
            category                VARCHAR(64)     NOT NULL,
            service_items           JSONB           NOT NULL DEFAULT '[]',
            description_text        TEXT            NOT NULL DEFAULT '',
            description_photos      TEXT[]          NOT NULL DEFAULT '{}',
            latitude                DOUBLE PRECISION NOT NULL,
            longitude               DOUBLE PRECISION NOT NULL,
            location                GEOGRAPHY(POINT, 4326) GENERATED ALWAYS AS (
                ST_SetSRID(ST_MakePoint(longitude, latitude), 4326)::geography
            ) STORED,
            address_text            VARCHAR(500)    NOT NULL DEFAULT '',
            scheduled_at            TIMESTAMPTZ,
            status                  VARCHAR(20)     NOT NULL DEFAULT 'pending',
            quoted_amount_tzs       BIGINT          NOT NULL,
            platform_fee_tzs        BIGINT          NOT NULL,
            vat_tzs                 BIGINT          NOT NULL,
            net_to_fundi_tzs        BIGINT          NOT NULL,
            payment_method          VARCHAR(20),
            accepted_at             TIMESTAMPTZ,
            en_route_at             TIMESTAMPTZ,
            arrived_at              TIMESTAMPTZ,
            started_at              TIMESTAMPTZ,
            completed_at            TIMESTAMPTZ,
            cancelled_at            TIMESTAMPTZ,
            disputed_at             TIMESTAMPTZ,
            cancelled_by            VARCHAR(64),
            cancellation_reason     VARCHAR(500),
            completion_photos       TEXT[]          NOT NULL DEFAULT '{}',
            fundi_notes             TEXT,
            escrow_release_at       TIMESTAMPTZ,
            scope_change_amount_tzs BIGINT,
            scope_change_reason     VARCHAR(500),
            scope_change_status     VARCHAR(20),
            created_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at              TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_jobs_reference            UNIQUE (job_reference),
            CONSTRAINT ck_jobs_status               CHECK (
                status IN ('pending', 'accepted', 'en_route', 'arrived', 'in_progress',
                           'completed', 'cancelled', 'disputed')
            ),
            CONSTRAINT ck_jobs_amounts_gte_0        CHECK (
                quoted_amount_tzs >= 0 AND platform_fee_tzs >= 0
                AND vat_tzs >= 0 AND net_to_fundi_tzs >= 0
            ),
            CONSTRAINT ck_jobs_net_consistency      CHECK (
                net_to_fundi_tzs = quoted_amount_tzs - platform_fee_tzs
            ),
            CONSTRAINT ck_jobs_scope_change_status  CHECK (
                scope_change_status IS NULL
                OR scope_change_status IN ('pending', 'approved', 'rejected')
            ),
            CONSTRAINT ck_jobs_assigned_has_fundi   CHECK (
                status IN ('pending', 'cancelled') OR fundi_id IS NOT NULL
            )
        );
    """)
    op.execute("CREATE INDEX idx_jobs_customer ON jobs (customer_id, created_at DESC);")
    op.execute("CREATE INDEX idx_jobs_fundi ON jobs (fundi_id, created_at DESC);")
    op.execute("""
        CREATE INDEX idx_jobs_escrow_due
        ON jobs (escrow_release_at)
        WHERE status = 'completed' AND escrow_release_at IS NOT NULL;
    """)
    op.execute("""
        CREATE TRIGGER trg_jobs_updated_at
            BEFORE UPDATE ON jobs
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("COMMENT ON TABLE jobs IS 'Booked jobs; status only changes through the job state machine';")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS jobs CASCADE;")
