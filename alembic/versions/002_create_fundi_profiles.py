"""002: create fundi_profiles and fundi_services

Both tables are owned by the profile service; this schema keeps only the
columns matching and pricing read.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE fundi_profiles (
            user_id             VARCHAR(64)     PRIMARY KEY,
            online_status       BOOLEAN         NOT NULL DEFAULT FALSE,
            is_active           BOOLEAN         NOT NULL DEFAULT TRUE,
            verification_tier   VARCHAR(20)     NOT NULL DEFAULT 'tier1_phone',
            service_categories  TEXT[]          NOT NULL DEFAULT '{}',
            service_radius_km   NUMERIC(6, 2)   NOT NULL DEFAULT 10,
            current_location    GEOGRAPHY(POINT, 4326),
            holiday_mode_until  TIMESTAMPTZ,
            overall_rating      NUMERIC(3, 2)   NOT NULL DEFAULT 0,
            acceptance_rate     NUMERIC(5, 2)   NOT NULL DEFAULT 0,
            completion_rate     NUMERIC(5, 2)   NOT NULL DEFAULT 0,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            updated_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_fundi_profiles_tier   CHECK (
                verification_tier IN ('tier1_phone', 'tier2_id', 'tier3_certified')
            ),
            CONSTRAINT ck_fundi_profiles_radius CHECK (service_radius_km > 0),
            CONSTRAINT ck_fundi_profiles_rating CHECK (overall_rating BETWEEN 0 AND 5),
            CONSTRAINT ck_fundi_profiles_rates  CHECK (
                acceptance_rate BETWEEN 0 AND 100 AND completion_rate BETWEEN 0 AND 100
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_fundi_profiles_location
        ON fundi_profiles USING GIST (current_location)
        WHERE online_status = TRUE AND is_active = TRUE;
    """)
    op.execute("""
        CREATE INDEX idx_fundi_profiles_categories
        ON fundi_profiles USING GIN (service_categories);
    """)
    op.execute("""
        CREATE TRIGGER trg_fundi_profiles_updated_at
            BEFORE UPDATE ON fundi_profiles
            FOR EACH ROW EXECUTE FUNCTION fn_update_timestamp();
    """)
    op.execute("""
        CREATE TABLE fundi_services (
            id                  VARCHAR(64)     PRIMARY KEY DEFAULT gen_random_uuid()::TEXT,
            fundi_id            VARCHAR(64)     NOT NULL REFERENCES fundi_profiles (user_id),
            category            VARCHAR(64)     NOT NULL,
            name                VARCHAR(200)    NOT NULL,
            price_tzs           BIGINT          NOT NULL,
            created_at          TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_fundi_services_price  CHECK (price_tzs >= 0)
        );
    """)
    op.execute("CREATE INDEX idx_fundi_services_fundi ON fundi_services (fundi_id);")


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS fundi_services CASCADE;")
    op.execute("DROP TABLE IF EXISTS fundi_profiles CASCADE;")
