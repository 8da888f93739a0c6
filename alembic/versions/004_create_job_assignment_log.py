"""004: create job_assignment_log table

Revision ID: 004
Revises: 003
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op

revision: str = "004"
down_revision: Union[str, None] = "003"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE job_assignment_log (
            id              BIGSERIAL       PRIMARY KEY,
            job_id          VARCHAR(64)     NOT NULL REFERENCES jobs (id),
            fundi_id        VARCHAR(64)     NOT NULL,
            response        VARCHAR(20)     NOT NULL DEFAULT 'offered',
            distance_km     NUMERIC(8, 2),
            match_score     NUMERIC(6, 4),
            offered_at      TIMESTAMPTZ     NOT NULL DEFAULT NOW(),
            expires_at      TIMESTAMPTZ     NOT NULL,
            responded_at    TIMESTAMPTZ,
            CONSTRAINT uq_assignment_job_fundi  UNIQUE (job_id, fundi_id),
            CONSTRAINT ck_assignment_response   CHECK (
                response IN ('offered', 'accepted', 'declined', 'expired')
            )
        );
    """)
    op.execute("""
        CREATE INDEX idx_assignment_open
        ON job_assignment_log (expires_at)
        WHERE response = 'offered';
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS job_assignment_log CASCADE;")
