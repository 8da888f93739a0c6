"""AssignmentLogRepository — one row per (job, fundi) offer.

The (job_id, fundi_id) pair is unique, so a fundi is offered a given job at
most once. Responses only move out of 'offered'; the WHERE guard makes
mark_response idempotent under duplicate task delivery.
"""

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_matching.domain.models import Offer

_COLUMNS = """
    job_id, fundi_id, response, distance_km, match_score,
    offered_at, expires_at, responded_at
"""

_RECORD_OFFER_SQL = text(f"""
    INSERT INTO job_assignment_log
        (job_id, fundi_id, response, distance_km, match_score, offered_at, expires_at)
    VALUES
        (:job_id, :fundi_id, 'offered', :distance_km, :match_score, NOW(), :expires_at)
    RETURNING {_COLUMNS}
""")

_ATTEMPTED_SQL = text("""
    SELECT fundi_id FROM job_assignment_log WHERE job_id = :job_id
""")

_OPEN_OFFER_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM job_assignment_log
    WHERE job_id = :job_id AND response = 'offered'
    ORDER BY offered_at DESC
    LIMIT 1
""")

_MARK_RESPONSE_SQL = text(f"""
    UPDATE job_assignment_log
    SET response = :response,
        responded_at = NOW()
    WHERE job_id = :job_id AND fundi_id = :fundi_id AND response = 'offered'
    RETURNING {_COLUMNS}
""")

_EXPIRED_OFFERS_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM job_assignment_log
    WHERE response = 'offered' AND expires_at < :expired_before
    ORDER BY expires_at
    LIMIT :limit
""")


def _row_to_offer(row: object) -> Offer:
    return Offer(
        job_id=str(row.job_id),  # type: ignore[attr-defined]
        fundi_id=row.fundi_id,  # type: ignore[attr-defined]
        response=row.response,  # type: ignore[attr-defined]
        distance_km=row.distance_km,  # type: ignore[attr-defined]
        match_score=row.match_score,  # type: ignore[attr-defined]
        offered_at=row.offered_at,  # type: ignore[attr-defined]
        expires_at=row.expires_at,  # type: ignore[attr-defined]
        responded_at=row.responded_at,  # type: ignore[attr-defined]
    )


class AssignmentLogRepository:
    async def record_offer(
        self,
        db: AsyncSession,
        job_id: str,
        fundi_id: str,
        distance_km: float,
        match_score: float,
        expires_at: datetime,
    ) -> Offer:
        result = await db.execute(
            _RECORD_OFFER_SQL,
            {
                "job_id": job_id,
                "fundi_id": fundi_id,
                "distance_km": round(distance_km, 2),
                "match_score": round(match_score, 4),
                "expires_at": expires_at,
            },
        )
        return _row_to_offer(result.fetchone())

    async def attempted_fundi_ids(self, db: AsyncSession, job_id: str) -> set[str]:
        result = await db.execute(_ATTEMPTED_SQL, {"job_id": job_id})
        return {r.fundi_id for r in result.fetchall()}

    async def get_open_offer(self, db: AsyncSession, job_id: str) -> Offer | None:
        result = await db.execute(_OPEN_OFFER_SQL, {"job_id": job_id})
        row = result.fetchone()
        return _row_to_offer(row) if row is not None else None

    async def mark_response(
        self, db: AsyncSession, job_id: str, fundi_id: str, response: str
    ) -> Offer | None:
        """None when there was no open offer to answer."""
        result = await db.execute(
            _MARK_RESPONSE_SQL,
            {"job_id": job_id, "fundi_id": fundi_id, "response": response},
        )
        row = result.fetchone()
        return _row_to_offer(row) if row is not None else None

    async def list_expired_offers(
        self, db: AsyncSession, expired_before: datetime, limit: int
    ) -> list[Offer]:
        result = await db.execute(
            _EXPIRED_OFFERS_SQL, {"expired_before": expired_before, "limit": limit}
        )
        return [_row_to_offer(r) for r in result.fetchall()]
