"""PostGIS-backed FundiLocator.

The SQL pre-filters on the indexed columns (online, category, own service
radius via ST_DWithin) so the candidate set stays small; the pure rules in
domain/eligibility.py are re-applied by the dispatcher on the result.
"""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_matching.domain.models import FundiSnapshot

_FIND_NEARBY_SQL = text("""
    WITH origin AS (
        SELECT ST_SetSRID(ST_MakePoint(:longitude, :latitude), 4326)::geography AS point
    )
    SELECT fp.user_id,
           ST_Distance(fp.current_location, origin.point) / 1000.0 AS distance_km,
           COALESCE(fp.overall_rating, 0)   AS overall_rating,
           COALESCE(fp.acceptance_rate, 0)  AS acceptance_rate,
           COALESCE(fp.completion_rate, 0)  AS completion_rate,
           fp.online_status,
           fp.verification_tier,
           fp.service_categories,
           fp.service_radius_km,
           fp.holiday_mode_until
    FROM fundi_profiles fp, origin
    WHERE fp.online_status = TRUE
      AND fp.is_active = TRUE
      AND fp.current_location IS NOT NULL
      AND :category = ANY(fp.service_categories)
      AND ST_DWithin(fp.current_location, origin.point, fp.service_radius_km * 1000)
    ORDER BY distance_km
    LIMIT :limit
""")


def _row_to_snapshot(row: object) -> FundiSnapshot:
    return FundiSnapshot(
        user_id=row.user_id,  # type: ignore[attr-defined]
        distance_km=float(row.distance_km),  # type: ignore[attr-defined]
        overall_rating=float(row.overall_rating),  # type: ignore[attr-defined]
        acceptance_rate=float(row.acceptance_rate),  # type: ignore[attr-defined]
        completion_rate=float(row.completion_rate),  # type: ignore[attr-defined]
        online=row.online_status,  # type: ignore[attr-defined]
        verification_tier=row.verification_tier,  # type: ignore[attr-defined]
        service_categories=list(row.service_categories or []),  # type: ignore[attr-defined]
        service_radius_km=float(row.service_radius_km),  # type: ignore[attr-defined]
        holiday_mode_until=row.holiday_mode_until,  # type: ignore[attr-defined]
    )


class PostgisFundiLocator:
    def __init__(self, limit: int = 50) -> None:
        self._limit = limit

    async def find_nearby(
        self,
        db: AsyncSession,
        latitude: float,
        longitude: float,
        category: str,
    ) -> list[FundiSnapshot]:
        result = await db.execute(
            _FIND_NEARBY_SQL,
            {
                "latitude": latitude,
                "longitude": longitude,
                "category": category,
                "limit": self._limit,
            },
        )
        return [_row_to_snapshot(r) for r in result.fetchall()]
