"""Eligibility rules a fundi must pass before being ranked for a job."""

from collections.abc import Collection
from datetime import datetime

from src.fw_common.enums import VerificationTier
from src.fw_matching.domain.models import FundiSnapshot

_TIER_ORDER = [t.value for t in VerificationTier]
MIN_TIER = VerificationTier.TIER2_ID


def tier_at_least(tier: str, minimum: VerificationTier = MIN_TIER) -> bool:
    if tier not in _TIER_ORDER:
        return False
    return _TIER_ORDER.index(tier) >= _TIER_ORDER.index(minimum.value)


def ineligibility_reason(
    fundi: FundiSnapshot,
    category: str,
    excluded: Collection[str],
    now: datetime,
) -> str | None:
    """None when eligible, otherwise the first failing rule."""
    if not fundi.online:
        return "offline"
    if not tier_at_least(fundi.verification_tier):
        return "tier"
    if category not in fundi.service_categories:
        return "category"
    if fundi.holiday_mode_until is not None and fundi.holiday_mode_until > now:
        return "holiday"
    if fundi.distance_km > fundi.service_radius_km:
        return "out_of_radius"
    if fundi.user_id in excluded:
        return "excluded"
    return None


def filter_eligible(
    fundis: list[FundiSnapshot],
    category: str,
    excluded: Collection[str],
    now: datetime,
) -> list[FundiSnapshot]:
    return [f for f in fundis if ineligibility_reason(f, category, excluded, now) is None]
