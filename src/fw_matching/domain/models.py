"""Domain models for fw_matching — pure dataclasses."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class FundiSnapshot:
    """Matching-relevant view of a fundi, as read from the profile service tables."""
    user_id: str
    distance_km: float
    overall_rating: float = 0.0        # 0..5
    acceptance_rate: float = 0.0       # 0..100
    completion_rate: float = 0.0       # 0..100
    online: bool = False
    verification_tier: str = "tier1_phone"
    service_categories: list[str] = field(default_factory=list)
    service_radius_km: float = 0.0
    holiday_mode_until: datetime | None = None


@dataclass(frozen=True)
class MatchCandidate:
    fundi_id: str
    distance_km: float
    score: float


@dataclass(frozen=True)
class DispatchResult:
    assigned: bool                      # True when an offer is out to a fundi
    candidate: MatchCandidate | None = None
    reason: str | None = None           # why no offer was made


@dataclass
class Offer:
    job_id: str
    fundi_id: str
    response: str                       # OfferResponse value
    distance_km: float | None = None
    match_score: float | None = None
    offered_at: datetime | None = None
    expires_at: datetime | None = None
    responded_at: datetime | None = None
