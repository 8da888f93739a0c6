"""Domain models for fw_job — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class Job:
    id: str
    job_reference: str
    customer_id: str
    category: str
    status: str                       # JobStatus value
    quoted_amount_tzs: int
    platform_fee_tzs: int
    vat_tzs: int
    net_to_fundi_tzs: int             # always quoted - platform_fee
    latitude: float
    longitude: float
    fundi_id: str | None = None
    service_items: list[dict[str, Any]] = field(default_factory=list)
    description_text: str = ""
    description_photos: list[str] = field(default_factory=list)
    address_text: str = ""
    scheduled_at: datetime | None = None
    payment_method: str | None = None
    accepted_at: datetime | None = None
    en_route_at: datetime | None = None
    arrived_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None
    disputed_at: datetime | None = None
    cancelled_by: str | None = None
    cancellation_reason: str | None = None
    completion_photos: list[str] = field(default_factory=list)
    fundi_notes: str | None = None
    escrow_release_at: datetime | None = None   # None = not scheduled, or frozen by a dispute
    scope_change_amount_tzs: int | None = None
    scope_change_reason: str | None = None
    scope_change_status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.customer_id, self.fundi_id)

    def other_party(self, user_id: str) -> str | None:
        if user_id == self.customer_id:
            return self.fundi_id
        if user_id == self.fundi_id:
            return self.customer_id
        return None
