"""Ports the dispatch engine depends on; infrastructure provides the adapters."""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_matching.domain.models import FundiSnapshot, Offer


class FundiLocator(Protocol):
    async def find_nearby(
        self,
        db: AsyncSession,
        latitude: float,
        longitude: float,
        category: str,
    ) -> list[FundiSnapshot]: ...


class AssignmentLogProtocol(Protocol):
    async def record_offer(
        self,
        db: AsyncSession,
        job_id: str,
        fundi_id: str,
        distance_km: float,
        match_score: float,
        expires_at: datetime,
    ) -> Offer: ...

    async def attempted_fundi_ids(self, db: AsyncSession, job_id: str) -> set[str]: ...

    async def get_open_offer(self, db: AsyncSession, job_id: str) -> Offer | None: ...

    async def mark_response(
        self, db: AsyncSession, job_id: str, fundi_id: str, response: str
    ) -> Offer | None: ...

    async def list_expired_offers(
        self, db: AsyncSession, expired_before: datetime, limit: int
    ) -> list[Offer]: ...
