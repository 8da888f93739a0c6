"""Repository Protocol — dependency inversion for testability.

Unit tests inject a mock that conforms to this Protocol.
Infrastructure layer provides the real implementation.
"""

from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.enums import JobStatus
from src.fw_common.money import FeeBreakdown
from src.fw_job.domain.models import Job


class JobRepositoryProtocol(Protocol):
    async def create_job(
        self, db: AsyncSession, customer_id: str, fees: FeeBreakdown, data: dict[str, Any]
    ) -> Job: ...

    async def get_job(self, db: AsyncSession, job_id: str) -> Job | None: ...

    async def lock_job(self, db: AsyncSession, job_id: str) -> Job | None: ...

    async def apply_transition(
        self,
        db: AsyncSession,
        job_id: str,
        to_status: JobStatus,
        changes: dict[str, Any],
    ) -> Job: ...

    async def set_scope_change(
        self, db: AsyncSession, job_id: str, amount: int, reason: str
    ) -> Job: ...

    async def resolve_scope_change(
        self,
        db: AsyncSession,
        job_id: str,
        status: str,
        fees: FeeBreakdown | None,
    ) -> Job: ...

    async def get_service_prices(
        self, db: AsyncSession, service_ids: list[str]
    ) -> dict[str, int]: ...

    async def list_jobs(
        self,
        db: AsyncSession,
        user_id: str | None,
        role: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[Job]: ...

    async def list_due_releases(
        self, db: AsyncSession, due_before: datetime, limit: int
    ) -> list[str]: ...
