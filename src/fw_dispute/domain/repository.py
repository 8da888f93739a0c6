"""Repository Protocol for fw_dispute."""

from typing import Any, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_dispute.domain.models import Dispute, Settlement


class DisputeRepositoryProtocol(Protocol):
    async def get_by_job(self, db: AsyncSession, job_id: str) -> Dispute | None: ...

    async def get_dispute(self, db: AsyncSession, dispute_id: str) -> Dispute | None: ...

    async def lock_dispute(self, db: AsyncSession, dispute_id: str) -> Dispute | None: ...

    async def insert_dispute(
        self,
        db: AsyncSession,
        job_id: str,
        raised_by_id: str,
        party: str,
        statement: str,
        evidence: list[str],
    ) -> Dispute: ...

    async def add_evidence(
        self,
        db: AsyncSession,
        dispute_id: str,
        party: str,
        statement: str | None,
        evidence: list[str],
    ) -> Dispute: ...

    async def set_status(self, db: AsyncSession, dispute_id: str, status: str) -> Dispute: ...

    async def record_resolution(
        self,
        db: AsyncSession,
        dispute_id: str,
        decision: str,
        settlement: Settlement,
        notes: str,
        resolved_by_id: str,
    ) -> Dispute: ...

    async def insert_audit(
        self,
        db: AsyncSession,
        actor_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        new_value: dict[str, Any],
    ) -> None: ...

    async def list_disputes(
        self, db: AsyncSession, status: str | None, limit: int, offset: int
    ) -> list[Dispute]: ...
