"""DisputeRepository — disputes and the admin audit log.

disputes.job_id is UNIQUE: the database guarantees one dispute per job even
if two parties race past the service's existence check.
"""

import json
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.errors import DisputeNotFoundError, DuplicateRequestError
from src.fw_dispute.domain.models import Dispute, Settlement

_COLUMNS = """
    id, job_id, raised_by_id, status, decision, customer_statement,
    fundi_statement, customer_evidence, fundi_evidence, resolution_notes,
    resolved_by_id, resolved_at, resolution_amount_customer_tzs,
    resolution_amount_fundi_tzs, created_at, updated_at
"""

_INSERT_SQL = text(f"""
    INSERT INTO disputes
        (job_id, raised_by_id, status,
         customer_statement, fundi_statement, customer_evidence, fundi_evidence)
    VALUES
        (:job_id, :raised_by_id, 'open',
         CASE WHEN :party = 'customer' THEN :statement END,
         CASE WHEN :party = 'fundi' THEN :statement END,
         CASE WHEN :party = 'customer' THEN CAST(:evidence AS TEXT[]) ELSE '{{}}' END,
         CASE WHEN :party = 'fundi' THEN CAST(:evidence AS TEXT[]) ELSE '{{}}' END)
    RETURNING {_COLUMNS}
""")

_GET_BY_JOB_SQL = text(f"SELECT {_COLUMNS} FROM disputes WHERE job_id = :job_id")

_GET_SQL = text(f"SELECT {_COLUMNS} FROM disputes WHERE id = :dispute_id")

_LOCK_SQL = text(f"SELECT {_COLUMNS} FROM disputes WHERE id = :dispute_id FOR UPDATE")

_ADD_EVIDENCE_SQL = text(f"""
    UPDATE disputes
    SET customer_statement = CASE WHEN :party = 'customer'
                                  THEN COALESCE(:statement, customer_statement)
                                  ELSE customer_statement END,
        fundi_statement = CASE WHEN :party = 'fundi'
                               THEN COALESCE(:statement, fundi_statement)
                               ELSE fundi_statement END,
        customer_evidence = CASE WHEN :party = 'customer'
                                 THEN customer_evidence || CAST(:evidence AS TEXT[])
                                 ELSE customer_evidence END,
        fundi_evidence = CASE WHEN :party = 'fundi'
                              THEN fundi_evidence || CAST(:evidence AS TEXT[])
                              ELSE fundi_evidence END,
        updated_at = NOW()
    WHERE id = :dispute_id
    RETURNING {_COLUMNS}
""")

_SET_STATUS_SQL = text(f"""
    UPDATE disputes
    SET status = :status, updated_at = NOW()
    WHERE id = :dispute_id
    RETURNING {_COLUMNS}
""")

_RESOLVE_SQL = text(f"""
    UPDATE disputes
    SET status = :status,
        decision = :decision,
        resolution_notes = :notes,
        resolved_by_id = :resolved_by_id,
        resolved_at = NOW(),
        resolution_amount_customer_tzs = :customer_amount,
        resolution_amount_fundi_tzs = :fundi_amount,
        updated_at = NOW()
    WHERE id = :dispute_id
    RETURNING {_COLUMNS}
""")

_INSERT_AUDIT_SQL = text("""
    INSERT INTO audit_log (actor_id, action, entity_type, entity_id, new_value)
    VALUES (:actor_id, :action, :entity_type, :entity_id, CAST(:new_value AS JSONB))
""")

_LIST_SQL = text(f"""
    SELECT {_COLUMNS}
    FROM disputes
    WHERE (:status IS NULL OR status = :status)
    ORDER BY created_at DESC
    LIMIT :limit OFFSET :offset
""")


def _row_to_dispute(row: object) -> Dispute:
    return Dispute(
        id=str(row.id),  # type: ignore[attr-defined]
        job_id=str(row.job_id),  # type: ignore[attr-defined]
        raised_by_id=row.raised_by_id,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        decision=row.decision,  # type: ignore[attr-defined]
        customer_statement=row.customer_statement,  # type: ignore[attr-defined]
        fundi_statement=row.fundi_statement,  # type: ignore[attr-defined]
        customer_evidence=list(row.customer_evidence or []),  # type: ignore[attr-defined]
        fundi_evidence=list(row.fundi_evidence or []),  # type: ignore[attr-defined]
        resolution_notes=row.resolution_notes,  # type: ignore[attr-defined]
        resolved_by_id=row.resolved_by_id,  # type: ignore[attr-defined]
        resolved_at=row.resolved_at,  # type: ignore[attr-defined]
        resolution_amount_customer_tzs=row.resolution_amount_customer_tzs,  # type: ignore[attr-defined]
        resolution_amount_fundi_tzs=row.resolution_amount_fundi_tzs,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class DisputeRepository:
    async def get_by_job(self, db: AsyncSession, job_id: str) -> Dispute | None:
        result = await db.execute(_GET_BY_JOB_SQL, {"job_id": job_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row is not None else None

    async def get_dispute(self, db: AsyncSession, dispute_id: str) -> Dispute | None:
        result = await db.execute(_GET_SQL, {"dispute_id": dispute_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row is not None else None

    async def lock_dispute(self, db: AsyncSession, dispute_id: str) -> Dispute | None:
        result = await db.execute(_LOCK_SQL, {"dispute_id": dispute_id})
        row = result.fetchone()
        return _row_to_dispute(row) if row is not None else None

    async def insert_dispute(
        self,
        db: AsyncSession,
        job_id: str,
        raised_by_id: str,
        party: str,
        statement: str,
        evidence: list[str],
    ) -> Dispute:
        try:
            result = await db.execute(
                _INSERT_SQL,
                {
                    "job_id": job_id,
                    "raised_by_id": raised_by_id,
                    "party": party,
                    "statement": statement,
                    "evidence": evidence,
                },
            )
        except IntegrityError as exc:
            raise DuplicateRequestError(f"A dispute already exists for job {job_id}") from exc
        return _row_to_dispute(result.fetchone())

    async def add_evidence(
        self,
        db: AsyncSession,
        dispute_id: str,
        party: str,
        statement: str | None,
        evidence: list[str],
    ) -> Dispute:
        result = await db.execute(
            _ADD_EVIDENCE_SQL,
            {
                "dispute_id": dispute_id,
                "party": party,
                "statement": statement,
                "evidence": evidence,
            },
        )
        return self._one(result.fetchone(), dispute_id)

    async def set_status(self, db: AsyncSession, dispute_id: str, status: str) -> Dispute:
        result = await db.execute(_SET_STATUS_SQL, {"dispute_id": dispute_id, "status": status})
        return self._one(result.fetchone(), dispute_id)

    async def record_resolution(
        self,
        db: AsyncSession,
        dispute_id: str,
        decision: str,
        settlement: Settlement,
        notes: str,
        resolved_by_id: str,
    ) -> Dispute:
        result = await db.execute(
            _RESOLVE_SQL,
            {
                "dispute_id": dispute_id,
                "status": settlement.status,
                "decision": decision,
                "notes": notes,
                "resolved_by_id": resolved_by_id,
                "customer_amount": settlement.customer_amount,
                "fundi_amount": settlement.fundi_amount,
            },
        )
        return self._one(result.fetchone(), dispute_id)

    async def insert_audit(
        self,
        db: AsyncSession,
        actor_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        new_value: dict[str, Any],
    ) -> None:
        await db.execute(
            _INSERT_AUDIT_SQL,
            {
                "actor_id": actor_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "new_value": json.dumps(new_value),
            },
        )

    async def list_disputes(
        self, db: AsyncSession, status: str | None, limit: int, offset: int
    ) -> list[Dispute]:
        result = await db.execute(
            _LIST_SQL, {"status": status, "limit": limit, "offset": offset}
        )
        return [_row_to_dispute(r) for r in result.fetchall()]

    @staticmethod
    def _one(row: object | None, dispute_id: str) -> Dispute:
        if row is None:
            raise DisputeNotFoundError(dispute_id)
        return _row_to_dispute(row)
