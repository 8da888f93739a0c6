"""JobRepository — concrete implementation of JobRepositoryProtocol.

Status changes are only ever written through ``apply_transition`` on a row the
caller has locked with ``lock_job`` (SELECT ... FOR UPDATE). The caller owns
the transaction (see src/fw_common/unit_of_work.py).
"""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.enums import JobStatus, ScopeChangeStatus
from src.fw_common.errors import InternalError, JobNotFoundError
from src.fw_common.id_generator import new_job_reference
from src.fw_common.money import FeeBreakdown
from src.fw_job.domain.models import Job
from src.fw_job.domain.state_machine import TIMESTAMP_FIELDS

_JOB_COLUMNS = """
    id, job_reference, customer_id, fundi_id, category, service_items,
    description_text, description_photos, latitude, longitude, address_text,
    scheduled_at, status, quoted_amount_tzs, platform_fee_tzs, vat_tzs,
    net_to_fundi_tzs, payment_method, accepted_at, en_route_at, arrived_at,
    started_at, completed_at, cancelled_at, disputed_at, cancelled_by,
    cancellation_reason, completion_photos, fundi_notes, escrow_release_at,
    scope_change_amount_tzs, scope_change_reason, scope_change_status,
    created_at, updated_at
"""

# Columns a transition may write besides status and its timestamp
_TRANSITION_COLUMNS = frozenset({
    "fundi_id",
    "cancelled_by",
    "cancellation_reason",
    "completion_photos",
    "fundi_notes",
    "escrow_release_at",
})

_INSERT_JOB_SQL = text(f"""
    INSERT INTO jobs (
        job_reference, customer_id, category, service_items, description_text,
        description_photos, latitude, longitude, address_text, scheduled_at,
        status, quoted_amount_tzs, platform_fee_tzs, vat_tzs, net_to_fundi_tzs,
        payment_method
    ) VALUES (
        :job_reference, :customer_id, :category, CAST(:service_items AS JSONB),
        :description_text, :description_photos, :latitude, :longitude,
        :address_text, :scheduled_at, 'pending', :quoted, :fee, :vat, :net,
        :payment_method
    )
    RETURNING {_JOB_COLUMNS}
""")

_GET_JOB_SQL = text(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = :job_id")

_LOCK_JOB_SQL = text(f"SELECT {_JOB_COLUMNS} FROM jobs WHERE id = :job_id FOR UPDATE")

_SET_SCOPE_CHANGE_SQL = text(f"""
    UPDATE jobs
    SET scope_change_amount_tzs = :amount,
        scope_change_reason = :reason,
        scope_change_status = 'pending',
        updated_at = NOW()
    WHERE id = :job_id
    RETURNING {_JOB_COLUMNS}
""")

_APPROVE_SCOPE_CHANGE_SQL = text(f"""
    UPDATE jobs
    SET quoted_amount_tzs = :quoted,
        platform_fee_tzs = :fee,
        vat_tzs = :vat,
        net_to_fundi_tzs = :net,
        scope_change_status = 'approved',
        updated_at = NOW()
    WHERE id = :job_id AND scope_change_status = 'pending'
    RETURNING {_JOB_COLUMNS}
""")

_REJECT_SCOPE_CHANGE_SQL = text(f"""
    UPDATE jobs
    SET scope_change_status = 'rejected',
        updated_at = NOW()
    WHERE id = :job_id AND scope_change_status = 'pending'
    RETURNING {_JOB_COLUMNS}
""")

_SERVICE_PRICES_SQL = text("""
    SELECT id, price_tzs
    FROM fundi_services
    WHERE id = ANY(:ids)
""")

_LIST_JOBS_SQL = text(f"""
    SELECT {_JOB_COLUMNS}
    FROM jobs
    WHERE (:user_id IS NULL
           OR (:role = 'customer' AND customer_id = :user_id)
           OR (:role = 'fundi' AND fundi_id = :user_id))
      AND (:status IS NULL OR status = :status)
    ORDER BY created_at DESC
    LIMIT :limit OFFSET :offset
""")

# A release is due when the job is completed, its hold has elapsed and the
# customer payment is still sitting in escrow.
_DUE_RELEASES_SQL = text("""
    SELECT j.id
    FROM jobs j
    JOIN payment_transactions pt
      ON pt.job_id = j.id
     AND pt.direction = 'customer_to_escrow'
     AND pt.status = 'held_escrow'
    WHERE j.status = 'completed'
      AND j.escrow_release_at IS NOT NULL
      AND j.escrow_release_at <= :due_before
    ORDER BY j.escrow_release_at
    LIMIT :limit
""")


def _row_to_job(row: object) -> Job:
    service_items = row.service_items  # type: ignore[attr-defined]
    if isinstance(service_items, str):
        service_items = json.loads(service_items)
    return Job(
        id=str(row.id),  # type: ignore[attr-defined]
        job_reference=row.job_reference,  # type: ignore[attr-defined]
        customer_id=row.customer_id,  # type: ignore[attr-defined]
        fundi_id=row.fundi_id,  # type: ignore[attr-defined]
        category=row.category,  # type: ignore[attr-defined]
        service_items=service_items or [],
        description_text=row.description_text,  # type: ignore[attr-defined]
        description_photos=list(row.description_photos or []),  # type: ignore[attr-defined]
        latitude=row.latitude,  # type: ignore[attr-defined]
        longitude=row.longitude,  # type: ignore[attr-defined]
        address_text=row.address_text,  # type: ignore[attr-defined]
        scheduled_at=row.scheduled_at,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        quoted_amount_tzs=row.quoted_amount_tzs,  # type: ignore[attr-defined]
        platform_fee_tzs=row.platform_fee_tzs,  # type: ignore[attr-defined]
        vat_tzs=row.vat_tzs,  # type: ignore[attr-defined]
        net_to_fundi_tzs=row.net_to_fundi_tzs,  # type: ignore[attr-defined]
        payment_method=row.payment_method,  # type: ignore[attr-defined]
        accepted_at=row.accepted_at,  # type: ignore[attr-defined]
        en_route_at=row.en_route_at,  # type: ignore[attr-defined]
        arrived_at=row.arrived_at,  # type: ignore[attr-defined]
        started_at=row.started_at,  # type: ignore[attr-defined]
        completed_at=row.completed_at,  # type: ignore[attr-defined]
        cancelled_at=row.cancelled_at,  # type: ignore[attr-defined]
        disputed_at=row.disputed_at,  # type: ignore[attr-defined]
        cancelled_by=row.cancelled_by,  # type: ignore[attr-defined]
        cancellation_reason=row.cancellation_reason,  # type: ignore[attr-defined]
        completion_photos=list(row.completion_photos or []),  # type: ignore[attr-defined]
        fundi_notes=row.fundi_notes,  # type: ignore[attr-defined]
        escrow_release_at=row.escrow_release_at,  # type: ignore[attr-defined]
        scope_change_amount_tzs=row.scope_change_amount_tzs,  # type: ignore[attr-defined]
        scope_change_reason=row.scope_change_reason,  # type: ignore[attr-defined]
        scope_change_status=row.scope_change_status,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


class JobRepository:
    async def create_job(
        self, db: AsyncSession, customer_id: str, fees: FeeBreakdown, data: dict[str, Any]
    ) -> Job:
        result = await db.execute(
            _INSERT_JOB_SQL,
            {
                "job_reference": new_job_reference(),
                "customer_id": customer_id,
                "category": data["category"],
                "service_items": json.dumps(data.get("service_items", [])),
                "description_text": data.get("description_text", ""),
                "description_photos": data.get("description_photos", []),
                "latitude": data["latitude"],
                "longitude": data["longitude"],
                "address_text": data.get("address_text", ""),
                "scheduled_at": data.get("scheduled_at"),
                "quoted": fees.gross,
                "fee": fees.fee,
                "vat": fees.vat,
                "net": fees.net,
                "payment_method": data.get("payment_method"),
            },
        )
        return _row_to_job(result.fetchone())

    async def get_job(self, db: AsyncSession, job_id: str) -> Job | None:
        result = await db.execute(_GET_JOB_SQL, {"job_id": job_id})
        row = result.fetchone()
        return _row_to_job(row) if row is not None else None

    async def lock_job(self, db: AsyncSession, job_id: str) -> Job | None:
        result = await db.execute(_LOCK_JOB_SQL, {"job_id": job_id})
        row = result.fetchone()
        return _row_to_job(row) if row is not None else None

    async def apply_transition(
        self,
        db: AsyncSession,
        job_id: str,
        to_status: JobStatus,
        changes: dict[str, Any],
    ) -> Job:
        unknown = set(changes) - _TRANSITION_COLUMNS
        if unknown:
            raise InternalError(f"Columns not writable by a transition: {sorted(unknown)}")

        assignments = [
            "status = :status",
            f"{TIMESTAMP_FIELDS[to_status]} = NOW()",
            "updated_at = NOW()",
        ]
        assignments += [f"{column} = :{column}" for column in sorted(changes)]
        sql = text(
            f"UPDATE jobs SET {', '.join(assignments)} "
            f"WHERE id = :job_id RETURNING {_JOB_COLUMNS}"
        )
        result = await db.execute(sql, {"job_id": job_id, "status": to_status.value, **changes})
        row = result.fetchone()
        if row is None:
            raise JobNotFoundError(job_id)
        return _row_to_job(row)

    async def set_scope_change(
        self, db: AsyncSession, job_id: str, amount: int, reason: str
    ) -> Job:
        result = await db.execute(
            _SET_SCOPE_CHANGE_SQL, {"job_id": job_id, "amount": amount, "reason": reason}
        )
        row = result.fetchone()
        if row is None:
            raise JobNotFoundError(job_id)
        return _row_to_job(row)

    async def resolve_scope_change(
        self,
        db: AsyncSession,
        job_id: str,
        status: str,
        fees: FeeBreakdown | None,
    ) -> Job:
        if status == ScopeChangeStatus.APPROVED:
            if fees is None:
                raise InternalError("Approving a scope change requires recomputed fees")
            params: dict[str, Any] = {
                "job_id": job_id,
                "quoted": fees.gross,
                "fee": fees.fee,
                "vat": fees.vat,
                "net": fees.net,
            }
            result = await db.execute(_APPROVE_SCOPE_CHANGE_SQL, params)
        else:
            result = await db.execute(_REJECT_SCOPE_CHANGE_SQL, {"job_id": job_id})
        row = result.fetchone()
        if row is None:
            raise JobNotFoundError(job_id)
        return _row_to_job(row)

    async def get_service_prices(
        self, db: AsyncSession, service_ids: list[str]
    ) -> dict[str, int]:
        if not service_ids:
            return {}
        result = await db.execute(_SERVICE_PRICES_SQL, {"ids": service_ids})
        return {str(r.id): r.price_tzs for r in result.fetchall() if r.price_tzs is not None}

    async def list_jobs(
        self,
        db: AsyncSession,
        user_id: str | None,
        role: str,
        status: str | None,
        limit: int,
        offset: int,
    ) -> list[Job]:
        result = await db.execute(
            _LIST_JOBS_SQL,
            {
                "user_id": user_id,
                "role": role,
                "status": status,
                "limit": limit,
                "offset": offset,
            },
        )
        return [_row_to_job(r) for r in result.fetchall()]

    async def list_due_releases(
        self, db: AsyncSession, due_before: datetime, limit: int
    ) -> list[str]:
        result = await db.execute(_DUE_RELEASES_SQL, {"due_before": due_before, "limit": limit})
        return [str(r.id) for r in result.fetchall()]
