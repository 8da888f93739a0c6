"""JobService — job creation, status transitions and scope changes.

Transitions run in one unit of work on the locked job row. Side effects
(notifications, escrow release scheduling) run only after that unit of work
has committed, and a failing side effect is logged without undoing the
transition.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.fw_common.actor import Actor
from src.fw_common.datetime_utils import utc_in
from src.fw_common.enums import (
    JobStatus,
    NotificationTemplate,
    OfferResponse,
    Role,
    ScopeChangeStatus,
)
from src.fw_common.errors import (
    DuplicateRequestError,
    ForbiddenError,
    InvalidAmountError,
    InvalidPaymentStateError,
    InvalidRequestError,
    InvalidTransitionError,
    JobNotFoundError,
    NotAssignedError,
    ScopeChangeNotFoundError,
)
from src.fw_common.money import compute_fees, validate_amount
from src.fw_common.unit_of_work import unit_of_work
from src.fw_job.application.schemas import CreateJobRequest
from src.fw_job.domain.models import Job
from src.fw_job.domain.repository import JobRepositoryProtocol
from src.fw_job.domain.state_machine import check_transition
from src.fw_job.infrastructure.persistence import JobRepository
from src.fw_matching.domain.ports import AssignmentLogProtocol
from src.fw_matching.infrastructure.assignment_log import AssignmentLogRepository
from src.fw_notification.sink import NotificationSink, QueuedNotificationSink
from src.fw_payment.application.escrow_service import EscrowService
from src.fw_payment.domain.repository import PaymentRepositoryProtocol
from src.fw_payment.infrastructure.persistence import PaymentRepository
from src.fw_scheduler.scheduler import TaskScheduler, get_task_scheduler

logger = logging.getLogger(__name__)

DISPATCH_TASK = "dispatch.run"


class JobService:
    def __init__(
        self,
        repo: JobRepositoryProtocol | None = None,
        offers: AssignmentLogProtocol | None = None,
        payments: PaymentRepositoryProtocol | None = None,
        escrow: EscrowService | None = None,
        notifier: NotificationSink | None = None,
        scheduler: TaskScheduler | None = None,
    ) -> None:
        self._repo: JobRepositoryProtocol = repo or JobRepository()
        self._offers: AssignmentLogProtocol = offers or AssignmentLogRepository()
        self._payments: PaymentRepositoryProtocol = payments or PaymentRepository()
        self._notifier: NotificationSink = notifier or QueuedNotificationSink(scheduler)
        self._escrow = escrow or EscrowService(notifier=self._notifier, scheduler=scheduler)
        self._scheduler = scheduler

    @property
    def tasks(self) -> TaskScheduler:
        return self._scheduler or get_task_scheduler()

    # ------------------------------------------------------------------
    # Creation & queries
    # ------------------------------------------------------------------

    async def create_job(self, db: AsyncSession, actor: Actor, body: CreateJobRequest) -> Job:
        if actor.role is not Role.CUSTOMER:
            raise ForbiddenError("Only customers can book jobs")

        prices = await self._repo.get_service_prices(
            db, [item.fundi_service_id for item in body.service_items]
        )
        total = sum(prices.get(i.fundi_service_id, 0) * i.quantity for i in body.service_items)
        quoted = max(total, settings.MIN_JOB_AMOUNT_TZS)
        fees = compute_fees(quoted, settings.PLATFORM_FEE_PERCENT, settings.VAT_PERCENT)

        try:
            job = await self._repo.create_job(db, actor.user_id, fees, body.model_dump())
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        logger.info(
            "Job created: job=%s ref=%s customer=%s category=%s quoted=%d",
            job.id,
            job.job_reference,
            actor.user_id,
            job.category,
            job.quoted_amount_tzs,
        )
        try:
            self.tasks.run_reliable(DISPATCH_TASK, {"job_id": job.id})
        except Exception:
            # Job stays pending until an admin re-dispatches it
            logger.exception("Failed to schedule dispatch for job %s", job.id)
        return job

    async def get_job(self, db: AsyncSession, job_id: str, actor: Actor) -> Job:
        job = await self._repo.get_job(db, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if actor.is_privileged or job.is_party(actor.user_id):
            return job
        # A fundi holding the current offer may see the job before accepting
        if actor.role is Role.FUNDI:
            offer = await self._offers.get_open_offer(db, job_id)
            if offer is not None and offer.fundi_id == actor.user_id:
                return job
        raise JobNotFoundError(job_id)

    async def list_jobs(
        self,
        db: AsyncSession,
        actor: Actor,
        status: JobStatus | None,
        limit: int,
        offset: int,
    ) -> list[Job]:
        user_id = None if actor.role is Role.ADMIN else actor.user_id
        return await self._repo.list_jobs(
            db, user_id, actor.role.value, status.value if status else None, limit, offset
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def transition(
        self,
        db: AsyncSession,
        job_id: str,
        actor: Actor,
        to_status: JobStatus,
        *,
        reason: str | None = None,
        completion_photos: list[str] | None = None,
        fundi_notes: str | None = None,
        fundi_id: str | None = None,
    ) -> Job:
        async with unit_of_work(db):
            job = await self._repo.lock_job(db, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            # Only DisputeService moves a job to disputed, together with its dispute row
            if to_status is JobStatus.DISPUTED:
                raise InvalidTransitionError(job.status, to_status.value)
            job = await self.apply_transition_locked(
                db,
                job,
                actor,
                to_status,
                reason=reason,
                completion_photos=completion_photos,
                fundi_notes=fundi_notes,
                fundi_id=fundi_id,
            )
        self.after_transition(job, actor)
        return job

    async def apply_transition_locked(
        self,
        db: AsyncSession,
        job: Job,
        actor: Actor,
        to_status: JobStatus,
        *,
        reason: str | None = None,
        completion_photos: list[str] | None = None,
        fundi_notes: str | None = None,
        fundi_id: str | None = None,
    ) -> Job:
        """Validate and write a transition on a job row the caller has locked.

        The caller owns the unit of work and must call after_transition once
        it has committed.
        """
        from_status = check_transition(actor, job, to_status)
        changes: dict[str, object] = {}

        if to_status is JobStatus.ACCEPTED:
            assignee = actor.user_id if actor.role is Role.FUNDI else fundi_id
            if not assignee:
                raise InvalidRequestError("fundi_id is required to accept on behalf of a fundi")
            offer = await self._offers.mark_response(
                db, job.id, assignee, OfferResponse.ACCEPTED.value
            )
            if offer is None and actor.role is Role.FUNDI:
                raise NotAssignedError(job.id)
            changes["fundi_id"] = assignee
        elif to_status is JobStatus.CANCELLED:
            changes["cancelled_by"] = actor.user_id
            changes["cancellation_reason"] = reason
        elif to_status is JobStatus.COMPLETED:
            changes["completion_photos"] = list(completion_photos or [])
            changes["escrow_release_at"] = utc_in(hours=settings.ESCROW_HOLD_HOURS)
            if fundi_notes is not None:
                changes["fundi_notes"] = fundi_notes
        elif to_status is JobStatus.DISPUTED:
            # Freezes escrow: release() treats a cleared schedule as a no-op
            changes["escrow_release_at"] = None

        updated = await self._repo.apply_transition(db, job.id, to_status, changes)
        logger.info(
            "Job transition: job=%s %s -> %s by %s:%s",
            job.id,
            from_status.value,
            to_status.value,
            actor.role.value,
            actor.user_id,
        )
        return updated

    def after_transition(self, job: Job, actor: Actor) -> None:
        """Post-commit side effects. Failures are logged, never raised."""
        status = JobStatus(job.status)
        variables = {"jobRef": job.job_reference, "category": job.category}
        try:
            if status is JobStatus.ACCEPTED:
                self._notifier.enqueue(
                    job.customer_id, NotificationTemplate.JOB_CONFIRMED, variables,
                    channels=("push", "sms"), priority="high",
                )
            elif status is JobStatus.EN_ROUTE:
                self._notifier.enqueue(
                    job.customer_id, NotificationTemplate.FUNDI_EN_ROUTE, variables, priority="high"
                )
            elif status is JobStatus.ARRIVED:
                self._notifier.enqueue(
                    job.customer_id, NotificationTemplate.FUNDI_ARRIVED, variables, priority="high"
                )
            elif status is JobStatus.COMPLETED:
                if job.escrow_release_at is not None:
                    self._escrow.schedule_release(job.id, job.escrow_release_at)
                self._notifier.enqueue(
                    job.customer_id,
                    NotificationTemplate.JOB_COMPLETED,
                    dict(variables, amount=job.quoted_amount_tzs),
                )
            elif status is JobStatus.CANCELLED:
                for user_id in (job.customer_id, job.fundi_id):
                    if user_id and user_id != actor.user_id:
                        self._notifier.enqueue(
                            user_id, NotificationTemplate.JOB_CANCELLED, variables
                        )
        except Exception:
            logger.exception("Post-commit effects failed: job=%s status=%s", job.id, status.value)

    # ------------------------------------------------------------------
    # Scope changes
    # ------------------------------------------------------------------

    async def request_scope_change(
        self, db: AsyncSession, job_id: str, actor: Actor, amount: int, reason: str
    ) -> Job:
        amount = validate_amount(amount)
        if amount < settings.MIN_SCOPE_CHANGE_TZS:
            raise InvalidAmountError(
                f"minimum scope change is {settings.MIN_SCOPE_CHANGE_TZS} TZS"
            )
        if actor.role is not Role.FUNDI:
            raise ForbiddenError("Only the assigned fundi can propose a scope change")

        async with unit_of_work(db):
            job = await self._repo.lock_job(db, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.fundi_id != actor.user_id:
                raise NotAssignedError(job_id)
            if job.status != JobStatus.IN_PROGRESS:
                raise InvalidRequestError("Scope changes are only possible while work is in progress")
            if job.scope_change_status == ScopeChangeStatus.PENDING:
                raise DuplicateRequestError(f"Job {job_id} already has a pending scope change")
            job = await self._repo.set_scope_change(db, job_id, amount, reason)

        logger.info("Scope change requested: job=%s amount=%d", job_id, amount)
        self._notifier.enqueue(
            job.customer_id,
            NotificationTemplate.SCOPE_CHANGE_REQUESTED,
            {"jobRef": job.job_reference, "amount": amount, "reason": reason},
            priority="high",
        )
        return job

    async def approve_scope_change(self, db: AsyncSession, job_id: str, actor: Actor) -> Job:
        async with unit_of_work(db):
            job = await self._locked_pending_scope(db, job_id, actor)
            if await self._payments.find_open_escrow(db, job_id) is not None:
                raise InvalidPaymentStateError(
                    "Scope change cannot be approved once payment has been initiated"
                )
            new_gross = job.quoted_amount_tzs + (job.scope_change_amount_tzs or 0)
            fees = compute_fees(new_gross, settings.PLATFORM_FEE_PERCENT, settings.VAT_PERCENT)
            job = await self._repo.resolve_scope_change(
                db, job_id, ScopeChangeStatus.APPROVED.value, fees
            )
        logger.info("Scope change approved: job=%s new_quoted=%d", job_id, job.quoted_amount_tzs)
        return job

    async def reject_scope_change(self, db: AsyncSession, job_id: str, actor: Actor) -> Job:
        async with unit_of_work(db):
            await self._locked_pending_scope(db, job_id, actor)
            job = await self._repo.resolve_scope_change(
                db, job_id, ScopeChangeStatus.REJECTED.value, None
            )
        logger.info("Scope change rejected: job=%s", job_id)
        return job

    async def _locked_pending_scope(self, db: AsyncSession, job_id: str, actor: Actor) -> Job:
        job = await self._repo.lock_job(db, job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if actor.role is not Role.CUSTOMER or job.customer_id != actor.user_id:
            raise ForbiddenError("Only the job's customer can decide on a scope change")
        if job.scope_change_status != ScopeChangeStatus.PENDING:
            raise ScopeChangeNotFoundError(job_id)
        if job.status != JobStatus.IN_PROGRESS:
            raise InvalidRequestError("Scope changes are only possible while work is in progress")
        return job
