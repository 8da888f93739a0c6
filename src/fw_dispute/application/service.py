"""DisputeService — raising, reviewing and resolving job disputes.

Raising a dispute moves the job to 'disputed' in the same unit of work that
inserts the dispute, which clears escrow_release_at: a release task firing
afterwards finds nothing to do. Resolution is the only other path that moves
a disputed job's money, and it does so exactly once: the dispute row lock and
the open/under_review guard make a second resolution fail with
AlreadyResolvedError.

Lock order: dispute → job → payment transaction → wallet.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.fw_common.actor import SYSTEM_ACTOR, Actor
from src.fw_common.enums import (
    DisputeDecision,
    DisputeStatus,
    JobStatus,
    NotificationTemplate,
    Role,
    TxDirection,
    TxStatus,
)
from src.fw_common.errors import (
    AlreadyResolvedError,
    DisputeNotFoundError,
    DuplicateRequestError,
    ForbiddenError,
    InvalidTransitionError,
    JobNotFoundError,
)
from src.fw_common.unit_of_work import unit_of_work
from src.fw_dispute.domain.models import Dispute
from src.fw_dispute.domain.repository import DisputeRepositoryProtocol
from src.fw_dispute.domain.settlement import plan_settlement
from src.fw_dispute.infrastructure.persistence import DisputeRepository
from src.fw_job.application.service import JobService
from src.fw_job.domain.models import Job
from src.fw_job.domain.repository import JobRepositoryProtocol
from src.fw_job.infrastructure.persistence import JobRepository
from src.fw_notification.sink import NotificationSink, QueuedNotificationSink
from src.fw_payment.domain.repository import (
    PaymentRepositoryProtocol,
    WalletRepositoryProtocol,
)
from src.fw_payment.infrastructure.persistence import PaymentRepository, WalletRepository

logger = logging.getLogger(__name__)

_DISPUTABLE = {JobStatus.IN_PROGRESS, JobStatus.COMPLETED}
_OPEN = {DisputeStatus.OPEN, DisputeStatus.UNDER_REVIEW}


def _party_of(job: Job, actor: Actor) -> str:
    if actor.user_id == job.customer_id:
        return Role.CUSTOMER.value
    if job.fundi_id is not None and actor.user_id == job.fundi_id:
        return Role.FUNDI.value
    raise ForbiddenError("Only the job's customer or fundi can do this")


class DisputeService:
    def __init__(
        self,
        repo: DisputeRepositoryProtocol | None = None,
        jobs: JobRepositoryProtocol | None = None,
        payments: PaymentRepositoryProtocol | None = None,
        wallets: WalletRepositoryProtocol | None = None,
        job_service: JobService | None = None,
        notifier: NotificationSink | None = None,
    ) -> None:
        self._repo: DisputeRepositoryProtocol = repo or DisputeRepository()
        self._jobs: JobRepositoryProtocol = jobs or JobRepository()
        self._payments: PaymentRepositoryProtocol = payments or PaymentRepository()
        self._wallets: WalletRepositoryProtocol = wallets or WalletRepository()
        self._notifier: NotificationSink = notifier or QueuedNotificationSink()
        self._job_service = job_service or JobService(repo=self._jobs, notifier=self._notifier)

    async def raise_dispute(
        self,
        db: AsyncSession,
        job_id: str,
        actor: Actor,
        statement: str,
        evidence: list[str],
    ) -> Dispute:
        async with unit_of_work(db):
            job = await self._jobs.lock_job(db, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            # Checked under the job lock so a concurrent raise sees the committed dispute
            if await self._repo.get_by_job(db, job_id) is not None:
                raise DuplicateRequestError(f"A dispute already exists for job {job_id}")
            party = _party_of(job, actor)
            if JobStatus(job.status) not in _DISPUTABLE:
                raise InvalidTransitionError(job.status, JobStatus.DISPUTED.value)

            job = await self._job_service.apply_transition_locked(
                db, job, SYSTEM_ACTOR, JobStatus.DISPUTED
            )
            dispute = await self._repo.insert_dispute(
                db, job_id, actor.user_id, party, statement, evidence
            )

        logger.info(
            "Dispute raised: dispute=%s job=%s by=%s:%s",
            dispute.id,
            job_id,
            party,
            actor.user_id,
        )
        other = job.other_party(actor.user_id)
        if other is not None:
            self._notifier.enqueue(
                other,
                NotificationTemplate.DISPUTE_OPENED,
                {"jobRef": job.job_reference},
                channels=("push", "sms"),
                priority="high",
            )
        return dispute

    async def submit_evidence(
        self,
        db: AsyncSession,
        dispute_id: str,
        actor: Actor,
        statement: str | None,
        evidence: list[str],
    ) -> Dispute:
        async with unit_of_work(db):
            dispute = await self._repo.lock_dispute(db, dispute_id)
            if dispute is None:
                raise DisputeNotFoundError(dispute_id)
            if DisputeStatus(dispute.status) not in _OPEN:
                raise AlreadyResolvedError(dispute_id, dispute.status)
            job = await self._jobs.get_job(db, dispute.job_id)
            if job is None:
                raise JobNotFoundError(dispute.job_id)
            party = _party_of(job, actor)
            dispute = await self._repo.add_evidence(db, dispute_id, party, statement, evidence)
        logger.info("Dispute evidence added: dispute=%s by=%s", dispute_id, party)
        return dispute

    async def start_review(self, db: AsyncSession, dispute_id: str, admin: Actor) -> Dispute:
        async with unit_of_work(db):
            dispute = await self._repo.lock_dispute(db, dispute_id)
            if dispute is None:
                raise DisputeNotFoundError(dispute_id)
            if dispute.status != DisputeStatus.OPEN:
                raise AlreadyResolvedError(dispute_id, dispute.status)
            dispute = await self._repo.set_status(db, dispute_id, DisputeStatus.UNDER_REVIEW.value)
        logger.info("Dispute under review: dispute=%s admin=%s", dispute_id, admin.user_id)
        return dispute

    async def resolve(
        self,
        db: AsyncSession,
        dispute_id: str,
        admin: Actor,
        decision: DisputeDecision,
        notes: str,
        customer_amount: int | None = None,
        worker_amount: int | None = None,
    ) -> Dispute:
        async with unit_of_work(db):
            dispute = await self._repo.lock_dispute(db, dispute_id)
            if dispute is None:
                raise DisputeNotFoundError(dispute_id)
            if DisputeStatus(dispute.status) not in _OPEN:
                raise AlreadyResolvedError(dispute_id, dispute.status)

            job = await self._jobs.lock_job(db, dispute.job_id)
            if job is None:
                raise JobNotFoundError(dispute.job_id)
            held = await self._payments.lock_held_escrow(db, job.id)
            settlement = plan_settlement(decision, held, customer_amount, worker_amount)

            if held is not None and settlement.escrow_status is not None:
                await self._payments.settle_escrow(db, held.id, settlement.escrow_status)
                if settlement.fundi_amount > 0 and job.fundi_id is not None:
                    await self._wallets.credit(db, job.fundi_id, settlement.fundi_amount)
                if settlement.customer_amount > 0:
                    await self._payments.insert_transaction(
                        db,
                        job_id=job.id,
                        idempotency_key=f"refund:{held.id}",
                        amount_tzs=settlement.customer_amount,
                        platform_fee_tzs=0,
                        vat_tzs=0,
                        net_to_fundi_tzs=0,
                        direction=TxDirection.REFUND.value,
                        status=TxStatus.REFUNDED.value,
                        payee_id=job.customer_id,
                    )
                unallocated = held.amount_tzs - settlement.customer_amount - settlement.fundi_amount
                if decision is DisputeDecision.SPLIT and unallocated > 0:
                    logger.info(
                        "Split leaves %d TZS with the platform: dispute=%s", unallocated, dispute_id
                    )
            elif held is None and decision is not DisputeDecision.ESCALATE:
                logger.warning(
                    "Dispute resolved without held escrow: dispute=%s job=%s", dispute_id, job.id
                )

            dispute = await self._repo.record_resolution(
                db, dispute_id, decision.value, settlement, notes, admin.user_id
            )
            await self._repo.insert_audit(
                db,
                admin.user_id,
                "dispute.resolve",
                "dispute",
                dispute_id,
                {
                    "decision": decision.value,
                    "status": settlement.status,
                    "customer_amount_tzs": settlement.customer_amount,
                    "fundi_amount_tzs": settlement.fundi_amount,
                    "notes": notes,
                },
            )

        logger.info(
            "Dispute resolved: dispute=%s decision=%s customer=%d fundi=%d",
            dispute_id,
            decision.value,
            settlement.customer_amount,
            settlement.fundi_amount,
        )
        for user_id in (job.customer_id, job.fundi_id):
            if user_id:
                self._notifier.enqueue(
                    user_id,
                    NotificationTemplate.DISPUTE_RESOLVED,
                    {"jobRef": job.job_reference, "decision": decision.value},
                    channels=("push", "sms"),
                )
        return dispute

    async def get_dispute(self, db: AsyncSession, dispute_id: str, actor: Actor) -> Dispute:
        dispute = await self._repo.get_dispute(db, dispute_id)
        if dispute is None:
            raise DisputeNotFoundError(dispute_id)
        if not actor.is_privileged:
            job = await self._jobs.get_job(db, dispute.job_id)
            if job is None or not job.is_party(actor.user_id):
                raise DisputeNotFoundError(dispute_id)
        return dispute

    async def list_disputes(
        self, db: AsyncSession, status: DisputeStatus | None, limit: int, offset: int
    ) -> list[Dispute]:
        return await self._repo.list_disputes(
            db, status.value if status else None, limit, offset
        )
