"""DispatchEngine — offers a pending job to one fundi at a time.

    dispatch ──► rank eligible fundis ──► offer top one (90s) ──► accepted (state machine)
        ▲                                       │
        └──── expired / declined, excluded ◄────┘        at most 3 offers per job

Every fundi who was offered the job and did not accept is excluded from later
rankings for that job. When the attempts run out, or nobody eligible is left,
the customer is told no fundi is available and the job stays pending.

Handlers are safe to run more than once: an offer only leaves 'offered' once,
and dispatch does nothing unless the job is still pending with no live offer.
"""

import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.fw_common.actor import Actor
from src.fw_common.datetime_utils import utc_now
from src.fw_common.enums import JobStatus, NotificationTemplate, OfferResponse, Role
from src.fw_common.errors import ForbiddenError, JobNotFoundError, OfferNotFoundError
from src.fw_common.unit_of_work import unit_of_work
from src.fw_job.domain.repository import JobRepositoryProtocol
from src.fw_job.infrastructure.persistence import JobRepository
from src.fw_matching.domain.eligibility import filter_eligible
from src.fw_matching.domain.models import DispatchResult
from src.fw_matching.domain.ports import AssignmentLogProtocol, FundiLocator
from src.fw_matching.domain.scoring import rank_candidates
from src.fw_matching.infrastructure.assignment_log import AssignmentLogRepository
from src.fw_matching.infrastructure.locator import PostgisFundiLocator
from src.fw_notification.sink import NotificationSink, QueuedNotificationSink
from src.fw_scheduler.scheduler import TaskScheduler, get_task_scheduler

logger = logging.getLogger(__name__)

OFFER_TIMEOUT_TASK = "dispatch.offer_timeout"


class DispatchEngine:
    def __init__(
        self,
        jobs: JobRepositoryProtocol | None = None,
        offers: AssignmentLogProtocol | None = None,
        locator: FundiLocator | None = None,
        notifier: NotificationSink | None = None,
        scheduler: TaskScheduler | None = None,
        max_attempts: int | None = None,
        offer_timeout_seconds: int | None = None,
    ) -> None:
        self._jobs: JobRepositoryProtocol = jobs or JobRepository()
        self._offers: AssignmentLogProtocol = offers or AssignmentLogRepository()
        self._locator: FundiLocator = locator or PostgisFundiLocator()
        self._notifier: NotificationSink = notifier or QueuedNotificationSink(scheduler)
        self._scheduler = scheduler
        self._max_attempts = max_attempts or settings.MAX_DISPATCH_ATTEMPTS
        self._timeout = timedelta(seconds=offer_timeout_seconds or settings.OFFER_TIMEOUT_SECONDS)

    @property
    def tasks(self) -> TaskScheduler:
        return self._scheduler or get_task_scheduler()

    async def dispatch(self, db: AsyncSession, job_id: str) -> DispatchResult:
        now = utc_now()
        async with unit_of_work(db):
            job = await self._jobs.lock_job(db, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status != JobStatus.PENDING:
                return DispatchResult(assigned=False, reason="not_pending")

            open_offer = await self._offers.get_open_offer(db, job_id)
            if open_offer is not None:
                # Duplicate delivery while an offer is live; its timeout handles it
                return DispatchResult(assigned=True, reason="offer_outstanding")

            attempted = await self._offers.attempted_fundi_ids(db, job_id)
            candidate = None
            if len(attempted) < self._max_attempts:
                nearby = await self._locator.find_nearby(
                    db, job.latitude, job.longitude, job.category
                )
                eligible = filter_eligible(nearby, job.category, attempted, now)
                ranked = rank_candidates(eligible, settings.PROXIMITY_CAP_KM)
                candidate = ranked[0] if ranked else None

            if candidate is not None:
                expires_at = now + self._timeout
                await self._offers.record_offer(
                    db, job_id, candidate.fundi_id, candidate.distance_km, candidate.score, expires_at
                )

        if candidate is None:
            reason = "attempts_exhausted" if len(attempted) >= self._max_attempts else "no_candidates"
            logger.info(
                "No fundi available: job=%s ref=%s attempts=%d reason=%s",
                job_id,
                job.job_reference,
                len(attempted),
                reason,
            )
            self._notifier.enqueue(
                job.customer_id,
                NotificationTemplate.NO_FUNDI_AVAILABLE,
                {"jobRef": job.job_reference, "category": job.category},
                channels=("push", "sms"),
            )
            return DispatchResult(assigned=False, reason=reason)

        logger.info(
            "Job offered: job=%s fundi=%s score=%.3f distance_km=%.1f attempt=%d/%d",
            job_id,
            candidate.fundi_id,
            candidate.score,
            candidate.distance_km,
            len(attempted) + 1,
            self._max_attempts,
        )
        self._notifier.enqueue(
            candidate.fundi_id,
            NotificationTemplate.JOB_REQUEST,
            {
                "category": job.category,
                "distance": f"{candidate.distance_km:.1f}",
                "amount": job.quoted_amount_tzs,
                "jobRef": job.job_reference,
            },
            # SMS is mandatory for job alerts
            channels=("push", "sms"),
            priority="high",
        )
        self.tasks.run_at(
            OFFER_TIMEOUT_TASK,
            {"job_id": job_id, "fundi_id": candidate.fundi_id},
            expires_at,
            key=f"{job_id}:{candidate.fundi_id}",
        )
        return DispatchResult(assigned=True, candidate=candidate)

    async def expire_offer(
        self, db: AsyncSession, job_id: str, fundi_id: str
    ) -> DispatchResult | None:
        """Offer timeout: mark it expired and move on to the next candidate.

        None when the offer was already answered (accepted, declined or
        expired by an earlier delivery of this task).
        """
        async with unit_of_work(db):
            job = await self._jobs.lock_job(db, job_id)
            if job is None:
                return None
            expired = await self._offers.mark_response(
                db, job_id, fundi_id, OfferResponse.EXPIRED.value
            )
        if expired is None:
            return None
        logger.info("Offer expired: job=%s fundi=%s", job_id, fundi_id)
        if job.status != JobStatus.PENDING:
            return None
        return await self.dispatch(db, job_id)

    async def decline(self, db: AsyncSession, job_id: str, actor: Actor) -> DispatchResult:
        if actor.role is not Role.FUNDI:
            raise ForbiddenError("Only the offered fundi can decline")
        async with unit_of_work(db):
            job = await self._jobs.lock_job(db, job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            declined = await self._offers.mark_response(
                db, job_id, actor.user_id, OfferResponse.DECLINED.value
            )
            if declined is None:
                raise OfferNotFoundError(job_id, actor.user_id)
        logger.info("Offer declined: job=%s fundi=%s", job_id, actor.user_id)
        return await self.dispatch(db, job_id)
