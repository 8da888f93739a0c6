"""Task handlers and the periodic recovery sweep.

Each handler opens its own session: tasks run outside any request. Handlers
raise to ask for a retry (see execute_task); every one of them is safe to run
twice because the services re-check state under a row lock.

The sweep rebuilds delayed work from the database. With the in-memory job
store a restart loses pending escrow releases, offer timeouts and payout
attempts; the sweep finds them again because the rows themselves say what is due.
"""

import logging
from datetime import timedelta
from typing import Any

from config.settings import settings
from src.fw_common.database import async_session_factory
from src.fw_common.datetime_utils import utc_now
from src.fw_common.errors import JobNotFoundError
from src.fw_job.application.service import DISPATCH_TASK
from src.fw_job.infrastructure.persistence import JobRepository
from src.fw_matching.application.dispatcher import OFFER_TIMEOUT_TASK, DispatchEngine
from src.fw_matching.infrastructure.assignment_log import AssignmentLogRepository
from src.fw_notification.outbox import deliver_notification
from src.fw_notification.sink import DELIVER_TASK
from src.fw_payment.application.escrow_service import ESCROW_RELEASE_TASK, EscrowService
from src.fw_payment.application.payout_service import PAYOUT_TASK, PayoutService
from src.fw_payment.infrastructure.persistence import PayoutRepository
from src.fw_scheduler.scheduler import TaskScheduler, get_task_scheduler, register_handler

logger = logging.getLogger(__name__)

RECOVERY_SWEEP_JOB_ID = "fw:recovery-sweep"

_SWEEP_BATCH = 100

_escrow = EscrowService()
_dispatcher = DispatchEngine()
_payouts = PayoutService()


async def handle_escrow_release(payload: dict[str, Any]) -> None:
    async with async_session_factory() as db:
        await _escrow.release(db, payload["job_id"])


async def handle_dispatch(payload: dict[str, Any]) -> None:
    async with async_session_factory() as db:
        try:
            result = await _dispatcher.dispatch(db, payload["job_id"])
        except JobNotFoundError:
            logger.warning("Dispatch for unknown job %s dropped", payload["job_id"])
            return
    logger.debug("Dispatch done: job=%s result=%s", payload["job_id"], result)


async def handle_offer_timeout(payload: dict[str, Any]) -> None:
    async with async_session_factory() as db:
        await _dispatcher.expire_offer(db, payload["job_id"], payload["fundi_id"])


async def handle_payout(payload: dict[str, Any]) -> None:
    async with async_session_factory() as db:
        await _payouts.process_payout(db, payload["payout_id"])


def register_all() -> None:
    register_handler(ESCROW_RELEASE_TASK, handle_escrow_release)
    register_handler(DISPATCH_TASK, handle_dispatch)
    register_handler(OFFER_TIMEOUT_TASK, handle_offer_timeout)
    register_handler(PAYOUT_TASK, handle_payout)
    register_handler(DELIVER_TASK, deliver_notification)


async def recovery_sweep(
    jobs: JobRepository | None = None,
    offers: AssignmentLogRepository | None = None,
    scheduler: TaskScheduler | None = None,
    payouts: PayoutRepository | None = None,
) -> None:
    """Re-enqueue due escrow releases, offers that outlived their timeout and
    payouts still pending after their grace period.

    Release and offer keys match the ones the services use, so a task that is
    still pending in the job store is replaced rather than doubled. Payouts are
    keyed by id so repeated sweeps replace each other; a duplicate run finds
    the payout no longer pending and stops.
    """
    jobs = jobs or JobRepository()
    offers = offers or AssignmentLogRepository()
    payouts = payouts or PayoutRepository()
    tasks = scheduler or get_task_scheduler()
    now = utc_now()
    # Offers only count as lost once their own timeout had a fair chance to fire
    stale_before = now - timedelta(seconds=settings.RECOVERY_SWEEP_SECONDS)
    payouts_before = now - timedelta(seconds=settings.PAYOUT_RECOVERY_GRACE_SECONDS)

    try:
        async with async_session_factory() as db:
            due_jobs = await jobs.list_due_releases(db, now, _SWEEP_BATCH)
            stale_offers = await offers.list_expired_offers(db, stale_before, _SWEEP_BATCH)
            stale_payouts = await payouts.list_stale_pending(db, payouts_before, _SWEEP_BATCH)
    except Exception:
        logger.exception("Recovery sweep could not read due work")
        return

    for job_id in due_jobs:
        tasks.run_at(ESCROW_RELEASE_TASK, {"job_id": job_id}, now, key=job_id)
    for offer in stale_offers:
        tasks.run_at(
            OFFER_TIMEOUT_TASK,
            {"job_id": offer.job_id, "fundi_id": offer.fundi_id},
            now,
            key=f"{offer.job_id}:{offer.fundi_id}",
        )
    for payout_id in stale_payouts:
        tasks.run_at(PAYOUT_TASK, {"payout_id": payout_id}, now, key=payout_id)
    if due_jobs or stale_offers or stale_payouts:
        logger.info(
            "Recovery sweep re-enqueued: releases=%d offer_timeouts=%d payouts=%d",
            len(due_jobs),
            len(stale_offers),
            len(stale_payouts),
        )


def schedule_recovery_sweep(scheduler: TaskScheduler | None = None) -> None:
    tasks = scheduler or get_task_scheduler()
    tasks.add_interval(recovery_sweep, settings.RECOVERY_SWEEP_SECONDS, RECOVERY_SWEEP_JOB_ID)
