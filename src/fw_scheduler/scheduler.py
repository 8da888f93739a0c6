"""Delayed and reliable task execution on APScheduler.

Two entry points, independent of the queue technology behind them:
  run_at(kind, payload, at)       one-shot at an instant (escrow release, offer timeout)
  run_reliable(kind, payload)     as soon as possible (payouts, notifications)

Both are at-least-once. A handler that raises is re-run with exponential
backoff until its RetryPolicy is exhausted, then logged at CRITICAL and
dropped; the process never crashes on a task failure. Handlers must therefore
be idempotent.

APScheduler only ever stores the module-level ``execute_task`` plus plain
arguments, so jobs survive the Redis job store.
"""

import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.jobstores.redis import RedisJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from redis.connection import parse_url

from config.settings import settings
from src.fw_common.datetime_utils import utc_now

logger = logging.getLogger(__name__)

TaskHandler = Callable[[dict[str, Any]], Awaitable[None]]

_HANDLERS: dict[str, TaskHandler] = {}


def register_handler(kind: str, handler: TaskHandler) -> None:
    _HANDLERS[kind] = handler


def registered_kinds() -> list[str]:
    return sorted(_HANDLERS)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 5.0

    def delay_for(self, failed_attempt: int) -> float:
        """Seconds to wait after attempt N fails: base * 2^(N-1)."""
        return self.base_delay_seconds * (2 ** (failed_attempt - 1))


DEFAULT_POLICY = RetryPolicy(settings.TASK_MAX_ATTEMPTS, settings.TASK_BACKOFF_SECONDS)


async def execute_task(
    kind: str,
    payload: dict[str, Any],
    attempt: int = 1,
    max_attempts: int = 3,
    base_delay_seconds: float = 5.0,
) -> None:
    """Run one attempt of a task and schedule the next one on failure."""
    handler = _HANDLERS.get(kind)
    if handler is None:
        logger.critical("No handler registered: kind=%s payload=%s", kind, payload)
        return

    try:
        await handler(payload)
    except Exception:
        policy = RetryPolicy(max_attempts, base_delay_seconds)
        if attempt >= policy.max_attempts:
            logger.critical(
                "Task exhausted retries: kind=%s attempts=%d payload=%s",
                kind,
                attempt,
                payload,
                exc_info=True,
            )
            return
        delay = policy.delay_for(attempt)
        logger.warning(
            "Task failed: kind=%s attempt=%d/%d retry_in=%.1fs",
            kind,
            attempt,
            policy.max_attempts,
            delay,
            exc_info=True,
        )
        get_task_scheduler().schedule_attempt(
            kind, payload, attempt + 1, policy, utc_now() + timedelta(seconds=delay)
        )


def _build_jobstores() -> dict[str, Any]:
    if settings.SCHEDULER_JOBSTORE == "redis":
        return {"default": RedisJobStore(jobs_key="fw:scheduler:jobs",
                                         run_times_key="fw:scheduler:run_times",
                                         **parse_url(settings.REDIS_URL))}
    return {"default": MemoryJobStore()}


class TaskScheduler:
    def __init__(self, scheduler: AsyncIOScheduler | None = None) -> None:
        self._scheduler = scheduler or AsyncIOScheduler(
            jobstores=_build_jobstores(),
            job_defaults={
                "coalesce": True,
                # None = run however late; a delayed escrow release must still fire
                "misfire_grace_time": None,
            },
            timezone="UTC",
        )

    @property
    def running(self) -> bool:
        return bool(self._scheduler.running)

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            logger.info("Task scheduler started: kinds=%s", registered_kinds())

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def run_at(
        self,
        kind: str,
        payload: dict[str, Any],
        at: datetime,
        *,
        key: str | None = None,
        policy: RetryPolicy | None = None,
    ) -> str:
        """Schedule ``kind`` once at ``at``.

        With a ``key`` the job id is stable, so re-scheduling the same key
        replaces the pending run instead of adding a second one.
        """
        job_id = f"{kind}:{key}" if key else f"{kind}:{uuid.uuid4().hex}"
        self._add(job_id, kind, payload, 1, policy or DEFAULT_POLICY, at)
        logger.info("Task scheduled: id=%s at=%s", job_id, at.isoformat())
        return job_id

    def run_reliable(
        self,
        kind: str,
        payload: dict[str, Any],
        policy: RetryPolicy | None = None,
    ) -> str:
        job_id = f"{kind}:{uuid.uuid4().hex}"
        self._add(job_id, kind, payload, 1, policy or DEFAULT_POLICY, utc_now())
        return job_id

    def schedule_attempt(
        self,
        kind: str,
        payload: dict[str, Any],
        attempt: int,
        policy: RetryPolicy,
        at: datetime,
    ) -> str:
        job_id = f"{kind}:{uuid.uuid4().hex}:attempt{attempt}"
        self._add(job_id, kind, payload, attempt, policy, at)
        return job_id

    def cancel(self, job_id: str) -> bool:
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        return True

    def add_interval(self, func: Callable[[], Awaitable[None]], seconds: int, job_id: str) -> None:
        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=job_id,
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=seconds,
        )

    def _add(
        self,
        job_id: str,
        kind: str,
        payload: dict[str, Any],
        attempt: int,
        policy: RetryPolicy,
        at: datetime,
    ) -> None:
        self._scheduler.add_job(
            execute_task,
            trigger=DateTrigger(run_date=at),
            args=[kind, payload, attempt, policy.max_attempts, policy.base_delay_seconds],
            id=job_id,
            name=kind,
            replace_existing=True,
        )


_task_scheduler: TaskScheduler | None = None


def get_task_scheduler() -> TaskScheduler:
    """Process-wide scheduler; created on first use, started in the app lifespan."""
    global _task_scheduler  # noqa: PLW0603
    if _task_scheduler is None:
        _task_scheduler = TaskScheduler()
    return _task_scheduler


def set_task_scheduler(scheduler: TaskScheduler | None) -> None:
    global _task_scheduler  # noqa: PLW0603
    _task_scheduler = scheduler
