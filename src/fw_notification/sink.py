"""Notification sink — fire-and-forget intents handed to the reliable scheduler.

Callers enqueue only after their unit of work has committed. A failure to
enqueue is logged and never raised: a lost notification must not undo a job
transition or a fund movement.
"""

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from config.settings import settings
from src.fw_common.enums import NotificationTemplate
from src.fw_scheduler.scheduler import RetryPolicy, TaskScheduler, get_task_scheduler

logger = logging.getLogger(__name__)

DELIVER_TASK = "notification.deliver"

_POLICY = RetryPolicy(max_attempts=3, base_delay_seconds=settings.NOTIFICATION_BACKOFF_SECONDS)


@dataclass(frozen=True)
class NotificationIntent:
    user_id: str
    template_key: str
    variables: dict[str, str] = field(default_factory=dict)
    channels: tuple[str, ...] = ("push",)
    priority: str = "normal"  # "high" | "normal" | "low"


class NotificationSink(Protocol):
    def enqueue(
        self,
        user_id: str,
        template_key: NotificationTemplate,
        variables: dict[str, Any] | None = None,
        channels: Sequence[str] = ("push",),
        priority: str = "normal",
    ) -> None: ...


class QueuedNotificationSink:
    def __init__(self, scheduler: TaskScheduler | None = None) -> None:
        self._scheduler = scheduler

    def enqueue(
        self,
        user_id: str,
        template_key: NotificationTemplate,
        variables: dict[str, Any] | None = None,
        channels: Sequence[str] = ("push",),
        priority: str = "normal",
    ) -> None:
        intent = NotificationIntent(
            user_id=user_id,
            template_key=template_key.value,
            variables={k: str(v) for k, v in (variables or {}).items()},
            channels=tuple(channels),
            priority=priority,
        )
        try:
            scheduler = self._scheduler or get_task_scheduler()
            payload = asdict(intent)
            payload["channels"] = list(intent.channels)
            scheduler.run_reliable(DELIVER_TASK, payload, _POLICY)
        except Exception:
            logger.exception(
                "Failed to enqueue notification: user=%s template=%s",
                user_id,
                intent.template_key,
            )
