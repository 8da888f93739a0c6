"""Delivery handler: pushes notification intents onto the Redis outbox.

The push/SMS transport service consumes ``notifications:outbox:{priority}``
lists (BRPOP). Message formatting and provider selection happen there.
"""

import json
import logging
from typing import Any

from src.fw_common.datetime_utils import utc_now
from src.fw_common.redis_client import get_redis

logger = logging.getLogger(__name__)

_PRIORITIES = {"high", "normal", "low"}


def outbox_key(priority: str) -> str:
    return f"notifications:outbox:{priority if priority in _PRIORITIES else 'normal'}"


async def deliver_notification(payload: dict[str, Any]) -> None:
    redis = await get_redis()
    message = dict(payload, enqueued_at=utc_now().isoformat())
    await redis.lpush(outbox_key(str(payload.get("priority", "normal"))), json.dumps(message))
    logger.debug(
        "Notification queued: user=%s template=%s",
        payload.get("user_id"),
        payload.get("template_key"),
    )
