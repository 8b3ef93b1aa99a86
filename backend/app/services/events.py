"""
Domain event bus

Publication is fire-and-forget and at-least-once: the bus offers no dedup and
no cross-topic ordering, so consumers must be idempotent. A failed publish is
logged and never propagated to the caller.
"""

import json
import logging
from collections import defaultdict
from functools import lru_cache
from typing import Any, Callable, Dict, List, Tuple

import redis

from app.infrastructure.redis_client import get_redis
from app.infrastructure.settings import get_settings

logger = logging.getLogger(__name__)

# Topics
COLLECTION_FOR_SHARES = "collection_for_shares"

EventHandler = Callable[[Dict[str, Any]], Any]


class EventBus:
    """Interface for publishing domain events"""

    def publish(self, topic: str, payload: Dict[str, Any]) -> bool:
        """Publish an event. Returns False when delivery failed (already logged)."""
        raise NotImplementedError("Subclasses must implement publish")


class RedisEventBus(EventBus):
    """Publishes JSON events on Redis pub/sub channels "{prefix}:{topic}\""""

    def __init__(self, redis_client, channel_prefix: str = "events"):
        self.redis = redis_client
        self.channel_prefix = channel_prefix

    def channel(self, topic: str) -> str:
        return f"{self.channel_prefix}:{topic}"

    def publish(self, topic: str, payload: Dict[str, Any]) -> bool:
        try:
            message = json.dumps(payload, default=str)
            receivers = self.redis.publish(self.channel(topic), message)
        except (redis.RedisError, TypeError, ValueError) as e:
            logger.error(
                "Failed to publish domain event",
                extra={"topic": topic, "error": str(e)},
            )
            return False

        logger.info(
            "Published domain event",
            extra={"topic": topic, "receivers": receivers},
        )
        return True


class InMemoryEventBus(EventBus):
    """
    Synchronous in-process bus.

    Handlers run inline; a failing handler is logged and does not affect the
    others. Every publication is also recorded in ``published``.
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self.published: List[Tuple[str, Dict[str, Any]]] = []

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        self._handlers[topic].append(handler)

    def publish(self, topic: str, payload: Dict[str, Any]) -> bool:
        self.published.append((topic, payload))
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler(payload)
            except Exception:
                logger.exception(
                    "Domain event handler failed",
                    extra={"topic": topic, "handler": getattr(handler, "__name__", repr(handler))},
                )
        return True


@lru_cache()
def get_event_bus() -> EventBus:
    """Get the process-wide event bus"""
    settings = get_settings()
    return RedisEventBus(get_redis(), channel_prefix=settings.EVENTS_CHANNEL_PREFIX)
