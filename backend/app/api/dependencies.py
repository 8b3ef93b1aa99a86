"""
Shared FastAPI dependencies for external collaborators

Overridden in tests through app.dependency_overrides.
"""

from app.infrastructure.redis_client import get_queue_redis, get_redis
from app.services.events import EventBus, get_event_bus
from app.services.gateway import PaymentGateway, get_gateway
from app.utils.rate_limiter import RateLimiter, build_lnurl_rate_limiter


def gateway_dependency() -> PaymentGateway:
    return get_gateway()


def event_bus_dependency() -> EventBus:
    return get_event_bus()


def redis_dependency():
    return get_redis()


def lnurl_rate_limiter_dependency() -> RateLimiter:
    return build_lnurl_rate_limiter(get_redis())


def queue_redis_dependency():
    return get_queue_redis()
