"""
Rate limiting using Redis-backed fixed windows

The public LNURL callback is guarded by two independent windows per
(identifier, action):
- burst: small limit over a short window, catches rapid abuse
- sustained: larger limit over a long window, catches slow abuse
"""

import ipaddress
import time
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import redis
from fastapi import Request

from app.infrastructure.settings import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitWindow:
    """A configured rate-limit horizon"""
    kind: str  # "burst" or "sustained"
    limit: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitDecision:
    """
    Outcome of a rate-limit check.

    tripped_window is the kind of the first window whose limit was exceeded,
    or None when the request is allowed.
    """
    allowed: bool
    tripped_window: Optional[str] = None
    remaining: Optional[int] = None
    reset_at: Optional[int] = None

    @classmethod
    def allow(cls, remaining: Optional[int] = None, reset_at: Optional[int] = None) -> "RateLimitDecision":
        return cls(allowed=True, remaining=remaining, reset_at=reset_at)


class RateLimiter:
    """
    Redis-backed dual-window rate limiter.

    Each window is a fixed bucket keyed by its start time:
    "ratelimit:{action}:{kind}:{identifier}:{window_start}". A check increments
    every window in one MULTI/EXEC transaction and denies when any counter is
    over its limit.

    Storage errors fail open: the request is allowed and the error logged.
    """

    def __init__(self, redis_client, windows: Sequence[RateLimitWindow], clock: Callable[[], float] = time.time):
        """
        Initialize rate limiter.

        Args:
            redis_client: Redis client instance
            windows: Windows to enforce, checked in order (burst first)
            clock: Wall-clock source (seconds since epoch)
        """
        self.redis = redis_client
        self.windows: List[RateLimitWindow] = list(windows)
        self.clock = clock

    def get_key(self, action: str, window: RateLimitWindow, identifier: str, now: int) -> str:
        """Generate Redis key for a window bucket"""
        window_start = now - (now % window.window_seconds)
        return f"ratelimit:{action}:{window.kind}:{identifier}:{window_start}"

    def check(self, identifier: Optional[str], action: str) -> RateLimitDecision:
        """
        Count one attempt and decide whether it is allowed.

        Args:
            identifier: Caller identity (IP, user id). Empty bypasses limiting.
            action: Logical action being limited (e.g. "lnurl:withdraw")
        """
        if not identifier:
            return RateLimitDecision.allow()

        now = int(self.clock())
        keys = [self.get_key(action, window, identifier, now) for window in self.windows]

        try:
            pipe = self.redis.pipeline(transaction=True)
            for key, window in zip(keys, self.windows):
                pipe.incr(key)
                pipe.expire(key, window.window_seconds)
            results = pipe.execute()
        except redis.RedisError as e:
            logger.error(
                "Rate limit store unavailable, allowing request",
                extra={"action": action, "identifier": identifier, "error": str(e)},
            )
            return RateLimitDecision.allow()

        counts = results[0::2]
        remaining = None
        reset_at = None
        for count, window in zip(counts, self.windows):
            window_reset = now - (now % window.window_seconds) + window.window_seconds
            if int(count) > window.limit:
                logger.warning(
                    "Rate limit exceeded",
                    extra={
                        "action": action,
                        "identifier": identifier,
                        "window": window.kind,
                        "limit": window.limit,
                        "count": int(count),
                    },
                )
                return RateLimitDecision(
                    allowed=False,
                    tripped_window=window.kind,
                    remaining=0,
                    reset_at=window_reset,
                )
            window_remaining = window.limit - int(count)
            if remaining is None or window_remaining < remaining:
                remaining = window_remaining
                reset_at = window_reset

        return RateLimitDecision.allow(remaining=remaining, reset_at=reset_at)

    def reset(self, identifier: Optional[str], action: str) -> None:
        """Clear every window for (identifier, action)"""
        if not identifier:
            return

        now = int(self.clock())
        keys = [self.get_key(action, window, identifier, now) for window in self.windows]
        try:
            self.redis.delete(*keys)
        except redis.RedisError as e:
            logger.error(
                "Failed to reset rate limit",
                extra={"action": action, "identifier": identifier, "error": str(e)},
            )


def build_lnurl_rate_limiter(redis_client, clock: Callable[[], float] = time.time) -> RateLimiter:
    """Rate limiter for the public LNURL callback, configured from settings"""
    settings = get_settings()
    return RateLimiter(
        redis_client=redis_client,
        clock=clock,
        windows=[
            RateLimitWindow(
                kind="burst",
                limit=settings.RL_LNURL_BURST_LIMIT,
                window_seconds=settings.RL_LNURL_BURST_WINDOW_SECONDS,
            ),
            RateLimitWindow(
                kind="sustained",
                limit=settings.RL_LNURL_SUSTAINED_LIMIT,
                window_seconds=settings.RL_LNURL_SUSTAINED_WINDOW_SECONDS,
            ),
        ],
    )


def _is_trusted_proxy(host: str, trusted_proxies: Sequence[str]) -> bool:
    """Exact host match, or IP address inside a trusted CIDR"""
    for entry in trusted_proxies:
        if host == entry:
            return True
        try:
            if ipaddress.ip_address(host) in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def get_client_identifier(request: Request, trusted_proxies: Optional[Sequence[str]] = None) -> str:
    """
    Extract client identifier from request (IP address).

    Proxy headers (X-Forwarded-For, X-Real-IP) are honoured only when the
    direct peer is one of the configured TRUSTED_PROXIES. X-Forwarded-For is
    then walked right to left and the first hop that is not itself a trusted
    proxy is the client; entries left of it are caller-controlled.
    """
    if trusted_proxies is None:
        trusted_proxies = get_settings().trusted_proxies_list

    peer = request.client.host if request.client else None
    if peer is None:
        return "unknown"
    if not _is_trusted_proxy(peer, trusted_proxies):
        return peer

    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
        for hop in reversed(hops):
            if not _is_trusted_proxy(hop, trusted_proxies):
                return hop
        if hops:
            return hops[0]

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    return peer
