"""Sliding-window rate limiting for the shared upstream quota.

Two implementations share one contract, ``try_acquire() -> RateLimitDecision``:

- ``InMemoryRateLimiter`` for a single process (tests, local development)
- ``RedisRateLimiter`` for several worker processes issuing requests in parallel

The Redis variant keeps request timestamps in a sorted set and updates it with
a single Lua script, so concurrent callers can never over-admit.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Optional, Protocol
from uuid import uuid4

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from courtsync.main.exceptions import RateLimitError
from courtsync.main.logging import get_logger
from courtsync.upstream.lua_scripts import LuaScripts

logger = get_logger(__name__)

MIN_POLL_SECONDS = 1.0


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class RateLimitUsage:
    current_count: int
    limit: int
    window_seconds: float
    reset_at: datetime

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.current_count)

    @property
    def utilization_percent(self) -> float:
        if self.limit <= 0:
            return 100.0
        return round(self.current_count / self.limit * 100, 2)

    def as_dict(self) -> dict:
        return {
            "current_count": self.current_count,
            "limit": self.limit,
            "remaining": self.remaining,
            "utilization_percent": self.utilization_percent,
            "window_seconds": self.window_seconds,
            "reset_at": self.reset_at.isoformat(),
        }


class RateLimiter(Protocol):
    limit: int

    async def try_acquire(self) -> RateLimitDecision: ...

    async def usage(self) -> RateLimitUsage: ...


def _to_datetime(epoch_seconds: float) -> datetime:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)


@dataclass(slots=True)
class _UsageAlert:
    """Warns once per cooldown when usage crosses the warning threshold."""

    name: str
    warning_threshold: Optional[int]
    cooldown_seconds: float
    _last_alert_at: Optional[float] = field(init=False, default=None)

    def check(self, count: int, limit: int, now: float) -> None:
        if not self.warning_threshold or count < self.warning_threshold:
            return
        if self._last_alert_at is not None and now - self._last_alert_at < self.cooldown_seconds:
            return

        self._last_alert_at = now
        logger.warning(
            f"Upstream quota usage high for {self.name}: {count}/{limit}",
            extra={
                "rate_limiter": self.name,
                "current_count": count,
                "limit": limit,
                "warning_threshold": self.warning_threshold,
                "metric_name": "upstream.rate_limit.warning",
                "metric_value": 1,
            },
        )


@dataclass(slots=True)
class InMemoryRateLimiter:
    limit: int
    window_seconds: float
    name: str = "upstream"
    warning_threshold: Optional[int] = None
    alert_cooldown_seconds: float = 15 * 60
    clock: Callable[[], float] = time.time
    _entries: Deque[float] = field(init=False, default_factory=deque, repr=False)
    _lock: asyncio.Lock = field(init=False, repr=False)
    _alert: _UsageAlert = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = asyncio.Lock()
        self._alert = _UsageAlert(
            name=self.name,
            warning_threshold=self.warning_threshold,
            cooldown_seconds=self.alert_cooldown_seconds,
        )

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._entries and self._entries[0] <= cutoff:
            self._entries.popleft()

    def _reset_at(self, now: float) -> datetime:
        oldest = self._entries[0] if self._entries else now
        return _to_datetime(oldest + self.window_seconds)

    async def try_acquire(self) -> RateLimitDecision:
        async with self._lock:
            now = self.clock()
            self._prune(now)

            if len(self._entries) >= self.limit:
                return RateLimitDecision(
                    allowed=False, remaining=0, reset_at=self._reset_at(now)
                )

            self._entries.append(now)
            count = len(self._entries)
            self._alert.check(count, self.limit, now)
            return RateLimitDecision(
                allowed=True,
                remaining=max(0, self.limit - count),
                reset_at=self._reset_at(now),
            )

    async def usage(self) -> RateLimitUsage:
        async with self._lock:
            now = self.clock()
            self._prune(now)
            return RateLimitUsage(
                current_count=len(self._entries),
                limit=self.limit,
                window_seconds=self.window_seconds,
                reset_at=self._reset_at(now),
            )


@dataclass(slots=True)
class RedisRateLimiter:
    """Cross-process sliding window.

    Fails open onto a local ``InMemoryRateLimiter`` when Redis is unreachable;
    the upstream's own 429 handling still protects the quota in that case.
    """

    redis: aioredis.Redis
    limit: int
    window_seconds: float
    name: str = "upstream"
    warning_threshold: Optional[int] = None
    alert_cooldown_seconds: float = 15 * 60
    clock: Callable[[], float] = time.time
    _fallback: InMemoryRateLimiter = field(init=False, repr=False)
    _alert: _UsageAlert = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._fallback = InMemoryRateLimiter(
            limit=self.limit,
            window_seconds=self.window_seconds,
            name=self.name,
            clock=self.clock,
        )
        self._alert = _UsageAlert(
            name=self.name,
            warning_threshold=self.warning_threshold,
            cooldown_seconds=self.alert_cooldown_seconds,
        )

    @property
    def key(self) -> str:
        return f"rate_limit:{self.name}"

    def _window_ms(self) -> int:
        return int(self.window_seconds * 1000)

    async def try_acquire(self) -> RateLimitDecision:
        now = self.clock()
        now_ms = int(now * 1000)
        try:
            result = await self.redis.eval(
                LuaScripts.SLIDING_WINDOW_ACQUIRE,
                1,
                self.key,
                now_ms,
                self._window_ms(),
                self.limit,
                f"{now_ms}-{uuid4().hex}",
            )
        except RedisError as exc:
            logger.error(
                f"Rate limit Redis error for key {self.key}, using local window",
                extra={"rate_limiter": self.name, "error": str(exc), "mode": "local_fallback"},
            )
            return await self._fallback.try_acquire()

        allowed, remaining, reset_at_ms = (int(value) for value in result)
        if allowed:
            self._alert.check(self.limit - remaining, self.limit, now)

        return RateLimitDecision(
            allowed=bool(allowed),
            remaining=remaining,
            reset_at=_to_datetime(reset_at_ms / 1000),
        )

    async def usage(self) -> RateLimitUsage:
        now_ms = int(self.clock() * 1000)
        try:
            result = await self.redis.eval(
                LuaScripts.SLIDING_WINDOW_USAGE,
                1,
                self.key,
                now_ms,
                self._window_ms(),
            )
        except RedisError as exc:
            logger.error(
                f"Rate limit Redis error for key {self.key}",
                extra={"rate_limiter": self.name, "error": str(exc)},
            )
            return await self._fallback.usage()

        count, reset_at_ms = (int(value) for value in result)
        return RateLimitUsage(
            current_count=count,
            limit=self.limit,
            window_seconds=self.window_seconds,
            reset_at=_to_datetime(reset_at_ms / 1000),
        )


async def wait_for_slot(
    limiter: RateLimiter,
    *,
    max_wait: float,
    poll_interval: float = 10.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> RateLimitDecision:
    """Block until the limiter admits a request.

    Sleeps towards ``reset_at`` in steps of at most ``poll_interval`` and gives
    up with ``RateLimitError`` once ``max_wait`` seconds have passed.
    """
    started = clock()
    waited = 0.0
    while True:
        decision = await limiter.try_acquire()
        if decision.allowed:
            return decision

        remaining = max_wait - max(waited, clock() - started)
        if remaining <= 0:
            logger.warning(
                "Gave up waiting for upstream rate limit slot",
                extra={"max_wait": max_wait, "reset_at": decision.reset_at.isoformat()},
            )
            raise RateLimitError(decision.reset_at)

        until_reset = (decision.reset_at - datetime.now(timezone.utc)).total_seconds()
        delay = min(max(until_reset, MIN_POLL_SECONDS), poll_interval, remaining)
        logger.info(
            f"Rate limited, waiting {delay:.1f}s for a slot",
            extra={"reset_at": decision.reset_at.isoformat(), "delay": delay},
        )
        await sleep(delay)
        waited += delay
