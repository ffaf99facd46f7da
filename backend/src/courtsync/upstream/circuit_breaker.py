"""Circuit breaker guarding one logical upstream service.

closed -> (failure_threshold consecutive failures) -> open
open -> (cooldown elapsed, next caller) -> half_open (single trial call)
half_open -> success -> closed, failure -> open with a fresh cooldown
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from courtsync.main.exceptions import CircuitOpenError
from courtsync.main.logging import get_logger
from courtsync.upstream.lua_scripts import LuaScripts

logger = get_logger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitSnapshot:
    service: str
    state: CircuitState
    failures: int
    open_until: Optional[datetime]

    def as_dict(self) -> dict:
        return {
            "service": self.service,
            "state": self.state.value,
            "failures": self.failures,
            "open_until": self.open_until.isoformat() if self.open_until else None,
        }


class Breaker(Protocol):
    service: str

    async def before_call(self) -> None: ...

    async def record_success(self) -> None: ...

    async def record_failure(self) -> None: ...

    async def snapshot(self) -> CircuitSnapshot: ...


@dataclass(slots=True)
class CircuitBreaker:
    """In-process breaker. Safe for concurrent tasks on one event loop."""

    service: str
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    trial_timeout_seconds: Optional[float] = None
    clock: Callable[[], float] = time.monotonic
    _state: CircuitState = field(init=False, default=CircuitState.CLOSED)
    _failures: int = field(init=False, default=0)
    _open_until: float = field(init=False, default=0.0, repr=False)
    _trial_started: Optional[float] = field(init=False, default=None, repr=False)
    _lock: asyncio.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._lock = asyncio.Lock()
        if self.trial_timeout_seconds is None:
            self.trial_timeout_seconds = self.cooldown_seconds

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def _wall_time(self, at: float, now: float) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=max(0.0, at - now))

    async def before_call(self) -> None:
        """Raise ``CircuitOpenError`` if the call must not reach the network."""
        async with self._lock:
            if self._state is CircuitState.CLOSED:
                return

            now = self.clock()
            if self._state is CircuitState.OPEN:
                if now < self._open_until:
                    raise CircuitOpenError(self.service, self._wall_time(self._open_until, now))

                self._state = CircuitState.HALF_OPEN
                self._trial_started = now
                logger.info(
                    f"Circuit for {self.service} half-open, admitting trial call",
                    extra={"service": self.service, "circuit_state": self._state.value},
                )
                return

            # Half-open: one trial at a time, unless the trial went silent
            if (
                self._trial_started is not None
                and now - self._trial_started <= self.trial_timeout_seconds
            ):
                raise CircuitOpenError(self.service)
            self._trial_started = now

    async def record_success(self) -> None:
        async with self._lock:
            if self._state is not CircuitState.CLOSED:
                logger.info(
                    f"Circuit for {self.service} closed",
                    extra={"service": self.service, "circuit_state": "closed"},
                )
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._trial_started = None

    async def record_failure(self) -> None:
        async with self._lock:
            self._failures += 1
            if (
                self._state is CircuitState.HALF_OPEN
                or self._failures >= self.failure_threshold
            ):
                now = self.clock()
                self._state = CircuitState.OPEN
                self._open_until = now + self.cooldown_seconds
                self._trial_started = None
                logger.warning(
                    f"Circuit for {self.service} opened after {self._failures} failures",
                    extra={
                        "service": self.service,
                        "circuit_state": "open",
                        "failures": self._failures,
                        "cooldown_seconds": self.cooldown_seconds,
                    },
                )

    async def snapshot(self) -> CircuitSnapshot:
        async with self._lock:
            open_until = None
            if self._state is CircuitState.OPEN:
                open_until = self._wall_time(self._open_until, self.clock())
            return CircuitSnapshot(
                service=self.service,
                state=self._state,
                failures=self._failures,
                open_until=open_until,
            )


@dataclass(slots=True)
class RedisCircuitBreaker:
    """Breaker whose state lives in Redis, shared by every worker process.

    When Redis itself is unreachable the breaker degrades to an in-process
    ``CircuitBreaker`` with the same thresholds.
    """

    redis: aioredis.Redis
    service: str
    failure_threshold: int = 5
    cooldown_seconds: float = 60.0
    trial_timeout_seconds: Optional[float] = None
    clock: Callable[[], float] = time.time
    _fallback: CircuitBreaker = field(init=False, repr=False)

    def __post_init__(self) -> None:
        if self.trial_timeout_seconds is None:
            self.trial_timeout_seconds = self.cooldown_seconds
        self._fallback = CircuitBreaker(
            service=self.service,
            failure_threshold=self.failure_threshold,
            cooldown_seconds=self.cooldown_seconds,
            trial_timeout_seconds=self.trial_timeout_seconds,
        )

    @property
    def key(self) -> str:
        return f"circuit:{self.service}"

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _ttl_ms(self) -> int:
        # Keep the tally around long enough to span a few cooldowns
        return int(max(self.cooldown_seconds * 10, 3600) * 1000)

    def _log_fallback(self, action: str, exc: Exception) -> None:
        logger.warning(
            f"Circuit state unavailable in Redis, using local breaker for {action}",
            extra={"service": self.service, "error": str(exc), "mode": "local_fallback"},
        )

    async def before_call(self) -> None:
        try:
            result = await self.redis.eval(
                LuaScripts.CIRCUIT_BEFORE_CALL,
                1,
                self.key,
                self._now_ms(),
                int(self.trial_timeout_seconds * 1000),
            )
        except RedisError as exc:
            self._log_fallback("before_call", exc)
            await self._fallback.before_call()
            return

        allowed, open_until_ms = int(result[0]), int(result[1])
        if not allowed:
            open_until = None
            if open_until_ms > self._now_ms():
                open_until = datetime.fromtimestamp(open_until_ms / 1000, tz=timezone.utc)
            raise CircuitOpenError(self.service, open_until)

    async def record_success(self) -> None:
        try:
            await self.redis.eval(LuaScripts.CIRCUIT_RECORD_SUCCESS, 1, self.key)
        except RedisError as exc:
            self._log_fallback("record_success", exc)
            await self._fallback.record_success()

    async def record_failure(self) -> None:
        try:
            result = await self.redis.eval(
                LuaScripts.CIRCUIT_RECORD_FAILURE,
                1,
                self.key,
                self._now_ms(),
                self.failure_threshold,
                int(self.cooldown_seconds * 1000),
                self._ttl_ms(),
            )
        except RedisError as exc:
            self._log_fallback("record_failure", exc)
            await self._fallback.record_failure()
            return

        opened, failures = int(result[0]), int(result[1])
        if opened:
            logger.warning(
                f"Circuit for {self.service} opened after {failures} failures",
                extra={
                    "service": self.service,
                    "circuit_state": "open",
                    "failures": failures,
                    "cooldown_seconds": self.cooldown_seconds,
                    "mode": "redis",
                },
            )

    async def snapshot(self) -> CircuitSnapshot:
        try:
            raw = await self.redis.hgetall(self.key)
        except RedisError as exc:
            self._log_fallback("snapshot", exc)
            return await self._fallback.snapshot()

        data = {
            (k.decode() if isinstance(k, bytes) else k): (v.decode() if isinstance(v, bytes) else v)
            for k, v in (raw or {}).items()
        }
        state = CircuitState(data.get("state", CircuitState.CLOSED.value))
        open_until = None
        if state is CircuitState.OPEN and data.get("open_until"):
            open_until = datetime.fromtimestamp(int(data["open_until"]) / 1000, tz=timezone.utc)

        return CircuitSnapshot(
            service=self.service,
            state=state,
            failures=int(data.get("failures", 0)),
            open_until=open_until,
        )
