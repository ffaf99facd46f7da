"""Process-wide limiter and breaker instances.

Every client in a process must draw from the same quota and trip the same
breaker, so these are built once from settings rather than per container.
"""

from typing import Optional

from courtsync.main.config import Settings, get_settings
from courtsync.main.logging import get_logger
from courtsync.redis.connection import get_redis
from courtsync.upstream.circuit_breaker import Breaker, CircuitBreaker, RedisCircuitBreaker
from courtsync.upstream.rate_limiter import InMemoryRateLimiter, RateLimiter, RedisRateLimiter

logger = get_logger(__name__)

UPSTREAM_SERVICE = "courtlistener"

_rate_limiter: Optional[RateLimiter] = None
_circuit_breaker: Optional[Breaker] = None


def build_rate_limiter(settings: Settings) -> RateLimiter:
    kwargs = dict(
        limit=settings.rate_limit_buffer,
        window_seconds=settings.rate_limit_window_seconds,
        name=UPSTREAM_SERVICE,
        warning_threshold=settings.rate_limit_warning_threshold,
        alert_cooldown_seconds=settings.rate_limit_alert_cooldown_seconds,
    )
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter(get_redis(), **kwargs)
    return InMemoryRateLimiter(**kwargs)


def build_circuit_breaker(settings: Settings) -> Breaker:
    kwargs = dict(
        service=UPSTREAM_SERVICE,
        failure_threshold=settings.circuit_failure_threshold,
        cooldown_seconds=settings.circuit_cooldown_seconds,
    )
    if settings.rate_limit_backend == "redis":
        return RedisCircuitBreaker(get_redis(), **kwargs)
    return CircuitBreaker(**kwargs)


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = build_rate_limiter(get_settings())
    return _rate_limiter


def get_circuit_breaker() -> Breaker:
    global _circuit_breaker
    if _circuit_breaker is None:
        _circuit_breaker = build_circuit_breaker(get_settings())
    return _circuit_breaker


def reset_shared_state() -> None:
    global _rate_limiter, _circuit_breaker
    _rate_limiter = None
    _circuit_breaker = None


def log_metric(name: str, tags: dict) -> None:
    """Metrics reporter that writes client events to the structured log."""
    logger.info(f"Upstream event {name}", extra={"event": name, **tags})
