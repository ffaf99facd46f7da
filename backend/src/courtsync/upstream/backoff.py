"""Retry delay policy for upstream calls."""

from __future__ import annotations

import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Callable, Optional, Union

RATE_LIMITED_MULTIPLIER = 1.5

RetryAfter = Union[str, int, float, None]


def parse_retry_after(value: RetryAfter, now: Optional[datetime] = None) -> Optional[float]:
    """Parse a ``Retry-After`` header value into seconds.

    Accepts delta-seconds (``"120"``) or an HTTP-date
    (``"Wed, 21 Oct 2026 07:28:00 GMT"``). Returns ``None`` when the value is
    missing or unparseable. Dates in the past yield ``0.0``.
    """
    if value is None:
        return None

    if isinstance(value, (int, float)):
        return max(0.0, float(value))

    value = value.strip()
    if not value:
        return None

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None

    if retry_at is None:
        return None

    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    return max(0.0, (retry_at - now).total_seconds())


def compute_backoff(
    attempt: int,
    last_status: Optional[int] = None,
    retry_after: RetryAfter = None,
    *,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter: float = 0.25,
    now: Optional[datetime] = None,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """Delay in seconds before retry number ``attempt`` (0-based).

    ``base_delay * 2**attempt``, stretched by 1.5 after a 429, capped at
    ``max_delay``. Jitter adds up to ``jitter`` times the capped delay, and the
    total is clamped to ``max_delay``. A parseable ``retry_after`` overrides the
    computed value and is clamped to ``[0, max_delay]``.
    """
    server_delay = parse_retry_after(retry_after, now=now)
    if server_delay is not None:
        return min(server_delay, max_delay)

    attempt = max(0, attempt)
    try:
        delay = base_delay * (2**attempt)
    except OverflowError:
        delay = max_delay

    if last_status == 429:
        delay *= RATE_LIMITED_MULTIPLIER

    capped = min(delay, max_delay)

    if jitter > 0:
        capped += capped * rng(0.0, jitter)

    return min(capped, max_delay)
