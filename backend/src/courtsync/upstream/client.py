"""HTTP client for the upstream judicial records API.

Every call goes through the same gate: circuit breaker, shared rate limiter,
then the request itself, with retries on 429/5xx/network errors only.
"""

from __future__ import annotations

import asyncio
import random
from datetime import date
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
)

from courtsync.main.cancellation import CancellationToken
from courtsync.main.config import Settings, get_settings
from courtsync.main.exceptions import (
    CircuitOpenError,
    NotFoundError,
    RateLimitError,
    RetriesExhaustedError,
    TransientUpstreamError,
    UpstreamNotConfiguredError,
    UpstreamResponseError,
)
from courtsync.main.logging import get_logger
from courtsync.upstream.backoff import compute_backoff
from courtsync.upstream.circuit_breaker import Breaker
from courtsync.upstream.rate_limiter import RateLimiter, wait_for_slot

logger = get_logger(__name__)

MetricsReporter = Callable[[str, dict], None]
Sleep = Callable[[float], Awaitable[None]]


class RateLimitPolicy(str, Enum):
    BLOCK = "block"  # wait for a slot, reconciliation jobs
    FAIL_FAST = "fail_fast"  # raise RateLimitError, ad-hoc calls


class UpstreamClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        rate_limiter: RateLimiter,
        circuit_breaker: Breaker,
        base_url: str,
        api_token: Optional[str],
        user_agent: str = "courtsync/1.0",
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base_delay: float = 1.0,
        backoff_max_delay: float = 10.0,
        backoff_jitter: float = 0.25,
        request_delay_seconds: float = 0.0,
        rate_limit_max_wait: float = 300.0,
        rate_limit_poll_interval: float = 10.0,
        low_quota_threshold: int = 100,
        page_size: int = 100,
        metrics_reporter: Optional[MetricsReporter] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Callable[[float, float], float] = random.uniform,
    ):
        if not api_token:
            raise UpstreamNotConfiguredError(
                "Upstream API token is required, set UPSTREAM_API_TOKEN or UPSTREAM_API_KEY"
            )

        self.http_client = http_client
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker
        self.base_url = base_url.rstrip("/") + "/"
        self.user_agent = user_agent
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_base_delay = backoff_base_delay
        self.backoff_max_delay = backoff_max_delay
        self.backoff_jitter = backoff_jitter
        self.request_delay_seconds = request_delay_seconds
        self.rate_limit_max_wait = rate_limit_max_wait
        self.rate_limit_poll_interval = rate_limit_poll_interval
        self.low_quota_threshold = low_quota_threshold
        self.page_size = page_size
        self.metrics_reporter = metrics_reporter
        self._sleep = sleep
        self._rng = rng
        self._headers = {
            "Authorization": f"Token {api_token}",
            "User-Agent": user_agent,
            "Accept": "application/json",
        }

        self.last_rate_limit_remaining: Optional[int] = None

    @classmethod
    def from_settings(
        cls,
        http_client: httpx.AsyncClient,
        rate_limiter: RateLimiter,
        circuit_breaker: Breaker,
        settings: Optional[Settings] = None,
        **overrides: Any,
    ) -> "UpstreamClient":
        settings = settings or get_settings()
        kwargs = dict(
            base_url=settings.upstream_base_url,
            api_token=settings.upstream_credentials,
            user_agent=settings.upstream_user_agent,
            timeout=settings.upstream_timeout_seconds,
            max_retries=settings.upstream_max_retries,
            backoff_base_delay=settings.backoff_base_delay,
            backoff_max_delay=settings.backoff_max_delay,
            backoff_jitter=settings.backoff_jitter,
            request_delay_seconds=settings.upstream_request_delay_seconds,
            rate_limit_max_wait=settings.rate_limit_max_wait_seconds,
            rate_limit_poll_interval=settings.rate_limit_poll_interval_seconds,
            low_quota_threshold=settings.upstream_low_quota_threshold,
            page_size=settings.upstream_page_size,
        )
        kwargs.update(overrides)
        return cls(http_client, rate_limiter, circuit_breaker, **kwargs)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _report(self, name: str, tags: dict) -> None:
        if self.metrics_reporter is None:
            return
        try:
            self.metrics_reporter(name, tags)
        except Exception as exc:  # pragma: no cover - metrics must never break a sync
            logger.debug(f"Metrics reporter failed: {exc}")

    def build_url(self, path: str, params: Optional[dict] = None) -> httpx.URL:
        if path.startswith(("http://", "https://")):
            # Pagination cursors are absolute and already carry their filters
            url = httpx.URL(path)
        else:
            url = httpx.URL(self.base_url + path.lstrip("/"))

        query = {}
        for key, value in (params or {}).items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = str(value).lower()
            elif isinstance(value, date):
                value = value.isoformat()
            query[key] = value
        query["format"] = "json"

        return url.copy_merge_params(query)

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        return compute_backoff(
            retry_state.attempt_number - 1,
            getattr(exc, "status_code", None),
            getattr(exc, "retry_after", None),
            base_delay=self.backoff_base_delay,
            max_delay=self.backoff_max_delay,
            jitter=self.backoff_jitter,
            rng=self._rng,
        )

    def _before_sleep(self, url: httpx.URL) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0
            status_code = getattr(exc, "status_code", None)
            logger.warning(
                f"Retrying upstream request in {delay:.2f}s "
                f"(attempt {retry_state.attempt_number}/{self.max_retries + 1}): {exc}",
                extra={
                    "url": str(url.copy_remove_param("format")),
                    "attempt": retry_state.attempt_number,
                    "status_code": status_code,
                    "delay": delay,
                },
            )
            self._report(
                "upstream_retry",
                {"attempt": retry_state.attempt_number, "status_code": status_code},
            )

        return log_retry

    def _checkpoint_sleep(self, cancellation: Optional[CancellationToken]) -> Sleep:
        async def sleep(seconds: float) -> None:
            if cancellation is not None:
                cancellation.raise_if_cancelled()
            await self._sleep(seconds)
            if cancellation is not None:
                cancellation.raise_if_cancelled()

        return sleep

    async def _acquire_slot(
        self, policy: RateLimitPolicy, cancellation: Optional[CancellationToken] = None
    ) -> None:
        if policy is RateLimitPolicy.BLOCK:
            try:
                await wait_for_slot(
                    self.rate_limiter,
                    max_wait=self.rate_limit_max_wait,
                    poll_interval=self.rate_limit_poll_interval,
                    sleep=self._checkpoint_sleep(cancellation),
                )
            except RateLimitError:
                self._report("upstream_rate_limited", {"policy": policy.value})
                raise
            return

        decision = await self.rate_limiter.try_acquire()
        if not decision.allowed:
            self._report("upstream_rate_limited", {"policy": policy.value})
            raise RateLimitError(decision.reset_at)

    def _inspect_headers(self, response: httpx.Response) -> None:
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                self.last_rate_limit_remaining = int(remaining)
            except ValueError:
                self.last_rate_limit_remaining = None
            else:
                if self.last_rate_limit_remaining < self.low_quota_threshold:
                    logger.warning(
                        f"Upstream quota running low: {remaining} requests remaining",
                        extra={
                            "rate_limit_remaining": self.last_rate_limit_remaining,
                            "rate_limit_limit": response.headers.get("X-RateLimit-Limit"),
                        },
                    )

        etag = response.headers.get("ETag")
        if etag:
            logger.debug("Upstream ETag received", extra={"etag": etag})

    async def _attempt(
        self,
        url: httpx.URL,
        allow_404: bool,
        policy: RateLimitPolicy,
        cancellation: Optional[CancellationToken] = None,
    ) -> Optional[dict]:
        # An open circuit fails before any quota is spent
        try:
            await self.circuit_breaker.before_call()
        except CircuitOpenError:
            self._report("upstream_circuit_open", {"service": self.circuit_breaker.service})
            raise

        await self._acquire_slot(policy, cancellation)

        try:
            response = await self.http_client.get(
                url, headers=self._headers, timeout=self.timeout
            )
        except httpx.TransportError as exc:
            await self.circuit_breaker.record_failure()
            raise TransientUpstreamError(f"Network error: {exc!r}") from exc

        status = response.status_code
        if status == 429 or status >= 500:
            await self.circuit_breaker.record_failure()
            raise TransientUpstreamError(
                f"API error {status}: {url}",
                status_code=status,
                retry_after=response.headers.get("Retry-After"),
            )

        # Any other answer means the service itself is healthy
        await self.circuit_breaker.record_success()

        if status == 404:
            if allow_404:
                return None
            raise NotFoundError(str(url))

        if status >= 400:
            raise UpstreamResponseError(status, str(url), response.text[:500])

        self._inspect_headers(response)
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamResponseError(status, str(url), "Response is not valid JSON") from exc

        if self.request_delay_seconds > 0:
            await self._sleep(self.request_delay_seconds)

        return data

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def request(
        self,
        path: str,
        params: Optional[dict] = None,
        *,
        allow_404: bool = False,
        policy: RateLimitPolicy = RateLimitPolicy.BLOCK,
        cancellation: Optional[CancellationToken] = None,
    ) -> Optional[dict]:
        """GET ``path`` and return the decoded JSON body.

        Returns ``None`` for a 404 when ``allow_404`` is set. Raises
        ``RetriesExhaustedError`` once all retries of a 429/5xx/network error
        are spent, and ``CircuitOpenError``/``RateLimitError`` without touching
        the network when the breaker or the quota says no.
        """
        url = self.build_url(path, params)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            retry=retry_if_exception_type(TransientUpstreamError),
            wait=self._wait,
            sleep=self._checkpoint_sleep(cancellation),
            before_sleep=self._before_sleep(url),
            reraise=False,
        )

        result: Optional[dict] = None
        try:
            async for attempt in retrying:
                with attempt:
                    if cancellation is not None:
                        cancellation.raise_if_cancelled()
                    result = await self._attempt(url, allow_404, policy, cancellation)
        except RetryError as exc:
            last_error = exc.last_attempt.exception()
            attempts = exc.last_attempt.attempt_number
            logger.error(
                f"Upstream request failed after {attempts} attempts",
                extra={"url": str(url), "error": str(last_error)},
            )
            raise RetriesExhaustedError(
                attempts,
                last_error,
                status_code=getattr(last_error, "status_code", None),
            ) from last_error

        return result

    async def iterate_pages(
        self,
        path: str,
        params: Optional[dict] = None,
        *,
        cancellation: Optional[CancellationToken] = None,
        max_pages: Optional[int] = None,
    ) -> AsyncIterator[dict]:
        """Yield each page of a cursor-paginated collection."""
        next_url: Optional[str] = path
        next_params = params
        pages = 0
        while next_url:
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            page = await self.request(next_url, next_params, cancellation=cancellation)
            if page is None:
                return
            yield page

            pages += 1
            if max_pages is not None and pages >= max_pages:
                return

            next_url = page.get("next")
            next_params = None

    # Typed endpoints

    async def list_judges(
        self,
        cursor: Optional[str] = None,
        *,
        modified_since: Optional[date] = None,
        court: Optional[str] = None,
        cancellation: Optional[CancellationToken] = None,
        **filters: Any,
    ) -> dict:
        if cursor:
            return await self.request(cursor, cancellation=cancellation)
        params = {
            "page_size": self.page_size,
            "ordering": "date_modified",
            "date_modified__gte": modified_since,
            "positions__court": court,
            **filters,
        }
        return await self.request("people/", params, cancellation=cancellation)

    async def get_judge(
        self, judge_id: str, *, cancellation: Optional[CancellationToken] = None
    ) -> Optional[dict]:
        return await self.request(
            f"people/{judge_id}/", allow_404=True, cancellation=cancellation
        )

    async def _list_for_person(
        self, path: str, person_id: str, cancellation: Optional[CancellationToken]
    ) -> list[dict]:
        results: list[dict] = []
        async for page in self.iterate_pages(
            path,
            {"person": person_id, "page_size": self.page_size},
            cancellation=cancellation,
        ):
            results.extend(page.get("results", []))
        return results

    async def list_positions(
        self, person_id: str, *, cancellation: Optional[CancellationToken] = None
    ) -> list[dict]:
        return await self._list_for_person("positions/", person_id, cancellation)

    async def list_educations(
        self, person_id: str, *, cancellation: Optional[CancellationToken] = None
    ) -> list[dict]:
        return await self._list_for_person("educations/", person_id, cancellation)

    async def list_political_affiliations(
        self, person_id: str, *, cancellation: Optional[CancellationToken] = None
    ) -> list[dict]:
        return await self._list_for_person("political-affiliations/", person_id, cancellation)

    async def list_courts(
        self,
        cursor: Optional[str] = None,
        *,
        modified_since: Optional[date] = None,
        cancellation: Optional[CancellationToken] = None,
        **filters: Any,
    ) -> dict:
        if cursor:
            return await self.request(cursor, cancellation=cancellation)
        params = {
            "page_size": self.page_size,
            "ordering": "date_modified",
            "date_modified__gte": modified_since,
            **filters,
        }
        return await self.request("courts/", params, cancellation=cancellation)

    async def get_court(
        self, court_id: str, *, cancellation: Optional[CancellationToken] = None
    ) -> Optional[dict]:
        return await self.request(
            f"courts/{court_id}/", allow_404=True, cancellation=cancellation
        )

    async def list_opinions(
        self,
        cursor: Optional[str] = None,
        *,
        author: Optional[str] = None,
        filed_after: Optional[date] = None,
        filed_before: Optional[date] = None,
        ordering: str = "date_modified",
        cancellation: Optional[CancellationToken] = None,
        **filters: Any,
    ) -> dict:
        if cursor:
            return await self.request(cursor, cancellation=cancellation)
        params = {
            "page_size": self.page_size,
            "ordering": ordering,
            "author": author,
            "cluster__date_filed__gte": filed_after,
            "cluster__date_filed__lte": filed_before,
            **filters,
        }
        return await self.request("opinions/", params, cancellation=cancellation)

    async def get_opinion(
        self, opinion_id: str, *, cancellation: Optional[CancellationToken] = None
    ) -> Optional[dict]:
        return await self.request(
            f"opinions/{opinion_id}/", allow_404=True, cancellation=cancellation
        )
