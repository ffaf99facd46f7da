import time

import httpx

from courtsync.main.config import get_settings
from courtsync.main.logging import get_logger

logger = get_logger(__name__)

SLOW_RESPONSE_THRESHOLD_MS = 5000


class HttpClient:
    """Process-wide httpx client shared by every upstream caller."""

    client: httpx.AsyncClient = None

    def _event_hooks(self) -> dict:
        async def on_request(request: httpx.Request):
            request.extensions["courtsync_started_at"] = time.perf_counter()

        async def on_response(response: httpx.Response):
            started_at = response.request.extensions.get("courtsync_started_at")
            if started_at is None:
                return

            duration_ms = int((time.perf_counter() - started_at) * 1000)
            if duration_ms > SLOW_RESPONSE_THRESHOLD_MS:
                logger.warning(
                    f"Slow upstream response from {response.request.url.host}",
                    extra={
                        "event": "upstream_slow",
                        "host": response.request.url.host,
                        "status_code": response.status_code,
                        "duration_ms": duration_ms,
                        "threshold_ms": SLOW_RESPONSE_THRESHOLD_MS,
                    },
                )
            else:
                logger.debug(
                    f"Upstream response from {response.request.url.host}",
                    extra={
                        "event": "upstream_response",
                        "status_code": response.status_code,
                        "duration_ms": duration_ms,
                    },
                )

        return {"request": [on_request], "response": [on_response]}

    def start(self):
        settings = get_settings()
        timeout = httpx.Timeout(settings.upstream_timeout_seconds, connect=10.0)
        limits = httpx.Limits(max_connections=100, max_keepalive_connections=30)

        self.client = httpx.AsyncClient(
            timeout=timeout,
            limits=limits,
            event_hooks=self._event_hooks(),
        )

    async def stop(self):
        if self.client is not None:
            await self.client.aclose()
        self.client = None

    def __call__(self) -> httpx.AsyncClient:
        assert self.client is not None
        return self.client


http_client = HttpClient()
