import asyncio
from typing import Optional

from courtsync.main.exceptions import JobCancelledError


class CancellationToken:
    """Cooperative cancellation flag checked at retry and page boundaries."""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: Optional[str] = None) -> None:
        if not self._event.is_set():
            self.reason = reason or "Cancelled"
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise JobCancelledError(self.reason)
