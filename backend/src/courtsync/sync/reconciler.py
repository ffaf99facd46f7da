"""Shared reconciliation loop.

A manager supplies how to fetch a page, how to merge one record into the
local store and which domain rules to apply afterwards. The loop owns
pagination, freshness bookkeeping, per-record error isolation, run limits and
cancellation checkpoints.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.main.cancellation import CancellationToken
from courtsync.main.exceptions import (
    JobCancelledError,
    NotFoundError,
    ReconciliationError,
    UpstreamError,
    UpstreamResponseError,
)
from courtsync.main.logging import get_logger
from courtsync.main.request_context import bound_context
from courtsync.sync.remote_models import RemoteRecord
from courtsync.sync.sync_models import SyncOptions, SyncStats

logger = get_logger(__name__)

RecordT = TypeVar("RecordT", bound=RemoteRecord)


def is_newer(remote: Optional[datetime], local: Optional[datetime]) -> bool:
    """Newer-wins rule: overwrite only when the remote copy is strictly newer."""
    if local is None:
        return True
    if remote is None:
        return False
    return remote > local


def is_fatal(exc: Exception) -> bool:
    """Errors that abort the whole run rather than one record.

    Any upstream failure other than a 404 or 4xx on one record's own request
    means the upstream is unavailable for the rest of the job.
    """
    if isinstance(exc, JobCancelledError):
        return True
    return isinstance(exc, UpstreamError) and not isinstance(
        exc, (UpstreamResponseError, NotFoundError)
    )


class BaseReconciliationManager(ABC, Generic[RecordT]):
    entity_name: str = "record"

    def __init__(self, session: AsyncSession, max_error_messages: int = 20):
        self.session = session
        self.max_error_messages = max_error_messages

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_page(
        self,
        cursor: Optional[str],
        options: SyncOptions,
        cancellation: Optional[CancellationToken],
    ) -> dict: ...

    @abstractmethod
    async def fetch_single(
        self, remote_id: str, cancellation: Optional[CancellationToken]
    ) -> Optional[dict]: ...

    @abstractmethod
    def parse(self, item: dict) -> RecordT: ...

    @abstractmethod
    async def merge_record(
        self,
        record: RecordT,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> Any: ...

    async def apply_domain_rules(
        self,
        entity: Any,
        record: RecordT,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> None:
        return None

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def reconcile_item(
        self,
        item: dict,
        stats: SyncStats,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        remote_id = str(item.get("id", "unknown"))
        stats.processed += 1

        try:
            async with self.session.begin_nested():
                record = self.parse(item)
                entity = await self.merge_record(record, stats, cancellation)
                if entity is not None:
                    await self.apply_domain_rules(entity, record, stats, cancellation)
        except Exception as exc:
            if is_fatal(exc):
                raise

            error = ReconciliationError(remote_id, exc)
            stats.record_error(str(error))
            logger.warning(
                f"Failed to reconcile {self.entity_name} {remote_id}: {exc}",
                extra={"entity": self.entity_name, "remote_id": remote_id, "error": str(exc)},
            )

    async def run(
        self,
        options: Optional[SyncOptions] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> SyncStats:
        options = options or SyncOptions()
        stats = SyncStats(max_error_messages=self.max_error_messages)

        with bound_context(sync_entity=self.entity_name):
            logger.info(
                f"Starting {self.entity_name} sync",
                extra={
                    "remote_id": options.remote_id,
                    "max_records": options.max_records,
                    "modified_since": options.modified_since,
                },
            )

            if options.remote_id:
                await self._run_single(options.remote_id, stats, cancellation)
            else:
                await self._run_paginated(options, stats, cancellation)

            stats.finish()
            logger.info(
                f"Finished {self.entity_name} sync",
                extra={"stats": stats.as_dict()},
            )
        return stats

    async def sync_single(
        self, remote_id: str, cancellation: Optional[CancellationToken] = None
    ) -> SyncStats:
        return await self.run(SyncOptions(remote_id=remote_id), cancellation)

    async def _run_single(
        self,
        remote_id: str,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> None:
        item = await self.fetch_single(remote_id, cancellation)
        if item is None:
            stats.note(f"{self.entity_name} {remote_id} not found upstream")
            logger.info(
                f"Remote {self.entity_name} {remote_id} not found, nothing to reconcile",
                extra={"remote_id": remote_id},
            )
            return

        await self.reconcile_item(item, stats, cancellation)
        await self.session.commit()

    async def _run_paginated(
        self,
        options: SyncOptions,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> None:
        cursor: Optional[str] = None
        pages = 0
        while True:
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            page = await self.fetch_page(cursor, options, cancellation) or {}
            pages += 1
            limit_reached = False

            for item in page.get("results", []):
                if cancellation is not None:
                    cancellation.raise_if_cancelled()

                if options.max_records is not None and stats.processed >= options.max_records:
                    limit_reached = True
                    break

                await self.reconcile_item(item, stats, cancellation)

            # Each page is durable even if a later page fails
            await self.session.commit()

            if limit_reached:
                stats.note(
                    f"Run limit of {options.max_records} {self.entity_name} records reached"
                )
                logger.info(
                    f"Stopping {self.entity_name} sync at run limit",
                    extra={"max_records": options.max_records, "pages": pages},
                )
                return

            cursor = page.get("next")
            if not cursor:
                return
