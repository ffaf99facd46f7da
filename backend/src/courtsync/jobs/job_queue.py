"""Persisted priority queue of sync jobs.

Jobs are rows in ``sync_jobs``; arq only carries wake-up tickets. A worker
slot claims the highest-priority due job with a compare-and-swap and runs it
to completion, so the rate limiter rather than the queue provides
backpressure against the upstream.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from datetime import datetime, timedelta
from typing import Any, AsyncContextManager, Awaitable, Callable, Optional
from uuid import UUID

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.base_class import utcnow
from courtsync.jobs.job_manager import JobManager
from courtsync.jobs.job_models import (
    JobSource,
    JobState,
    QueueStats,
    SyncJob,
    SyncJobCreate,
    SyncJobType,
)
from courtsync.jobs.job_repo import SyncJobRepository
from courtsync.main.cancellation import CancellationToken
from courtsync.main.exceptions import (
    BadRequestException,
    JobCancelledError,
    JobNotFoundException,
    NotReadyException,
)
from courtsync.main.logging import get_logger
from courtsync.main.request_context import bound_context

logger = get_logger(__name__)

MAX_ERROR_MESSAGE_LENGTH = 512

JobHandler = Callable[[SyncJob, CancellationToken], Awaitable[Optional[dict[str, Any]]]]
SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class CancellationRegistry:
    """Tokens of the jobs running in this process, keyed by job id."""

    def __init__(self):
        self._tokens: dict[UUID, tuple[SyncJobType, CancellationToken]] = {}

    def register(self, job_id: UUID, job_type: SyncJobType) -> CancellationToken:
        token = CancellationToken()
        self._tokens[job_id] = (SyncJobType(job_type), token)
        return token

    def unregister(self, job_id: UUID) -> None:
        self._tokens.pop(job_id, None)

    def get(self, job_id: UUID) -> Optional[CancellationToken]:
        entry = self._tokens.get(job_id)
        return entry[1] if entry else None

    def cancel(
        self,
        job_type: Optional[SyncJobType] = None,
        job_id: Optional[UUID] = None,
        reason: str = "Cancelled by request",
    ) -> int:
        tripped = 0
        for running_id, (running_type, token) in list(self._tokens.items()):
            if job_id is not None and running_id != job_id:
                continue
            if job_type is not None and running_type != SyncJobType(job_type):
                continue
            if not token.cancelled:
                token.cancel(reason)
                tripped += 1
        return tripped

    def __len__(self) -> int:
        return len(self._tokens)


running_jobs = CancellationRegistry()


def truncate_error(exc: BaseException) -> Optional[str]:
    message = str(exc).strip()
    # Avoid storing excessively long error messages on the job record
    return message[:MAX_ERROR_MESSAGE_LENGTH] if message else type(exc).__name__


class JobQueue:
    def __init__(
        self,
        session: AsyncSession,
        job_repo: SyncJobRepository,
        job_manager: Optional[JobManager] = None,
        registry: Optional[CancellationRegistry] = None,
        job_timeout_seconds: Optional[float] = 60 * 60 * 2,
        session_factory: Optional[SessionFactory] = None,
        cancel_poll_interval: float = 5.0,
    ):
        self.session = session
        self.job_repo = job_repo
        self.job_manager = job_manager
        self.registry = registry if registry is not None else running_jobs
        self.job_timeout_seconds = job_timeout_seconds
        self.session_factory = session_factory
        self.cancel_poll_interval = cancel_poll_interval

    async def enqueue(
        self,
        job_type: SyncJobType,
        options: Optional[dict[str, Any]] = None,
        priority: int = 100,
        *,
        run_after: Optional[datetime] = None,
        source: JobSource = JobSource.MANUAL,
        commit: bool = True,
    ) -> UUID:
        """Persist a pending job and wake a worker.

        With ``commit=False`` the job joins the caller's transaction and the
        caller is responsible for calling :meth:`notify` after committing.
        """
        job = await self.job_repo.add(
            SyncJobCreate(
                job_type=job_type,
                options=options or {},
                priority=priority,
                run_after=run_after,
                source=source,
            )
        )
        logger.info(
            f"Enqueued {job.job_type.value} job",
            extra={
                "job_id": str(job.id),
                "job_type": job.job_type.value,
                "priority": job.priority,
                "source": job.source.value,
                "run_after": job.run_after.isoformat(),
            },
        )

        if commit:
            await self.session.commit()
            await self.notify(job.run_after)

        return job.id

    async def notify(self, run_after: Optional[datetime] = None) -> None:
        """Push one wake-up ticket. The minute sweep covers a lost ticket."""
        if self.job_manager is None:
            return

        defer_until = run_after if run_after is not None and run_after > utcnow() else None
        try:
            await self.job_manager.enqueue_ticket(defer_until=defer_until)
        except NotReadyException:
            logger.warning("Job manager not initialized, job left for the queue sweep")
        except RedisError as exc:
            logger.warning(
                "Failed to push queue ticket, job left for the queue sweep",
                extra={"error": str(exc)},
            )

    async def wake_due(self, max_tickets: int) -> int:
        """Push a ticket for each due pending job, up to ``max_tickets``."""
        due = await self.job_repo.count_due()
        tickets = min(due, max_tickets)
        for _ in range(tickets):
            await self.notify()
        return tickets

    async def cancel(
        self,
        job_type: Optional[SyncJobType] = None,
        job_id: Optional[UUID] = None,
    ) -> int:
        """Cancel matching jobs.

        Pending jobs are cancelled outright. Running jobs are flagged and their
        cancellation tokens tripped, which the upstream client observes at its
        next retry checkpoint.
        """
        if job_type is None and job_id is None:
            raise BadRequestException("Provide a job type or a job id to cancel")

        cancelled = await self.job_repo.cancel_pending(job_type, job_id)
        signalled = await self.job_repo.request_cancel_running(job_type, job_id)
        await self.session.commit()

        tripped = self.registry.cancel(job_type=job_type, job_id=job_id)

        logger.info(
            "Cancelled sync jobs",
            extra={
                "job_type": SyncJobType(job_type).value if job_type else None,
                "job_id": str(job_id) if job_id else None,
                "cancelled_pending": len(cancelled),
                "signalled_running": len(signalled),
                "tokens_tripped": tripped,
            },
        )
        return len(cancelled) + len(signalled)

    async def status(self) -> QueueStats:
        return await self.job_repo.stats()

    async def get(self, job_id: UUID) -> SyncJob:
        job = await self.job_repo.get(job_id)
        if job is None:
            raise JobNotFoundException(f"Sync job {job_id} not found")
        return job

    async def purge_finished(self, older_than: datetime | timedelta) -> int:
        if isinstance(older_than, timedelta):
            older_than = utcnow() - older_than

        purged = await self.job_repo.purge_finished(older_than)
        await self.session.commit()
        if purged:
            logger.info(
                f"Purged {purged} finished sync jobs",
                extra={"older_than": older_than.isoformat()},
            )
        return purged

    async def fail_abandoned(self, started_before: datetime) -> int:
        failed = await self.job_repo.fail_stale_running(started_before)
        await self.session.commit()
        if failed:
            logger.warning(
                f"Failed {failed} sync jobs abandoned by a worker",
                extra={"started_before": started_before.isoformat()},
            )
        return failed

    async def _watch_cancel_flag(self, job_id: UUID, token: CancellationToken) -> None:
        # Picks up cancellations requested through another process
        while not token.cancelled:
            await asyncio.sleep(self.cancel_poll_interval)
            try:
                async with self.session_factory() as session:
                    requested = await SyncJobRepository(session).is_cancel_requested(job_id)
            except Exception as exc:
                logger.warning(
                    "Failed to poll cancellation flag",
                    extra={"job_id": str(job_id), "error": str(exc)},
                )
                continue

            if requested:
                token.cancel("Cancelled by request")

    async def _finish(
        self,
        job: SyncJob,
        state: JobState,
        started: float,
        *,
        message: Optional[str] = None,
        result: Optional[dict[str, Any]] = None,
    ) -> None:
        duration_ms = int((time.perf_counter() - started) * 1000)

        if state == JobState.SUCCEEDED:
            await self.job_repo.mark_succeeded(job.id, result, duration_ms)
        else:
            # Drop whatever the handler left half-written
            await self.session.rollback()
            if state == JobState.CANCELLED:
                await self.job_repo.mark_cancelled(job.id, message, duration_ms)
            else:
                await self.job_repo.mark_failed(job.id, message, duration_ms)

        await self.session.commit()
        logger.info(
            f"Sync job {state.value}",
            extra={"state": state.value, "duration_ms": duration_ms, "error": message},
        )

    async def process_next(self, handlers: dict[SyncJobType, JobHandler]) -> Optional[SyncJob]:
        """Claim and run the next due job. Returns the finished job, or None if idle."""
        job = await self.job_repo.claim_next()
        await self.session.commit()
        if job is None:
            return None

        token = self.registry.register(job.id, job.job_type)
        watcher = None
        if self.session_factory is not None:
            watcher = asyncio.create_task(self._watch_cancel_flag(job.id, token))

        started = time.perf_counter()
        with bound_context(job_id=str(job.id), job_type=job.job_type.value):
            logger.info(
                f"Starting {job.job_type.value} job",
                extra={
                    "priority": job.priority,
                    "source": job.source.value,
                    "options": job.options,
                },
            )
            try:
                handler = handlers.get(job.job_type)
                if handler is None:
                    raise BadRequestException(
                        f"No handler registered for job type {job.job_type.value}"
                    )
                result = await asyncio.wait_for(
                    handler(job, token), timeout=self.job_timeout_seconds
                )
            except JobCancelledError as exc:
                await self._finish(
                    job, JobState.CANCELLED, started, message=truncate_error(exc)
                )
            except asyncio.TimeoutError:
                await self._finish(
                    job,
                    JobState.FAILED,
                    started,
                    message=f"Job timed out after {self.job_timeout_seconds} seconds",
                )
            except asyncio.CancelledError:
                logger.warning("Job cancelled (worker shutdown or timeout)")
                await self._finish(job, JobState.FAILED, started, message="Job cancelled")
                raise
            except Exception as exc:
                logger.exception("Error on worker:")
                await self._finish(job, JobState.FAILED, started, message=truncate_error(exc))
            else:
                await self._finish(job, JobState.SUCCEEDED, started, result=result)
            finally:
                self.registry.unregister(job.id)
                if watcher is not None:
                    watcher.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await watcher

        return await self.job_repo.get(job.id)
