from datetime import datetime
from typing import Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.base_class import utcnow
from courtsync.database.tables.sync_job_table import SyncJobs
from courtsync.jobs.job_models import (
    TERMINAL_STATES,
    JobState,
    QueueStats,
    SyncJob,
    SyncJobCreate,
    SyncJobType,
)

# Bound on how many times a claim is retried after losing a race
_CLAIM_ATTEMPTS = 5


class SyncJobRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, job: SyncJobCreate) -> SyncJob:
        record = SyncJobs(
            job_type=job.job_type.value,
            priority=job.priority,
            options=job.options,
            state=JobState.PENDING.value,
            source=job.source.value,
            run_after=job.run_after or utcnow(),
            cancel_requested=False,
        )
        self.session.add(record)
        await self.session.flush()
        return SyncJob.model_validate(record)

    async def get(self, id: UUID) -> Optional[SyncJob]:
        # Bulk updates below bypass the identity map
        stmt = (
            sa.select(SyncJobs)
            .where(SyncJobs.id == id)
            .execution_options(populate_existing=True)
        )
        record = await self.session.scalar(stmt)
        if record is None:
            return None

        return SyncJob.model_validate(record)

    async def claim_next(self, now: Optional[datetime] = None) -> Optional[SyncJob]:
        """Atomically move the next due job from pending to running.

        Highest priority first, oldest first within a priority. Uses a
        compare-and-swap on the state column so two workers selecting the same
        row cannot both start it; the loser retries with the next candidate.
        """
        now = now or utcnow()

        for _ in range(_CLAIM_ATTEMPTS):
            select_stmt = (
                sa.select(SyncJobs.id)
                .where(SyncJobs.state == JobState.PENDING.value)
                .where(SyncJobs.run_after <= now)
                .order_by(SyncJobs.priority.desc(), SyncJobs.created_at.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job_id = await self.session.scalar(select_stmt)
            if job_id is None:
                return None

            update_stmt = (
                sa.update(SyncJobs)
                .where(SyncJobs.id == job_id)
                .where(SyncJobs.state == JobState.PENDING.value)  # CAS
                .values(state=JobState.RUNNING.value, started_at=now, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(update_stmt)
            if result.rowcount > 0:
                return await self.get(job_id)

        return None

    async def _finish(
        self,
        id: UUID,
        state: JobState,
        *,
        duration_ms: Optional[int] = None,
        error_message: Optional[str] = None,
        result: Optional[dict] = None,
    ) -> bool:
        now = utcnow()
        stmt = (
            sa.update(SyncJobs)
            .where(SyncJobs.id == id)
            .where(SyncJobs.state == JobState.RUNNING.value)
            .values(
                state=state.value,
                finished_at=now,
                updated_at=now,
                duration_ms=duration_ms,
                error_message=error_message,
                result=result,
            )
            .execution_options(synchronize_session=False)
        )
        return (await self.session.execute(stmt)).rowcount > 0

    async def mark_succeeded(self, id: UUID, result: Optional[dict], duration_ms: int) -> bool:
        return await self._finish(
            id, JobState.SUCCEEDED, duration_ms=duration_ms, result=result
        )

    async def mark_failed(self, id: UUID, error_message: Optional[str], duration_ms: int) -> bool:
        return await self._finish(
            id, JobState.FAILED, duration_ms=duration_ms, error_message=error_message
        )

    async def mark_cancelled(self, id: UUID, reason: Optional[str], duration_ms: int) -> bool:
        return await self._finish(
            id, JobState.CANCELLED, duration_ms=duration_ms, error_message=reason
        )

    @staticmethod
    def _matching(stmt, job_type: Optional[SyncJobType], job_id: Optional[UUID]):
        if job_type is not None:
            stmt = stmt.where(SyncJobs.job_type == SyncJobType(job_type).value)
        if job_id is not None:
            stmt = stmt.where(SyncJobs.id == job_id)
        return stmt

    async def cancel_pending(
        self,
        job_type: Optional[SyncJobType] = None,
        job_id: Optional[UUID] = None,
    ) -> list[UUID]:
        select_stmt = self._matching(
            sa.select(SyncJobs.id).where(SyncJobs.state == JobState.PENDING.value),
            job_type,
            job_id,
        )
        ids = list((await self.session.scalars(select_stmt)).all())
        if not ids:
            return []

        now = utcnow()
        update_stmt = (
            sa.update(SyncJobs)
            .where(SyncJobs.id.in_(ids))
            .where(SyncJobs.state == JobState.PENDING.value)
            .values(
                state=JobState.CANCELLED.value,
                cancel_requested=True,
                finished_at=now,
                updated_at=now,
                error_message="Cancelled before start",
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(update_stmt)
        return ids

    async def request_cancel_running(
        self,
        job_type: Optional[SyncJobType] = None,
        job_id: Optional[UUID] = None,
    ) -> list[UUID]:
        select_stmt = self._matching(
            sa.select(SyncJobs.id).where(SyncJobs.state == JobState.RUNNING.value),
            job_type,
            job_id,
        )
        ids = list((await self.session.scalars(select_stmt)).all())
        if not ids:
            return []

        update_stmt = (
            sa.update(SyncJobs)
            .where(SyncJobs.id.in_(ids))
            .values(cancel_requested=True, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(update_stmt)
        return ids

    async def count_due(self, now: Optional[datetime] = None) -> int:
        stmt = (
            sa.select(sa.func.count())
            .select_from(SyncJobs)
            .where(SyncJobs.state == JobState.PENDING.value)
            .where(SyncJobs.run_after <= (now or utcnow()))
        )
        return int(await self.session.scalar(stmt) or 0)

    async def is_cancel_requested(self, id: UUID) -> bool:
        stmt = sa.select(SyncJobs.cancel_requested).where(SyncJobs.id == id)
        return bool(await self.session.scalar(stmt))

    async def stats(self, now: Optional[datetime] = None) -> QueueStats:
        now = now or utcnow()
        stmt = sa.select(SyncJobs.job_type, SyncJobs.state, sa.func.count()).group_by(
            SyncJobs.job_type, SyncJobs.state
        )
        rows = (await self.session.execute(stmt)).all()

        totals = {state.value: 0 for state in JobState}
        by_type: dict[str, dict[str, int]] = {}
        for job_type, state, count in rows:
            totals[state] = totals.get(state, 0) + count
            by_type.setdefault(job_type, {s.value: 0 for s in JobState})[state] = count

        oldest_stmt = sa.select(sa.func.min(SyncJobs.created_at)).where(
            SyncJobs.state == JobState.PENDING.value
        )
        oldest = await self.session.scalar(oldest_stmt)

        return QueueStats(
            **totals,
            by_type=by_type,
            oldest_pending_at=oldest,
            oldest_pending_age_seconds=(now - oldest).total_seconds() if oldest else None,
        )

    async def purge_finished(self, older_than: datetime) -> int:
        stmt = (
            sa.delete(SyncJobs)
            .where(SyncJobs.state.in_([state.value for state in TERMINAL_STATES]))
            .where(SyncJobs.finished_at < older_than)
            .execution_options(synchronize_session=False)
        )
        return (await self.session.execute(stmt)).rowcount

    async def fail_stale_running(self, started_before: datetime) -> int:
        """Fail jobs left running by a worker that died mid-job."""
        now = utcnow()
        stmt = (
            sa.update(SyncJobs)
            .where(SyncJobs.state == JobState.RUNNING.value)
            .where(SyncJobs.started_at < started_before)
            .values(
                state=JobState.FAILED.value,
                finished_at=now,
                updated_at=now,
                error_message="Job abandoned by worker",
            )
            .execution_options(synchronize_session=False)
        )
        return (await self.session.execute(stmt)).rowcount
