from datetime import timedelta
from typing import Optional

from courtsync.database.database import sessionmanager
from courtsync.database.tables.base_class import utcnow
from courtsync.jobs.job_models import JobSource, SyncJob, SyncJobType
from courtsync.jobs.job_queue import JobHandler
from courtsync.jobs.maintenance import enqueue_weekly_cascade, run_cleanup
from courtsync.main.cancellation import CancellationToken
from courtsync.main.config import Settings, get_settings
from courtsync.main.container import Container
from courtsync.main.logging import get_logger
from courtsync.sync.sync_models import SyncOptions
from courtsync.worker.worker import Worker

logger = get_logger(__name__)
worker = Worker()


def build_handlers(container: Container, settings: Optional[Settings] = None) -> dict[SyncJobType, JobHandler]:
    """One handler per job type, all sharing the container's session."""
    settings = settings or get_settings()

    async def sync_judges(job: SyncJob, cancellation: CancellationToken):
        options = SyncOptions.from_job_options(job.options, settings.judge_sync_max_records)
        stats = await container.judge_sync_manager().run(options, cancellation)
        return stats.as_dict()

    async def sync_courts(job: SyncJob, cancellation: CancellationToken):
        options = SyncOptions.from_job_options(job.options, settings.court_sync_max_records)
        stats = await container.court_sync_manager().run(options, cancellation)
        return stats.as_dict()

    async def sync_decisions(job: SyncJob, cancellation: CancellationToken):
        options = SyncOptions.from_job_options(job.options, settings.decision_sync_max_records)
        stats = await container.decision_sync_manager().run(options, cancellation)
        return stats.as_dict()

    async def cleanup(job: SyncJob, cancellation: CancellationToken):
        return await run_cleanup(
            container.job_queue(),
            container.webhook_receiver(),
            job_retention_days=settings.sync_job_retention_days,
            webhook_retention_days=settings.webhook_retention_days,
            options=job.options,
        )

    return {
        SyncJobType.JUDGE: sync_judges,
        SyncJobType.COURT: sync_courts,
        SyncJobType.DECISION: sync_decisions,
        SyncJobType.CLEANUP: cleanup,
    }


@worker.function()
async def process_sync_queue(container: Container):
    """Claim and run one due sync job. Each enqueue pushes one of these tickets."""
    job_queue = container.job_queue(session_factory=sessionmanager.session)
    job = await job_queue.process_next(build_handlers(container))
    if job is None:
        logger.debug("No due sync job for this ticket")
        return None

    return {"job_id": str(job.id), "state": job.state.value}


@worker.cron_job(second=0)
async def sweep_sync_queue(container: Container):
    """Wake workers for scheduled jobs that became due and reap abandoned ones."""
    settings = get_settings()
    job_queue = container.job_queue()

    # Anything running well past the per-job timeout lost its worker
    abandoned_before = utcnow() - timedelta(seconds=settings.sync_job_timeout_seconds * 2)
    await job_queue.fail_abandoned(abandoned_before)

    return await job_queue.wake_due(settings.sync_worker_concurrency)


@worker.cron_job(hour=3, minute=0)
async def enqueue_daily_cleanup(container: Container):
    job_id = await container.job_queue().enqueue(
        SyncJobType.CLEANUP, {}, priority=10, source=JobSource.SCHEDULE
    )
    return {"job_id": str(job_id)}


@worker.cron_job(weekday="sun", hour=2, minute=0)
async def enqueue_weekly_sync(container: Container):
    if not get_settings().weekly_sync_enabled:
        logger.info("Weekly sync disabled, skipping cascade")
        return None

    job_ids = await enqueue_weekly_cascade(container.job_queue())
    return {"job_ids": [str(job_id) for job_id in job_ids]}
