from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from courtsync.database.tables.base_class import utcnow
from courtsync.jobs.job_models import JobSource, SyncJobType
from courtsync.jobs.job_queue import JobQueue
from courtsync.main.logging import get_logger
from courtsync.webhooks.webhook_service import WebhookReceiver

logger = get_logger(__name__)

# (job type, priority, delay after the cascade starts, options)
WEEKLY_CASCADE = (
    (SyncJobType.COURT, 200, timedelta(0), {}),
    (SyncJobType.JUDGE, 150, timedelta(minutes=30), {}),
    (SyncJobType.DECISION, 100, timedelta(hours=1), {"days_since_last": 7}),
    (SyncJobType.CLEANUP, 10, timedelta(hours=2), {}),
)


async def enqueue_weekly_cascade(
    job_queue: JobQueue, now: Optional[datetime] = None
) -> list[UUID]:
    """Courts first so judge positions resolve, then judges, then their decisions."""
    now = now or utcnow()
    job_ids = []
    for job_type, priority, delay, options in WEEKLY_CASCADE:
        job_id = await job_queue.enqueue(
            job_type,
            dict(options),
            priority,
            run_after=now + delay,
            source=JobSource.SCHEDULE,
        )
        job_ids.append(job_id)

    logger.info(
        "Weekly sync jobs queued",
        extra={"job_count": len(job_ids), "job_ids": [str(job_id) for job_id in job_ids]},
    )
    return job_ids


async def run_cleanup(
    job_queue: JobQueue,
    webhook_receiver: WebhookReceiver,
    job_retention_days: int,
    webhook_retention_days: int,
    options: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Purge terminal jobs and old idempotency records.

    Each purge commits separately so one failing does not undo the other.
    """
    options = options or {}
    job_retention_days = int(options.get("older_than_days", job_retention_days))
    results: dict[str, Any] = {"deleted": {"jobs": 0, "webhooks": 0}, "errors": []}

    try:
        results["deleted"]["jobs"] = await job_queue.purge_finished(
            timedelta(days=job_retention_days)
        )
    except Exception as e:
        error_msg = f"Failed to purge finished jobs: {str(e)}"
        logger.error(error_msg, exc_info=True)
        await job_queue.session.rollback()
        results["errors"].append(error_msg)

    try:
        results["deleted"]["webhooks"] = await webhook_receiver.purge(webhook_retention_days)
    except Exception as e:
        error_msg = f"Failed to purge processed webhooks: {str(e)}"
        logger.error(error_msg, exc_info=True)
        await webhook_receiver.session.rollback()
        results["errors"].append(error_msg)

    results["success"] = not results["errors"]
    if results["errors"]:
        logger.warning(
            f"Cleanup completed with errors: {len(results['errors'])}",
            extra={"deleted": results["deleted"]},
        )
    else:
        logger.info("Cleanup completed", extra={"deleted": results["deleted"]})

    return results
