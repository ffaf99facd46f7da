from datetime import datetime
from typing import Optional

from arq import create_pool
from arq.connections import ArqRedis

from courtsync.main.config import get_settings
from courtsync.main.exceptions import NotReadyException
from courtsync.main.logging import get_logger
from courtsync.redis.connection import build_arq_redis_settings

logger = get_logger(__name__)

PROCESS_SYNC_QUEUE = "process_sync_queue"


class JobManager:
    """Pushes wake-up tickets to the arq worker pool.

    The job itself lives in the database; a ticket only tells one worker slot
    to claim and run the next due job.
    """

    def __init__(self):
        self._redis: ArqRedis | None = None

    @property
    def ready(self) -> bool:
        return self._redis is not None

    async def init(self):
        settings = get_settings()
        self._redis = await create_pool(build_arq_redis_settings(settings))

        logger.debug(
            f"Job manager connected to redis on host {settings.redis_host}"
            f" and port {settings.redis_port}"
        )

    async def close(self):
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None

    async def enqueue_ticket(self, defer_until: Optional[datetime] = None):
        if self._redis is None:
            raise NotReadyException("Job manager is not initialized!")

        await self._redis.enqueue_job(PROCESS_SYNC_QUEUE, _defer_until=defer_until)


job_manager = JobManager()
