from __future__ import annotations

from functools import wraps

from arq.cron import cron
from dependency_injector import providers

from courtsync.database.database import AsyncSession, sessionmanager
from courtsync.main.config import get_settings
from courtsync.main.container import Container
from courtsync.main.logging import get_logger
from courtsync.redis.connection import build_arq_redis_settings
from courtsync.server.dependencies import lifespan

logger = get_logger(__name__)


class Worker:
    """
    Collects arq functions and cron jobs and the settings the pool runs with.

    Each function and cron job gets a fresh database session and a container
    bound to it. Sub-workers register their own functions and are merged into
    the main worker with ``include_subworker``.

    Attributes:
        functions (list): Registered arq functions.
        cron_jobs (list): Registered cron jobs.
        redis_settings (RedisSettings): Redis settings for the pool.
        max_jobs (int): Parallel worker slots, one sync job per slot.
        job_timeout (int): arq safety net above the per-job timeout the queue enforces.
    """

    def __init__(self):
        settings = get_settings()
        self.functions = []
        self.cron_jobs = []
        self.redis_settings = build_arq_redis_settings(settings)
        self.on_startup = self.startup
        self.on_shutdown = self.shutdown
        self.retry_jobs = False
        self.job_timeout = settings.sync_job_timeout_seconds + 5 * 60
        self.max_jobs = settings.sync_worker_concurrency
        self.expires_extra_ms = 86400000  # 1 day
        self.health_check_interval = 60
        self.job_completion_wait = 60

    def _create_container(self, session: AsyncSession) -> Container:
        return Container(session=providers.Object(session))

    async def startup(self, ctx):
        await lifespan.startup()

    async def shutdown(self, ctx):
        await lifespan.shutdown()

    def function(self):
        def decorator(func):
            @wraps(func)
            async def wrapper(ctx, *args):
                logger.debug(f"Executing {func.__name__}", extra={"arq_job_id": ctx.get("job_id")})

                async with sessionmanager.session() as session:
                    container = self._create_container(session)
                    return await func(*args, container=container)

            self.functions.append(wrapper)
            return wrapper

        return decorator

    def cron_job(self, **decorator_kwargs):
        def decorator(func):
            @wraps(func)
            async def wrapper(*args):
                logger.debug(f"Executing {func.__name__}")

                async with sessionmanager.session() as session:
                    container = self._create_container(session)
                    return await func(container=container)

            self.cron_jobs.append(cron(wrapper, **decorator_kwargs))
            return wrapper

        return decorator

    def include_subworker(self, sub_worker: Worker):
        self.functions.extend(sub_worker.functions)
        self.cron_jobs.extend(sub_worker.cron_jobs)

        logger.debug(
            "Including functions from subworker: %s",
            [func.__name__ for func in sub_worker.functions],
        )
        logger.debug(
            "Including cron jobs from subworker: %s",
            sub_worker.cron_jobs,
        )
