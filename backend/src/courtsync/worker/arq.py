from courtsync.worker.sync_tasks import worker as sync_worker
from courtsync.worker.worker import Worker

worker = Worker()
worker.include_subworker(sync_worker)


class WorkerSettings:
    functions = worker.functions
    cron_jobs = worker.cron_jobs
    redis_settings = worker.redis_settings
    on_startup = worker.on_startup
    on_shutdown = worker.on_shutdown
    retry_jobs = worker.retry_jobs
    job_timeout = worker.job_timeout
    max_jobs = worker.max_jobs
    expires_extra_ms = worker.expires_extra_ms
    health_check_interval = worker.health_check_interval
    job_completion_wait = worker.job_completion_wait
