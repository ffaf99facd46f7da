from contextlib import asynccontextmanager

from fastapi import FastAPI

from courtsync.database.database import sessionmanager
from courtsync.jobs.job_manager import job_manager
from courtsync.main.config import get_settings
from courtsync.main.http_client import http_client
from courtsync.redis.connection import close_redis
from courtsync.upstream.shared import reset_shared_state


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup()
    yield
    await shutdown()


async def startup():
    settings = get_settings()

    http_client.start()
    sessionmanager.init(settings.database_url)
    await job_manager.init()


async def shutdown():
    await sessionmanager.close()
    await http_client.stop()
    await job_manager.close()
    await close_redis()
    reset_shared_state()
