from fastapi import APIRouter, Depends

from courtsync.jobs.sync_router import router as sync_router
from courtsync.server.dependencies.auth import require_queue_api_key
from courtsync.webhooks.webhook_router import router as webhook_router

router = APIRouter()

router.include_router(webhook_router, prefix="/webhooks", tags=["webhooks"])
router.include_router(
    sync_router,
    prefix="/sync",
    tags=["sync"],
    dependencies=[Depends(require_queue_api_key)],
)
