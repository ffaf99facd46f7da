from datetime import datetime, timezone

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from courtsync.database.database import sessionmanager
from courtsync.main.config import get_settings
from courtsync.main.logging import get_logger
from courtsync.server.dependencies.lifespan import lifespan
from courtsync.server.exception_handlers import add_exception_handlers
from courtsync.server.middleware.request_context import RequestContextMiddleware
from courtsync.server.routers import router as api_router

logger = get_logger(__name__)

TITLE = "courtsync"
SUMMARY = (
    "Keeps a local store of judges, courts and decisions in step with the "
    "CourtListener records API."
)


def get_application(with_lifespan: bool = True):
    settings = get_settings()
    app = FastAPI(
        title=TITLE,
        description=SUMMARY,
        version=settings.app_version,
        lifespan=lifespan if with_lifespan else None,
    )

    app.add_middleware(RequestContextMiddleware)

    app.include_router(api_router, prefix=settings.api_prefix)

    # Handlers for every mapped error, plus the generic 500
    add_exception_handlers(app)

    @app.get("/api/healthz")
    async def get_healthz():
        database_status = "HEALTHY" if sessionmanager.initialized else "UNAVAILABLE"
        status_code = 200 if database_status == "HEALTHY" else 503
        return JSONResponse(
            status_code=status_code,
            content={
                "status": database_status,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "version": settings.app_version,
            },
        )

    return app


def start():
    uvicorn.run(
        "courtsync.server.main:get_application",
        factory=True,
        host="0.0.0.0",
        port=8123,
        reload=get_settings().dev,
        reload_dirs="./src/",
    )
