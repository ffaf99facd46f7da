from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from courtsync.main.exceptions import EXCEPTION_MAP
from courtsync.main.logging import get_logger
from courtsync.main.models import GeneralError

logger = get_logger(__name__)

INTERNAL_ERROR_CODE = 9999


def add_exception_handlers(app: FastAPI):
    for exception, (status_code, error_message, error_code) in EXCEPTION_MAP.items():

        def handler(
            request,
            exc,
            status_code=status_code,
            error_message=error_message,
            error_code=error_code,
        ):
            message = error_message or str(exc)

            # Rejected webhooks and API keys are logged for debugging
            if status_code == 401:
                logger.info(
                    f"[Auth] Request rejected: {request.method} {request.url.path} - {str(exc)}",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "error_code": int(error_code),
                        "client_host": request.client.host if request.client else "unknown",
                    },
                )

            return JSONResponse(
                status_code=status_code,
                content=GeneralError(message=message, error_code=error_code).model_dump(),
            )

        app.add_exception_handler(exception, handler)

    async def internal_error_handler(request: Request, exc: Exception):
        logger.exception(
            f"Unhandled error on {request.method} {request.url.path}",
            extra={"method": request.method, "path": request.url.path},
        )
        return JSONResponse(
            status_code=500,
            content=GeneralError(
                message="Something went wrong", error_code=INTERNAL_ERROR_CODE
            ).model_dump(),
        )

    app.add_exception_handler(Exception, internal_error_handler)
