from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from courtsync.main.request_context import clear_request_context, set_request_context

CORRELATION_HEADER = "X-Correlation-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Tag every log line of a request with a correlation id."""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid4().hex
        set_request_context(correlation_id=correlation_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers[CORRELATION_HEADER] = correlation_id
        return response
