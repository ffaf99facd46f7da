from datetime import datetime
from enum import IntEnum
from typing import Optional


class ErrorCodes(IntEnum):
    UNAUTHORIZED = 9000
    BAD_REQUEST = 9001
    NOT_FOUND = 9002
    NOT_READY = 9003
    RATE_LIMITED = 9010
    CIRCUIT_OPEN = 9011
    UPSTREAM_UNAVAILABLE = 9012
    UPSTREAM_ERROR = 9013
    WEBHOOK_SIGNATURE = 9020
    WEBHOOK_REPLAY = 9021
    WEBHOOK_MALFORMED = 9022
    JOB_CANCELLED = 9030


class CourtSyncException(Exception):
    pass


class BadRequestException(CourtSyncException):
    pass


class UnauthorizedException(CourtSyncException):
    pass


class NotReadyException(CourtSyncException):
    pass


class JobNotFoundException(CourtSyncException):
    pass


# Upstream API


class UpstreamError(CourtSyncException):
    """Base for every failure talking to the upstream records API."""


class RateLimitError(UpstreamError):
    """The shared quota is exhausted and the caller chose not to (or could not) wait."""

    def __init__(self, reset_at: Optional[datetime] = None, message: Optional[str] = None):
        self.reset_at = reset_at
        if message is None:
            message = "Upstream rate limit exceeded"
            if reset_at is not None:
                message += f", resets at {reset_at.isoformat()}"
        super().__init__(message)


class CircuitOpenError(UpstreamError):
    def __init__(self, service: str, open_until: Optional[datetime] = None):
        self.service = service
        self.open_until = open_until
        message = f"Circuit open for {service}"
        if open_until is not None:
            message += f" until {open_until.isoformat()}"
        super().__init__(message)


class TransientUpstreamError(UpstreamError):
    """429, 5xx or network failure. Retryable."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[str] = None,
    ):
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


class RetriesExhaustedError(TransientUpstreamError):
    def __init__(self, attempts: int, last_error: Optional[Exception] = None, status_code: Optional[int] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Upstream request failed after {attempts} attempts: {last_error}",
            status_code=status_code,
        )


class UpstreamNotConfiguredError(UpstreamError):
    pass


class NotFoundError(UpstreamError):
    def __init__(self, url: str):
        self.url = url
        self.status_code = 404
        super().__init__(f"API error 404: {url}")


class UpstreamResponseError(UpstreamError):
    """Non-retryable 4xx response."""

    def __init__(self, status_code: int, url: str, body: str = ""):
        self.status_code = status_code
        self.url = url
        self.body = body
        super().__init__(f"API error {status_code}: {url}")


# Webhooks


class WebhookRejectedError(CourtSyncException):
    pass


class SignatureError(WebhookRejectedError):
    pass


class ReplayError(WebhookRejectedError):
    pass


class MalformedPayloadError(CourtSyncException):
    pass


# Reconciliation and jobs


class ReconciliationError(CourtSyncException):
    def __init__(self, remote_id: str, cause: Exception):
        self.remote_id = remote_id
        self.cause = cause
        super().__init__(f"Failed to reconcile record {remote_id}: {cause}")


class JobCancelledError(CourtSyncException):
    pass


# Map exceptions to response codes
# Set message to None to use internal message
EXCEPTION_MAP = {
    BadRequestException: (400, None, ErrorCodes.BAD_REQUEST),
    UnauthorizedException: (401, None, ErrorCodes.UNAUTHORIZED),
    JobNotFoundException: (404, None, ErrorCodes.NOT_FOUND),
    NotReadyException: (409, None, ErrorCodes.NOT_READY),
    SignatureError: (401, "Invalid webhook signature", ErrorCodes.WEBHOOK_SIGNATURE),
    ReplayError: (401, None, ErrorCodes.WEBHOOK_REPLAY),
    MalformedPayloadError: (400, None, ErrorCodes.WEBHOOK_MALFORMED),
    RateLimitError: (429, None, ErrorCodes.RATE_LIMITED),
    CircuitOpenError: (503, None, ErrorCodes.CIRCUIT_OPEN),
    TransientUpstreamError: (503, None, ErrorCodes.UPSTREAM_UNAVAILABLE),
    UpstreamError: (502, None, ErrorCodes.UPSTREAM_ERROR),
}
