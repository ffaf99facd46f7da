import secrets

from fastapi import Request

from courtsync.main.config import get_settings
from courtsync.main.exceptions import UnauthorizedException


async def require_queue_api_key(request: Request) -> None:
    """Guard for the queue control routes."""
    settings = get_settings()
    if not settings.queue_api_key:
        raise UnauthorizedException("Queue control API is disabled, QUEUE_API_KEY not set")

    provided = request.headers.get(settings.queue_api_key_header_name)
    if not provided:
        raise UnauthorizedException(f"Missing {settings.queue_api_key_header_name} header")

    if not secrets.compare_digest(provided.encode("utf-8"), settings.queue_api_key.encode("utf-8")):
        raise UnauthorizedException("Invalid API key")
