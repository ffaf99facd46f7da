from fastapi import APIRouter, Depends, Request

from courtsync.main.container import Container
from courtsync.main.models import GeneralError
from courtsync.server.dependencies.container import get_container
from courtsync.webhooks.webhook_models import WebhookResponse

router = APIRouter()


@router.post(
    "/courtlistener/",
    response_model=WebhookResponse,
    responses={
        400: {"model": GeneralError, "description": "Malformed payload"},
        401: {"model": GeneralError, "description": "Bad signature or stale timestamp"},
    },
)
async def receive_courtlistener_webhook(
    request: Request,
    container: Container = Depends(get_container()),
):
    """Accept a signed change notification and enqueue the matching sync job.

    The body is JSON of the form
    `{"webhook_id": "wh_1", "event": "judge.updated", "timestamp": "...", "payload": {"id": "123"}}`.
    The entity id lives in the nested `payload` object; `webhook_id` may be a
    string or an integer. A delivery whose id was already processed answers
    `{"status": "duplicate"}` without enqueuing anything.
    """
    body = await request.body()
    return await container.webhook_receiver().receive(body, request.headers)
