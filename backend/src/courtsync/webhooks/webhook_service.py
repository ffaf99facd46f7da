import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.base_class import utcnow
from courtsync.jobs.job_models import JobSource, SyncJobType
from courtsync.jobs.job_queue import JobQueue
from courtsync.main.exceptions import MalformedPayloadError, ReplayError
from courtsync.main.logging import get_logger
from courtsync.main.request_context import bound_context
from courtsync.webhooks.idempotency import ProcessedWebhookRepository
from courtsync.webhooks.signature import SignatureVerifier
from courtsync.webhooks.webhook_models import (
    WebhookEvent,
    WebhookOutcome,
    WebhookPayload,
    WebhookResponse,
)

logger = get_logger(__name__)

SINGLE_ENTITY_PRIORITY = 300
BULK_SYNC_PRIORITY = 100

_SINGLE_ENTITY_EVENTS = {
    WebhookEvent.JUDGE_CREATED.value: SyncJobType.JUDGE,
    WebhookEvent.JUDGE_UPDATED.value: SyncJobType.JUDGE,
    WebhookEvent.COURT_UPDATED.value: SyncJobType.COURT,
    WebhookEvent.DECISION_CREATED.value: SyncJobType.DECISION,
    WebhookEvent.DECISION_UPDATED.value: SyncJobType.DECISION,
}

_BULK_ENTITY_TYPES = {SyncJobType.JUDGE.value, SyncJobType.COURT.value, SyncJobType.DECISION.value}


@dataclass(frozen=True)
class JobDispatch:
    job_type: SyncJobType
    priority: int
    options: dict[str, Any] = field(default_factory=dict)


def map_event(webhook: WebhookPayload) -> Optional[JobDispatch]:
    """Translate a webhook event into the job it should enqueue.

    Returns None for events this service does not act on.
    """
    job_type = _SINGLE_ENTITY_EVENTS.get(webhook.event)
    if job_type is not None:
        remote_id = webhook.payload.get("id", webhook.payload.get("remote_id"))
        if remote_id in (None, ""):
            raise MalformedPayloadError(f"Event {webhook.event} carries no entity id")
        return JobDispatch(
            job_type=job_type,
            priority=SINGLE_ENTITY_PRIORITY,
            options={"remote_id": str(remote_id)},
        )

    if webhook.event == WebhookEvent.SYNC_REQUESTED.value:
        entity_type = webhook.payload.get("entity_type")
        if entity_type not in _BULK_ENTITY_TYPES:
            raise MalformedPayloadError(
                f"sync.requested needs entity_type in {sorted(_BULK_ENTITY_TYPES)}"
            )
        options = {key: value for key, value in webhook.payload.items() if key != "entity_type"}
        return JobDispatch(
            job_type=SyncJobType(entity_type),
            priority=BULK_SYNC_PRIORITY,
            options=options,
        )

    return None


class WebhookReceiver:
    """received -> verified -> deduplicated -> enqueued.

    Only verification, a dedup insert and an enqueue happen on the request
    path; reconciliation runs on the worker pool.
    """

    def __init__(
        self,
        session: AsyncSession,
        verifier: SignatureVerifier,
        webhook_repo: ProcessedWebhookRepository,
        job_queue: JobQueue,
        timestamp_tolerance_seconds: float = 5 * 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.verifier = verifier
        self.webhook_repo = webhook_repo
        self.job_queue = job_queue
        self.tolerance = timedelta(seconds=timestamp_tolerance_seconds)
        self.clock = clock

    @staticmethod
    def parse(body: bytes) -> WebhookPayload:
        try:
            data = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MalformedPayloadError(f"Webhook body is not valid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise MalformedPayloadError("Webhook body must be a JSON object")

        try:
            return WebhookPayload.model_validate(data)
        except ValidationError as exc:
            raise MalformedPayloadError(
                f"Invalid webhook payload: {exc.error_count()} validation errors"
            ) from exc

    def check_freshness(self, timestamp: datetime) -> None:
        now = self.clock()
        if timestamp < now - self.tolerance:
            raise ReplayError("Webhook timestamp is too old")
        if timestamp > now + self.tolerance:
            raise ReplayError("Webhook timestamp is in the future")

    async def receive(self, body: bytes, headers: Mapping[str, str]) -> WebhookResponse:
        self.verifier.verify(body, headers)
        webhook = self.parse(body)

        with bound_context(webhook_id=webhook.webhook_id):
            self.check_freshness(webhook.timestamp)
            dispatch = map_event(webhook)

            try:
                response = await self._record_and_enqueue(webhook, dispatch)
            except Exception:
                await self.session.rollback()
                raise

            if response.status == WebhookOutcome.ENQUEUED:
                await self.job_queue.notify()
            return response

    async def _record_and_enqueue(
        self, webhook: WebhookPayload, dispatch: Optional[JobDispatch]
    ) -> WebhookResponse:
        record = await self.webhook_repo.record_if_absent(webhook.webhook_id, webhook.event)
        if record is None:
            logger.info(
                "Duplicate webhook delivery ignored",
                extra={"event": webhook.event},
            )
            return WebhookResponse(status=WebhookOutcome.DUPLICATE)

        if dispatch is None:
            await self.webhook_repo.set_outcome(record, WebhookOutcome.IGNORED.value)
            await self.session.commit()
            logger.info(
                f"No job mapped for webhook event {webhook.event}",
                extra={"event": webhook.event},
            )
            return WebhookResponse(status=WebhookOutcome.IGNORED)

        # Marker and job commit together or not at all
        job_id = await self.job_queue.enqueue(
            dispatch.job_type,
            dispatch.options,
            dispatch.priority,
            source=JobSource.WEBHOOK,
            commit=False,
        )
        await self.webhook_repo.set_outcome(record, WebhookOutcome.ENQUEUED.value, job_id)
        await self.session.commit()

        logger.info(
            f"Webhook {webhook.event} enqueued {dispatch.job_type.value} job",
            extra={"event": webhook.event, "job_id": str(job_id)},
        )
        return WebhookResponse(status=WebhookOutcome.ENQUEUED, job_id=job_id)

    async def purge(self, retention_days: int) -> int:
        purged = await self.webhook_repo.purge(self.clock() - timedelta(days=retention_days))
        await self.session.commit()
        if purged:
            logger.info(f"Purged {purged} processed webhook records")
        return purged
