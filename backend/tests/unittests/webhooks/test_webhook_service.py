import json
from datetime import datetime, timedelta, timezone

import pytest
import sqlalchemy as sa

from courtsync.database.tables.processed_webhook_table import ProcessedWebhooks
from courtsync.jobs.job_models import JobSource, JobState, SyncJobType
from courtsync.jobs.job_queue import CancellationRegistry, JobQueue
from courtsync.jobs.job_repo import SyncJobRepository
from courtsync.main.exceptions import MalformedPayloadError, ReplayError, SignatureError
from courtsync.webhooks.idempotency import ProcessedWebhookRepository
from courtsync.webhooks.signature import HmacSignatureVerifier
from courtsync.webhooks.webhook_models import WebhookOutcome, WebhookPayload
from courtsync.webhooks.webhook_service import (
    BULK_SYNC_PRIORITY,
    SINGLE_ENTITY_PRIORITY,
    WebhookReceiver,
    map_event,
)

SECRET = "webhook-secret"
NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class TicketRecorder:
    def __init__(self):
        self.tickets = []

    async def enqueue_ticket(self, defer_until=None):
        self.tickets.append(defer_until)


@pytest.fixture
def tickets():
    return TicketRecorder()


@pytest.fixture
def verifier():
    return HmacSignatureVerifier(SECRET)


@pytest.fixture
def receiver(session, verifier, tickets):
    job_queue = JobQueue(
        session=session,
        job_repo=SyncJobRepository(session),
        job_manager=tickets,
        registry=CancellationRegistry(),
    )
    return WebhookReceiver(
        session=session,
        verifier=verifier,
        webhook_repo=ProcessedWebhookRepository(session),
        job_queue=job_queue,
        timestamp_tolerance_seconds=300,
        clock=lambda: NOW,
    )


def delivery(verifier, webhook_id="wh_1", event="judge.updated", timestamp=NOW, **payload):
    body = json.dumps(
        {
            "webhook_id": webhook_id,
            "event": event,
            "timestamp": timestamp.isoformat(),
            "payload": payload or {"id": "J1"},
        }
    ).encode()
    return body, {"X-Signature": verifier.sign(body)}


async def all_jobs(session):
    stats = await SyncJobRepository(session).stats()
    return stats.pending + stats.running + stats.succeeded + stats.failed + stats.cancelled


async def marker(session, webhook_id):
    stmt = sa.select(ProcessedWebhooks).where(ProcessedWebhooks.webhook_id == webhook_id)
    return await session.scalar(stmt)


# ============================================================================
# map_event
# ============================================================================


def payload(event, **data):
    return WebhookPayload(webhook_id="wh", event=event, timestamp=NOW, payload=data)


@pytest.mark.parametrize(
    "event,job_type",
    [
        ("judge.created", SyncJobType.JUDGE),
        ("judge.updated", SyncJobType.JUDGE),
        ("court.updated", SyncJobType.COURT),
        ("decision.created", SyncJobType.DECISION),
        ("decision.updated", SyncJobType.DECISION),
    ],
)
def test_single_entity_events(event, job_type):
    dispatch = map_event(payload(event, id=42))

    assert dispatch.job_type == job_type
    assert dispatch.priority == SINGLE_ENTITY_PRIORITY
    assert dispatch.options == {"remote_id": "42"}


def test_single_entity_event_accepts_remote_id_key():
    assert map_event(payload("court.updated", remote_id="ca9")).options == {"remote_id": "ca9"}


def test_single_entity_event_without_id_is_malformed():
    with pytest.raises(MalformedPayloadError):
        map_event(payload("judge.updated"))


def test_sync_requested_maps_to_bulk_job():
    dispatch = map_event(payload("sync.requested", entity_type="court", modified_since="2026-01-01"))

    assert dispatch.job_type == SyncJobType.COURT
    assert dispatch.priority == BULK_SYNC_PRIORITY
    assert dispatch.options == {"modified_since": "2026-01-01"}


def test_sync_requested_needs_known_entity_type():
    with pytest.raises(MalformedPayloadError):
        map_event(payload("sync.requested", entity_type="docket"))


def test_unknown_event_maps_to_nothing():
    assert map_event(payload("docket.updated", id=1)) is None


# ============================================================================
# WebhookReceiver
# ============================================================================


@pytest.mark.asyncio
async def test_valid_delivery_enqueues_exactly_one_job(session, receiver, verifier, tickets):
    body, headers = delivery(verifier)

    response = await receiver.receive(body, headers)

    assert response.status == WebhookOutcome.ENQUEUED
    job = await SyncJobRepository(session).get(response.job_id)
    assert job.job_type == SyncJobType.JUDGE
    assert job.state == JobState.PENDING
    assert job.source == JobSource.WEBHOOK
    assert job.priority == SINGLE_ENTITY_PRIORITY
    assert job.options == {"remote_id": "J1"}
    assert len(tickets.tickets) == 1

    record = await marker(session, "wh_1")
    assert record.outcome == "enqueued"
    assert record.job_id == response.job_id


@pytest.mark.asyncio
async def test_replayed_delivery_is_a_duplicate(session, receiver, verifier, tickets):
    body, headers = delivery(verifier)

    await receiver.receive(body, headers)
    replay = await receiver.receive(body, headers)

    assert replay.status == WebhookOutcome.DUPLICATE
    assert replay.job_id is None
    assert await all_jobs(session) == 1
    assert len(tickets.tickets) == 1


@pytest.mark.asyncio
async def test_invalid_signature_creates_nothing(session, receiver, verifier):
    body, _ = delivery(verifier)

    with pytest.raises(SignatureError):
        await receiver.receive(body, {"X-Signature": "sha256=forged"})

    assert await all_jobs(session) == 0
    assert not await ProcessedWebhookRepository(session).exists("wh_1")

    # The same payload correctly signed is still accepted afterwards
    response = await receiver.receive(*delivery(verifier))
    assert response.status == WebhookOutcome.ENQUEUED


@pytest.mark.parametrize("offset", [timedelta(minutes=-6), timedelta(minutes=6)])
@pytest.mark.asyncio
async def test_stale_or_future_timestamp_is_rejected(session, receiver, verifier, offset):
    body, headers = delivery(verifier, timestamp=NOW + offset)

    with pytest.raises(ReplayError):
        await receiver.receive(body, headers)

    assert await all_jobs(session) == 0


@pytest.mark.asyncio
async def test_timestamp_within_tolerance_is_accepted(receiver, verifier):
    body, headers = delivery(verifier, timestamp=NOW - timedelta(minutes=4))

    assert (await receiver.receive(body, headers)).status == WebhookOutcome.ENQUEUED


@pytest.mark.asyncio
async def test_numeric_webhook_id_is_accepted_as_text(session, receiver, verifier):
    body, headers = delivery(verifier, webhook_id=4711)

    first = await receiver.receive(body, headers)
    second = await receiver.receive(body, headers)

    assert first.status == WebhookOutcome.ENQUEUED
    assert second.status == WebhookOutcome.DUPLICATE
    assert (await marker(session, "4711")).outcome == "enqueued"


@pytest.mark.asyncio
async def test_unmapped_event_is_recorded_as_ignored(session, receiver, verifier, tickets):
    body, headers = delivery(verifier, event="docket.updated")

    first = await receiver.receive(body, headers)
    second = await receiver.receive(body, headers)

    assert first.status == WebhookOutcome.IGNORED
    assert second.status == WebhookOutcome.DUPLICATE
    assert (await marker(session, "wh_1")).outcome == "ignored"
    assert await all_jobs(session) == 0
    assert tickets.tickets == []


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b"[1, 2]",
        b'{"webhook_id": "", "event": "judge.updated", "timestamp": "2026-10-19T12:00:00Z"}',
        b'{"webhook_id": "wh", "event": "judge.updated"}',
    ],
)
@pytest.mark.asyncio
async def test_malformed_bodies_are_rejected(session, receiver, verifier, body):
    with pytest.raises(MalformedPayloadError):
        await receiver.receive(body, {"X-Signature": verifier.sign(body)})

    assert await all_jobs(session) == 0


@pytest.mark.asyncio
async def test_missing_entity_id_records_nothing(session, receiver, verifier):
    body, headers = delivery(verifier, event="judge.updated", unrelated="x")

    with pytest.raises(MalformedPayloadError):
        await receiver.receive(body, headers)

    assert not await ProcessedWebhookRepository(session).exists("wh_1")


@pytest.mark.asyncio
async def test_naive_timestamp_is_treated_as_utc(receiver, verifier):
    body, headers = delivery(verifier, timestamp=NOW.replace(tzinfo=None))

    assert (await receiver.receive(body, headers)).status == WebhookOutcome.ENQUEUED


@pytest.mark.asyncio
async def test_idempotency_marker_is_unique(session):
    repo = ProcessedWebhookRepository(session)

    first = await repo.record_if_absent("wh_9", "judge.updated")
    second = await repo.record_if_absent("wh_9", "judge.updated")

    assert first is not None
    assert second is None


@pytest.mark.asyncio
async def test_concurrent_marker_insert_loses_on_unique_constraint(session, monkeypatch):
    repo = ProcessedWebhookRepository(session)
    await repo.record_if_absent("wh_9", "judge.updated")

    # The other delivery checked before this one inserted
    async def not_seen(webhook_id):
        return False

    monkeypatch.setattr(repo, "exists", not_seen)

    assert await repo.record_if_absent("wh_9", "judge.updated") is None
    assert (await marker(session, "wh_9")).event == "judge.updated"
