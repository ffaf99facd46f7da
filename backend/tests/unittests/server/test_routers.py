import json
from datetime import datetime, timezone
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from courtsync.database.database import get_session
from courtsync.server.main import get_application
from courtsync.server.middleware.request_context import CORRELATION_HEADER
from courtsync.webhooks.signature import HmacSignatureVerifier

WEBHOOK_URL = "/api/v1/webhooks/courtlistener/"
WEBHOOK_SECRET = "unit-test-webhook-secret"
AUTH = {"X-API-Key": "unit-test-queue-key"}


@pytest.fixture
def app(use_test_settings, session):
    app = get_application(with_lifespan=False)

    async def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    return app


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


def signed_delivery(webhook_id="wh_1", event="judge.updated", **payload):
    body = json.dumps(
        {
            "webhook_id": webhook_id,
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": payload or {"id": "J1"},
        }
    ).encode()
    signature = HmacSignatureVerifier(WEBHOOK_SECRET).sign(body)
    return body, {"X-Signature": signature, "Content-Type": "application/json"}


# ============================================================================
# Webhooks
# ============================================================================


@pytest.mark.asyncio
async def test_webhook_with_bad_signature_is_unauthorized(client):
    body, headers = signed_delivery()
    headers["X-Signature"] = "sha256=forged"

    response = await client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid webhook signature"


@pytest.mark.asyncio
async def test_webhook_is_accepted_then_deduplicated(client):
    body, headers = signed_delivery()

    first = await client.post(WEBHOOK_URL, content=body, headers=headers)
    second = await client.post(WEBHOOK_URL, content=body, headers=headers)

    assert first.status_code == 200
    assert first.json()["status"] == "enqueued"
    assert first.json()["job_id"] is not None
    assert second.status_code == 200
    assert second.json() == {"status": "duplicate", "job_id": None}

    stats = await client.get("/api/v1/sync/jobs/stats/", headers=AUTH)
    assert stats.json()["pending"] == 1


@pytest.mark.asyncio
async def test_malformed_webhook_is_bad_request(client):
    body = b"not json"
    headers = {"X-Signature": HmacSignatureVerifier(WEBHOOK_SECRET).sign(body)}

    response = await client.post(WEBHOOK_URL, content=body, headers=headers)

    assert response.status_code == 400


# ============================================================================
# Queue control
# ============================================================================


@pytest.mark.parametrize(
    "headers", [{}, {"X-API-Key": "wrong"}], ids=["missing", "invalid"]
)
@pytest.mark.asyncio
async def test_sync_routes_require_api_key(client, headers):
    response = await client.get("/api/v1/sync/jobs/stats/", headers=headers)

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_enqueue_and_fetch_job(client):
    response = await client.post(
        "/api/v1/sync/jobs/",
        json={"job_type": "court", "priority": 200, "options": {"modified_since": "2026-01-01"}},
        headers=AUTH,
    )

    assert response.status_code == 201
    job_id = response.json()["job_id"]

    job = await client.get(f"/api/v1/sync/jobs/{job_id}/", headers=AUTH)
    assert job.status_code == 200
    assert job.json()["state"] == "pending"
    assert job.json()["source"] == "manual"
    assert job.json()["options"] == {"modified_since": "2026-01-01"}


@pytest.mark.asyncio
async def test_unknown_job_is_not_found(client):
    response = await client.get(f"/api/v1/sync/jobs/{uuid4()}/", headers=AUTH)

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_cancel_requires_a_filter(client):
    response = await client.post("/api/v1/sync/jobs/cancel/", json={}, headers=AUTH)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_cancel_by_type(client):
    await client.post("/api/v1/sync/jobs/", json={"job_type": "decision"}, headers=AUTH)
    await client.post("/api/v1/sync/jobs/", json={"job_type": "judge"}, headers=AUTH)

    response = await client.post(
        "/api/v1/sync/jobs/cancel/", json={"job_type": "decision"}, headers=AUTH
    )

    assert response.json() == {"cancelled": 1}
    stats = (await client.get("/api/v1/sync/jobs/stats/", headers=AUTH)).json()
    assert stats["cancelled"] == 1
    assert stats["pending"] == 1


@pytest.mark.asyncio
async def test_rate_limit_status(client, test_settings):
    response = await client.get("/api/v1/sync/rate-limit/", headers=AUTH)

    assert response.status_code == 200
    body = response.json()
    assert body["rate_limit"]["current_count"] == 0
    assert body["rate_limit"]["limit"] == test_settings.rate_limit_buffer
    assert body["circuit"]["state"] == "closed"


# ============================================================================
# Application
# ============================================================================


@pytest.mark.asyncio
async def test_healthz_reports_unavailable_database(client):
    response = await client.get("/api/healthz")

    assert response.status_code == 503
    assert response.json()["status"] == "UNAVAILABLE"


@pytest.mark.asyncio
async def test_correlation_id_is_echoed(client):
    response = await client.get("/api/healthz", headers={CORRELATION_HEADER: "abc123"})

    assert response.headers[CORRELATION_HEADER] == "abc123"


@pytest.mark.asyncio
async def test_correlation_id_is_generated(client):
    response = await client.get("/api/healthz")

    assert len(response.headers[CORRELATION_HEADER]) == 32


@pytest.mark.asyncio
async def test_unhandled_error_is_a_generic_500(app):
    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret detail")

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/boom")

    assert response.status_code == 500
    assert response.json()["message"] == "Something went wrong"
    assert "secret detail" not in response.text
