from dependency_injector import containers, providers
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.jobs.job_manager import job_manager
from courtsync.jobs.job_queue import JobQueue
from courtsync.jobs.job_repo import SyncJobRepository
from courtsync.main.config import get_settings
from courtsync.main.http_client import http_client
from courtsync.sync.assignments import AssignmentReconciler
from courtsync.sync.court_assignment_repo import CourtAssignmentRepository
from courtsync.sync.court_repo import CourtRepository
from courtsync.sync.court_sync import CourtSyncManager
from courtsync.sync.decision_repo import DecisionRepository
from courtsync.sync.decision_sync import DecisionSyncManager
from courtsync.sync.judge_repo import JudgeRepository
from courtsync.sync.judge_sync import JudgeSyncManager
from courtsync.upstream.client import UpstreamClient
from courtsync.upstream.shared import get_circuit_breaker, get_rate_limiter, log_metric
from courtsync.webhooks.idempotency import ProcessedWebhookRepository
from courtsync.webhooks.signature import HmacSignatureVerifier
from courtsync.webhooks.webhook_service import WebhookReceiver


class Container(containers.DeclarativeContainer):
    session = providers.Dependency(instance_of=AsyncSession)
    settings = providers.Callable(get_settings)

    # Shared clients
    http_client = providers.Callable(http_client)
    rate_limiter = providers.Callable(get_rate_limiter)
    circuit_breaker = providers.Callable(get_circuit_breaker)
    job_manager = providers.Object(job_manager)

    upstream_client = providers.Factory(
        UpstreamClient.from_settings,
        http_client=http_client,
        rate_limiter=rate_limiter,
        circuit_breaker=circuit_breaker,
        settings=settings,
        metrics_reporter=providers.Object(log_metric),
    )

    # Repositories
    judge_repo = providers.Factory(JudgeRepository, session=session)
    court_repo = providers.Factory(CourtRepository, session=session)
    decision_repo = providers.Factory(DecisionRepository, session=session)
    court_assignment_repo = providers.Factory(CourtAssignmentRepository, session=session)
    sync_job_repo = providers.Factory(SyncJobRepository, session=session)
    processed_webhook_repo = providers.Factory(ProcessedWebhookRepository, session=session)

    # Reconciliation
    assignment_reconciler = providers.Factory(
        AssignmentReconciler,
        session=session,
        court_repo=court_repo,
        assignment_repo=court_assignment_repo,
    )
    judge_sync_manager = providers.Factory(
        JudgeSyncManager,
        session=session,
        client=upstream_client,
        judge_repo=judge_repo,
        assignment_reconciler=assignment_reconciler,
        max_error_messages=settings.provided.sync_max_error_messages,
    )
    court_sync_manager = providers.Factory(
        CourtSyncManager,
        session=session,
        client=upstream_client,
        court_repo=court_repo,
        max_error_messages=settings.provided.sync_max_error_messages,
    )
    decision_sync_manager = providers.Factory(
        DecisionSyncManager,
        session=session,
        client=upstream_client,
        decision_repo=decision_repo,
        judge_repo=judge_repo,
        days_since_last=settings.provided.decision_days_since_last,
        max_error_messages=settings.provided.sync_max_error_messages,
    )

    # Jobs
    job_queue = providers.Factory(
        JobQueue,
        session=session,
        job_repo=sync_job_repo,
        job_manager=job_manager,
        job_timeout_seconds=settings.provided.sync_job_timeout_seconds,
    )

    # Webhooks
    signature_verifier = providers.Factory(HmacSignatureVerifier.from_settings, settings=settings)
    webhook_receiver = providers.Factory(
        WebhookReceiver,
        session=session,
        verifier=signature_verifier,
        webhook_repo=processed_webhook_repo,
        job_queue=job_queue,
        timestamp_tolerance_seconds=settings.provided.webhook_timestamp_tolerance_seconds,
    )
