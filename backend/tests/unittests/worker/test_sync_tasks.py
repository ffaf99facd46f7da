from contextlib import asynccontextmanager
from types import SimpleNamespace
from uuid import UUID

import pytest

from courtsync.jobs.job_models import JobSource, JobState, SyncJobType
from courtsync.jobs.job_repo import SyncJobRepository
from courtsync.main.cancellation import CancellationToken
from courtsync.sync.sync_models import SyncStats
from courtsync.worker import sync_tasks, worker as worker_module


class RecordingManager:
    def __init__(self):
        self.runs = []

    async def run(self, options, cancellation):
        self.runs.append(options)
        return SyncStats(processed=3, created=1)


class FakeSessionManager:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    @asynccontextmanager
    async def session(self):
        async with self.session_factory() as session:
            yield session


@pytest.fixture
def sessions(monkeypatch, session_factory, use_test_settings):
    manager = FakeSessionManager(session_factory)
    monkeypatch.setattr(worker_module, "sessionmanager", manager)
    monkeypatch.setattr(sync_tasks, "sessionmanager", manager)
    return manager


def job(job_type, **options):
    return SimpleNamespace(job_type=job_type, options=options)


@pytest.mark.asyncio
async def test_sync_handlers_apply_per_type_record_caps(test_settings):
    judges, courts, decisions = RecordingManager(), RecordingManager(), RecordingManager()
    container = SimpleNamespace(
        judge_sync_manager=lambda: judges,
        court_sync_manager=lambda: courts,
        decision_sync_manager=lambda: decisions,
    )
    handlers = sync_tasks.build_handlers(container, test_settings)
    token = CancellationToken()

    result = await handlers[SyncJobType.JUDGE](job(SyncJobType.JUDGE, remote_id="J1"), token)
    await handlers[SyncJobType.COURT](job(SyncJobType.COURT), token)
    await handlers[SyncJobType.DECISION](job(SyncJobType.DECISION, max_records=5), token)

    assert result["processed"] == 3
    assert result["created"] == 1
    assert judges.runs[0].remote_id == "J1"
    assert judges.runs[0].max_records == test_settings.judge_sync_max_records
    assert courts.runs[0].max_records == test_settings.court_sync_max_records
    assert decisions.runs[0].max_records == 5


def test_every_job_type_has_a_handler(test_settings):
    handlers = sync_tasks.build_handlers(SimpleNamespace(), test_settings)

    assert set(handlers) == set(SyncJobType)


def test_worker_registrations():
    assert [func.__name__ for func in sync_tasks.worker.functions] == ["process_sync_queue"]
    assert len(sync_tasks.worker.cron_jobs) == 3


@pytest.mark.asyncio
async def test_weekly_sync_cron_enqueues_cascade(sessions, session):
    result = await sync_tasks.enqueue_weekly_sync()

    assert len(result["job_ids"]) == 4
    stats = await SyncJobRepository(session).stats()
    assert stats.pending == 4


@pytest.mark.asyncio
async def test_weekly_sync_cron_respects_switch(sessions, session, monkeypatch, test_settings):
    disabled = test_settings.model_copy(update={"weekly_sync_enabled": False})
    monkeypatch.setattr(sync_tasks, "get_settings", lambda: disabled)

    assert await sync_tasks.enqueue_weekly_sync() is None
    assert (await SyncJobRepository(session).stats()).pending == 0


@pytest.mark.asyncio
async def test_ticket_runs_due_cleanup_job(sessions, session):
    await sync_tasks.enqueue_daily_cleanup()

    result = await sync_tasks.process_sync_queue({"job_id": "arq-1"})

    assert result["state"] == JobState.SUCCEEDED.value
    stored = await SyncJobRepository(session).get(UUID(result["job_id"]))
    assert stored.source == JobSource.SCHEDULE
    assert stored.result["success"] is True


@pytest.mark.asyncio
async def test_ticket_without_due_job(sessions):
    assert await sync_tasks.process_sync_queue({"job_id": "arq-2"}) is None


@pytest.mark.asyncio
async def test_sweep_wakes_due_jobs(sessions):
    await sync_tasks.enqueue_daily_cleanup()

    assert await sync_tasks.sweep_sync_queue() == 1


def test_arq_settings_include_sync_tasks():
    from courtsync.worker.arq import WorkerSettings

    assert [func.__name__ for func in WorkerSettings.functions] == ["process_sync_queue"]
    assert len(WorkerSettings.cron_jobs) == 3
    assert WorkerSettings.retry_jobs is False
    assert WorkerSettings.max_jobs == 4
