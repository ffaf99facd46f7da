import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from courtsync.database.tables.base_class import utcnow
from courtsync.database.tables.judge_table import Judges
from courtsync.jobs.job_models import JobSource, JobState, SyncJobType
from courtsync.jobs.job_queue import MAX_ERROR_MESSAGE_LENGTH, CancellationRegistry
from courtsync.main.cancellation import CancellationToken
from courtsync.main.exceptions import BadRequestException, JobNotFoundException
from courtsync.sync.judge_repo import JudgeRepository


async def succeed(job, token):
    return {"processed": 1, "options": job.options}


@pytest.mark.asyncio
async def test_enqueue_commits_and_wakes_worker(job_queue, job_manager):
    job_id = await job_queue.enqueue(SyncJobType.COURT, {"modified_since": "2025-01-01"}, 200)

    job = await job_queue.get(job_id)
    assert job.state == JobState.PENDING
    assert job.priority == 200
    assert job.source == JobSource.MANUAL
    assert job_manager.tickets == [None]


@pytest.mark.asyncio
async def test_enqueue_for_later_defers_ticket(job_queue, job_manager):
    run_after = utcnow() + timedelta(minutes=30)

    await job_queue.enqueue(SyncJobType.JUDGE, run_after=run_after)

    assert job_manager.tickets == [run_after]


@pytest.mark.asyncio
async def test_enqueue_without_commit_leaves_notify_to_caller(job_queue, job_manager):
    await job_queue.enqueue(SyncJobType.JUDGE, commit=False)

    assert job_manager.tickets == []


@pytest.mark.asyncio
async def test_notify_tolerates_uninitialised_manager(job_queue, job_manager):
    job_manager.ready = False

    job_id = await job_queue.enqueue(SyncJobType.JUDGE)

    assert (await job_queue.get(job_id)).state == JobState.PENDING


@pytest.mark.asyncio
async def test_wake_due_pushes_one_ticket_per_due_job(job_queue, job_manager):
    await job_queue.enqueue(SyncJobType.JUDGE, commit=False)
    await job_queue.enqueue(SyncJobType.COURT, commit=False)
    await job_queue.enqueue(SyncJobType.DECISION, run_after=utcnow() + timedelta(hours=1), commit=False)

    assert await job_queue.wake_due(max_tickets=5) == 2
    assert await job_queue.wake_due(max_tickets=1) == 1
    assert len(job_manager.tickets) == 3


@pytest.mark.asyncio
async def test_process_next_runs_highest_priority_job(job_queue, registry):
    low = await job_queue.enqueue(SyncJobType.DECISION, priority=10)
    high = await job_queue.enqueue(SyncJobType.JUDGE, {"remote_id": "J1"}, priority=300)

    job = await job_queue.process_next({SyncJobType.JUDGE: succeed, SyncJobType.DECISION: succeed})

    assert job.id == high
    assert job.state == JobState.SUCCEEDED
    assert job.result == {"processed": 1, "options": {"remote_id": "J1"}}
    assert job.duration_ms is not None
    assert (await job_queue.get(low)).state == JobState.PENDING
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_process_next_when_idle(job_queue):
    assert await job_queue.process_next({}) is None


@pytest.mark.asyncio
async def test_failure_is_recorded_with_truncated_message(job_queue):
    await job_queue.enqueue(SyncJobType.JUDGE)

    async def explode(job, token):
        raise ValueError("x" * 2000)

    job = await job_queue.process_next({SyncJobType.JUDGE: explode})

    assert job.state == JobState.FAILED
    assert len(job.error_message) == MAX_ERROR_MESSAGE_LENGTH


@pytest.mark.asyncio
async def test_failure_discards_partial_writes(session, job_queue):
    await job_queue.enqueue(SyncJobType.JUDGE)

    async def half_write(job, token):
        session.add(Judges(remote_id="J-partial", name="Partial"))
        await session.flush()
        raise RuntimeError("upstream went away")

    job = await job_queue.process_next({SyncJobType.JUDGE: half_write})

    assert job.state == JobState.FAILED
    assert job.error_message == "upstream went away"
    assert await JudgeRepository(session).get_by_remote_id("J-partial") is None


@pytest.mark.asyncio
async def test_missing_handler_fails_job(job_queue):
    await job_queue.enqueue(SyncJobType.CLEANUP)

    job = await job_queue.process_next({SyncJobType.JUDGE: succeed})

    assert job.state == JobState.FAILED
    assert "cleanup" in job.error_message


@pytest.mark.asyncio
async def test_job_timeout(job_queue):
    job_queue.job_timeout_seconds = 0.05
    await job_queue.enqueue(SyncJobType.JUDGE)

    async def slow(job, token):
        await asyncio.sleep(5)

    job = await job_queue.process_next({SyncJobType.JUDGE: slow})

    assert job.state == JobState.FAILED
    assert job.error_message == "Job timed out after 0.05 seconds"


@pytest.mark.asyncio
async def test_running_job_observes_cancellation(job_queue, registry):
    await job_queue.enqueue(SyncJobType.JUDGE)

    async def cooperative(job, token):
        while True:
            token.raise_if_cancelled()
            await asyncio.sleep(0.01)

    async def cancel_soon():
        while len(registry) == 0:
            await asyncio.sleep(0.005)
        return registry.cancel(job_type=SyncJobType.JUDGE)

    job, tripped = await asyncio.gather(
        job_queue.process_next({SyncJobType.JUDGE: cooperative}), cancel_soon()
    )

    assert tripped == 1
    assert job.state == JobState.CANCELLED
    assert job.error_message == "Cancelled by request"


@pytest.mark.asyncio
async def test_cancel_requires_a_filter(job_queue):
    with pytest.raises(BadRequestException):
        await job_queue.cancel()


@pytest.mark.asyncio
async def test_cancel_pending_by_type(job_queue):
    first = await job_queue.enqueue(SyncJobType.DECISION)
    await job_queue.enqueue(SyncJobType.DECISION)
    other = await job_queue.enqueue(SyncJobType.COURT)

    assert await job_queue.cancel(job_type=SyncJobType.DECISION) == 2
    assert (await job_queue.get(first)).state == JobState.CANCELLED
    assert (await job_queue.get(other)).state == JobState.PENDING

    stats = await job_queue.status()
    assert stats.cancelled == 2
    assert stats.pending == 1


@pytest.mark.asyncio
async def test_cancel_by_id_trips_local_token(job_queue, job_repo, registry):
    job_id = await job_queue.enqueue(SyncJobType.JUDGE)
    await job_repo.claim_next()
    token = registry.register(job_id, SyncJobType.JUDGE)

    assert await job_queue.cancel(job_id=job_id) == 1
    assert token.cancelled
    assert (await job_queue.get(job_id)).cancel_requested is True


@pytest.mark.asyncio
async def test_cancel_flag_from_another_process_is_picked_up(
    session, session_factory, job_queue, job_repo
):
    job_id = await job_queue.enqueue(SyncJobType.JUDGE)
    await job_repo.claim_next()
    await job_repo.request_cancel_running(job_id=job_id)
    await session.commit()

    job_queue.session_factory = session_factory
    job_queue.cancel_poll_interval = 0
    token = CancellationToken()

    await asyncio.wait_for(job_queue._watch_cancel_flag(job_id, token), timeout=2)

    assert token.cancelled


@pytest.mark.asyncio
async def test_get_unknown_job(job_queue):
    with pytest.raises(JobNotFoundException):
        await job_queue.get(uuid4())


@pytest.mark.asyncio
async def test_purge_finished_accepts_timedelta(job_queue):
    await job_queue.enqueue(SyncJobType.JUDGE)
    await job_queue.process_next({SyncJobType.JUDGE: succeed})

    assert await job_queue.purge_finished(timedelta(days=7)) == 0
    assert await job_queue.purge_finished(utcnow() + timedelta(seconds=1)) == 1


def test_registry_cancel_filters():
    registry = CancellationRegistry()
    judge_id, court_id = uuid4(), uuid4()
    judge_token = registry.register(judge_id, SyncJobType.JUDGE)
    court_token = registry.register(court_id, SyncJobType.COURT)

    assert registry.cancel(job_type=SyncJobType.COURT) == 1
    assert registry.cancel(job_type=SyncJobType.COURT) == 0
    assert court_token.cancelled
    assert not judge_token.cancelled

    registry.unregister(judge_id)
    assert registry.get(judge_id) is None
    assert len(registry) == 1
