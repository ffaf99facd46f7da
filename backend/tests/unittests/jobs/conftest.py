import pytest

from courtsync.jobs.job_queue import CancellationRegistry, JobQueue
from courtsync.jobs.job_repo import SyncJobRepository
from courtsync.main.exceptions import NotReadyException


class FakeJobManager:
    """Records wake-up tickets instead of pushing them to arq."""

    def __init__(self, ready: bool = True):
        self.ready = ready
        self.tickets: list = []

    async def enqueue_ticket(self, defer_until=None):
        if not self.ready:
            raise NotReadyException("Job manager is not initialized!")
        self.tickets.append(defer_until)


@pytest.fixture
def job_manager():
    return FakeJobManager()


@pytest.fixture
def job_repo(session):
    return SyncJobRepository(session)


@pytest.fixture
def registry():
    return CancellationRegistry()


@pytest.fixture
def job_queue(session, job_repo, job_manager, registry):
    return JobQueue(
        session=session,
        job_repo=job_repo,
        job_manager=job_manager,
        registry=registry,
        job_timeout_seconds=5,
    )
