import pytest

from courtsync.sync.assignments import AssignmentReconciler
from courtsync.sync.court_assignment_repo import CourtAssignmentRepository
from courtsync.sync.court_repo import CourtRepository
from courtsync.sync.court_sync import CourtSyncManager
from courtsync.sync.decision_repo import DecisionRepository
from courtsync.sync.decision_sync import DecisionSyncManager
from courtsync.sync.judge_repo import JudgeRepository
from courtsync.sync.judge_sync import JudgeSyncManager


class FakeUpstream:
    """Stands in for UpstreamClient, serving canned pages per collection."""

    def __init__(self):
        self.pages: dict[str, list[dict]] = {"judges": [], "courts": [], "opinions": []}
        self.records: dict[str, dict[str, dict]] = {"judges": {}, "courts": {}, "opinions": {}}
        self.positions: dict[str, list[dict]] = {}
        self.educations: dict[str, list[dict]] = {}
        self.affiliations: dict[str, list[dict]] = {}
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, dict]] = []

    def serve(self, collection: str, *pages: list[dict]) -> None:
        """Queue pages; page N links to page N+1 through a cursor."""
        self.pages[collection] = [
            {
                "results": results,
                "next": f"cursor:{collection}:{index + 1}" if index + 1 < len(pages) else None,
            }
            for index, results in enumerate(pages)
        ]

    def _page(self, collection: str, cursor, kwargs) -> dict:
        self.calls.append((collection, {"cursor": cursor, **kwargs}))
        if collection in self.failures:
            raise self.failures[collection]
        pages = self.pages[collection]
        if not pages:
            return {"results": [], "next": None}
        index = int(cursor.rsplit(":", 1)[-1]) if cursor else 0
        return pages[index]

    def _single(self, collection: str, remote_id: str):
        self.calls.append((collection, {"id": remote_id}))
        return self.records[collection].get(remote_id)

    async def list_judges(self, cursor=None, **kwargs):
        return self._page("judges", cursor, kwargs)

    async def get_judge(self, judge_id, **kwargs):
        return self._single("judges", judge_id)

    async def list_positions(self, person_id, **kwargs):
        if "positions" in self.failures:
            raise self.failures["positions"]
        return self.positions.get(person_id, [])

    async def list_educations(self, person_id, **kwargs):
        self.calls.append(("educations", {"person": person_id}))
        if "educations" in self.failures:
            raise self.failures["educations"]
        return self.educations.get(person_id, [])

    async def list_political_affiliations(self, person_id, **kwargs):
        self.calls.append(("political-affiliations", {"person": person_id}))
        if "political-affiliations" in self.failures:
            raise self.failures["political-affiliations"]
        return self.affiliations.get(person_id, [])

    async def list_courts(self, cursor=None, **kwargs):
        return self._page("courts", cursor, kwargs)

    async def get_court(self, court_id, **kwargs):
        return self._single("courts", court_id)

    async def list_opinions(self, cursor=None, **kwargs):
        return self._page("opinions", cursor, kwargs)

    async def get_opinion(self, opinion_id, **kwargs):
        return self._single("opinions", opinion_id)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def judge_manager(session, upstream):
    court_repo = CourtRepository(session)
    return JudgeSyncManager(
        session=session,
        client=upstream,
        judge_repo=JudgeRepository(session),
        assignment_reconciler=AssignmentReconciler(
            session, court_repo, CourtAssignmentRepository(session)
        ),
    )


@pytest.fixture
def court_manager(session, upstream):
    return CourtSyncManager(session=session, client=upstream, court_repo=CourtRepository(session))


@pytest.fixture
def decision_manager(session, upstream):
    return DecisionSyncManager(
        session=session,
        client=upstream,
        decision_repo=DecisionRepository(session),
        judge_repo=JudgeRepository(session),
    )
