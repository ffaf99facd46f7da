from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.base_class import utcnow
from courtsync.database.tables.judge_table import JudgePositions, Judges
from courtsync.main.cancellation import CancellationToken
from courtsync.main.exceptions import NotFoundError, UpstreamResponseError
from courtsync.main.logging import get_logger
from courtsync.sync.assignments import AssignmentReconciler
from courtsync.sync.judge_repo import JudgeRepository
from courtsync.sync.reconciler import BaseReconciliationManager, is_newer
from courtsync.sync.remote_models import RemoteJudge, RemotePoliticalAffiliation, RemotePosition
from courtsync.sync.sync_models import SyncOptions, SyncStats
from courtsync.upstream.client import UpstreamClient

logger = get_logger(__name__)

ACTIVE = "active"
RETIRED = "retired"

PersonFetch = Callable[..., Awaitable[list[dict]]]


def _education_summary(educations: list[dict]) -> list[dict]:
    summary = []
    for education in educations:
        school = education.get("school")
        if isinstance(school, dict):
            school = school.get("name")
        summary.append(
            {
                "school": school,
                "degree": education.get("degree_detail") or education.get("degree_level"),
                "year": education.get("degree_year"),
            }
        )
    return summary


def current_affiliation(
    affiliations: list[RemotePoliticalAffiliation],
) -> Optional[RemotePoliticalAffiliation]:
    """The open-ended affiliation that started last, else the latest one."""
    if not affiliations:
        return None

    ordered = sorted(
        affiliations,
        key=lambda a: (a.date_start is not None, a.date_start or 0),
        reverse=True,
    )
    for affiliation in ordered:
        if affiliation.date_end is None:
            return affiliation
    return ordered[0]


def _affiliation_summary(affiliations: list[RemotePoliticalAffiliation]) -> list[dict]:
    return [
        {
            "party": affiliation.party_name,
            "source": affiliation.source,
            "date_start": affiliation.date_start.isoformat() if affiliation.date_start else None,
            "date_end": affiliation.date_end.isoformat() if affiliation.date_end else None,
        }
        for affiliation in affiliations
    ]


class JudgeSyncManager(BaseReconciliationManager[RemoteJudge]):
    entity_name = "judge"

    def __init__(
        self,
        session: AsyncSession,
        client: UpstreamClient,
        judge_repo: JudgeRepository,
        assignment_reconciler: AssignmentReconciler,
        fetch_positions: bool = True,
        fetch_educations: bool = True,
        fetch_political_affiliations: bool = True,
        max_error_messages: int = 20,
    ):
        super().__init__(session, max_error_messages=max_error_messages)
        self.client = client
        self.judge_repo = judge_repo
        self.assignment_reconciler = assignment_reconciler
        self.fetch_positions = fetch_positions
        self.fetch_educations = fetch_educations
        self.fetch_political_affiliations = fetch_political_affiliations

    async def fetch_page(
        self,
        cursor: Optional[str],
        options: SyncOptions,
        cancellation: Optional[CancellationToken],
    ) -> dict:
        return await self.client.list_judges(
            cursor,
            modified_since=options.modified_since,
            cancellation=cancellation,
            **options.filters,
        )

    async def fetch_single(
        self, remote_id: str, cancellation: Optional[CancellationToken]
    ) -> Optional[dict]:
        return await self.client.get_judge(remote_id, cancellation=cancellation)

    def parse(self, item: dict) -> RemoteJudge:
        return RemoteJudge.model_validate(item)

    async def _positions_for(
        self, record: RemoteJudge, cancellation: Optional[CancellationToken]
    ) -> list[RemotePosition]:
        if record.positions or not self.fetch_positions:
            return record.positions

        raw_positions = await self.client.list_positions(record.id, cancellation=cancellation)
        return [RemotePosition.model_validate(position) for position in raw_positions]

    @staticmethod
    def _build_positions(positions: list[RemotePosition]) -> list[JudgePositions]:
        return [
            JudgePositions(
                remote_id=position.id,
                court_name=position.court_name,
                court_remote_id=position.court_remote_id,
                position_type=position.title,
                date_start=position.date_start,
                date_termination=position.date_termination,
            )
            for position in positions
        ]

    def _apply_fields(self, judge: Judges, record: RemoteJudge) -> None:
        judge.name = record.display_name
        judge.name_first = record.name_first
        judge.name_middle = record.name_middle
        judge.name_last = record.name_last
        judge.remote_modified_at = record.date_modified
        judge.last_synced_at = utcnow()

    def _set_positions(self, judge: Judges, positions: list[JudgePositions]) -> None:
        judge.positions = positions
        judge.has_positions = bool(positions)
        judge.positions_synced_at = utcnow()

    async def _fetch_for_person(
        self,
        fetch: PersonFetch,
        label: str,
        record: RemoteJudge,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> Optional[list[dict]]:
        try:
            return await fetch(record.id, cancellation=cancellation)
        except (NotFoundError, UpstreamResponseError) as exc:
            logger.warning(
                f"Failed to fetch {label} for judge {record.id}: {exc}",
                extra={"judge_remote_id": record.id},
            )
            stats.note(f"{label.capitalize()} for judge {record.id} not available upstream")
            return None

    async def sync_educations(
        self,
        judge: Judges,
        record: RemoteJudge,
        stats: SyncStats,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        educations = record.educations
        if not educations:
            if not self.fetch_educations:
                return
            educations = await self._fetch_for_person(
                self.client.list_educations, "educations", record, stats, cancellation
            )
            if educations is None:
                return

        judge.education = _education_summary(educations)
        judge.education_synced_at = utcnow()

    async def sync_political_affiliations(
        self,
        judge: Judges,
        record: RemoteJudge,
        stats: SyncStats,
        cancellation: Optional[CancellationToken] = None,
    ) -> None:
        if not self.fetch_political_affiliations:
            return

        raw = await self._fetch_for_person(
            self.client.list_political_affiliations,
            "political affiliations",
            record,
            stats,
            cancellation,
        )
        if raw is None:
            return

        affiliations = [RemotePoliticalAffiliation.model_validate(item) for item in raw]
        current = current_affiliation(affiliations)
        judge.political_affiliations = _affiliation_summary(affiliations)
        judge.political_affiliation = current.label if current else None
        judge.political_affiliations_synced_at = utcnow()

    async def sync_details(
        self,
        judge: Judges,
        record: RemoteJudge,
        stats: SyncStats,
        cancellation: Optional[CancellationToken] = None,
        *,
        missing_only: bool = False,
    ) -> None:
        """Refresh education and political affiliation history.

        With ``missing_only`` only the parts never fetched for this judge are
        requested, so an unchanged judge costs no detail calls once complete.
        """
        if not missing_only or judge.education_synced_at is None:
            await self.sync_educations(judge, record, stats, cancellation)
        if not missing_only or judge.political_affiliations_synced_at is None:
            await self.sync_political_affiliations(judge, record, stats, cancellation)

    async def merge_record(
        self,
        record: RemoteJudge,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> Judges:
        judge = await self.judge_repo.get_by_remote_id(record.id)

        if judge is not None and not is_newer(record.date_modified, judge.remote_modified_at):
            stats.skipped += 1
            await self.sync_details(judge, record, stats, cancellation, missing_only=True)
            await self.session.flush()
            return judge

        positions = self._build_positions(await self._positions_for(record, cancellation))

        if judge is None:
            judge = Judges(remote_id=record.id, status=ACTIVE)
            self._apply_fields(judge, record)
            self._set_positions(judge, positions)
            await self.sync_details(judge, record, stats, cancellation)
            await self.judge_repo.add(judge)
            stats.created += 1
            return judge

        self._apply_fields(judge, record)
        self._set_positions(judge, positions)
        await self.sync_details(judge, record, stats, cancellation)
        await self.session.flush()
        stats.updated += 1
        return judge

    async def apply_domain_rules(
        self,
        judge: Judges,
        record: RemoteJudge,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> None:
        self.detect_retirement(judge, stats)
        await self.session.flush()
        await self.assignment_reconciler.reconcile(judge, stats)

    def detect_retirement(self, judge: Judges, stats: SyncStats) -> None:
        """Retire a judge whose positions are all terminated.

        Judges without any known position are left alone; the upstream data is
        incomplete rather than evidence of retirement.
        """
        positions = judge.positions
        if not positions:
            return

        all_terminated = all(position.date_termination is not None for position in positions)

        if all_terminated and judge.status == ACTIVE:
            judge.status = RETIRED
            stats.retired += 1
            logger.info(
                f"Judge {judge.remote_id} marked retired, all positions terminated",
                extra={"judge_remote_id": judge.remote_id, "positions": len(positions)},
            )
        elif not all_terminated and judge.status == RETIRED:
            judge.status = ACTIVE
            stats.reactivated += 1
            logger.info(
                f"Judge {judge.remote_id} reactivated, holds an open position",
                extra={"judge_remote_id": judge.remote_id},
            )
