from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.judge_table import Judges
from courtsync.main.logging import get_logger
from courtsync.sync.court_assignment_repo import CourtAssignmentRepository
from courtsync.sync.court_repo import CourtRepository
from courtsync.sync.sync_models import SyncStats

logger = get_logger(__name__)


class AssignmentReconciler:
    """Creates the judge/court links implied by a judge's positions.

    A position whose court has no local record is reported and skipped; the
    link is created on a later run once the court has been synced.
    """

    def __init__(
        self,
        session: AsyncSession,
        court_repo: CourtRepository,
        assignment_repo: CourtAssignmentRepository,
    ):
        self.session = session
        self.court_repo = court_repo
        self.assignment_repo = assignment_repo

    async def reconcile(self, judge: Judges, stats: SyncStats) -> int:
        linked_court_ids = await self.assignment_repo.court_ids_for_judge(judge.id)
        created = 0

        for position in judge.positions:
            court = await self.court_repo.find(position.court_remote_id, position.court_name)
            if court is None:
                stats.assignment_misses += 1
                stats.note(f"No local court matching '{position.court_name}'")
                logger.info(
                    f"Court not found for position of judge {judge.remote_id}",
                    extra={
                        "judge_remote_id": judge.remote_id,
                        "court_name": position.court_name,
                        "court_remote_id": position.court_remote_id,
                    },
                )
                continue

            if court.id in linked_court_ids:
                continue

            try:
                async with self.session.begin_nested():
                    await self.assignment_repo.add(
                        judge_id=judge.id,
                        court_id=court.id,
                        position_id=position.id,
                        assignment_type=position.position_type,
                    )
            except IntegrityError:
                # Another worker linked the same pair first
                logger.debug(
                    "Court assignment already exists",
                    extra={"judge_id": str(judge.id), "court_id": str(court.id)},
                )
            else:
                created += 1
                stats.assignments_created += 1

            linked_court_ids.add(court.id)

        return created
