from typing import Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.court_assignment_table import CourtAssignments


class CourtAssignmentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, judge_id: UUID, court_id: UUID) -> bool:
        stmt = (
            sa.select(CourtAssignments.id)
            .where(CourtAssignments.judge_id == judge_id)
            .where(CourtAssignments.court_id == court_id)
        )
        return await self.session.scalar(stmt) is not None

    async def court_ids_for_judge(self, judge_id: UUID) -> set[UUID]:
        stmt = sa.select(CourtAssignments.court_id).where(CourtAssignments.judge_id == judge_id)
        result = await self.session.scalars(stmt)
        return set(result.all())

    async def add(
        self,
        judge_id: UUID,
        court_id: UUID,
        position_id: Optional[UUID] = None,
        assignment_type: str = "Judge",
        source: str = "sync",
    ) -> CourtAssignments:
        """Insert a link. Raises ``IntegrityError`` if the pair already exists."""
        assignment = CourtAssignments(
            judge_id=judge_id,
            court_id=court_id,
            position_id=position_id,
            assignment_type=assignment_type,
            source=source,
        )
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def list_for_judge(self, judge_id: UUID) -> list[CourtAssignments]:
        stmt = (
            sa.select(CourtAssignments)
            .where(CourtAssignments.judge_id == judge_id)
            .order_by(CourtAssignments.created_at)
        )
        result = await self.session.scalars(stmt)
        return list(result.all())
