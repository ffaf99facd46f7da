from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.decision_table import Decisions


class DecisionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_remote_id(self, remote_id: str) -> Optional[Decisions]:
        stmt = sa.select(Decisions).where(Decisions.remote_id == remote_id)
        return await self.session.scalar(stmt)

    async def add(self, decision: Decisions) -> Decisions:
        self.session.add(decision)
        await self.session.flush()
        return decision
