from typing import Iterable, Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.judge_table import Judges


class JudgeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_remote_id(self, remote_id: str) -> Optional[Judges]:
        stmt = sa.select(Judges).where(Judges.remote_id == remote_id)
        return await self.session.scalar(stmt)

    async def get_ids_by_remote_ids(self, remote_ids: Iterable[str]) -> dict[str, UUID]:
        remote_ids = {remote_id for remote_id in remote_ids if remote_id}
        if not remote_ids:
            return {}

        stmt = sa.select(Judges.remote_id, Judges.id).where(Judges.remote_id.in_(remote_ids))
        result = await self.session.execute(stmt)
        return {remote_id: id for remote_id, id in result.all()}

    async def add(self, judge: Judges) -> Judges:
        self.session.add(judge)
        await self.session.flush()
        return judge
