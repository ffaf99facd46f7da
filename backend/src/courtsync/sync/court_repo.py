from typing import Optional

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.court_table import Courts


class CourtRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_remote_id(self, remote_id: str) -> Optional[Courts]:
        stmt = sa.select(Courts).where(Courts.remote_id == remote_id)
        return await self.session.scalar(stmt)

    async def get_by_name(self, name: str) -> Optional[Courts]:
        """Case-insensitive match on either the short or the full court name."""
        needle = name.strip().lower()
        if not needle:
            return None

        stmt = (
            sa.select(Courts)
            .where(
                sa.or_(
                    sa.func.lower(Courts.name) == needle,
                    sa.func.lower(Courts.full_name) == needle,
                )
            )
            .order_by(Courts.created_at)
            .limit(1)
        )
        return await self.session.scalar(stmt)

    async def find(self, remote_id: Optional[str], name: Optional[str]) -> Optional[Courts]:
        if remote_id:
            court = await self.get_by_remote_id(remote_id)
            if court is not None:
                return court
        if name:
            return await self.get_by_name(name)
        return None

    async def add(self, court: Courts) -> Courts:
        self.session.add(court)
        await self.session.flush()
        return court
