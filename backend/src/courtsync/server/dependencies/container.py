from dependency_injector import providers
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.database import get_session
from courtsync.main.container import Container


def get_container():
    async def _get_container(session: AsyncSession = Depends(get_session)) -> Container:
        return Container(session=providers.Object(session))

    return _get_container
