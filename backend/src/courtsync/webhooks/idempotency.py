from datetime import datetime
from typing import Optional
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.processed_webhook_table import ProcessedWebhooks


class ProcessedWebhookRepository:
    """Idempotency store keyed by the delivery's webhook id."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, webhook_id: str) -> bool:
        stmt = sa.select(ProcessedWebhooks.id).where(ProcessedWebhooks.webhook_id == webhook_id)
        return await self.session.scalar(stmt) is not None

    async def record_if_absent(self, webhook_id: str, event: str) -> Optional[ProcessedWebhooks]:
        """Insert the marker for ``webhook_id``.

        Returns the new row, or None if the id was already processed. Two
        concurrent deliveries with the same id race on the unique constraint
        and exactly one of them gets a row back.
        """
        if await self.exists(webhook_id):
            return None

        record = ProcessedWebhooks(webhook_id=webhook_id, event=event)
        try:
            async with self.session.begin_nested():
                self.session.add(record)
                await self.session.flush()
        except IntegrityError:
            return None

        return record

    async def set_outcome(
        self, record: ProcessedWebhooks, outcome: str, job_id: Optional[UUID] = None
    ) -> None:
        record.outcome = outcome
        record.job_id = job_id
        await self.session.flush()

    async def purge(self, older_than: datetime) -> int:
        stmt = (
            sa.delete(ProcessedWebhooks)
            .where(ProcessedWebhooks.processed_at < older_than)
            .execution_options(synchronize_session=False)
        )
        return (await self.session.execute(stmt)).rowcount
