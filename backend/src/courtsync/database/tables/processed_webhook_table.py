from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Text
from sqlalchemy.orm import Mapped, mapped_column

from courtsync.database.tables.base_class import BasePublic, utcnow


class ProcessedWebhooks(BasePublic):
    """Idempotency record, one row per accepted webhook delivery id."""

    __tablename__ = "processed_webhooks"

    webhook_id: Mapped[str] = mapped_column(Text, unique=True, index=True)
    event: Mapped[str] = mapped_column(Text)
    outcome: Mapped[str] = mapped_column(Text, default="enqueued")
    job_id: Mapped[Optional[UUID]] = mapped_column(nullable=True)
    processed_at: Mapped[datetime] = mapped_column(default=utcnow, index=True)
