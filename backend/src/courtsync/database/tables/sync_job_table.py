from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from courtsync.database.tables.base_class import BasePublic, utcnow


class SyncJobs(BasePublic):
    """Persisted unit of background reconciliation work."""

    __tablename__ = "sync_jobs"

    job_type: Mapped[str] = mapped_column(Text, index=True)
    priority: Mapped[int] = mapped_column(Integer, default=100)
    options: Mapped[dict] = mapped_column(JSON, default=dict)
    state: Mapped[str] = mapped_column(Text, default="pending", index=True)
    source: Mapped[str] = mapped_column(Text, default="manual")
    run_after: Mapped[datetime] = mapped_column(default=utcnow)
    cancel_requested: Mapped[bool] = mapped_column(Boolean, default=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    finished_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_sync_jobs_claim_order", "state", "priority", "created_at"),
    )
