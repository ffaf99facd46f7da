from datetime import date, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from courtsync.database.tables.base_class import BasePublic
from courtsync.database.tables.judge_table import Judges


class Decisions(BasePublic):
    __tablename__ = "decisions"

    remote_id: Mapped[str] = mapped_column(Text, unique=True, index=True)
    case_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    judge_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey(Judges.id, ondelete="SET NULL"), nullable=True, index=True
    )
    author_remote_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    court_remote_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    date_filed: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    disposition: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    precedential_status: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, default="published")
    text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    text_hash: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    text_synced_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    remote_modified_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
