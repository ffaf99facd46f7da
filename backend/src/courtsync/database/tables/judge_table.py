from datetime import date, datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from courtsync.database.tables.base_class import BasePublic


class Judges(BasePublic):
    __tablename__ = "judges"

    remote_id: Mapped[str] = mapped_column(Text, unique=True, index=True)
    name: Mapped[str] = mapped_column(Text)
    name_first: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    name_middle: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    name_last: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(Text, default="active", index=True)
    education: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    political_affiliation: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    political_affiliations: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    remote_modified_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    # Per-judge detail progress, a null timestamp means not fetched yet
    has_positions: Mapped[bool] = mapped_column(Boolean, default=False)
    positions_synced_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    education_synced_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    political_affiliations_synced_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)

    positions: Mapped[list["JudgePositions"]] = relationship(
        back_populates="judge",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JudgePositions.date_start",
    )


class JudgePositions(BasePublic):
    """A role a judge holds, or held, at a court."""

    __tablename__ = "judge_positions"

    judge_id: Mapped[UUID] = mapped_column(
        ForeignKey(Judges.id, ondelete="CASCADE"), index=True
    )
    remote_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    court_name: Mapped[str] = mapped_column(Text)
    court_remote_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    position_type: Mapped[str] = mapped_column(Text, default="Judge")
    date_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    date_termination: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    judge: Mapped[Judges] = relationship(back_populates="positions")
