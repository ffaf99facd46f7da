from typing import Optional
from uuid import UUID

from sqlalchemy import ForeignKey, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from courtsync.database.tables.base_class import BasePublic
from courtsync.database.tables.court_table import Courts
from courtsync.database.tables.judge_table import JudgePositions, Judges


class CourtAssignments(BasePublic):
    """Link between a judge and a court, derived from the judge's positions."""

    __tablename__ = "court_assignments"

    judge_id: Mapped[UUID] = mapped_column(
        ForeignKey(Judges.id, ondelete="CASCADE"), index=True
    )
    court_id: Mapped[UUID] = mapped_column(
        ForeignKey(Courts.id, ondelete="CASCADE"), index=True
    )
    position_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey(JudgePositions.id, ondelete="SET NULL"), nullable=True
    )
    assignment_type: Mapped[str] = mapped_column(Text, default="Judge")
    source: Mapped[str] = mapped_column(Text, default="sync")

    __table_args__ = (
        UniqueConstraint("judge_id", "court_id", name="uq_court_assignment_judge_court"),
    )
