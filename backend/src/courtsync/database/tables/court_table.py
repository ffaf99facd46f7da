from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Text
from sqlalchemy.orm import Mapped, mapped_column

from courtsync.database.tables.base_class import BasePublic


class Courts(BasePublic):
    __tablename__ = "courts"

    remote_id: Mapped[Optional[str]] = mapped_column(
        Text, unique=True, index=True, nullable=True
    )
    name: Mapped[str] = mapped_column(Text, index=True)
    full_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    short_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    jurisdiction: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    court_type: Mapped[str] = mapped_column(Text, default="state")
    status: Mapped[str] = mapped_column(Text, default="active")
    courthouse_metadata: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    remote_modified_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
