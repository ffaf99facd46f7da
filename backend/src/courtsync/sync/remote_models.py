"""Records as returned by the upstream API.

Only the fields the reconciliation managers read are declared; everything
else is kept via ``extra="allow"`` so it can be stored as raw metadata.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _remote_id_from_url(value: str) -> str:
    """``https://host/api/rest/v4/courts/ca9/`` -> ``ca9``."""
    return value.rstrip("/").rsplit("/", 1)[-1]


def _coerce_optional_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, str) and value.startswith(("http://", "https://")):
        return _remote_id_from_url(value)
    return str(value)


class RemoteRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    date_modified: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        if value is None or value == "":
            raise ValueError("Remote record has no id")
        return str(value)

    @field_validator("date_modified")
    @classmethod
    def ensure_aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def raw(self) -> dict:
        return self.model_dump(mode="json")


class RemoteCourtRef(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    full_name: Optional[str] = None
    short_name: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Optional[str]:
        return _coerce_optional_id(value)


class RemotePosition(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    court: Union[RemoteCourtRef, str, None] = None
    court_id: Optional[str] = None
    court_full_name: Optional[str] = None
    position_type: Optional[str] = None
    job_title: Optional[str] = None
    date_start: Optional[date] = None
    date_termination: Optional[date] = None

    @field_validator("id", "court_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Optional[str]:
        return _coerce_optional_id(value)

    @property
    def court_remote_id(self) -> Optional[str]:
        if self.court_id:
            return self.court_id
        if isinstance(self.court, RemoteCourtRef):
            return self.court.id
        if isinstance(self.court, str) and self.court.startswith(("http://", "https://")):
            return _remote_id_from_url(self.court)
        return None

    @property
    def court_name(self) -> str:
        if isinstance(self.court, RemoteCourtRef):
            name = self.court.full_name or self.court.name or self.court.short_name
            if name:
                return name
        elif isinstance(self.court, str) and not self.court.startswith(("http://", "https://")):
            return self.court
        return self.court_full_name or self.court_remote_id or "Unknown Court"

    @property
    def title(self) -> str:
        return self.position_type or self.job_title or "Judge"

    @property
    def is_open(self) -> bool:
        return self.date_termination is None


PARTY_NAMES = {
    "d": "Democratic Party",
    "r": "Republican Party",
    "i": "Independent",
    "g": "Green Party",
    "l": "Libertarian Party",
    "f": "Federalist",
    "w": "Whig",
    "dr": "Democratic-Republican",
    "n": "Non-partisan",
}


class RemotePoliticalAffiliation(BaseModel):
    model_config = ConfigDict(extra="allow")

    political_party: Optional[str] = None
    source: Optional[str] = None
    date_start: Optional[date] = None
    date_end: Optional[date] = None

    @property
    def party_name(self) -> str:
        party = (self.political_party or "").strip()
        if not party:
            return "Unknown"
        return PARTY_NAMES.get(party.lower(), party)

    @property
    def label(self) -> str:
        """``Republican Party (2018-present)``"""
        if self.date_start is None:
            return self.party_name
        end = self.date_end.year if self.date_end else "present"
        return f"{self.party_name} ({self.date_start.year}-{end})"


class RemoteJudge(RemoteRecord):
    name_full: Optional[str] = Field(default=None, alias="name")
    name_first: Optional[str] = None
    name_middle: Optional[str] = None
    name_last: Optional[str] = None
    name_suffix: Optional[str] = None
    positions: list[RemotePosition] = Field(default_factory=list)
    educations: list[dict] = Field(default_factory=list)

    @field_validator("positions", mode="before")
    @classmethod
    def drop_position_links(cls, value: Any) -> Any:
        # List endpoints may return positions as bare URLs; those carry no data
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        return value

    @property
    def display_name(self) -> str:
        if self.name_full:
            return self.name_full
        parts = [self.name_first, self.name_middle, self.name_last, self.name_suffix]
        name = " ".join(part for part in parts if part)
        return name or f"Judge {self.id}"


class RemoteCourt(RemoteRecord):
    full_name: Optional[str] = None
    short_name: Optional[str] = None
    name: Optional[str] = None
    jurisdiction: Optional[str] = None
    citation_string: Optional[str] = None
    in_use: Optional[bool] = None
    has_opinion_scraper: Optional[bool] = None
    has_oral_argument_scraper: Optional[bool] = None
    position: Optional[float] = None
    location: Optional[str] = None
    url: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.name or self.short_name or self.id


class RemoteDecision(RemoteRecord):
    case_name: Optional[str] = None
    author_id: Optional[str] = None
    court_id: Optional[str] = None
    date_filed: Optional[date] = None
    disposition: Optional[str] = None
    precedential_status: Optional[str] = None
    type: Optional[str] = None
    plain_text: Optional[str] = None
    html: Optional[str] = None
    html_with_citations: Optional[str] = None

    @field_validator("author_id", "court_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Optional[str]:
        return _coerce_optional_id(value)

    @property
    def text(self) -> Optional[str]:
        return self.plain_text or self.html_with_citations or self.html or None

    @property
    def status(self) -> str:
        if self.precedential_status and self.precedential_status.lower() in (
            "unpublished",
            "non-precedential",
        ):
            return "unpublished"
        return "published"
