import re
from datetime import date
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.base_class import utcnow
from courtsync.database.tables.court_table import Courts
from courtsync.main.cancellation import CancellationToken
from courtsync.main.logging import get_logger
from courtsync.sync.court_repo import CourtRepository
from courtsync.sync.reconciler import BaseReconciliationManager, is_newer
from courtsync.sync.remote_models import RemoteCourt
from courtsync.sync.sync_models import SyncOptions, SyncStats
from courtsync.upstream.client import UpstreamClient

logger = get_logger(__name__)

FEDERAL = "federal"
STATE = "state"

US_STATES = {
    "alabama": "AL",
    "alaska": "AK",
    "arizona": "AZ",
    "arkansas": "AR",
    "california": "CA",
    "colorado": "CO",
    "connecticut": "CT",
    "delaware": "DE",
    "district of columbia": "DC",
    "florida": "FL",
    "georgia": "GA",
    "hawaii": "HI",
    "idaho": "ID",
    "illinois": "IL",
    "indiana": "IN",
    "iowa": "IA",
    "kansas": "KS",
    "kentucky": "KY",
    "louisiana": "LA",
    "maine": "ME",
    "maryland": "MD",
    "massachusetts": "MA",
    "michigan": "MI",
    "minnesota": "MN",
    "mississippi": "MS",
    "missouri": "MO",
    "montana": "MT",
    "nebraska": "NE",
    "nevada": "NV",
    "new hampshire": "NH",
    "new jersey": "NJ",
    "new mexico": "NM",
    "new york": "NY",
    "north carolina": "NC",
    "north dakota": "ND",
    "ohio": "OH",
    "oklahoma": "OK",
    "oregon": "OR",
    "pennsylvania": "PA",
    "rhode island": "RI",
    "south carolina": "SC",
    "south dakota": "SD",
    "tennessee": "TN",
    "texas": "TX",
    "utah": "UT",
    "vermont": "VT",
    "virginia": "VA",
    "washington": "WA",
    "west virginia": "WV",
    "wisconsin": "WI",
    "wyoming": "WY",
}

# Longest names first so "west virginia" wins over "virginia"
_STATE_PATTERN = re.compile(
    r"\b("
    + "|".join(re.escape(name) for name in sorted(US_STATES, key=len, reverse=True))
    + r")\b"
)

_FEDERAL_MARKERS = ("u.s.", "united states", "federal", "circuit")

# Upstream jurisdiction codes for federal appellate, district, bankruptcy and special courts
_FEDERAL_CODES = {"F", "FD", "FB", "FBP", "FS"}


def _court_name(court: RemoteCourt) -> str:
    return " ".join(part for part in (court.full_name, court.name) if part)


def determine_court_type(court: RemoteCourt) -> str:
    """``federal`` for U.S./Federal/Circuit courts, otherwise ``state``."""
    if (court.jurisdiction or "").strip().upper() in _FEDERAL_CODES:
        return FEDERAL

    name = _court_name(court).lower()
    if any(marker in name for marker in _FEDERAL_MARKERS):
        return FEDERAL
    return STATE


def extract_jurisdiction(court: RemoteCourt) -> Optional[str]:
    """Two-letter jurisdiction code.

    An explicit two-letter jurisdiction wins. Otherwise federal courts map to
    ``US`` and state courts to the postal code of the state in their name.
    """
    explicit = (court.jurisdiction or "").strip().upper()
    if explicit in US_STATES.values():
        return explicit

    name = _court_name(court).lower()
    if explicit == "US" or determine_court_type(court) == FEDERAL:
        return "US"

    match = _STATE_PATTERN.search(name)
    if match:
        return US_STATES[match.group(1)]

    return None


def build_courthouse_metadata(court: RemoteCourt) -> dict:
    return {
        "source": "courtlistener",
        "short_name": court.short_name,
        "citation_string": court.citation_string,
        "in_use": court.in_use,
        "has_opinion_scraper": court.has_opinion_scraper,
        "has_oral_argument_scraper": court.has_oral_argument_scraper,
        "position": court.position,
        "location": court.location,
        "url": court.url,
        "start_date": court.start_date.isoformat() if court.start_date else None,
        "end_date": court.end_date.isoformat() if court.end_date else None,
        "sync_id": court.id,
        "fetched_at": utcnow().isoformat(),
        "raw": court.raw(),
    }


class CourtSyncManager(BaseReconciliationManager[RemoteCourt]):
    entity_name = "court"

    def __init__(
        self,
        session: AsyncSession,
        client: UpstreamClient,
        court_repo: CourtRepository,
        max_error_messages: int = 20,
    ):
        super().__init__(session, max_error_messages=max_error_messages)
        self.client = client
        self.court_repo = court_repo

    async def fetch_page(
        self,
        cursor: Optional[str],
        options: SyncOptions,
        cancellation: Optional[CancellationToken],
    ) -> dict:
        return await self.client.list_courts(
            cursor,
            modified_since=options.modified_since,
            cancellation=cancellation,
            **options.filters,
        )

    async def fetch_single(
        self, remote_id: str, cancellation: Optional[CancellationToken]
    ) -> Optional[dict]:
        return await self.client.get_court(remote_id, cancellation=cancellation)

    def parse(self, item: dict) -> RemoteCourt:
        return RemoteCourt.model_validate(item)

    def _apply_fields(self, court: Courts, record: RemoteCourt) -> None:
        court.name = record.display_name
        court.full_name = record.full_name
        court.short_name = record.short_name
        court.jurisdiction = extract_jurisdiction(record)
        court.court_type = determine_court_type(record)
        court.courthouse_metadata = build_courthouse_metadata(record)
        court.status = self.derive_status(record)
        court.remote_modified_at = record.date_modified
        court.last_synced_at = utcnow()

    @staticmethod
    def derive_status(record: RemoteCourt) -> str:
        closed = record.end_date is not None and record.end_date < date.today()
        return "inactive" if record.in_use is False or closed else "active"

    async def merge_record(
        self,
        record: RemoteCourt,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> Courts:
        court = await self.court_repo.get_by_remote_id(record.id)

        if court is None:
            # Courts entered by hand carry no remote id yet; adopt them by name
            by_name = await self.court_repo.get_by_name(record.display_name)
            if by_name is not None and by_name.remote_id is None:
                by_name.remote_id = record.id
                court = by_name
                logger.info(
                    f"Linked existing court '{by_name.name}' to remote id {record.id}",
                    extra={"court_id": str(by_name.id), "remote_id": record.id},
                )

        if court is None:
            court = Courts(remote_id=record.id)
            self._apply_fields(court, record)
            await self.court_repo.add(court)
            stats.created += 1
            return court

        if not is_newer(record.date_modified, court.remote_modified_at):
            stats.skipped += 1
            return court

        self._apply_fields(court, record)
        await self.session.flush()
        stats.updated += 1
        return court

