import hashlib
from datetime import date, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from courtsync.database.tables.base_class import utcnow
from courtsync.database.tables.decision_table import Decisions
from courtsync.main.cancellation import CancellationToken
from courtsync.main.logging import get_logger
from courtsync.sync.decision_repo import DecisionRepository
from courtsync.sync.judge_repo import JudgeRepository
from courtsync.sync.reconciler import BaseReconciliationManager, is_newer
from courtsync.sync.remote_models import RemoteDecision
from courtsync.sync.sync_models import SyncOptions, SyncStats
from courtsync.upstream.client import UpstreamClient

logger = get_logger(__name__)


def text_digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class DecisionSyncManager(BaseReconciliationManager[RemoteDecision]):
    """Reconciles opinions in two independent steps.

    Metadata follows the newer-wins rule. Opinion text is compared by digest
    afterwards, so a text-only change upstream is picked up even when the
    metadata timestamp did not move, and metadata is never skipped because of
    text. An older remote copy changes neither.
    """

    entity_name = "decision"

    def __init__(
        self,
        session: AsyncSession,
        client: UpstreamClient,
        decision_repo: DecisionRepository,
        judge_repo: JudgeRepository,
        fetch_text: bool = True,
        days_since_last: Optional[int] = None,
        max_error_messages: int = 20,
    ):
        super().__init__(session, max_error_messages=max_error_messages)
        self.client = client
        self.decision_repo = decision_repo
        self.judge_repo = judge_repo
        self.fetch_text = fetch_text
        self.days_since_last = days_since_last

    async def fetch_page(
        self,
        cursor: Optional[str],
        options: SyncOptions,
        cancellation: Optional[CancellationToken],
    ) -> dict:
        filters = dict(options.filters)
        days_since_last = filters.pop("days_since_last", self.days_since_last)
        filed_after = None
        if days_since_last:
            filed_after = date.today() - timedelta(days=int(days_since_last))

        if options.modified_since:
            filters.setdefault("date_modified__gte", options.modified_since)

        return await self.client.list_opinions(
            cursor,
            author=filters.pop("author", None),
            filed_after=filed_after,
            cancellation=cancellation,
            **filters,
        )

    async def fetch_single(
        self, remote_id: str, cancellation: Optional[CancellationToken]
    ) -> Optional[dict]:
        return await self.client.get_opinion(remote_id, cancellation=cancellation)

    def parse(self, item: dict) -> RemoteDecision:
        return RemoteDecision.model_validate(item)

    async def _apply_metadata(self, decision: Decisions, record: RemoteDecision) -> None:
        decision.case_name = record.case_name
        decision.author_remote_id = record.author_id
        decision.court_remote_id = record.court_id
        decision.date_filed = record.date_filed
        decision.disposition = record.disposition
        decision.precedential_status = record.precedential_status
        decision.status = record.status
        decision.remote_modified_at = record.date_modified

        if record.author_id:
            judge_ids = await self.judge_repo.get_ids_by_remote_ids([record.author_id])
            decision.judge_id = judge_ids.get(record.author_id)

    async def merge_record(
        self,
        record: RemoteDecision,
        stats: SyncStats,
        cancellation: Optional[CancellationToken],
    ) -> Decisions:
        decision = await self.decision_repo.get_by_remote_id(record.id)

        if decision is None:
            decision = Decisions(remote_id=record.id)
            await self._apply_metadata(decision, record)
            await self.decision_repo.add(decision)
            stats.created += 1
            await self.sync_text(decision, record, stats, cancellation)
            return decision

        if not is_newer(record.date_modified, decision.remote_modified_at):
            stats.skipped += 1
            await self.sync_text(
                decision, record, stats, cancellation, metadata_changed=False
            )
            return decision

        await self._apply_metadata(decision, record)
        await self.session.flush()
        stats.updated += 1
        await self.sync_text(decision, record, stats, cancellation)
        return decision

    async def sync_text(
        self,
        decision: Decisions,
        record: RemoteDecision,
        stats: SyncStats,
        cancellation: Optional[CancellationToken] = None,
        *,
        metadata_changed: bool = True,
    ) -> bool:
        """Bring the stored opinion text in line with ``record``.

        A record older than the stored metadata never touches the text, so a
        stale copy cannot regress it. The detail endpoint is only asked for
        text when the list page left it out and the row is new, changed, or
        still has no text.
        """
        if (
            record.date_modified is not None
            and decision.remote_modified_at is not None
            and record.date_modified < decision.remote_modified_at
        ):
            return False

        text = record.text
        if text is None and self.fetch_text:
            if not metadata_changed and decision.text_hash is not None:
                return False

            detail = await self.client.get_opinion(record.id, cancellation=cancellation)
            if detail is None:
                stats.note(f"Opinion text for {record.id} not available upstream")
                return False
            text = RemoteDecision.model_validate(detail).text

        if text is None:
            return False

        digest = text_digest(text)
        if digest == decision.text_hash:
            return False

        decision.text = text
        decision.text_hash = digest
        decision.text_synced_at = utcnow()
        await self.session.flush()
        stats.text_updated += 1
        logger.debug(
            f"Updated opinion text for decision {record.id}",
            extra={"remote_id": record.id, "text_length": len(text)},
        )
        return True
