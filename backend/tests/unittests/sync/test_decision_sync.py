import pytest

from courtsync.database.tables.judge_table import Judges
from courtsync.sync.decision_repo import DecisionRepository
from courtsync.sync.decision_sync import text_digest
from courtsync.sync.sync_models import SyncOptions


def opinion(remote_id="101", modified="2025-01-01T00:00:00Z", **fields):
    return {
        "id": remote_id,
        "date_modified": modified,
        "case_name": "Doe v. Roe",
        "author_id": "J1",
        "date_filed": "2024-12-01",
        **fields,
    }


@pytest.mark.asyncio
async def test_decision_created_and_linked_to_author(session, upstream, decision_manager):
    judge = Judges(remote_id="J1", name="Judge One")
    session.add(judge)
    await session.commit()
    upstream.serve("opinions", [opinion(plain_text="The judgment is affirmed.")])

    stats = await decision_manager.run()

    decision = await DecisionRepository(session).get_by_remote_id("101")
    assert decision.judge_id == judge.id
    assert decision.case_name == "Doe v. Roe"
    assert decision.text == "The judgment is affirmed."
    assert decision.text_hash == text_digest("The judgment is affirmed.")
    assert decision.status == "published"
    assert stats.created == 1
    assert stats.text_updated == 1


@pytest.mark.asyncio
async def test_text_change_is_applied_even_when_metadata_is_not_newer(
    session, upstream, decision_manager
):
    upstream.serve("opinions", [opinion(plain_text="Original text.")])
    await decision_manager.run()

    upstream.serve("opinions", [opinion(plain_text="Corrected text.")])
    stats = await decision_manager.run()

    decision = await DecisionRepository(session).get_by_remote_id("101")
    assert decision.text == "Corrected text."
    assert stats.skipped == 1
    assert stats.text_updated == 1


@pytest.mark.asyncio
async def test_unchanged_text_is_not_rewritten(session, upstream, decision_manager):
    upstream.serve("opinions", [opinion(plain_text="Same text.")])
    await decision_manager.run()
    first_synced = (await DecisionRepository(session).get_by_remote_id("101")).text_synced_at

    upstream.serve("opinions", [opinion(modified="2025-02-01T00:00:00Z", plain_text="Same text.")])
    stats = await decision_manager.run()

    decision = await DecisionRepository(session).get_by_remote_id("101")
    assert stats.updated == 1
    assert stats.text_updated == 0
    assert decision.text_synced_at == first_synced


@pytest.mark.asyncio
async def test_text_fetched_from_detail_when_list_omits_it(session, upstream, decision_manager):
    upstream.serve("opinions", [opinion()])
    upstream.records["opinions"]["101"] = opinion(html="<p>Reversed.</p>")

    stats = await decision_manager.run()

    decision = await DecisionRepository(session).get_by_remote_id("101")
    assert decision.text == "<p>Reversed.</p>"
    assert stats.text_updated == 1


@pytest.mark.asyncio
async def test_missing_detail_is_noted(session, upstream, decision_manager):
    upstream.serve("opinions", [opinion()])

    stats = await decision_manager.run()

    decision = await DecisionRepository(session).get_by_remote_id("101")
    assert decision.text is None
    assert stats.created == 1
    assert stats.notes == ["Opinion text for 101 not available upstream"]


@pytest.mark.asyncio
async def test_unpublished_status_and_filters(session, upstream, decision_manager):
    upstream.serve("opinions", [opinion(precedential_status="Unpublished", plain_text="x")])

    await decision_manager.run(
        SyncOptions(modified_since="2025-01-01", filters={"days_since_last": 7, "author": "J1"})
    )

    decision = await DecisionRepository(session).get_by_remote_id("101")
    assert decision.status == "unpublished"
    _, kwargs = upstream.calls[0]
    assert kwargs["author"] == "J1"
    assert kwargs["filed_after"] is not None
    assert kwargs["date_modified__gte"] == "2025-01-01"


@pytest.mark.asyncio
async def test_older_remote_copy_leaves_text_and_metadata_alone(
    session, upstream, decision_manager
):
    upstream.serve(
        "opinions",
        [opinion(modified="2025-06-01T00:00:00Z", plain_text="Newer text.", disposition="Reversed")],
    )
    await decision_manager.run()

    upstream.serve(
        "opinions",
        [opinion(modified="2025-01-01T00:00:00Z", plain_text="Stale text.", disposition="Affirmed")],
    )
    stats = await decision_manager.run()

    decision = await DecisionRepository(session).get_by_remote_id("101")
    assert decision.text == "Newer text."
    assert decision.disposition == "Reversed"
    assert stats.skipped == 1
    assert stats.text_updated == 0


@pytest.mark.asyncio
async def test_unchanged_rerun_does_not_refetch_detail(session, upstream, decision_manager):
    listing = [opinion(remote_id=str(remote_id)) for remote_id in range(101, 106)]
    for record in listing:
        upstream.records["opinions"][record["id"]] = {**record, "plain_text": "Body."}
    upstream.serve("opinions", listing)
    await decision_manager.run()

    upstream.calls.clear()
    stats = await decision_manager.run()

    detail_calls = [kwargs for collection, kwargs in upstream.calls if "id" in kwargs]
    assert detail_calls == []
    assert stats.skipped == 5


@pytest.mark.asyncio
async def test_detail_is_refetched_for_updated_rows(session, upstream, decision_manager):
    upstream.records["opinions"]["101"] = opinion(plain_text="First.")
    upstream.serve("opinions", [opinion()])
    await decision_manager.run()

    upstream.records["opinions"]["101"] = opinion(plain_text="Second.")
    upstream.serve("opinions", [opinion(modified="2025-03-01T00:00:00Z")])
    stats = await decision_manager.run()

    decision = await DecisionRepository(session).get_by_remote_id("101")
    assert decision.text == "Second."
    assert stats.updated == 1
    assert stats.text_updated == 1
