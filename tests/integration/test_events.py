"""
Integration tests for the event log on SQLite.
"""

import pytest


class TestEventLog:
    """Tests for log_event and query_events."""

    @pytest.mark.asyncio
    async def test_log_and_query(self, store):
        event_id = await store.log_event(
            "create",
            collection="posts",
            doc_id="p1",
            user_id="u1",
            duration=12,
            input={"title": "A"},
            result={"ok": True},
        )

        page = await store.query_events()

        assert page.total_docs == 1
        event = page.docs[0]
        assert event["id"] == event_id
        assert event["type"] == "create"
        assert event["collection"] == "posts"
        assert event["docId"] == "p1"
        assert event["duration"] == 12
        assert event["input"] == {"title": "A"}
        assert event["result"] == {"ok": True}
        assert event["timestamp"].endswith("Z")

    @pytest.mark.asyncio
    async def test_filter_sort_and_page(self, store):
        ids = [await store.log_event("read", collection="posts") for _ in range(3)]
        await store.log_event("delete", collection="pages")

        reads = await store.query_events({"type": {"equals": "read"}}, sort="id", limit=2, page=2)

        assert reads.total_docs == 3
        assert [e["id"] for e in reads.docs] == [ids[2]]
        assert reads.has_prev_page

    @pytest.mark.asyncio
    async def test_payload_filters_are_ignored(self, store):
        await store.log_event("read", input={"title": "A"})
        # events have no payload column, so unknown fields fail open
        assert (await store.query_events({"title": {"equals": "B"}})).total_docs == 1

    @pytest.mark.asyncio
    async def test_negative_duration_clamped(self, store):
        await store.log_event("slow", duration=-5)
        assert (await store.query_events()).docs[0]["duration"] == 0

    @pytest.mark.asyncio
    async def test_scoped_to_namespace(self, store):
        await store.log_event("read")
        await store.drop_namespace()
        assert (await store.query_events()).total_docs == 0
