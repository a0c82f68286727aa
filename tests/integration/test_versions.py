"""
Integration tests for version history on SQLite.

Tests cover:
- Creating and listing versions
- latest true/false computed per parent
- parent / autosave / version.<path> filters
- update_version and delete_versions
- Version rows never create edges
"""

import pytest

from dbaas.mergedoc.errors import CollectionNotFoundError, NotFoundError


@pytest.fixture
async def history(store):
    """Three versions of p1 and one of p2, oldest first."""
    created = [
        await store.create_version("posts", "p1", {"title": "One", "category": "c1"}),
        await store.create_version("posts", "p1", {"title": "Two"}, autosave=True),
        await store.create_version("posts", "p1", {"title": "Three"}),
        await store.create_version("posts", "p2", {"title": "Other"}),
    ]
    return created


class TestCreateAndFind:
    """Tests for create_version and find_versions."""

    @pytest.mark.asyncio
    async def test_create_version_shape(self, store):
        version = await store.create_version(
            "posts", "p1", {"title": "One"}, autosave=True, user_id="u1"
        )

        assert version["parent"] == "p1"
        assert version["autosave"] is True
        assert version["version"] == {"title": "One"}
        assert version["createdAt"] == version["updatedAt"]

    @pytest.mark.asyncio
    async def test_find_newest_first(self, store, history):
        page = await store.find_versions("posts", where={"parent": {"equals": "p1"}})

        assert [d["version"]["title"] for d in page.docs] == ["Three", "Two", "One"]
        assert page.total_docs == 3
        assert [d["autosave"] for d in page.docs] == [False, True, False]

    @pytest.mark.asyncio
    async def test_stored_under_versions_type(self, store, history):
        rows = await store.execute(
            "SELECT DISTINCT type FROM docs WHERE ns = :ns", {"ns": store.namespace}
        )
        assert rows == [{"type": "_versions_posts"}]
        assert await store.count("posts") == 0

    @pytest.mark.asyncio
    async def test_latest_true(self, store, history):
        page = await store.find_versions("posts", where={"latest": {"equals": True}}, sort="createdAt")

        assert [d["version"]["title"] for d in page.docs] == ["Three", "Other"]
        assert page.total_docs == 2

    @pytest.mark.asyncio
    async def test_latest_false(self, store, history):
        page = await store.find_versions("posts", where={"latest": "false"})
        assert [d["version"]["title"] for d in page.docs] == ["Two", "One"]

    @pytest.mark.asyncio
    async def test_latest_with_other_filters(self, store, history):
        count = await store.count_versions(
            "posts", {"latest": True, "parent": {"equals": "p1"}}
        )
        assert count == 1

    @pytest.mark.asyncio
    async def test_autosave_and_payload_filters(self, store, history):
        autosaves = await store.find_versions("posts", where={"autosave": {"equals": True}})
        by_title = await store.find_versions("posts", where={"version.title": {"equals": "One"}})

        assert [d["version"]["title"] for d in autosaves.docs] == ["Two"]
        assert [d["id"] for d in by_title.docs] == [history[0]["id"]]

    @pytest.mark.asyncio
    async def test_pagination(self, store, history):
        page = await store.find_versions("posts", limit=3, page=2)
        assert len(page.docs) == 1
        assert page.total_pages == 2

    @pytest.mark.asyncio
    async def test_unregistered_collection(self, store):
        with pytest.raises(CollectionNotFoundError):
            await store.create_version("comments", "x", {})

    @pytest.mark.asyncio
    async def test_versions_do_not_index_edges(self, store, history):
        assert await store.find_referencing("categories", ["c1"]) == []


class TestUpdateAndDelete:
    """Tests for update_version and delete_versions."""

    @pytest.mark.asyncio
    async def test_update_version_merges(self, store, history):
        target = history[1]

        updated = await store.update_version("posts", {"summary": "edited"}, id=target["id"])

        assert updated["id"] == target["id"]
        assert updated["parent"] == "p1"
        assert updated["autosave"] is True
        assert updated["version"] == {"title": "Two", "summary": "edited"}
        page = await store.find_versions("posts", where={"id": {"equals": target["id"]}})
        assert page.docs[0]["version"] == {"title": "Two", "summary": "edited"}
        assert page.total_docs == 1

    @pytest.mark.asyncio
    async def test_update_version_by_where(self, store, history):
        updated = await store.update_version(
            "posts", {"title": "Renamed"}, where={"parent": {"equals": "p2"}}
        )
        assert updated["version"]["title"] == "Renamed"
        assert updated["parent"] == "p2"

    @pytest.mark.asyncio
    async def test_update_missing_version(self, store):
        with pytest.raises(NotFoundError):
            await store.update_version("posts", {"title": "x"}, id="nope")

    @pytest.mark.asyncio
    async def test_delete_versions(self, store, history):
        deleted = await store.delete_versions("posts", {"parent": {"equals": "p1"}})

        assert deleted == 3
        assert await store.count_versions("posts") == 1

    @pytest.mark.asyncio
    async def test_delete_old_versions_keeps_latest(self, store, history):
        deleted = await store.delete_versions("posts", {"latest": False})

        assert deleted == 2
        remaining = await store.find_versions("posts", sort="createdAt")
        assert [d["version"]["title"] for d in remaining.docs] == ["Three", "Other"]

    @pytest.mark.asyncio
    async def test_deleting_latest_promotes_previous(self, store, history):
        await store.delete_versions("posts", {"id": {"equals": history[2]["id"]}})

        latest = await store.find_versions(
            "posts", where={"latest": True, "parent": {"equals": "p1"}}
        )
        assert [d["version"]["title"] for d in latest.docs] == ["Two"]
