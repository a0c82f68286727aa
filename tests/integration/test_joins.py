"""
Integration tests for join resolution on SQLite.

Tests cover:
- Paging back-references per parent
- Polymorphic joins
- Nested join paths and default limits
- Deleted and re-pointed sources
- Joins over version documents
"""

import pytest


@pytest.fixture
async def category_with_posts(store):
    category = await store.create("categories", {"id": "c1", "title": "News"})
    posts = []
    for i in range(5):
        posts.append(await store.create("posts", {"id": f"p{i}", "title": f"P{i}", "category": "c1"}))
    return category, posts


class TestJoinPagination:
    """Tests for paging join results."""

    @pytest.mark.asyncio
    async def test_first_page(self, store, category_with_posts):
        doc = await store.find_by_id("categories", "c1", joins={"posts": {"limit": 2, "page": 1}})

        assert doc["posts"] == {"docs": ["p0", "p1"], "hasNextPage": True}

    @pytest.mark.asyncio
    async def test_last_page(self, store, category_with_posts):
        doc = await store.find_by_id("categories", "c1", joins={"posts": {"limit": 2, "page": 3}})

        assert doc["posts"] == {"docs": ["p4"], "hasNextPage": False}

    @pytest.mark.asyncio
    async def test_limit_zero_returns_all(self, store, category_with_posts):
        doc = await store.find_by_id("categories", "c1", joins={"posts": {"limit": 0}})

        assert doc["posts"]["docs"] == ["p0", "p1", "p2", "p3", "p4"]
        assert doc["posts"]["hasNextPage"] is False

    @pytest.mark.asyncio
    async def test_count(self, store, category_with_posts):
        doc = await store.find_by_id(
            "categories", "c1", joins={"posts": {"limit": 1, "count": True}}
        )
        assert doc["posts"]["totalDocs"] == 5

    @pytest.mark.asyncio
    async def test_parent_without_references(self, store, category_with_posts):
        await store.create("categories", {"id": "c2", "title": "Empty"})

        page = await store.find("categories", sort="id", joins={"posts": True})

        assert [d["posts"] for d in page.docs] == [
            {"docs": ["p0", "p1", "p2", "p3", "p4"], "hasNextPage": False},
            {"docs": [], "hasNextPage": False},
        ]

    @pytest.mark.asyncio
    async def test_skipped_and_unknown_joins(self, store, category_with_posts):
        doc = await store.find_by_id(
            "categories", "c1", joins={"posts": False, "missing": True}
        )
        assert "posts" not in doc
        assert "missing" not in doc


class TestJoinShapes:
    """Tests for polymorphic and nested joins."""

    @pytest.mark.asyncio
    async def test_polymorphic(self, store):
        await store.create("categories", {"id": "c1", "title": "News"})
        await store.create("pages", {"id": "g1", "heading": "About", "category": "c1"})
        await store.create("posts", {"id": "p1", "title": "A", "category": "c1"})

        doc = await store.find_by_id("categories", "c1", joins={"related": True})

        assert doc["related"]["docs"] == [
            {"relationTo": "pages", "value": "g1"},
            {"relationTo": "posts", "value": "p1"},
        ]

    @pytest.mark.asyncio
    async def test_nested_path_and_default_limit(self, store, category_with_posts):
        doc = await store.find_by_id("categories", "c1", joins={"meta.featured": True})

        assert doc["meta"]["featured"] == {"docs": ["p0", "p1"], "hasNextPage": True}

    @pytest.mark.asyncio
    async def test_polymorphic_relationship_field(self, store):
        await store.create("users", {"id": "u1", "email": "a@b.c"})
        await store.create("posts", {"id": "p1", "author": {"relationTo": "users", "value": "u1"}})
        await store.create("posts", {"id": "p2", "author": {"relationTo": "teams", "value": "u1"}})

        doc = await store.find_one("users", joins={"posts": True})

        assert doc["posts"]["docs"] == ["p1"]


class TestJoinLiveness:
    """Join results only list live references."""

    @pytest.mark.asyncio
    async def test_deleted_source_disappears(self, store, category_with_posts):
        await store.delete_one("posts", id="p2")

        doc = await store.find_by_id("categories", "c1", joins={"posts": {"limit": 0}})

        assert doc["posts"]["docs"] == ["p0", "p1", "p3", "p4"]

    @pytest.mark.asyncio
    async def test_repointed_source_moves(self, store, category_with_posts):
        await store.create("categories", {"id": "c2", "title": "Other"})
        await store.update_one("posts", {"category": "c2"}, id="p0")

        page = await store.find("categories", sort="id", joins={"posts": {"limit": 0}})

        assert [d["posts"]["docs"] for d in page.docs] == [["p1", "p2", "p3", "p4"], ["p0"]]

    @pytest.mark.asyncio
    async def test_locale(self, store):
        await store.create("categories", {"id": "c1", "title": "News"})
        await store.create("posts", {"id": "p1", "category": "c1"}, locale="en")
        await store.create("posts", {"id": "p2", "category": "c1"}, locale="de")

        doc = await store.find_by_id("categories", "c1", joins={"posts": True}, locale="de")

        assert doc["posts"]["docs"] == ["p2"]


class TestVersionJoins:
    """Joins resolved for version documents key on the parent id."""

    @pytest.mark.asyncio
    async def test_attached_under_version(self, store):
        await store.create("posts", {"id": "p1", "title": "A", "author": {"relationTo": "users", "value": "u1"}})
        await store.create("users", {"id": "u1", "email": "a@b.c"})

        docs = [{"id": "v1", "parent": "u1", "version": {"email": "a@b.c"}}]
        await store.resolve_joins("users", docs, {"posts": True}, versions=True)

        assert docs[0]["version"]["posts"] == {"docs": ["p1"], "hasNextPage": False}
