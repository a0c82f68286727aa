"""
Integration test fixtures: a MergeDoc over a temporary SQLite file.
"""

import os
import tempfile

import pytest

from dbaas.mergedoc import MergeDoc
from dbaas.mergedoc.backends.sqlite import SQLiteBackend
from dbaas.mergedoc.config import SQLiteConfig
from dbaas.mergedoc.schema.registry import CollectionRegistry
from dbaas.mergedoc.schema.types import CollectionDef, FieldDef, FieldKind, JoinDef


def build_collections() -> CollectionRegistry:
    """Blog-style collections used across the integration tests."""
    categories = CollectionDef(
        "categories",
        fields=(FieldDef("title"),),
        joins=(
            JoinDef("posts", "posts", on="category"),
            JoinDef("related", ("posts", "pages"), on="category"),
            JoinDef("meta.featured", "posts", on="category", default_limit=2),
        ),
    )
    posts = CollectionDef(
        "posts",
        fields=(
            FieldDef("title"),
            FieldDef("views", FieldKind.NUMBER),
            FieldDef("category", FieldKind.RELATIONSHIP, relation_to=("categories",)),
            FieldDef("tags", FieldKind.RELATIONSHIP, relation_to=("tags",), has_many=True),
            FieldDef("author", FieldKind.RELATIONSHIP, relation_to=("users", "teams")),
            FieldDef("location", FieldKind.POINT),
        ),
        title_field="title",
        versions=True,
    )
    pages = CollectionDef(
        "pages",
        fields=(
            FieldDef("heading"),
            FieldDef("category", FieldKind.RELATIONSHIP, relation_to=("categories",)),
        ),
        title_field="heading",
    )
    tags = CollectionDef("tags", fields=(FieldDef("name"),))
    users = CollectionDef(
        "users",
        fields=(FieldDef("email", FieldKind.EMAIL),),
        joins=(JoinDef("posts", "posts", on="author"),),
    )
    teams = CollectionDef("teams", fields=(FieldDef("name"),))
    return CollectionRegistry([categories, posts, pages, tags, users, teams])


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def sqlite_config(data_dir):
    return SQLiteConfig(path=os.path.join(data_dir, "mergedoc.db"), wal_mode=False)


@pytest.fixture
def collections():
    return build_collections()


@pytest.fixture
async def store(sqlite_config, collections):
    """Connected store in namespace 'site' over table 'docs'."""
    store = MergeDoc(SQLiteBackend(sqlite_config), collections, namespace="site", table="docs")
    await store.connect()
    yield store
    await store.close()
