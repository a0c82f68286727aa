"""
E2E test fixtures for MergeDoc on a real ClickHouse server.

These tests need a reachable ClickHouse HTTP interface (CLICKHOUSE_URL,
default http://localhost:8123), for example:

    docker run -d -p 8123:8123 clickhouse/clickhouse-server
"""

import os
import socket
import time
import uuid
from urllib.parse import urlparse

import pytest

from dbaas.mergedoc import MergeDoc
from dbaas.mergedoc.backends.clickhouse import ClickHouseBackend
from dbaas.mergedoc.config import ClickHouseConfig, ObservabilityConfig
from dbaas.mergedoc.logging_setup import setup_logging
from dbaas.mergedoc.schema.types import CollectionDef, FieldDef, FieldKind, JoinDef

# Skip E2E tests if not in E2E mode
E2E_ENABLED = os.environ.get("MERGEDOC_CLICKHOUSE_TESTS", "0") == "1"

pytestmark = pytest.mark.skipif(
    not E2E_ENABLED,
    reason="ClickHouse tests disabled. Set MERGEDOC_CLICKHOUSE_TESTS=1 to enable.",
)


def wait_for_service(host: str, port: int, timeout: int = 60) -> bool:
    """Wait for a service to become available."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1):
                return True
        except OSError:
            time.sleep(1)
    return False


@pytest.fixture(scope="session")
def clickhouse_config() -> ClickHouseConfig:
    setup_logging(ObservabilityConfig.from_env())
    config = ClickHouseConfig.from_env()
    url = urlparse(config.url)
    assert wait_for_service(url.hostname or "localhost", url.port or 8123), "ClickHouse not ready"
    return config


@pytest.fixture
def collections():
    return [
        CollectionDef(
            "categories",
            fields=(FieldDef("title"),),
            joins=(JoinDef("posts", "posts", on="category"),),
        ),
        CollectionDef(
            "posts",
            fields=(
                FieldDef("title"),
                FieldDef("category", FieldKind.RELATIONSHIP, relation_to=("categories",)),
            ),
            title_field="title",
            versions=True,
        ),
    ]


@pytest.fixture
async def store(clickhouse_config, collections):
    """Store in a fresh namespace; its rows are dropped afterwards."""
    namespace = f"e2e_{uuid.uuid4().hex[:8]}"
    store = MergeDoc(ClickHouseBackend(clickhouse_config), collections, namespace=namespace)
    await store.connect()
    try:
        yield store
    finally:
        await store.drop_namespace()
        await store.close()
