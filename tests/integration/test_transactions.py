"""
Integration tests for transaction staging on SQLite.

Tests cover:
- Staged writes are invisible until commit
- Commit publishes rows and indexes their edges
- Rollback discards staged rows
- No-op commit/rollback of empty, unknown and finished transactions
- Advisory expiry
"""

import pytest

from dbaas.mergedoc.store.transactions import TxStatus
from dbaas.mergedoc.timestamps import now_ms


class TestCommit:
    """Tests for begin/commit."""

    @pytest.mark.asyncio
    async def test_staged_writes_invisible_until_commit(self, store):
        tx_id = await store.begin_transaction()

        doc = await store.create("posts", {"title": "Draft", "category": "c1"}, tx_id=tx_id)

        assert await store.find_by_id("posts", doc["id"]) is None
        assert await store.find_referencing("categories", ["c1"]) == []
        assert await store.transaction_status(tx_id) is TxStatus.PENDING

        assert await store.commit_transaction(tx_id) is True

        assert (await store.get("posts", doc["id"]))["title"] == "Draft"
        refs = await store.find_referencing("categories", ["c1"])
        assert refs == [{"fromId": doc["id"], "fromType": "posts", "toId": "c1"}]
        assert await store.transaction_status(tx_id) is TxStatus.COMMITTED

    @pytest.mark.asyncio
    async def test_commit_update_and_delete(self, store):
        keep = await store.create("posts", {"title": "Keep", "category": "c1"})
        drop = await store.create("posts", {"title": "Drop", "category": "c1"})
        tx_id = await store.begin_transaction()

        await store.update_one("posts", {"category": "c2"}, id=keep["id"], tx_id=tx_id)
        await store.delete_one("posts", id=drop["id"], tx_id=tx_id)
        assert await store.count("posts") == 2

        await store.commit_transaction(tx_id)

        assert await store.count("posts") == 1
        assert (await store.get("posts", keep["id"]))["category"] == "c2"
        refs = await store.find_referencing("categories", ["c1", "c2"])
        assert refs == [{"fromId": keep["id"], "fromType": "posts", "toId": "c2"}]

    @pytest.mark.asyncio
    async def test_commit_twice_is_noop(self, store):
        tx_id = await store.begin_transaction()
        await store.create("posts", {"title": "A"}, tx_id=tx_id)

        assert await store.commit_transaction(tx_id) is True
        assert await store.commit_transaction(tx_id) is False
        assert await store.count("posts") == 1

    @pytest.mark.asyncio
    async def test_empty_transaction(self, store):
        tx_id = await store.begin_transaction()
        assert await store.commit_transaction(tx_id) is True
        assert await store.count("posts") == 0


class TestRollback:
    """Tests for rollback."""

    @pytest.mark.asyncio
    async def test_rollback_discards(self, store):
        tx_id = await store.begin_transaction()
        doc = await store.create("posts", {"title": "Never"}, tx_id=tx_id)

        assert await store.rollback_transaction(tx_id) is True

        assert await store.find_by_id("posts", doc["id"]) is None
        assert await store.transaction_status(tx_id) is TxStatus.ABORTED
        assert await store.commit_transaction(tx_id) is False
        assert await store.find_by_id("posts", doc["id"]) is None

    @pytest.mark.asyncio
    async def test_staged_rows_are_kept(self, store):
        tx_id = await store.begin_transaction()
        await store.create("posts", {"title": "Never"}, tx_id=tx_id)
        await store.rollback_transaction(tx_id)

        rows = await store.execute(
            "SELECT count(*) AS n FROM actions WHERE txId = :tx AND type = 'posts'", {"tx": tx_id}
        )
        assert rows == [{"n": 1}]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tx_id", [None, "", "unknown-transaction"])
    async def test_noop_ids(self, store, tx_id):
        assert await store.commit_transaction(tx_id) is False
        assert await store.rollback_transaction(tx_id) is False
        assert await store.transaction_status(tx_id) is None


class TestExpiry:
    """Tests for advisory transaction expiry."""

    @pytest.mark.asyncio
    async def test_list_and_abort_expired(self, store):
        short = await store.begin_transaction(timeout=5_000)
        endless = await store.begin_transaction(timeout=None)
        default = await store.begin_transaction()
        later = now_ms() + 10_000

        assert await store.list_expired_transactions(now=later) == [short]
        assert await store.list_expired_transactions(now=later + 60_000) == sorted([short, default])
        assert await store.list_expired_transactions() == []

        aborted = await store.abort_expired_transactions(now=later)

        assert aborted == [short]
        assert await store.transaction_status(short) is TxStatus.ABORTED
        assert await store.transaction_status(endless) is TxStatus.PENDING
        assert await store.list_expired_transactions(now=later) == []

    @pytest.mark.asyncio
    async def test_expired_can_still_commit(self, store):
        tx_id = await store.begin_transaction(timeout=0)
        doc = await store.create("posts", {"title": "Late"}, tx_id=tx_id)

        assert await store.commit_transaction(tx_id) is True
        assert await store.find_by_id("posts", doc["id"]) is not None
