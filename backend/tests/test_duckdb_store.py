"""Tests for the DuckDB-backed message store."""
import threading
import time

import pytest

from app.chat.duckdb_store import DuckDBMessageStore
from app.chat.errors import StoreUnavailable


def hold_lock(store, seconds):
    """Keep the store connection busy from another thread."""
    acquired = threading.Event()

    def _hold():
        with store._lock:
            acquired.set()
            time.sleep(seconds)

    holder = threading.Thread(target=_hold)
    holder.start()
    acquired.wait()
    return holder


@pytest.fixture
def duck_store():
    """Create a DuckDB store backed by an in-memory database."""
    store = DuckDBMessageStore(db_path=":memory:")
    yield store
    store.close()


class TestDuckDBMessageStore:

    @pytest.mark.asyncio
    async def test_create_assigns_increasing_ids(self, duck_store):
        first = await duck_store.create("10", "1", "a")
        second = await duck_store.create("10", "1", "b")
        assert second.id > first.id
        assert (first.delivered, first.read) == (False, False)
        assert first.createdAt.tzinfo is not None

    @pytest.mark.asyncio
    async def test_flags_are_independent(self, duck_store):
        message = await duck_store.create("10", "1", "a")
        await duck_store.mark_read(message.id)
        stored = duck_store.get(message.id)
        assert stored.read is True
        assert stored.delivered is False

        await duck_store.mark_delivered(message.id)
        assert duck_store.get(message.id).delivered is True

    @pytest.mark.asyncio
    async def test_mark_delivered_batch(self, duck_store):
        ids = [(await duck_store.create("10", "1", str(i))).id for i in range(3)]
        await duck_store.mark_delivered_batch(ids[:2])
        await duck_store.mark_delivered_batch([])
        assert [duck_store.get(i).delivered for i in ids] == [True, True, False]

    @pytest.mark.asyncio
    async def test_history_returns_most_recent_ascending(self, duck_store):
        for i in range(5):
            await duck_store.create("10", "1", f"m{i}")
        await duck_store.create("11", "1", "other chat")

        history = await duck_store.fetch_history("10", 3)

        assert [m.body for m in history] == ["m2", "m3", "m4"]

    @pytest.mark.asyncio
    async def test_undelivered_for_filters_membership_sender_and_flag(self, duck_store):
        duck_store.add_member("10", "1")
        duck_store.add_member("10", "2")
        duck_store.add_member("10", "2")  # duplicate membership is ignored
        duck_store.add_member("20", "1")

        pending = await duck_store.create("10", "1", "for you")
        await duck_store.create("10", "2", "your own")
        done = await duck_store.create("10", "1", "already delivered")
        await duck_store.mark_delivered(done.id)
        await duck_store.create("20", "1", "not your chat")
        later = await duck_store.create(10, 1, "numeric ids")

        result = await duck_store.fetch_undelivered_for("2")

        assert [m.id for m in result] == [pending.id, later.id]

    @pytest.mark.asyncio
    async def test_fetch_members(self, duck_store):
        duck_store.add_member("10", "2")
        duck_store.add_member("10", "1")
        assert await duck_store.fetch_members("10") == ["1", "2"]
        assert await duck_store.fetch_members("404") == []

    @pytest.mark.asyncio
    async def test_closed_store_raises_store_unavailable(self):
        store = DuckDBMessageStore(db_path=":memory:")
        store.close()
        with pytest.raises(StoreUnavailable):
            await store.create("10", "1", "a")


class TestTimeouts:

    @pytest.mark.asyncio
    async def test_timed_out_create_is_never_persisted(self):
        store = DuckDBMessageStore(db_path=":memory:", timeout_seconds=0.05)
        store.add_member("10", "1")
        store.add_member("10", "2")
        holder = hold_lock(store, 0.3)

        with pytest.raises(StoreUnavailable):
            await store.create("10", "1", "ghost")

        holder.join()
        store._timeout = 0
        assert await store.fetch_undelivered_for("2") == []
        assert await store.fetch_history("10", 10) == []
        store.close()

    @pytest.mark.asyncio
    async def test_timed_out_mark_leaves_flag_unset(self):
        store = DuckDBMessageStore(db_path=":memory:", timeout_seconds=0.05)
        store._timeout = 0
        message = await store.create("10", "1", "hi")
        store._timeout = 0.05
        holder = hold_lock(store, 0.3)

        with pytest.raises(StoreUnavailable):
            await store.mark_delivered(message.id)

        holder.join()
        assert store.get(message.id).delivered is False
        store.close()

    @pytest.mark.asyncio
    async def test_calls_within_timeout_commit(self):
        store = DuckDBMessageStore(db_path=":memory:", timeout_seconds=5)
        message = await store.create("10", "1", "hi")
        await store.mark_read(message.id)
        assert store.get(message.id).read is True
        store.close()
