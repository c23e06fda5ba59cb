from __future__ import annotations

import pytest
from membank.protocols import StateStoreAdapter


@pytest.fixture(params=["memory", "sqlite", "redis"])
def state_store(request):
    backends = {
        "memory": "memory_state_store",
        "sqlite": "sqlite_state_store",
        "redis": "redis_state_store",
    }
    return request.getfixturevalue(backends[request.param])


class TestStateStoreConformance:
    """Conformance tests for StateStoreAdapter implementations."""

    async def test_satisfies_protocol(self, state_store):
        assert isinstance(state_store, StateStoreAdapter)

    async def test_get_nonexistent_returns_none(self, state_store):
        result = await state_store.get("nonexistent-key")
        assert result is None

    async def test_set_and_get(self, state_store):
        await state_store.set("key1", b"value1")
        result = await state_store.get("key1")
        assert result == b"value1"

    async def test_set_overwrites(self, state_store):
        await state_store.set("key1", b"old")
        await state_store.set("key1", b"new")
        result = await state_store.get("key1")
        assert result == b"new"

    async def test_delete(self, state_store):
        await state_store.set("key1", b"value")
        await state_store.delete("key1")
        result = await state_store.get("key1")
        assert result is None

    async def test_delete_nonexistent(self, state_store):
        await state_store.delete("nonexistent")  # Should not raise

    async def test_exists(self, state_store):
        assert not await state_store.exists("key1")
        await state_store.set("key1", b"value")
        assert await state_store.exists("key1")


class TestSQLitePersistence:
    async def test_value_survives_reopen(self, sqlite_db_path):
        from membank.backends.sqlite import SQLiteStateStore

        store = await SQLiteStateStore.create(sqlite_db_path)
        await store.set("memory_bank:memories", b"[]")
        await store.close()

        reopened = await SQLiteStateStore.create(sqlite_db_path)
        try:
            assert await reopened.get("memory_bank:memories") == b"[]"
        finally:
            await reopened.close()
