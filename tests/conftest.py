from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio


class FakeClock:
    """Deterministic replacement for ``utc_now``."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ManualSleep:
    """Stand-in for ``asyncio.sleep`` that blocks until released.

    ``release()`` lets one pending sleep return and waits until the caller
    has come back around to the next sleep, so one release is one full
    scheduler iteration.
    """

    def __init__(self) -> None:
        self.calls: list[float] = []
        self._gate: asyncio.Queue[None] = asyncio.Queue()
        self._parked = asyncio.Event()

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self._parked.set()
        await self._gate.get()

    async def wait_parked(self) -> None:
        await asyncio.wait_for(self._parked.wait(), timeout=1.0)

    async def release(self) -> None:
        await self.wait_parked()
        self._parked.clear()
        self._gate.put_nowait(None)
        await self.wait_parked()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manual_sleep():
    return ManualSleep()


# ---------------------------------------------------------------------------
# State store fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def memory_state_store():
    from membank.backends.memory import InProcessStateStore
    return InProcessStateStore()


@pytest_asyncio.fixture
async def sqlite_db_path(tmp_path):
    return str(tmp_path / "membank" / "test.db")


@pytest_asyncio.fixture
async def sqlite_state_store(sqlite_db_path):
    from membank.backends.sqlite import SQLiteStateStore
    store = await SQLiteStateStore.create(sqlite_db_path)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def redis_state_store():
    pytest.importorskip("redis")
    from membank.backends.redis import RedisStateStore
    prefix = f"test_{uuid4().hex[:8]}:"
    try:
        store = await RedisStateStore.create("redis://localhost:6379", prefix=prefix)
    except Exception:
        pytest.skip("Redis not available")
    yield store
    with contextlib.suppress(Exception):
        async for key in store._r.scan_iter(match=f"{prefix}*"):
            await store._r.delete(key)
    await store.close()


# ---------------------------------------------------------------------------
# Adapter / service / bank fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def local_adapter(memory_state_store, clock):
    from membank.storage import LocalStorageAdapter
    return LocalStorageAdapter(memory_state_store, clock=clock)


@pytest.fixture
def bank_config(local_adapter):
    from membank.config import MemoryBankConfig
    return MemoryBankConfig(
        max_memories=100,
        enable_auto_cleanup=False,
        storage_adapter=local_adapter,
    )


@pytest.fixture
def service(bank_config, clock):
    from membank.service import MemoryService
    return MemoryService(bank_config, clock=clock)
