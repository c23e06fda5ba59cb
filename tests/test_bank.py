from __future__ import annotations

import dataclasses
import logging

import pytest
from membank import MemoryBank, MemoryBankConfig
from membank.errors import ConfigError, MemoryNotFoundError
from membank.events import (
    CleanupPerformed,
    MemoryAdded,
    MemoryDeleted,
    MemorySearched,
    MemoryUpdated,
)
from membank.storage import LocalStorageAdapter
from membank.types import MemoryQuery, MemoryType


@pytest.fixture
async def bank(bank_config, clock, manual_sleep):
    async with MemoryBank(bank_config, clock=clock, sleep=manual_sleep) as bank:
        yield bank


def record(bank: MemoryBank, event) -> list:
    received: list = []
    bank.on(event, received.append)
    return received


class TestEvents:
    async def test_lifecycle_events_in_order(self, bank):
        received: list = []
        for kind in ("memoryAdded", "memoryUpdated", "memoryDeleted"):
            bank.on(kind, received.append)

        memory = await bank.add_memory("Exam on Friday", MemoryType.FACT)
        await bank.update_memory(memory.id, {"importance": 0.9})
        await bank.delete_memory(memory.id)

        assert [type(e) for e in received] == [MemoryAdded, MemoryUpdated, MemoryDeleted]
        assert received[0].memory == memory
        assert received[1] == MemoryUpdated(memory_id=memory.id, changes={"importance": 0.9})
        assert received[2].memory_id == memory.id

    async def test_register_by_class(self, bank):
        received = record(bank, MemoryAdded)
        await bank.add_memory("x", MemoryType.FACT)
        assert len(received) == 1

    async def test_failed_operation_emits_nothing(self, bank):
        received = record(bank, MemoryDeleted)
        with pytest.raises(MemoryNotFoundError):
            await bank.delete_memory("missing")
        assert received == []

    async def test_get_memory_emits_nothing(self, bank):
        memory = await bank.add_memory("x", MemoryType.FACT)
        received: list = []
        for kind in ("memoryUpdated", "memorySearched"):
            bank.on(kind, received.append)
        await bank.get_memory(memory.id)
        assert received == []

    async def test_failing_listener_is_isolated(self, bank, caplog):
        def explode(event):
            raise RuntimeError("listener bug")

        bank.on("memoryAdded", explode)
        received = record(bank, "memoryAdded")

        with caplog.at_level(logging.ERROR, logger="membank.events"):
            memory = await bank.add_memory("still stored", MemoryType.FACT)

        assert [e.memory.id for e in received] == [memory.id]
        assert await bank.service.adapter.retrieve(memory.id) is not None
        assert "listener bug" in caplog.text

    async def test_off_removes_first_registration(self, bank):
        received: list = []
        bank.on("memoryAdded", received.append)
        bank.on("memoryAdded", received.append)

        assert bank.off("memoryAdded", received.append) is True
        await bank.add_memory("x", MemoryType.FACT)
        assert len(received) == 1

        assert bank.off(MemoryAdded, received.append) is True
        assert bank.off(MemoryAdded, received.append) is False

    async def test_unknown_event_rejected(self, bank):
        with pytest.raises(ValueError):
            bank.on("memoryExploded", print)

    async def test_search_events(self, bank):
        received = record(bank, MemorySearched)
        await bank.add_memory("Parent evening on Thursday", MemoryType.CONTEXT)

        query = MemoryQuery(keywords=("parent",))
        results = await bank.search_memories(query)
        relevant = await bank.get_relevant_memories("parent evening")

        assert len(received) == 2
        assert received[0].query == query
        assert received[0].results == tuple(results)
        assert received[0].context is None
        assert received[1].context == "parent evening"
        assert received[1].results == tuple(relevant)

    async def test_cleanup_event_always_emitted(self, bank):
        received = record(bank, CleanupPerformed)
        assert await bank.cleanup() == 0
        assert received == [CleanupPerformed(deleted_count=0)]

    async def test_listeners_are_per_instance(self, bank_config, clock):
        first = MemoryBank(bank_config, clock=clock)
        second = MemoryBank(bank_config, clock=clock)
        received = record(first, "memoryAdded")
        await second.add_memory("x", MemoryType.FACT)
        assert received == []


class TestConfiguration:
    async def test_update_config_propagates(self, bank):
        for i in range(3):
            await bank.add_memory(f"memory {i}", MemoryType.FACT)

        config = await bank.update_config(max_memories=2)

        assert config.max_memories == 2
        assert bank.config is config
        assert bank.service.config is config
        assert await bank.cleanup() == 1

    async def test_invalid_update_keeps_previous_config(self, bank):
        previous = bank.config
        with pytest.raises(ConfigError):
            await bank.update_config(max_memories=0)
        with pytest.raises(ConfigError):
            await bank.update_config(colour="blue")
        assert bank.config is previous

    async def test_swapping_adapter(self, bank, memory_state_store, clock):
        await bank.add_memory("old store", MemoryType.FACT)
        other = LocalStorageAdapter(memory_state_store, namespace="other", clock=clock)

        await bank.update_config(storage_adapter=other)

        assert (await bank.get_stats()).total_memories == 0

    async def test_config_equality_ignores_adapter(self, bank_config):
        assert dataclasses.replace(bank_config, storage_adapter=None) == bank_config


class TestAutoCleanup:
    @pytest.fixture
    def auto_config(self, bank_config):
        return dataclasses.replace(
            bank_config,
            max_memories=5,
            cleanup_threshold=0.8,
            enable_auto_cleanup=True,
            cleanup_interval_seconds=30.0,
        )

    async def test_disabled_has_no_scheduler(self, bank):
        assert bank.scheduler is None

    async def test_scheduler_evicts_over_threshold(self, auto_config, clock, manual_sleep):
        async with MemoryBank(auto_config, clock=clock, sleep=manual_sleep) as bank:
            received = record(bank, CleanupPerformed)
            for i in range(6):
                await bank.add_memory(f"memory {i}", MemoryType.FACT, importance=i / 10)

            await manual_sleep.release()

            assert received == [CleanupPerformed(deleted_count=1)]
            assert (await bank.get_stats()).total_memories == 5
            assert manual_sleep.calls[0] == 30.0

    async def test_check_below_threshold_is_noop(self, auto_config, clock, manual_sleep):
        async with MemoryBank(auto_config, clock=clock, sleep=manual_sleep) as bank:
            received = record(bank, CleanupPerformed)
            for i in range(4):
                await bank.add_memory(f"memory {i}", MemoryType.FACT)

            assert await bank.check_auto_cleanup() == 0
            assert received == []

    async def test_check_above_trigger_but_within_capacity(self, auto_config, clock):
        bank = MemoryBank(auto_config, clock=clock)
        for i in range(5):
            await bank.add_memory(f"memory {i}", MemoryType.FACT)
        assert await bank.check_auto_cleanup() == 0
        assert (await bank.get_stats()).total_memories == 5

    async def test_scheduler_needs_start(self, auto_config, clock):
        bank = MemoryBank(auto_config, clock=clock)
        assert bank.scheduler is None
        await bank.start()
        try:
            assert bank.scheduler.running
        finally:
            await bank.destroy()

    async def test_interval_change_restarts_scheduler(self, auto_config, clock, manual_sleep):
        async with MemoryBank(auto_config, clock=clock, sleep=manual_sleep) as bank:
            old = bank.scheduler
            await bank.update_config(cleanup_interval_seconds=60.0)

            assert not old.running
            assert bank.scheduler.interval_seconds == 60.0
            assert bank.scheduler.running

            await bank.update_config(enable_auto_cleanup=False)
            assert bank.scheduler is None

    async def test_enable_later_starts_scheduler(self, bank):
        await bank.update_config(enable_auto_cleanup=True)
        assert bank.scheduler is not None and bank.scheduler.running


class TestDestroy:
    async def test_destroy_stops_scheduler_and_listeners(self, bank_config, clock, manual_sleep):
        config = dataclasses.replace(bank_config, enable_auto_cleanup=True)
        bank = MemoryBank(config, clock=clock, sleep=manual_sleep)
        await bank.start()
        scheduler = bank.scheduler
        received = record(bank, "memoryAdded")

        await bank.destroy()

        assert not scheduler.running
        assert bank.scheduler is None
        await bank.add_memory("after destroy", MemoryType.FACT)
        assert received == []

    async def test_destroy_closes_owned_adapter(self, memory_state_store, clock):
        class ClosingAdapter(LocalStorageAdapter):
            closed = 0

            async def aclose(self) -> None:
                type(self).closed += 1

        adapter = ClosingAdapter(memory_state_store, clock=clock)
        config = MemoryBankConfig(enable_auto_cleanup=False, storage_adapter=adapter)

        async with MemoryBank(config, clock=clock, owns_adapter=True):
            pass
        async with MemoryBank(config, clock=clock):
            pass

        assert ClosingAdapter.closed == 1

    async def test_pass_through_operations(self, bank, clock):
        await bank.add_memory("a", MemoryType.SYSTEM)
        clock.advance(minutes=1)
        await bank.add_memory("b", MemoryType.FACT)

        assert [m.content for m in await bank.get_memories_by_type("system")] == ["a"]
        assert [m.content for m in await bank.get_recent_memories(1)] == ["b"]

        payload = await bank.export_memories()
        await bank.clear_memories()
        assert await bank.import_memories(payload) == 2
