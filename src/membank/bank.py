from __future__ import annotations

import asyncio
import dataclasses
from typing import TYPE_CHECKING, Any

from membank.errors import ConfigError
from membank.events import (
    CleanupPerformed,
    EventEmitter,
    MemoryAdded,
    MemoryDeleted,
    MemorySearched,
    MemoryUpdated,
)
from membank.logging import get_logger
from membank.scheduler import CleanupScheduler
from membank.service import MemoryService
from membank.types import utc_now

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime
    from types import TracebackType

    from membank.config import MemoryBankConfig
    from membank.events import E, MemoryEvent
    from membank.types import Memory, MemoryQuery, MemoryStats, MemoryType, Metadata

logger = get_logger("bank")


class MemoryBank:
    """Public entry point: memory operations plus events and auto-cleanup.

    Usage::

        config = MemoryBankConfig(storage_adapter=LocalStorageAdapter(store))
        async with MemoryBank(config) as bank:
            bank.on("memoryAdded", lambda event: print(event.memory.id))
            await bank.add_memory("Exam on Friday", MemoryType.FACT)

    Each instance owns its configuration, listener registry and cleanup
    scheduler. The scheduler runs only between :meth:`start` and
    :meth:`destroy` (or inside ``async with``) and only while
    ``enable_auto_cleanup`` is set.
    """

    def __init__(
        self,
        config: MemoryBankConfig,
        *,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        owns_adapter: bool = False,
    ) -> None:
        self._config = config
        self._service = MemoryService(config, clock=clock)
        self._events = EventEmitter()
        self._sleep = sleep
        self._scheduler: CleanupScheduler | None = None
        self._started = False
        self._owns_adapter = owns_adapter

    @property
    def config(self) -> MemoryBankConfig:
        return self._config

    @property
    def service(self) -> MemoryService:
        return self._service

    @property
    def scheduler(self) -> CleanupScheduler | None:
        return self._scheduler

    # ── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        self._started = True
        await self._restart_scheduler()

    async def destroy(self) -> None:
        """Stop the scheduler and drop every listener.

        An adapter handed over by the builder (``owns_adapter``) is closed
        as well.
        """
        self._started = False
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        self._events.clear()

        if self._owns_adapter:
            adapter = self._service.adapter
            closer = getattr(adapter, "aclose", None) or getattr(adapter, "close", None)
            if closer is not None:
                await closer()
            self._owns_adapter = False

    async def __aenter__(self) -> MemoryBank:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.destroy()

    async def update_config(self, **changes: Any) -> MemoryBankConfig:
        """Merge *changes* into the configuration and apply them.

        Raises:
            ConfigError: for unknown keys or invalid values; the current
                configuration stays in place.
        """
        try:
            config = dataclasses.replace(self._config, **changes)
        except TypeError as exc:
            raise ConfigError(str(exc)) from exc

        self._service.update_config(config)
        self._config = config
        if self._started:
            await self._restart_scheduler()
        return config

    async def _restart_scheduler(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()
            self._scheduler = None
        if not self._config.enable_auto_cleanup:
            return
        self._scheduler = CleanupScheduler(
            self.check_auto_cleanup,
            self._config.cleanup_interval_seconds,
            sleep=self._sleep,
        )
        self._scheduler.start()

    async def check_auto_cleanup(self) -> int:
        """Run cleanup when the collection has grown past the threshold."""
        stats = await self._service.get_stats()
        if stats.total_memories <= self._config.cleanup_trigger:
            return 0
        logger.info(
            "Memory count %d over cleanup threshold %.0f",
            stats.total_memories,
            self._config.cleanup_trigger,
        )
        return await self.cleanup()

    # ── Events ──────────────────────────────────────────────────────

    def on(self, event: str | type[E], listener: Callable[[E], None]) -> None:
        self._events.on(event, listener)

    def off(self, event: str | type[E], listener: Callable[[E], None]) -> bool:
        return self._events.off(event, listener)

    def _emit(self, event: MemoryEvent) -> None:
        self._events.emit(event)

    # ── Memory operations ───────────────────────────────────────────

    async def add_memory(
        self,
        content: str,
        type: MemoryType | str,
        metadata: Metadata | None = None,
        *,
        importance: float | None = None,
    ) -> Memory:
        memory = await self._service.add_memory(
            content, type, metadata, importance=importance,
        )
        self._emit(MemoryAdded(memory=memory))
        return memory

    async def get_memory(self, memory_id: str) -> Memory | None:
        return await self._service.get_memory(memory_id)

    async def search_memories(self, query: MemoryQuery) -> list[Memory]:
        results = await self._service.search_memories(query)
        self._emit(MemorySearched(results=tuple(results), query=query))
        return results

    async def update_memory(self, memory_id: str, fields: dict[str, Any]) -> None:
        await self._service.update_memory(memory_id, fields)
        self._emit(MemoryUpdated(memory_id=memory_id, changes=dict(fields)))

    async def delete_memory(self, memory_id: str) -> None:
        await self._service.delete_memory(memory_id)
        self._emit(MemoryDeleted(memory_id=memory_id))

    async def get_relevant_memories(self, context: str, limit: int = 10) -> list[Memory]:
        results = await self._service.get_relevant_memories(context, limit)
        self._emit(MemorySearched(results=tuple(results), context=context))
        return results

    async def cleanup(self) -> int:
        deleted = await self._service.cleanup()
        self._emit(CleanupPerformed(deleted_count=deleted))
        return deleted

    async def get_stats(self) -> MemoryStats:
        return await self._service.get_stats()

    async def get_memories_by_type(self, type: MemoryType | str) -> list[Memory]:
        return await self._service.get_memories_by_type(type)

    async def get_recent_memories(self, limit: int = 20) -> list[Memory]:
        return await self._service.get_recent_memories(limit)

    async def clear_memories(self) -> None:
        await self._service.clear_memories()

    async def export_memories(self) -> str:
        return await self._service.export_memories()

    async def import_memories(self, payload: str | bytes) -> int:
        return await self._service.import_memories(payload)
