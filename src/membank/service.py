from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING, Any

from membank.errors import ConfigError, MemoryNotFoundError, MemoryValidationError, StorageError
from membank.logging import get_logger
from membank.protocols.storage import SupportsStorageStats
from membank.types import (
    Memory,
    MemoryQuery,
    MemoryStats,
    MemoryType,
    utc_now,
)
from membank.utils import (
    context_words,
    relevance_score,
    retention_score,
    validate_importance,
    validate_metadata,
    validate_update,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from membank.config import MemoryBankConfig
    from membank.protocols.storage import MemoryStorageAdapter
    from membank.types import Metadata

logger = get_logger("service")


class MemoryService:
    """Business logic for memories on top of a storage adapter.

    The adapter is taken from ``config.storage_adapter``; replacing the
    config with :meth:`update_config` rebinds it. ``clock`` supplies the
    current time for timestamps and age-based scoring.
    """

    def __init__(
        self,
        config: MemoryBankConfig,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._adapter = self._require_adapter(config)
        self._clock = clock

    @staticmethod
    def _require_adapter(config: MemoryBankConfig) -> MemoryStorageAdapter:
        if config.storage_adapter is None:
            raise ConfigError("MemoryBankConfig.storage_adapter must be set")
        return config.storage_adapter

    @property
    def config(self) -> MemoryBankConfig:
        return self._config

    @property
    def adapter(self) -> MemoryStorageAdapter:
        return self._adapter

    def update_config(self, config: MemoryBankConfig) -> None:
        self._adapter = self._require_adapter(config)
        self._config = config

    # ── CRUD ────────────────────────────────────────────────────────

    async def add_memory(
        self,
        content: str,
        type: MemoryType | str,
        metadata: Metadata | None = None,
        *,
        importance: float | None = None,
    ) -> Memory:
        if not isinstance(content, str):
            raise MemoryValidationError("Memory content must be a string")

        memory = Memory(
            id=uuid.uuid4().hex,
            content=content,
            type=MemoryType.parse(type),
            timestamp=self._clock(),
            metadata=validate_metadata(metadata),
            importance=(
                self._config.default_importance
                if importance is None
                else validate_importance(importance)
            ),
            access_count=0,
        )
        await self._adapter.store(memory)
        logger.debug("Added %s memory %s", memory.type.value, memory.id)
        return memory

    async def get_memory(self, memory_id: str) -> Memory | None:
        """Fetch a memory and record the access.

        Returns ``None`` when the memory does not exist, including when it
        disappears between the lookup and the access-tracking write.
        """
        memory = await self._adapter.retrieve(memory_id)
        if memory is None:
            return None

        accessed_at = self._clock()
        try:
            await self.update_memory(memory_id, {
                "access_count": memory.access_count + 1,
                "last_accessed": accessed_at,
            })
        except MemoryNotFoundError:
            return None

        refreshed = await self._adapter.retrieve(memory_id)
        if refreshed is not None:
            return refreshed
        memory.access_count += 1
        memory.last_accessed = accessed_at
        return memory

    async def search_memories(self, query: MemoryQuery) -> list[Memory]:
        return await self._adapter.search(query)

    async def update_memory(self, memory_id: str, fields: dict[str, Any]) -> None:
        """Apply a partial update.

        ``id`` and ``timestamp`` are ignored. When ``access_count`` is not
        part of *fields*, the stored value is carried over explicitly so
        backends that replace rather than merge cannot reset it.

        Raises:
            MemoryNotFoundError: if the memory does not exist.
            MemoryValidationError: for unknown fields or invalid values.
        """
        changes = validate_update(fields)
        if "access_count" not in changes:
            existing = await self._adapter.retrieve(memory_id)
            if existing is not None:
                changes["access_count"] = existing.access_count

        await self._adapter.update(memory_id, changes)

    async def delete_memory(self, memory_id: str) -> None:
        await self._adapter.delete(memory_id)

    async def clear_memories(self) -> None:
        await self._adapter.clear()

    # ── Ranking ─────────────────────────────────────────────────────

    async def get_relevant_memories(self, context: str, limit: int = 10) -> list[Memory]:
        """Rank stored memories by keyword relevance to *context*."""
        words = context_words(context)
        if not words or limit <= 0:
            return []

        now = self._clock()
        scored = [
            (relevance_score(memory, words, now), memory)
            for memory in await self._adapter.get_all()
        ]
        scored = [pair for pair in scored if pair[0] > 0]
        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [memory for _, memory in scored[:limit]]

    async def get_memories_by_type(self, type: MemoryType | str) -> list[Memory]:
        return await self._adapter.search(MemoryQuery(type=MemoryType.parse(type), limit=100))

    async def get_recent_memories(self, limit: int = 20) -> list[Memory]:
        memories = await self._adapter.get_all()
        memories.sort(key=lambda m: m.timestamp, reverse=True)
        return memories[:limit]

    # ── Retention ───────────────────────────────────────────────────

    async def cleanup(self) -> int:
        """Evict the lowest-retention memories until at most
        ``max_memories`` remain.

        Returns:
            Number of memories deleted (0 when already within capacity).
        """
        memories = await self._adapter.get_all()
        capacity = self._config.max_memories
        if len(memories) <= capacity:
            return 0

        now = self._clock()
        memories.sort(key=lambda m: retention_score(m, now))
        evict = memories[:len(memories) - capacity]

        deleted = 0
        for memory in evict:
            try:
                await self._adapter.delete(memory.id)
            except MemoryNotFoundError:
                logger.debug("Memory %s already gone during cleanup", memory.id)
                continue
            deleted += 1

        logger.info("Cleanup evicted %d of %d memories", deleted, len(memories))
        return deleted

    async def get_stats(self) -> MemoryStats:
        memories = await self._adapter.get_all()

        by_type: dict[MemoryType, int] = {}
        for memory in memories:
            by_type[memory.type] = by_type.get(memory.type, 0) + 1

        average = (
            sum(m.importance for m in memories) / len(memories)
            if memories else 0.0
        )

        storage_size: int | None = None
        if isinstance(self._adapter, SupportsStorageStats):
            try:
                storage_size = (await self._adapter.get_stats()).size
            except StorageError:
                logger.warning("Failed to get storage stats", exc_info=True)

        return MemoryStats(
            total_memories=len(memories),
            memories_by_type=by_type,
            average_importance=average,
            storage_size=storage_size,
        )

    # ── Bulk transfer ───────────────────────────────────────────────

    async def export_memories(self) -> str:
        memories = await self._adapter.get_all()
        return json.dumps([m.to_dict() for m in memories], indent=2)

    async def import_memories(self, payload: str | bytes) -> int:
        """Store every well-formed record of a JSON export.

        Malformed records (missing ``id``, ``type`` or non-empty ``content``,
        or with invalid values) are logged and skipped, as are records the adapter
        fails to store.

        Returns:
            Number of records stored.

        Raises:
            StorageError: if *payload* is not a JSON array at all.
        """
        try:
            records = json.loads(payload)
        except (TypeError, ValueError) as exc:
            raise StorageError("Invalid JSON data for import") from exc
        if not isinstance(records, list):
            raise StorageError("Import data must be a JSON array of memories")

        imported = 0
        for index, record in enumerate(records):
            try:
                memory = Memory.from_dict(
                    record, default_importance=self._config.default_importance,
                )
            except MemoryValidationError as exc:
                logger.warning("Skipping invalid memory at index %d: %s", index, exc)
                continue
            if not memory.content:
                logger.warning("Skipping memory %s at index %d: empty content", memory.id, index)
                continue

            try:
                await self._adapter.store(memory)
            except StorageError:
                logger.exception("Failed to import memory %s", memory.id)
                continue
            imported += 1

        logger.info("Imported %d of %d memories", imported, len(records))
        return imported
