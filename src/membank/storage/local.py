from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

from membank.errors import MemoryNotFoundError, MemoryValidationError, StorageError
from membank.logging import get_logger
from membank.types import (
    Memory,
    StorageStats,
    apply_update,
    format_timestamp,
    utc_now,
)
from membank.utils import matches_query, search_rank, validate_update

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime

    from membank.protocols.state_store import StateStoreAdapter
    from membank.types import MemoryQuery

logger = get_logger("storage.local")


class LocalStorageAdapter:
    """Memory storage on top of a host-native key-value state store.

    The whole collection lives as one JSON array under
    ``<namespace>:memories``; a small diagnostics record (last update,
    byte size, count) is kept under ``<namespace>:meta``. Every write is
    a read-modify-write of the full collection, serialized per adapter
    instance by an ``asyncio.Lock``. Two adapter instances sharing one
    state store are not coordinated.
    """

    def __init__(
        self,
        state_store: StateStoreAdapter,
        *,
        namespace: str = "memory_bank",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = state_store
        self._namespace = namespace
        self._clock = clock
        self._write_lock = asyncio.Lock()

    @property
    def collection_key(self) -> str:
        return f"{self._namespace}:memories"

    @property
    def meta_key(self) -> str:
        return f"{self._namespace}:meta"

    # ── Serialization ───────────────────────────────────────────────

    async def _load(self) -> list[Memory]:
        raw = await self._store.get(self.collection_key)
        if raw is None:
            return []
        try:
            records = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise StorageError(f"Corrupt memory collection at {self.collection_key!r}") from exc
        if not isinstance(records, list):
            raise StorageError(f"Memory collection at {self.collection_key!r} is not a list")
        memories: list[Memory] = []
        for index, record in enumerate(records):
            try:
                memories.append(Memory.from_dict(record))
            except MemoryValidationError as exc:
                logger.warning(
                    "Skipping invalid record %d in %r: %s", index, self.collection_key, exc,
                )
        return memories

    async def _save(self, memories: list[Memory]) -> None:
        try:
            payload = json.dumps([m.to_dict() for m in memories]).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise StorageError(f"Failed to serialize memory collection: {exc}") from exc

        await self._store.set(self.collection_key, payload)
        meta = {
            "lastUpdated": format_timestamp(self._clock()),
            "size": len(payload),
            "count": len(memories),
        }
        await self._store.set(self.meta_key, json.dumps(meta).encode("utf-8"))

    # ── Reads (degrade to empty on failure) ─────────────────────────

    async def retrieve(self, memory_id: str) -> Memory | None:
        try:
            memories = await self._load()
        except StorageError:
            logger.exception("Failed to retrieve memory %s", memory_id)
            return None
        for memory in memories:
            if memory.id == memory_id:
                return memory
        return None

    async def search(self, query: MemoryQuery) -> list[Memory]:
        try:
            memories = await self._load()
        except StorageError:
            logger.exception("Failed to search memories")
            return []
        results = [m for m in memories if matches_query(m, query)]
        results.sort(key=search_rank, reverse=True)
        if query.limit is not None:
            results = results[:query.limit]
        return results

    async def get_all(self) -> list[Memory]:
        try:
            return await self._load()
        except StorageError:
            logger.exception("Failed to load memory collection")
            return []

    # ── Writes (propagate failures) ─────────────────────────────────

    async def store(self, memory: Memory) -> None:
        async with self._write_lock:
            memories = await self._load()
            for i, existing in enumerate(memories):
                if existing.id == memory.id:
                    memories[i] = memory
                    break
            else:
                memories.append(memory)
            await self._save(memories)

    async def update(self, memory_id: str, fields: dict[str, Any]) -> None:
        fields = validate_update(fields)
        async with self._write_lock:
            memories = await self._load()
            for memory in memories:
                if memory.id == memory_id:
                    apply_update(memory, fields)
                    break
            else:
                raise MemoryNotFoundError(memory_id)
            await self._save(memories)

    async def delete(self, memory_id: str) -> None:
        async with self._write_lock:
            memories = await self._load()
            remaining = [m for m in memories if m.id != memory_id]
            if len(remaining) == len(memories):
                raise MemoryNotFoundError(memory_id)
            await self._save(remaining)

    async def clear(self) -> None:
        async with self._write_lock:
            await self._store.delete(self.collection_key)
            await self._store.delete(self.meta_key)

    # ── Diagnostics ─────────────────────────────────────────────────

    async def get_stats(self) -> StorageStats:
        raw = await self._store.get(self.meta_key)
        if raw is None:
            return StorageStats()
        try:
            meta = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.warning("Ignoring corrupt metadata record at %s", self.meta_key)
            return StorageStats()
        return StorageStats(count=int(meta.get("count", 0)), size=int(meta.get("size", 0)))
