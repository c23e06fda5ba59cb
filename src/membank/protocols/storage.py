from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from membank.types import Memory, MemoryQuery, StorageStats


@runtime_checkable
class MemoryStorageAdapter(Protocol):
    """Persistence contract every memory backing store implements.

    ``retrieve`` reports a missing record as ``None``; ``update`` and
    ``delete`` raise :class:`~membank.errors.MemoryNotFoundError` instead.
    """

    async def store(self, memory: Memory) -> None: ...
    async def retrieve(self, memory_id: str) -> Memory | None: ...
    async def search(self, query: MemoryQuery) -> list[Memory]: ...
    async def update(self, memory_id: str, fields: dict[str, Any]) -> None: ...
    async def delete(self, memory_id: str) -> None: ...
    async def get_all(self) -> list[Memory]: ...
    async def clear(self) -> None: ...


@runtime_checkable
class SupportsStorageStats(Protocol):
    """Optional capability: report the size of the backing collection."""

    async def get_stats(self) -> StorageStats: ...


@runtime_checkable
class SupportsHealthCheck(Protocol):
    """Optional capability: cheap liveness probe of the backing store."""

    async def health_check(self) -> bool: ...
