from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class StateStoreAdapter(Protocol):
    """Host-native persistent key-value store used by the local adapter."""

    async def get(self, key: str) -> bytes | None: ...
    async def set(self, key: str, value: bytes) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def exists(self, key: str) -> bool: ...
