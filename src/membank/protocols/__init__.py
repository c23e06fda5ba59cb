"""Protocol definitions for pluggable storage."""
from __future__ import annotations

from membank.protocols.state_store import StateStoreAdapter
from membank.protocols.storage import (
    MemoryStorageAdapter,
    SupportsHealthCheck,
    SupportsStorageStats,
)

__all__ = [
    "MemoryStorageAdapter",
    "StateStoreAdapter",
    "SupportsHealthCheck",
    "SupportsStorageStats",
]
