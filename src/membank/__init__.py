"""Membank: storage-agnostic memory bank with relevance ranking and bounded retention."""
from __future__ import annotations

from membank._version import __version__
from membank.bank import MemoryBank
from membank.builder import MemoryBankBuilder
from membank.config import MembankConfig, MemoryBankConfig, StorageConfig
from membank.errors import (
    ConfigError,
    MembankError,
    MemoryNotFoundError,
    MemoryValidationError,
    StorageError,
    StorageTimeoutError,
)
from membank.events import (
    CleanupPerformed,
    MemoryAdded,
    MemoryDeleted,
    MemoryEvent,
    MemorySearched,
    MemoryUpdated,
)
from membank.logging import get_logger, setup_logging
from membank.service import MemoryService
from membank.storage import LocalStorageAdapter, RemoteStorageAdapter
from membank.types import (
    DateRange,
    Memory,
    MemoryQuery,
    MemoryStats,
    MemoryType,
    StorageStats,
)

__all__ = [
    "CleanupPerformed",
    "ConfigError",
    "DateRange",
    "LocalStorageAdapter",
    "MembankConfig",
    "MembankError",
    "Memory",
    "MemoryAdded",
    "MemoryBank",
    "MemoryBankBuilder",
    "MemoryBankConfig",
    "MemoryDeleted",
    "MemoryEvent",
    "MemoryNotFoundError",
    "MemoryQuery",
    "MemorySearched",
    "MemoryService",
    "MemoryStats",
    "MemoryType",
    "MemoryUpdated",
    "MemoryValidationError",
    "RemoteStorageAdapter",
    "StorageConfig",
    "StorageError",
    "StorageStats",
    "StorageTimeoutError",
    "__version__",
    "get_logger",
    "setup_logging",
]
