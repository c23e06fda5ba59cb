from __future__ import annotations


class MembankError(Exception):
    """Base exception for all membank errors."""


# ── Storage Errors ───────────────────────────────────────────────────

class StorageError(MembankError):
    """Error from a storage adapter or its backing store."""


class StorageTimeoutError(StorageError):
    """Remote request exceeded its configured timeout."""


# ── Memory Errors ────────────────────────────────────────────────────

class MemoryNotFoundError(MembankError):
    """Memory does not exist in the store."""

    def __init__(self, memory_id: str) -> None:
        super().__init__(f"Memory with id {memory_id!r} not found")
        self.memory_id = memory_id


class MemoryValidationError(MembankError):
    """Memory record or field values are invalid."""


# ── Config Errors ────────────────────────────────────────────────────

class ConfigError(MembankError):
    """Invalid or missing configuration."""
