"""Memory storage adapters: local key-value persistence and remote REST."""
from __future__ import annotations

from membank.storage.local import LocalStorageAdapter
from membank.storage.remote import RemoteStorageAdapter

__all__ = ["LocalStorageAdapter", "RemoteStorageAdapter"]
