"""SQLite backend: persistent, zero external infrastructure."""
from __future__ import annotations

from membank.backends.sqlite.state_store import SQLiteStateStore

__all__ = ["SQLiteStateStore"]
