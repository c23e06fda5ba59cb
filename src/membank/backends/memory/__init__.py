"""In-process backend: zero dependencies, in-memory only."""
from __future__ import annotations

from membank.backends.memory.state_store import InProcessStateStore

__all__ = ["InProcessStateStore"]
