"""Redis backend: shared state store, requires the ``redis`` extra."""
from __future__ import annotations

from membank.backends.redis.state_store import RedisStateStore

__all__ = ["RedisStateStore"]
