"""Typed notifications emitted by :class:`~membank.bank.MemoryBank`.

Each event kind is its own frozen dataclass; listeners register against
the event class (or its ``kind`` string) and receive instances of that
class only. Dispatch is synchronous, in registration order, and a
listener that raises is logged and skipped.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar

from membank.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from membank.types import Memory, MemoryQuery

logger = get_logger("events")


@dataclass(frozen=True, slots=True)
class MemoryAdded:
    kind: ClassVar[str] = "memoryAdded"
    memory: Memory


@dataclass(frozen=True, slots=True)
class MemoryUpdated:
    kind: ClassVar[str] = "memoryUpdated"
    memory_id: str
    changes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MemoryDeleted:
    kind: ClassVar[str] = "memoryDeleted"
    memory_id: str


@dataclass(frozen=True, slots=True)
class MemorySearched:
    """Emitted for both filtered searches and relevance lookups.

    Exactly one of ``query`` (``search_memories``) and ``context``
    (``get_relevant_memories``) is set.
    """
    kind: ClassVar[str] = "memorySearched"
    results: tuple[Memory, ...]
    query: MemoryQuery | None = None
    context: str | None = None


@dataclass(frozen=True, slots=True)
class CleanupPerformed:
    kind: ClassVar[str] = "cleanupPerformed"
    deleted_count: int


MemoryEvent = MemoryAdded | MemoryUpdated | MemoryDeleted | MemorySearched | CleanupPerformed

EVENT_TYPES: dict[str, type[MemoryEvent]] = {
    cls.kind: cls
    for cls in (MemoryAdded, MemoryUpdated, MemoryDeleted, MemorySearched, CleanupPerformed)
}

E = TypeVar("E", MemoryAdded, MemoryUpdated, MemoryDeleted, MemorySearched, CleanupPerformed)


def resolve_event_type(event: str | type[MemoryEvent]) -> type[MemoryEvent]:
    if isinstance(event, str):
        try:
            return EVENT_TYPES[event]
        except KeyError:
            raise ValueError(
                f"Unknown event {event!r} (expected one of: {', '.join(EVENT_TYPES)})"
            ) from None
    if event not in EVENT_TYPES.values():
        raise ValueError(f"Unknown event type {event!r}")
    return event


class EventEmitter:
    """Per-instance listener registry keyed by event class."""

    def __init__(self) -> None:
        self._listeners: dict[type[MemoryEvent], list[Callable[[Any], None]]] = {
            cls: [] for cls in EVENT_TYPES.values()
        }

    def on(self, event: str | type[E], listener: Callable[[E], None]) -> None:
        self._listeners[resolve_event_type(event)].append(listener)

    def off(self, event: str | type[E], listener: Callable[[E], None]) -> bool:
        """Remove the first registration of *listener*.

        Returns ``False`` if it was not registered.
        """
        listeners = self._listeners[resolve_event_type(event)]
        try:
            listeners.remove(listener)
        except ValueError:
            return False
        return True

    def listener_count(self, event: str | type[MemoryEvent]) -> int:
        return len(self._listeners[resolve_event_type(event)])

    def emit(self, event: MemoryEvent) -> None:
        # Copy so a listener can unregister itself mid-dispatch.
        for listener in list(self._listeners[type(event)]):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed on %s event", listener, event.kind)

    def clear(self) -> None:
        for listeners in self._listeners.values():
            listeners.clear()
