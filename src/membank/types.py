"""Core data types for the memory bank.

A :class:`Memory` is one stored text record. Records travel between the
service and its storage adapters as dataclass instances and are encoded
to plain JSON-compatible dicts (ISO-8601 timestamps, camelCase access
fields) whenever they cross a persistence or network boundary.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from membank.errors import MemoryValidationError

# Metadata values must survive a JSON round trip.
Metadata = dict[str, Any]


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string, epoch number or datetime into aware UTC.

    Raises:
        MemoryValidationError: if the value cannot be interpreted as a time.
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        raise MemoryValidationError(f"Invalid timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        # JavaScript-style millisecond epochs are far larger than seconds.
        seconds = value / 1000 if value > 1e11 else value
        dt = datetime.fromtimestamp(seconds, UTC)
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError as exc:
            raise MemoryValidationError(f"Invalid timestamp: {value!r}") from exc
    else:
        raise MemoryValidationError(f"Invalid timestamp: {value!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()


# ── Memory ───────────────────────────────────────────────────────────

class MemoryType(enum.StrEnum):
    CONVERSATION = "conversation"
    FACT = "fact"
    PREFERENCE = "preference"
    CONTEXT = "context"
    SYSTEM = "system"

    @classmethod
    def parse(cls, value: str | MemoryType) -> MemoryType:
        try:
            return cls(value)
        except ValueError as exc:
            valid = ", ".join(t.value for t in cls)
            raise MemoryValidationError(
                f"Unknown memory type {value!r} (expected one of: {valid})"
            ) from exc


@dataclass(slots=True)
class Memory:
    """A single stored memory.

    Attributes:
        id: Opaque unique identifier, fixed at creation.
        content: Text body.
        type: Classification of the memory.
        timestamp: Creation time (aware UTC), never changes.
        metadata: Caller-supplied JSON-compatible attributes.
        importance: Retention priority in [0.0, 1.0].
        access_count: Number of retrievals by id.
        last_accessed: Time of the most recent retrieval by id.
    """

    id: str
    content: str
    type: MemoryType
    timestamp: datetime
    metadata: Metadata | None = None
    importance: float = 0.5
    access_count: int = 0
    last_accessed: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Encode for JSON persistence and the remote protocol."""
        data: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "type": self.type.value,
            "timestamp": format_timestamp(self.timestamp),
            "importance": self.importance,
            "accessCount": self.access_count,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        if self.last_accessed is not None:
            data["lastAccessed"] = format_timestamp(self.last_accessed)
        return data

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        *,
        default_importance: float = 0.5,
    ) -> Memory:
        """Decode a record, accepting camelCase or snake_case access fields.

        Raises:
            MemoryValidationError: if a required field is missing or any
                field holds a value of the wrong shape.
        """
        if not isinstance(data, dict):
            raise MemoryValidationError(f"Memory record must be an object, got {type(data).__name__}")

        for key in ("id", "content", "type"):
            if data.get(key) is None:
                raise MemoryValidationError(f"Memory record missing required field {key!r}")
        if not isinstance(data["id"], str) or not isinstance(data["content"], str):
            raise MemoryValidationError("Memory 'id' and 'content' must be strings")
        if not data["id"]:
            raise MemoryValidationError("Memory 'id' must not be empty")

        raw_ts = data.get("timestamp")
        timestamp = parse_timestamp(raw_ts) if raw_ts is not None else utc_now()

        raw_last = data.get("lastAccessed", data.get("last_accessed"))
        last_accessed = parse_timestamp(raw_last) if raw_last is not None else None

        importance = data.get("importance", default_importance)
        if isinstance(importance, bool) or not isinstance(importance, (int, float)):
            raise MemoryValidationError(f"Invalid importance: {importance!r}")
        if not 0.0 <= importance <= 1.0:
            raise MemoryValidationError(f"Importance {importance!r} outside [0, 1]")

        access_count = data.get("accessCount", data.get("access_count", 0))
        if isinstance(access_count, bool) or not isinstance(access_count, int) or access_count < 0:
            raise MemoryValidationError(f"Invalid access count: {access_count!r}")

        metadata = data.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise MemoryValidationError("Memory 'metadata' must be an object")

        return cls(
            id=data["id"],
            content=data["content"],
            type=MemoryType.parse(data["type"]),
            timestamp=timestamp,
            metadata=metadata,
            importance=float(importance),
            access_count=access_count,
            last_accessed=last_accessed,
        )


# Fields an update may change; id and timestamp are fixed at creation.
UPDATABLE_FIELDS = frozenset({
    "content", "type", "metadata", "importance", "access_count", "last_accessed",
})
IMMUTABLE_FIELDS = frozenset({"id", "timestamp"})

_WIRE_NAMES = {"access_count": "accessCount", "last_accessed": "lastAccessed"}


def check_update_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Drop immutable keys and reject unknown ones.

    Raises:
        MemoryValidationError: if *fields* names something that is not a
            Memory attribute.
    """
    unknown = set(fields) - UPDATABLE_FIELDS - IMMUTABLE_FIELDS
    if unknown:
        raise MemoryValidationError(f"Unknown memory fields: {', '.join(sorted(unknown))}")
    return {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}


def apply_update(memory: Memory, fields: dict[str, Any]) -> None:
    """Merge *fields* into *memory* in place, preserving id and timestamp."""
    for key, value in check_update_fields(fields).items():
        if key == "type":
            value = MemoryType.parse(value)
        elif key == "last_accessed" and value is not None:
            value = parse_timestamp(value)
        setattr(memory, key, value)


def encode_update(fields: dict[str, Any]) -> dict[str, Any]:
    """Wire form of a partial update (camelCase keys, ISO timestamps)."""
    encoded: dict[str, Any] = {}
    for key, value in check_update_fields(fields).items():
        if isinstance(value, datetime):
            value = format_timestamp(value)
        elif isinstance(value, MemoryType):
            value = value.value
        encoded[_WIRE_NAMES.get(key, key)] = value
    return encoded


# ── Queries ──────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class DateRange:
    """Inclusive timestamp bounds, normalized to aware UTC."""
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        # Naive bounds are read as UTC so they compare against stored times.
        object.__setattr__(self, "start", parse_timestamp(self.start))
        object.__setattr__(self, "end", parse_timestamp(self.end))


@dataclass(frozen=True, slots=True)
class MemoryQuery:
    """Filter, sort and limit parameters for a memory search.

    All fields are optional and combine with AND semantics. ``keywords``
    matches when the content contains any one of them (case-insensitive);
    ``metadata`` requires an exact value match for every listed key.
    """
    type: MemoryType | None = None
    min_importance: float | None = None
    keywords: tuple[str, ...] = ()
    date_range: DateRange | None = None
    metadata: Metadata = field(default_factory=dict)
    limit: int | None = None


# ── Statistics ───────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class StorageStats:
    """Size information reported by adapters that support it."""
    count: int = 0
    size: int = 0


@dataclass(frozen=True, slots=True)
class MemoryStats:
    total_memories: int
    memories_by_type: dict[MemoryType, int]
    average_importance: float
    storage_size: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalMemories": self.total_memories,
            "memoriesByType": {t.value: n for t, n in self.memories_by_type.items()},
            "averageImportance": self.average_importance,
            "storageSize": self.storage_size,
        }
