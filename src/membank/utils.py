"""Pure helpers for scoring, keyword extraction, similarity and validation.

Nothing in this module performs I/O or holds state; the service and the
local storage adapter share the scoring functions defined here so that
ranking is identical wherever it is computed.
"""
from __future__ import annotations

import json
import re
from collections import Counter
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from membank.errors import MemoryValidationError
from membank.types import (
    Memory,
    MemoryQuery,
    MemoryType,
    check_update_fields,
    parse_timestamp,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from membank.types import Metadata

SECONDS_PER_DAY = 86_400.0

# Relevance tuning
RELEVANCE_TYPE_BOOST = 1.5
RELEVANCE_RECENCY_WINDOW_DAYS = 30.0
ACCESS_WEIGHT = 0.1
RELEVANCE_MAX_ACCESS_BONUS = 0.5
MIN_CONTEXT_WORD_LENGTH = 3

_BOOSTED_TYPES = frozenset({MemoryType.CONTEXT, MemoryType.FACT})

_TYPE_IMPORTANCE: dict[MemoryType, float] = {
    MemoryType.SYSTEM: 0.9,
    MemoryType.CONTEXT: 0.7,
    MemoryType.FACT: 0.6,
    MemoryType.PREFERENCE: 0.5,
    MemoryType.CONVERSATION: 0.3,
}

_IMPORTANT_KEYWORDS = ("important", "critical", "urgent", "remember", "key")

_STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "must", "can", "this", "that", "these", "those",
})

# Checked in order; the first hint found decides the type.
_TYPE_HINTS: tuple[tuple[MemoryType, tuple[str, ...]], ...] = (
    (MemoryType.CONVERSATION, ("conversation", "chat")),
    (MemoryType.FACT, ("fact", "information")),
    (MemoryType.PREFERENCE, ("preference", "like", "want")),
    (MemoryType.CONTEXT, ("context", "background")),
    (MemoryType.SYSTEM, ("system", "setting")),
)

_PUNCTUATION = re.compile(r"[^\w\s]")


# ── Time ─────────────────────────────────────────────────────────────

def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from *start* to *end*, never negative."""
    return max(0.0, (end - start).total_seconds() / SECONDS_PER_DAY)


# ── Scoring ──────────────────────────────────────────────────────────

def context_words(context: str) -> list[str]:
    """Lowercased whitespace tokens of *context*, minus words of <= 2 chars."""
    return [w for w in context.lower().split() if len(w) >= MIN_CONTEXT_WORD_LENGTH]


def relevance_score(memory: Memory, words: Iterable[str], now: datetime) -> float:
    """Score how relevant *memory* is to a tokenized query context.

    Substring occurrences of each word in the content are weighted by
    importance, then boosted for context/fact memories, for recency
    (linear decay to zero over 30 days) and for access frequency
    (capped at +50%).
    """
    content = memory.content.lower()
    score = sum(content.count(word) * memory.importance for word in words)

    if memory.type in _BOOSTED_TYPES:
        score *= RELEVANCE_TYPE_BOOST

    age = days_between(memory.timestamp, now)
    score *= 1 + max(0.0, 1 - age / RELEVANCE_RECENCY_WINDOW_DAYS)
    score *= 1 + min(memory.access_count * ACCESS_WEIGHT, RELEVANCE_MAX_ACCESS_BONUS)
    return score


def retention_score(memory: Memory, now: datetime) -> float:
    """Value of keeping *memory* during eviction; lowest goes first."""
    age = days_between(memory.timestamp, now)
    return memory.importance + memory.access_count * ACCESS_WEIGHT + 1 / (1 + age)


def search_rank(memory: Memory) -> float:
    """Default ordering key for adapter-side search results."""
    return memory.importance + memory.access_count * ACCESS_WEIGHT


def matches_query(memory: Memory, query: MemoryQuery) -> bool:
    if query.type is not None and memory.type != query.type:
        return False

    if query.min_importance is not None and memory.importance < query.min_importance:
        return False

    if query.keywords:
        content = memory.content.lower()
        if not any(keyword.lower() in content for keyword in query.keywords):
            return False

    if query.date_range is not None:
        if not query.date_range.start <= memory.timestamp <= query.date_range.end:
            return False

    if query.metadata:
        metadata = memory.metadata or {}
        for key, value in query.metadata.items():
            if key not in metadata or metadata[key] != value:
                return False

    return True


def calculate_importance(
    content: str,
    type: MemoryType,
    metadata: Metadata | None = None,
) -> float:
    """Heuristic importance for a new memory, rounded to two decimals."""
    importance = _TYPE_IMPORTANCE.get(type, 0.5)

    if len(content) > 500:
        importance = min(importance + 0.1, 1.0)
    elif len(content) < 50:
        importance = max(importance - 0.1, 0.1)

    lowered = content.lower()
    hits = sum(1 for keyword in _IMPORTANT_KEYWORDS if keyword in lowered)
    importance = min(importance + hits * 0.1, 1.0)

    if metadata:
        priority = metadata.get("priority")
        if priority == "high":
            importance = min(importance + 0.2, 1.0)
        elif priority == "low":
            importance = max(importance - 0.2, 0.1)

        if metadata.get("category") in ("security", "authentication"):
            importance = min(importance + 0.3, 1.0)

    return round(importance, 2)


# ── Keywords & similarity ────────────────────────────────────────────

def extract_keywords(content: str, max_keywords: int = 10) -> list[str]:
    """Most frequent non-stopword terms of *content*, ties in first-seen order."""
    words = [
        word
        for word in _PUNCTUATION.sub(" ", content.lower()).split()
        if len(word) > 2 and word not in _STOPWORDS
    ]
    return [word for word, _ in Counter(words).most_common(max_keywords)]


def calculate_similarity(content1: str, content2: str) -> float:
    """Jaccard similarity of the top-20 keyword sets of two texts."""
    keywords1 = set(extract_keywords(content1, 20))
    keywords2 = set(extract_keywords(content2, 20))
    union = keywords1 | keywords2
    if not union:
        return 0.0
    return len(keywords1 & keywords2) / len(union)


def filter_relevant_memories(
    memories: Iterable[Memory],
    query: str,
    threshold: float = 0.1,
) -> list[Memory]:
    scored = [
        (calculate_similarity(memory.content, query), memory)
        for memory in memories
    ]
    scored = [pair for pair in scored if pair[0] >= threshold]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [memory for _, memory in scored]


def merge_memories(memories: list[Memory], threshold: float = 0.7) -> list[Memory]:
    """Fold together memories whose content similarity exceeds *threshold*.

    The first memory of each group survives, with concatenated content,
    merged metadata, averaged importance and the highest access count.
    """
    merged: list[Memory] = []
    used: set[str] = set()

    for i, base in enumerate(memories):
        if base.id in used:
            continue

        group = [base]
        content = base.content
        metadata: dict[str, Any] = dict(base.metadata or {})

        for other in memories[i + 1:]:
            if other.id in used:
                continue
            if calculate_similarity(base.content, other.content) > threshold:
                content = f"{content} {other.content}"
                metadata.update(other.metadata or {})
                group.append(other)
                used.add(other.id)

        used.add(base.id)
        if len(group) == 1:
            merged.append(base)
            continue

        merged.append(replace(
            base,
            content=content,
            metadata=metadata,
            importance=sum(m.importance for m in group) / len(group),
            access_count=max(m.access_count for m in group),
        ))

    return merged


# ── Grouping & statistics ────────────────────────────────────────────

def group_memories_by_type(memories: Iterable[Memory]) -> dict[MemoryType, list[Memory]]:
    groups: dict[MemoryType, list[Memory]] = {}
    for memory in memories:
        groups.setdefault(memory.type, []).append(memory)
    return groups


def memory_statistics(memories: list[Memory]) -> dict[str, Any]:
    if not memories:
        return {
            "total": 0,
            "by_type": {},
            "average_importance": 0.0,
            "oldest": None,
            "newest": None,
        }

    by_type = Counter(memory.type for memory in memories)
    average = sum(memory.importance for memory in memories) / len(memories)
    timestamps = [memory.timestamp for memory in memories]
    return {
        "total": len(memories),
        "by_type": dict(by_type),
        "average_importance": round(average, 2),
        "oldest": min(timestamps),
        "newest": max(timestamps),
    }


# ── Validation ───────────────────────────────────────────────────────

def validate_memory(memory: Any) -> bool:
    """Whether *memory* is a well-formed :class:`Memory` instance."""
    return (
        isinstance(memory, Memory)
        and isinstance(memory.id, str)
        and isinstance(memory.content, str)
        and isinstance(memory.type, MemoryType)
        and memory.timestamp is not None
        and isinstance(memory.importance, (int, float))
        and 0.0 <= memory.importance <= 1.0
        and isinstance(memory.access_count, int)
        and memory.access_count >= 0
    )


def validate_importance(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MemoryValidationError(f"Importance must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise MemoryValidationError(f"Importance {value!r} outside [0, 1]")
    return float(value)


def validate_metadata(metadata: Any) -> Metadata | None:
    """Check that *metadata* is a JSON-compatible mapping with string keys.

    Returns a shallow copy so later caller mutation does not leak into
    stored records.
    """
    if metadata is None:
        return None
    if not isinstance(metadata, dict):
        raise MemoryValidationError(
            f"Metadata must be a mapping, got {type(metadata).__name__}"
        )
    for key in metadata:
        if not isinstance(key, str):
            raise MemoryValidationError(f"Metadata keys must be strings, got {key!r}")
    try:
        json.dumps(metadata)
    except (TypeError, ValueError) as exc:
        raise MemoryValidationError(f"Metadata is not JSON-serializable: {exc}") from exc
    return dict(metadata)


def validate_update(fields: dict[str, Any]) -> dict[str, Any]:
    """Check and normalize a partial update.

    ``id`` and ``timestamp`` are dropped; every remaining value must be
    one a stored record can hold.

    Raises:
        MemoryValidationError: for unknown fields or invalid values.
    """
    changes = check_update_fields(fields)
    if "content" in changes and not isinstance(changes["content"], str):
        raise MemoryValidationError("Memory content must be a string")
    if "importance" in changes:
        changes["importance"] = validate_importance(changes["importance"])
    if "type" in changes:
        changes["type"] = MemoryType.parse(changes["type"])
    if "metadata" in changes:
        changes["metadata"] = validate_metadata(changes["metadata"])
    if "access_count" in changes:
        count = changes["access_count"]
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise MemoryValidationError(f"Invalid access count: {count!r}")
    if changes.get("last_accessed") is not None:
        changes["last_accessed"] = parse_timestamp(changes["last_accessed"])
    return changes


# ── Text helpers ─────────────────────────────────────────────────────

def query_from_text(text: str) -> MemoryQuery:
    """Build a :class:`MemoryQuery` from a free-form request."""
    lowered = text.lower()
    memory_type = None
    for candidate, hints in _TYPE_HINTS:
        if any(hint in lowered for hint in hints):
            memory_type = candidate
            break

    keywords = tuple(extract_keywords(text, 5)) if lowered else ()
    return MemoryQuery(type=memory_type, keywords=keywords, limit=20)


def format_memory_for_display(memory: Memory) -> str:
    stamp = memory.timestamp.strftime("%Y-%m-%d %H:%M:%S")
    label = memory.type.value.capitalize()
    body = memory.content[:100]
    if len(memory.content) > 100:
        body += "..."
    return f"[{label}] {stamp} - {body}"


def clean_memory_content(content: str) -> str:
    """Collapse all whitespace runs (including newlines) to single spaces."""
    return " ".join(content.split())


def estimate_memory_size(memory: Memory) -> int:
    """Approximate encoded size in bytes; 100 bytes covers the fixed fields."""
    size = len(memory.content.encode("utf-8")) + 100
    if memory.metadata:
        size += len(json.dumps(memory.metadata).encode("utf-8"))
    return size
