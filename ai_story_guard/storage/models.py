"""
Data models for storage layer.

Defines database entities and data structures.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class CacheKind(Enum):
    """Kinds of AI responses that can be cached."""
    AVATAR = "avatar"
    COVER_ART = "cover-art"
    SUMMARY = "summary"
    NARRATIVE_ANALYSIS = "narrative-analysis"
    CONSISTENCY = "consistency"
    STYLE_TRANSFER = "style-transfer"


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cached AI response.

    The key is derived from (kind, normalized payload). An entry is never
    mutated; a later write for the same key replaces the whole row.
    """
    key: str
    request_digest: str
    response: Any
    kind: CacheKind
    cost: Decimal
    created_at: datetime
    ttl: timedelta

    def is_fresh(self, now: datetime) -> bool:
        """True while now - created_at is strictly below the TTL."""
        return now - self.created_at < self.ttl


@dataclass(frozen=True)
class UsageRecord:
    """Per-user call counter for a single day."""
    user_id: str
    date: date
    call_count: int


@dataclass(frozen=True)
class CostLedgerEntry:
    """Append-only record of what an AI call cost and who it is billed to.

    Once written, these records must never be modified.
    """
    timestamp: datetime
    kind: str
    cost: Decimal
    user_id: Optional[str] = None
    story_id: Optional[str] = None
    cache_key: Optional[str] = None


@dataclass(frozen=True)
class Character:
    """A character owned by a story. Names are unique per story, ignoring case."""
    id: str
    story_id: str
    name: str
    canonical_description: str
    created_at: datetime


@dataclass(frozen=True)
class ChapterRef:
    """Read-only projection of a chapter supplied by the story store."""
    id: str
    story_id: str
    sequence_number: int
    text: str
