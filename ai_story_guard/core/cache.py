"""
Content-addressed cache for AI responses.

Concurrent requests with the same key may both miss and both compute;
at-most-one compute is not guaranteed. Writes are last-writer-wins and
staleness is bounded by the TTL. Every write also bills the response to
the cost ledger.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping, Optional

from ai_story_guard.storage.models import CacheEntry, CacheKind, CostLedgerEntry
from ai_story_guard.storage.repository import CacheRepository

from .fingerprint import cache_key_and_digest

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ContentCache:
    """Cache lookups and writes keyed by (kind, normalized payload)."""

    def __init__(
        self,
        repository: CacheRepository,
        default_ttl: timedelta = DEFAULT_TTL,
        ttl_by_kind: Optional[Dict[CacheKind, timedelta]] = None,
        clock: Callable[[], datetime] = _utc_now
    ):
        self.repository = repository
        self.default_ttl = default_ttl
        self.ttl_by_kind = dict(ttl_by_kind or {})
        self.clock = clock

    def ttl_for(self, kind: CacheKind) -> timedelta:
        return self.ttl_by_kind.get(kind, self.default_ttl)

    def get(self, kind: CacheKind, payload: Mapping[str, Any]) -> Optional[CacheEntry]:
        """Return the cached entry if present and still fresh.

        A storage failure is logged and treated as a miss.
        """
        key, _ = cache_key_and_digest(kind.value, payload)
        try:
            entry = self.repository.get(key)
        except Exception:
            logger.exception("Cache read failed for %s, treating as miss", key)
            return None

        if entry is None:
            return None
        if not entry.is_fresh(self.clock()):
            logger.debug("Cache entry %s expired", key)
            return None
        return entry

    def put(
        self,
        kind: CacheKind,
        payload: Mapping[str, Any],
        response: Any,
        cost: Decimal,
        user_id: Optional[str] = None,
        story_id: Optional[str] = None
    ) -> CacheEntry:
        """Store a response and append its cost to the ledger.

        Args:
            kind: Kind of response being cached
            payload: Request payload the key is derived from
            response: JSON-serializable response
            cost: What computing the response cost
            user_id: User the cost is attributed to
            story_id: Story the cost is attributed to

        Returns:
            The written CacheEntry

        Raises:
            sqlite3.Error: If the entry could not be written
        """
        key, digest = cache_key_and_digest(kind.value, payload)
        now = self.clock()
        entry = CacheEntry(
            key=key,
            request_digest=digest,
            response=response,
            kind=kind,
            cost=cost,
            created_at=now,
            ttl=self.ttl_for(kind)
        )
        ledger_entry = CostLedgerEntry(
            timestamp=now,
            kind=kind.value,
            cost=cost,
            user_id=user_id,
            story_id=story_id,
            cache_key=key
        )
        self.repository.put(entry, ledger_entry)
        return entry

    def invalidate(self, kind: CacheKind, payload: Mapping[str, Any]) -> bool:
        """Delete the entry for a request. Returns True if one existed."""
        key, _ = cache_key_and_digest(kind.value, payload)
        return self.repository.delete(key)
