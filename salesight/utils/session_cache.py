"""
Session Cache - LRU cache with TTL for per-upload session snapshots.

Keyed by the SHA-256 of the uploaded bytes, so re-uploading the same file
restores its schema, aggregates, insights and chat history. Entries are
merged on update, never replaced wholesale.
"""

import hashlib
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

# Fields a session snapshot may carry.
SESSION_FIELDS = (
    "title", "row_count", "schema", "preview_rows", "aggregates",
    "insights", "chat_messages", "last_refreshed",
)


def content_hash(content: bytes) -> str:
    """Hex SHA-256 of an upload."""
    return hashlib.sha256(content).hexdigest()


@dataclass
class CacheEntry:
    """Single cache entry with value and metadata."""
    value: Dict[str, Any] = field(default_factory=dict)
    created_at: float = 0.0
    hits: int = 0


class SessionCache:
    """
    Thread-safe LRU cache with TTL for session snapshots.

    Features:
    - TTL-based expiration measured from the last write
    - LRU eviction when max size reached
    - Partial updates merge into the stored snapshot
    - History listing for the most recently refreshed sessions
    """

    def __init__(self, max_size: int = 20, ttl_seconds: int = 86400,
                 clock: Callable[[], float] = time.time):
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._max_size = max_size
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0

    def _expired(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.created_at > self._ttl_seconds

    def get(self, session_hash: str) -> Tuple[bool, Optional[Dict[str, Any]]]:
        """
        Look up a session snapshot.

        Returns:
            Tuple of (hit, copy of snapshot or None)
        """
        with self._lock:
            entry = self._cache.get(session_hash)
            if entry is None or self._expired(entry):
                if entry is not None:
                    del self._cache[session_hash]
                self._misses += 1
                return False, None

            self._cache.move_to_end(session_hash)
            entry.hits += 1
            self._hits += 1
            return True, dict(entry.value)

    def update(self, session_hash: str, **values: Any) -> Dict[str, Any]:
        """
        Merge values into a session snapshot, creating it if needed.

        Raises:
            KeyError: For a field outside SESSION_FIELDS
        """
        unknown = set(values) - set(SESSION_FIELDS)
        if unknown:
            raise KeyError(f"Unknown session fields: {', '.join(sorted(unknown))}")

        with self._lock:
            entry = self._cache.pop(session_hash, None)
            if entry is None or self._expired(entry):
                entry = CacheEntry()
                while len(self._cache) >= self._max_size:
                    self._cache.popitem(last=False)

            entry.value.update(values)
            entry.created_at = self._clock()
            self._cache[session_hash] = entry
            return dict(entry.value)

    def rename(self, session_hash: str, title: str) -> bool:
        with self._lock:
            if session_hash not in self._cache:
                return False
            self._cache[session_hash].value["title"] = title
            return True

    def history(self) -> List[Dict[str, Any]]:
        """
        Sessions for a history sidebar: newest refresh first, then bigger
        uploads first. Sessions never refreshed sort last.
        """
        with self._lock:
            entries = [
                {
                    "hash": key,
                    "title": entry.value.get("title") or key,
                    "row_count": int(entry.value.get("row_count") or 0),
                    "last_refreshed": entry.value.get("last_refreshed"),
                }
                for key, entry in self._cache.items()
                if not self._expired(entry)
            ]
        # ISO-8601 strings sort chronologically
        entries.sort(key=lambda e: e["row_count"], reverse=True)
        entries.sort(key=lambda e: e["last_refreshed"] or "", reverse=True)
        return entries

    def invalidate(self, session_hash: str) -> bool:
        with self._lock:
            if session_hash in self._cache:
                del self._cache[session_hash]
                return True
            return False

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dict with hits, misses, size, and hit rate
        """
        with self._lock:
            total = self._hits + self._misses
            hit_rate = (self._hits / total * 100) if total > 0 else 0

            return {
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate_percent": round(hit_rate, 2),
                "current_size": len(self._cache),
                "max_size": self._max_size,
                "ttl_seconds": self._ttl_seconds,
            }
