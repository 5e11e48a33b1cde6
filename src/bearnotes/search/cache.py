"""
In-memory query cache with LRU eviction and per-entry TTL.
Sits in front of every read against the Bear database.
"""

import base64
import json
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

# Per-entry bookkeeping overhead used by the memory estimate
ENTRY_OVERHEAD_BYTES = 64
UNSERIALIZABLE_ENTRY_BYTES = 1000


def normalize_statement(sql: str) -> str:
    """Collapse whitespace and lower-case a SQL statement."""
    return re.sub(r"\s+", " ", sql).strip().lower()


def generate_query_key(kind: str, sql: str, params: Sequence[Any] = ()) -> str:
    """
    Build the cache key for a database read.

    The key is ``query:<kind>:<token>`` where token encodes the normalized
    statement and its parameters, so identical reads collide and distinct
    reads never do. ``kind`` names the entity the read depends on and is
    what writes invalidate.
    """
    payload = normalize_statement(sql) + json.dumps(list(params), default=str)
    token = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")
    return f"query:{kind}:{token}"


def compile_wildcard(pattern: str) -> "re.Pattern[str]":
    """Compile a pattern where ``*`` matches any run of characters."""
    return re.compile(".*".join(re.escape(part) for part in pattern.split("*")), re.DOTALL)


@dataclass
class CacheEntry:
    """Cache entry with metadata for expiry and statistics."""

    data: Any
    timestamp: float
    ttl: float
    access_count: int
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl

    def access(self, now: float) -> None:
        """Mark entry as accessed."""
        self.access_count += 1
        self.last_accessed = now


@dataclass
class CacheStats:
    """Point-in-time cache statistics."""

    size: int
    max_size: int
    hits: int
    misses: int
    sets: int
    deletes: int
    evictions: int
    hit_rate: float
    oldest_entry_age: float
    newest_entry_age: float
    memory_usage_bytes: int
    memory_peak_bytes: int


class CacheStore:
    """
    Bounded key/value store with least-recently-used eviction and TTL expiry.

    Entries live in an ``OrderedDict`` ordered from least to most recently
    used; a hit moves the entry to the end and eviction pops from the front.
    A ``max_size`` of 0 or a TTL of 0 disables storage entirely.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._cache: "OrderedDict[str, CacheEntry]" = OrderedDict()

        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "deletes": 0,
            "evictions": 0,
            "memory_peak_bytes": 0,
        }

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        entry = self._cache.get(key)

        if entry is None:
            self._stats["misses"] += 1
            return None

        now = self._clock()
        if entry.is_expired(now):
            del self._cache[key]
            self._stats["misses"] += 1
            self._stats["evictions"] += 1
            logger.debug(f"Expired cache entry {key[:32]}")
            return None

        entry.access(now)
        self._cache.move_to_end(key)
        self._stats["hits"] += 1
        return entry.data

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        """Insert or replace an entry, then evict down to max_size."""
        self._stats["sets"] += 1

        if self.max_size == 0:
            return

        effective_ttl = self.default_ttl if ttl is None else ttl
        if effective_ttl == 0:
            # The new value is never stored, so the old one must not be served either
            self._cache.pop(key, None)
            return

        now = self._clock()
        self._cache.pop(key, None)
        self._cache[key] = CacheEntry(
            data=value,
            timestamp=now,
            ttl=effective_ttl,
            access_count=0,
            last_accessed=now,
        )

        self._enforce_max_size()

    def delete(self, key: str) -> bool:
        if key in self._cache:
            del self._cache[key]
            self._stats["deletes"] += 1
            return True
        return False

    def has(self, key: str) -> bool:
        """Check presence without touching recency; expired entries are evicted."""
        entry = self._cache.get(key)
        if entry is None:
            return False

        if entry.is_expired(self._clock()):
            del self._cache[key]
            self._stats["evictions"] += 1
            return False

        return True

    def clear(self) -> None:
        entry_count = len(self._cache)
        self._cache.clear()
        self._stats["deletes"] += entry_count
        logger.info(f"Cleared cache ({entry_count} entries)")

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a ``*`` wildcard pattern; returns the count."""
        regex = compile_wildcard(pattern)
        matching = [key for key in self._cache if regex.fullmatch(key)]

        for key in matching:
            del self._cache[key]

        self._stats["deletes"] += len(matching)
        if matching:
            logger.debug(f"Invalidated {len(matching)} cache entries matching {pattern!r}")
        return len(matching)

    def keys(self) -> List[str]:
        """Keys from least to most recently used."""
        return list(self._cache.keys())

    def stats(self) -> CacheStats:
        """Purge expired entries and report current statistics."""
        self._purge_expired()

        now = self._clock()
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = self._stats["hits"] / total_requests if total_requests > 0 else 0.0

        timestamps = [entry.timestamp for entry in self._cache.values()]
        memory_usage = self._estimate_memory_usage()
        if memory_usage > self._stats["memory_peak_bytes"]:
            self._stats["memory_peak_bytes"] = memory_usage

        return CacheStats(
            size=len(self._cache),
            max_size=self.max_size,
            hits=self._stats["hits"],
            misses=self._stats["misses"],
            sets=self._stats["sets"],
            deletes=self._stats["deletes"],
            evictions=self._stats["evictions"],
            hit_rate=hit_rate,
            oldest_entry_age=now - min(timestamps) if timestamps else 0.0,
            newest_entry_age=now - max(timestamps) if timestamps else 0.0,
            memory_usage_bytes=memory_usage,
            memory_peak_bytes=self._stats["memory_peak_bytes"],
        )

    def _enforce_max_size(self) -> None:
        while len(self._cache) > self.max_size:
            evicted_key, entry = self._cache.popitem(last=False)
            self._stats["evictions"] += 1
            logger.debug(
                f"Evicted cache entry {evicted_key[:32]} (accesses: {entry.access_count})"
            )

    def _purge_expired(self) -> None:
        now = self._clock()
        expired_keys = [key for key, entry in self._cache.items() if entry.is_expired(now)]

        for key in expired_keys:
            del self._cache[key]
            self._stats["evictions"] += 1

        if expired_keys:
            logger.debug(f"Purged {len(expired_keys)} expired cache entries")

    def _estimate_memory_usage(self) -> int:
        """Rough byte estimate: UTF-16 sized key and JSON payload plus overhead."""
        total = 0
        for key, entry in self._cache.items():
            total += len(key) * 2
            try:
                total += len(json.dumps(entry.data, default=str)) * 2
            except (TypeError, ValueError):
                total += UNSERIALIZABLE_ENTRY_BYTES
            total += ENTRY_OVERHEAD_BYTES
        return total
