"""
Caching query executor: every read against the note store passes through
here so repeated reads are served from the cache and every call is timed.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .search.analytics import PerformanceMonitor, QuerySample
from .search.cache import CacheStore, generate_query_key, normalize_statement

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

READ_PREFIXES = ("select", "with")


class RowSource(Protocol):
    """Anything that can run a statement and return rows."""

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        ...


def is_pure_read(sql: str) -> bool:
    return sql.lstrip().lower().startswith(READ_PREFIXES)


class CachedQueryExecutor:
    """
    Runs statements against a row source through the query cache.

    Pure reads are looked up by a key derived from their normalized shape and
    parameters; misses are fetched and cached for a fixed TTL window. Errors
    from the source propagate unchanged and are never cached. Each call
    records exactly one ``QuerySample``.
    """

    def __init__(
        self,
        source: RowSource,
        cache: CacheStore,
        monitor: Optional[PerformanceMonitor] = None,
        query_ttl: float = 300.0,
    ):
        self.source = source
        self.cache = cache
        self.monitor = monitor
        self.query_ttl = query_ttl

    async def read(self, sql: str, params: Sequence[Any] = (), kind: str = "note") -> List[Row]:
        """Run a statement, serving pure reads from the cache when possible."""
        start = time.perf_counter()
        cache_hit = False
        rows: List[Row] = []
        error: Optional[str] = None

        try:
            if not is_pure_read(sql):
                rows = await self.source.fetch_all(sql, params)
                return rows

            cache_key = generate_query_key(kind, sql, params)
            cached = self.cache.get(cache_key)

            if cached is not None:
                cache_hit = True
                rows = list(cached)
                logger.debug(f"Cache hit for {kind} query ({len(rows)} rows)")
                return rows

            rows = await self.source.fetch_all(sql, params)
            self.cache.set(cache_key, list(rows), ttl=self.query_ttl)
            logger.debug(f"Cache miss for {kind} query, cached {len(rows)} rows")
            return rows
        except Exception as e:
            error = str(e)
            raise
        finally:
            self._record(sql, start, len(rows), cache_hit, error)

    async def read_one(
        self, sql: str, params: Sequence[Any] = (), kind: str = "note"
    ) -> Optional[Row]:
        rows = await self.read(sql, params, kind=kind)
        return rows[0] if rows else None

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        """Run a statement that must always hit the source (PRAGMA and the like)."""
        start = time.perf_counter()
        rows: List[Row] = []
        error: Optional[str] = None

        try:
            rows = await self.source.fetch_all(sql, params)
            return rows
        except Exception as e:
            error = str(e)
            raise
        finally:
            self._record(sql, start, len(rows), False, error)

    def invalidate(self, *kinds: str) -> int:
        """Drop every cached read of the given entity kinds."""
        removed = 0
        for kind in kinds:
            removed += self.cache.invalidate_pattern(f"query:{kind}:*")
        if removed:
            logger.info(f"Invalidated {removed} cached reads for {', '.join(kinds)}")
        return removed

    def _record(
        self, sql: str, start: float, result_count: int, cache_hit: bool, error: Optional[str]
    ) -> None:
        if not self.monitor:
            return

        self.monitor.record(
            QuerySample(
                operation=normalize_statement(sql),
                duration_ms=(time.perf_counter() - start) * 1000,
                timestamp=datetime.now(timezone.utc),
                result_count=result_count,
                cache_hit=cache_hit,
                error=error,
            )
        )
