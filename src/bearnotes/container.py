"""
Service wiring for the Bear notes server.

``create_services`` builds every component from an ``ApplicationConfig`` and
returns a handle that owns their lifecycle. Nothing here is a module-level
singleton, so tests can build as many independent instances as they need.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from .bear_database import BearDatabase
from .bear_urls import BearURLClient
from .config import ApplicationConfig
from .note_service import NoteService
from .query_executor import CachedQueryExecutor
from .search.analytics import PerformanceMonitor
from .search.cache import CacheStore
from .search_engine import NoteSearchEngine

logger = logging.getLogger(__name__)


class Lifecycle(ABC):
    """Something that must be started before use and released afterwards."""

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def dispose(self) -> None:
        pass


@dataclass
class BearServices(Lifecycle):
    """Every service of one server instance."""

    config: ApplicationConfig
    database: BearDatabase
    cache: CacheStore
    monitor: PerformanceMonitor
    executor: CachedQueryExecutor
    search: NoteSearchEngine
    notes: NoteService

    async def initialize(self) -> None:
        logger.debug(f"Configuration: {self.config.to_safe_dict()}")
        await self.database.connect()
        logger.info(
            f"Services ready (cache max_size={self.cache.max_size}, "
            f"query_ttl={self.executor.query_ttl}s)"
        )

    async def dispose(self) -> None:
        self.cache.clear()
        self.monitor.clear()
        await self.database.close()
        logger.info("Services disposed")

    async def __aenter__(self) -> "BearServices":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()


def create_services(
    config: ApplicationConfig, url_client: Optional[BearURLClient] = None
) -> BearServices:
    """Build the service graph for a configuration without opening anything."""
    database = BearDatabase(
        config.database.bear_db_path, timeout=config.database.connection_timeout
    )
    cache = CacheStore(
        max_size=config.cache.effective_max_size,
        default_ttl=config.cache.default_ttl_seconds,
    )
    monitor = PerformanceMonitor(
        history_size=config.performance.history_size,
        slow_query_threshold_ms=config.performance.slow_query_threshold_ms,
        memory_budget_mb=config.performance.memory_budget_mb,
        report_window_hours=config.performance.report_window_hours,
    )
    executor = CachedQueryExecutor(
        database, cache, monitor, query_ttl=config.cache.query_ttl_seconds
    )
    search = NoteSearchEngine(executor, config.search)
    notes = NoteService(
        executor,
        database,
        url_client or BearURLClient(open_delay=config.server.url_open_delay),
        search_engine=search,
    )

    return BearServices(
        config=config,
        database=database,
        cache=cache,
        monitor=monitor,
        executor=executor,
        search=search,
        notes=notes,
    )
