"""
Query performance monitoring: a bounded history of query samples, slow
query detection, and advisory tuning recommendations.
"""

import logging
import resource
import sys
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

# Recommendation thresholds
HIGH_AVERAGE_DURATION_MS = 500.0
LOW_HIT_RATE = 0.7
VERY_LOW_HIT_RATE = 0.3
HIGH_MEMORY_RATIO = 0.8
HIGH_RSS_MB = 500.0
LIKE_STATEMENT_SHARE = 0.5
MAX_COUNT_STATEMENTS = 10
MIN_DISTINCT_OPERATION_SHARE = 0.3
SLOW_OPERATIONS_IN_REPORT = 10


@dataclass
class QuerySample:
    """One observation of a read: its shape, duration and cache outcome."""

    operation: str
    duration_ms: float
    timestamp: datetime
    result_count: int = 0
    cache_hit: bool = False
    error: Optional[str] = None


@dataclass
class SystemMetrics:
    """Process resource usage at report time."""

    rss_bytes: int
    memory_budget_bytes: int
    cpu_user_seconds: float
    cpu_system_seconds: float
    uptime_seconds: float
    timestamp: datetime

    @property
    def memory_usage_ratio(self) -> float:
        if self.memory_budget_bytes <= 0:
            return 0.0
        return self.rss_bytes / self.memory_budget_bytes


@dataclass
class PerformanceSummary:
    total_operations: int = 0
    average_duration_ms: float = 0.0
    slowest: Optional[QuerySample] = None
    fastest: Optional[QuerySample] = None
    cache_hit_rate: float = 0.0
    cache_hits: int = 0
    cache_misses: int = 0
    errors: int = 0


@dataclass
class PerformanceReport:
    summary: PerformanceSummary
    slow_operations: List[QuerySample]
    system_metrics: SystemMetrics
    recommendations: List[str]
    start: datetime
    end: datetime


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_aware(value: datetime) -> datetime:
    """Naive datetimes are taken as local time."""
    if value.tzinfo is None:
        return value.astimezone()
    return value


def _max_rss_bytes() -> int:
    """Peak resident set size; ru_maxrss is bytes on macOS, kilobytes elsewhere."""
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    if sys.platform == "darwin":
        return int(rss)
    return int(rss) * 1024


class PerformanceMonitor:
    """
    Records query samples in a ring buffer and derives reports from them.

    The monitor never raises out of ``record`` or ``report``: malformed
    samples are dropped and reporting degrades to empty figures.
    """

    def __init__(
        self,
        history_size: int = 10000,
        slow_query_threshold_ms: float = 1000.0,
        memory_budget_mb: int = 512,
        report_window_hours: int = 24,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.history_size = history_size
        self.slow_query_threshold_ms = slow_query_threshold_ms
        self.memory_budget_bytes = memory_budget_mb * 1024 * 1024
        self.report_window = timedelta(hours=report_window_hours)
        self._clock = clock
        self._history: Deque[QuerySample] = deque(maxlen=history_size)
        self._started = time.monotonic()
        self._dropped = 0

    def __len__(self) -> int:
        return len(self._history)

    @property
    def dropped_samples(self) -> int:
        return self._dropped

    def record(self, sample: QuerySample) -> None:
        """Append a sample; invalid samples are silently dropped."""
        if not self._is_valid(sample):
            self._dropped += 1
            return

        self._history.append(sample)

        if sample.duration_ms > self.slow_query_threshold_ms:
            operation = sample.operation[:100] + ("..." if len(sample.operation) > 100 else "")
            logger.warning(
                f"Slow query detected ({sample.duration_ms:.1f}ms): {operation} "
                f"(results: {sample.result_count}, cache_hit: {sample.cache_hit})"
            )

    def samples(self, since: Optional[datetime] = None) -> List[QuerySample]:
        if since is None:
            return list(self._history)
        cutoff = as_aware(since)
        return [sample for sample in self._history if as_aware(sample.timestamp) >= cutoff]

    def get_slow_operations(
        self, limit: int = 10, threshold_ms: Optional[float] = None
    ) -> List[QuerySample]:
        threshold = self.slow_query_threshold_ms if threshold_ms is None else threshold_ms
        slow = [sample for sample in self._history if sample.duration_ms > threshold]
        slow.sort(key=lambda s: s.duration_ms, reverse=True)
        return slow[:limit]

    def clear(self) -> None:
        self._history.clear()
        self._dropped = 0

    def collect_system_metrics(self) -> SystemMetrics:
        usage = resource.getrusage(resource.RUSAGE_SELF)
        return SystemMetrics(
            rss_bytes=_max_rss_bytes(),
            memory_budget_bytes=self.memory_budget_bytes,
            cpu_user_seconds=usage.ru_utime,
            cpu_system_seconds=usage.ru_stime,
            uptime_seconds=time.monotonic() - self._started,
            timestamp=self._clock(),
        )

    def report(self, since: Optional[datetime] = None) -> PerformanceReport:
        """Summarize samples recorded since the cutoff (default: the report window)."""
        end = self._clock()
        start = since or (end - self.report_window)
        samples = self.samples(start)

        summary = self._summarize(samples)
        slow_operations = sorted(
            (s for s in samples if s.duration_ms > self.slow_query_threshold_ms),
            key=lambda s: s.duration_ms,
            reverse=True,
        )[:SLOW_OPERATIONS_IN_REPORT]

        try:
            system_metrics = self.collect_system_metrics()
        except (OSError, ValueError) as e:
            logger.debug(f"Could not collect system metrics: {e}")
            system_metrics = SystemMetrics(0, self.memory_budget_bytes, 0.0, 0.0, 0.0, end)

        recommendations = self._generate_recommendations(
            samples, summary, len(slow_operations), system_metrics
        )

        return PerformanceReport(
            summary=summary,
            slow_operations=slow_operations,
            system_metrics=system_metrics,
            recommendations=recommendations,
            start=start,
            end=end,
        )

    def get_recommendations(self) -> List[str]:
        return self.report().recommendations

    @staticmethod
    def _is_valid(sample: object) -> bool:
        if not isinstance(sample, QuerySample):
            return False
        if isinstance(sample.duration_ms, bool) or not isinstance(
            sample.duration_ms, (int, float)
        ):
            return False
        if sample.duration_ms < 0 or sample.duration_ms != sample.duration_ms:
            return False
        return isinstance(sample.timestamp, datetime) and isinstance(sample.operation, str)

    @staticmethod
    def _summarize(samples: List[QuerySample]) -> PerformanceSummary:
        if not samples:
            return PerformanceSummary()

        total = len(samples)
        hits = sum(1 for s in samples if s.cache_hit)

        return PerformanceSummary(
            total_operations=total,
            average_duration_ms=sum(s.duration_ms for s in samples) / total,
            slowest=max(samples, key=lambda s: s.duration_ms),
            fastest=min(samples, key=lambda s: s.duration_ms),
            cache_hit_rate=hits / total,
            cache_hits=hits,
            cache_misses=total - hits,
            errors=sum(1 for s in samples if s.error),
        )

    def _generate_recommendations(
        self,
        samples: List[QuerySample],
        summary: PerformanceSummary,
        slow_count: int,
        system_metrics: SystemMetrics,
    ) -> List[str]:
        recommendations: List[str] = []

        if summary.average_duration_ms > HIGH_AVERAGE_DURATION_MS:
            recommendations.append(
                f"Average query time is high ({summary.average_duration_ms:.1f}ms). "
                "Consider adding database indexes or optimizing query patterns."
            )

        if slow_count > 0:
            recommendations.append(
                f"Found {slow_count} slow queries (>{self.slow_query_threshold_ms:.0f}ms). "
                "Review and optimize these queries or add appropriate indexes."
            )

        if summary.total_operations > 0:
            if summary.cache_hit_rate < LOW_HIT_RATE:
                recommendations.append(
                    f"Cache hit rate is low ({summary.cache_hit_rate * 100:.1f}%). "
                    "Consider increasing cache TTL or cache size."
                )
            if summary.cache_hit_rate < VERY_LOW_HIT_RATE:
                recommendations.append(
                    "Very low cache hit rate detected. Review caching strategy and ensure "
                    "frequently accessed data is cached."
                )

        memory_ratio = system_metrics.memory_usage_ratio
        if memory_ratio > HIGH_MEMORY_RATIO:
            recommendations.append(
                f"High memory usage relative to budget ({memory_ratio * 100:.1f}%). "
                "Consider reducing cache size."
            )

        rss_mb = system_metrics.rss_bytes / 1024 / 1024
        if rss_mb > HIGH_RSS_MB:
            recommendations.append(
                f"High memory usage detected ({rss_mb:.1f}MB). "
                "Monitor for memory leaks and optimize data structures."
            )

        if samples:
            like_count = sum(1 for s in samples if " like " in s.operation.lower())
            if like_count > len(samples) * LIKE_STATEMENT_SHARE:
                recommendations.append(
                    "High number of LIKE queries detected. Consider narrowing searches "
                    "with tag or date filters."
                )

            count_queries = sum(1 for s in samples if "count(" in s.operation.lower())
            if count_queries > MAX_COUNT_STATEMENTS:
                recommendations.append(
                    "Many COUNT queries detected. Consider caching count results for longer."
                )

            distinct_operations = len({s.operation for s in samples})
            if distinct_operations < len(samples) * MIN_DISTINCT_OPERATION_SHARE:
                recommendations.append(
                    "Many repeated queries detected. Ensure caching is enabled for "
                    "frequently executed queries."
                )

        if not recommendations:
            recommendations.append(
                "Performance looks good! No specific optimizations recommended at this time."
            )

        return recommendations
