"""
# Performance Monitor

This module samples **database performance telemetry** on a fixed interval, keeps a
bounded rolling history, evaluates alert thresholds and builds performance reports.

## Domain Overview

Each sampling tick produces one immutable `PerformanceMetrics` snapshot:
- **Connection pool**: client-side counters from `PoolStatsListener` (no server round-trip).
- **Queries**: the last 100 profiler entries (total, slow, average duration, command types).
- **Collections**: `collStats` per monitored collection.
- **Indexes**: `$indexStats` counters per monitored collection.

## Key Features

### 1. Scheduling
- **APScheduler**: One `AsyncIOScheduler` interval job per running monitor.
- **No overlap**: `max_instances=1` plus a collection lock; a tick that finds the previous
  one still running is skipped, never run concurrently.
- **Clean stop**: `stop_monitoring()` removes the job and shuts the scheduler down. An in-flight
  tick may finish; no new tick starts afterwards.

### 2. Bounded Buffers
- **History**: `deque(maxlen=DB_HISTORY_CAPACITY)`; the oldest sample is evicted on append.
- **Alerts**: `deque(maxlen=DB_ALERT_CAPACITY)`, FIFO eviction.
- Both are written only by the monitor; readers get copies.

### 3. Alerting
Thresholds come from `AlertThresholds` (built from settings). A single tick may raise
several independent alerts:

| Check | Type |
|-------|------|
| Pool utilization above threshold | warning |
| Any slow query in the profiler window | warning |
| Average response time above threshold | warning |
| Zero-usage indexes (excluding `_id_`) | info |
| Document growth rate above threshold (%/hour between the last two samples) | warning |

### 4. Failure Handling
A failing tick is logged and counted; the next tick runs normally. One collection's stats
failing degrades only that collection's data point.

## Usage Example

```python
monitor = PerformanceMonitor(db_manager, settings, query_optimizer, index_catalog)

monitor.start_monitoring(interval_ms=60000)
...
report = monitor.generate_performance_report()
for recommendation in report.recommendations:
    print(recommendation)

monitor.stop_monitoring()
```
"""

import asyncio
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pymongo.errors import PyMongoError

from docstore_ops.config import Settings
from docstore_ops.database.index_catalog import IndexCatalog
from docstore_ops.database.manager import DatabaseManager
from docstore_ops.exceptions import MetricsUnavailableError
from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.models.index_models import PRIMARY_KEY_INDEX, IndexUsage
from docstore_ops.models.performance_models import (
    AlertThresholds,
    AlertType,
    CollectionMetrics,
    DatabaseAlert,
    PerformanceMetrics,
    PerformanceReport,
    PerformanceSummary,
    QueryMetrics,
)
from docstore_ops.services.database_metrics import DatabaseMetrics, database_metrics
from docstore_ops.services.query_optimizer import QueryOptimizer

logger = get_logger(prefix="[PerformanceMonitor]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")

MONITOR_JOB_ID = "database_performance_monitor"
PROFILE_WINDOW = 100


class PerformanceMonitor:
    """
    Periodic sampler with bounded history, threshold alerts and reports.

    **State machine:** `stopped -> running` on `start_monitoring()`, back on `stop_monitoring()`.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        settings: Settings,
        query_optimizer: QueryOptimizer,
        index_catalog: IndexCatalog,
        thresholds: Optional[AlertThresholds] = None,
        metrics: Optional[DatabaseMetrics] = None,
    ):
        self.db_manager = db_manager
        self.query_optimizer = query_optimizer
        self.index_catalog = index_catalog
        self.thresholds = thresholds or AlertThresholds.from_settings(settings)
        self.metrics = metrics or database_metrics
        self.collections: List[str] = settings.monitored_collections_list
        self.default_interval_ms = settings.DB_MONITORING_INTERVAL_MS

        self._history: Deque[PerformanceMetrics] = deque(maxlen=settings.DB_HISTORY_CAPACITY)
        self._alerts: Deque[DatabaseAlert] = deque(maxlen=settings.DB_ALERT_CAPACITY)
        self._collect_lock = asyncio.Lock()
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._running = False

    # Lifecycle

    @property
    def is_monitoring(self) -> bool:
        return self._running

    def start_monitoring(self, interval_ms: Optional[int] = None):
        """
        Start sampling every `interval_ms` milliseconds. Must be called from the event loop.

        The first tick fires one interval after the call. Calling it while running is a no-op.
        """
        if self._running:
            logger.warning("Performance monitoring is already running")
            return

        if interval_ms is None:
            interval_ms = self.default_interval_ms
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_job(
            self._tick,
            "interval",
            seconds=interval_ms / 1000,
            id=MONITOR_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        self._running = True
        self._scheduler.start()
        logger.info("Starting database performance monitoring (interval: %dms)", interval_ms)

    def stop_monitoring(self):
        """Stop sampling. No tick starts after this returns."""
        if not self._running:
            return

        self._running = False
        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None:
            if scheduler.get_job(MONITOR_JOB_ID):
                scheduler.remove_job(MONITOR_JOB_ID)
            scheduler.shutdown(wait=False)
        logger.info("Performance monitoring stopped")

    async def _tick(self):
        if not self._running:
            return
        if self._collect_lock.locked():
            logger.warning("Previous sampling tick still running; skipping this tick")
            self.metrics.record_tick("skipped")
            return

        try:
            await self.collect_metrics()
            self.check_alerts()
            self.metrics.record_tick("success")
        except Exception as e:
            self.metrics.record_tick("failed")
            logger.error("Performance sampling tick failed: %s", e, exc_info=True)

    # Collection

    async def collect_metrics(self) -> PerformanceMetrics:
        """
        Gather one snapshot and append it to the history.

        Raises:
            ConnectionError: The database is not connected.
        """
        async with self._collect_lock:
            start_time = datetime.now(timezone.utc)

            connection_pool = self.db_manager.get_connection_pool_metrics()
            queries = await self._collect_query_metrics()
            collections = await self._collect_collection_metrics()
            indexes = await self._collect_index_metrics()

            snapshot = PerformanceMetrics(
                timestamp=start_time,
                connection_pool=connection_pool,
                queries=queries,
                collections=collections,
                indexes=indexes,
            )
            self._history.append(snapshot)

        self.metrics.record_sample(snapshot)
        perf_logger.debug(
            "Collected performance sample in %.3fs",
            (datetime.now(timezone.utc) - start_time).total_seconds(),
        )
        return snapshot

    async def _collect_query_metrics(self) -> QueryMetrics:
        operations = await self.query_optimizer.get_recent_operations(limit=PROFILE_WINDOW)
        if not operations:
            return QueryMetrics()

        by_type: Dict[str, int] = {}
        for op in operations:
            command_type = next(iter(op.command), "unknown")
            by_type[command_type] = by_type.get(command_type, 0) + 1

        return QueryMetrics(
            total=len(operations),
            slow=sum(1 for op in operations if op.duration_millis > self.thresholds.slow_query_ms),
            avg_response_time_ms=sum(op.duration_millis for op in operations) / len(operations),
            by_type=by_type,
        )

    async def _collect_collection_metrics(self) -> List[CollectionMetrics]:
        results: List[CollectionMetrics] = []
        for name in self.collections:
            try:
                stats = await self.db_manager.collection_stats(name)
            except PyMongoError as e:
                logger.error("Failed to get stats for collection %s: %s", name, e)
                continue
            results.append(
                CollectionMetrics(
                    name=name,
                    document_count=stats.get("count", 0),
                    index_count=stats.get("nindexes", 0),
                    total_size=stats.get("size", 0),
                    avg_doc_size=stats.get("avgObjSize", 0),
                )
            )
        return results

    async def _collect_index_metrics(self) -> List[IndexUsage]:
        results: List[IndexUsage] = []
        for name in self.collections:
            results.extend(await self.index_catalog.collection_usage(name))
        return results

    # Alerts

    def check_alerts(self) -> List[DatabaseAlert]:
        """
        Evaluate the latest snapshot (and growth against the previous one).

        Returns:
            List[DatabaseAlert]: Alerts created by this evaluation.
        """
        if not self._history:
            return []

        latest = self._history[-1]
        thresholds = self.thresholds
        created: List[DatabaseAlert] = []

        utilization = latest.connection_pool.utilization
        if utilization > thresholds.connection_utilization_pct:
            created.append(
                self.create_alert(
                    AlertType.WARNING,
                    f"High connection pool utilization: {utilization:.1f}%",
                    {"utilization": utilization, "threshold": thresholds.connection_utilization_pct},
                )
            )

        if latest.queries.slow > 0:
            created.append(
                self.create_alert(
                    AlertType.WARNING,
                    f"{latest.queries.slow} slow queries detected",
                    {"slow_queries": latest.queries.slow, "threshold": thresholds.slow_query_ms},
                )
            )

        avg_response = latest.queries.avg_response_time_ms
        if avg_response > thresholds.avg_response_time_ms:
            created.append(
                self.create_alert(
                    AlertType.WARNING,
                    f"High average response time: {avg_response:.1f}ms",
                    {"response_time": avg_response, "threshold": thresholds.avg_response_time_ms},
                )
            )

        unused = self._unused_indexes(latest)
        if unused:
            created.append(
                self.create_alert(
                    AlertType.INFO,
                    f"{len(unused)} unused indexes detected",
                    {"unused_indexes": unused},
                )
            )

        if len(self._history) >= 2:
            created.extend(self._check_growth(self._history[-2], latest))

        return created

    def _check_growth(self, previous: PerformanceMetrics, latest: PerformanceMetrics) -> List[DatabaseAlert]:
        hours = (latest.timestamp - previous.timestamp).total_seconds() / 3600
        if hours <= 0:
            return []

        previous_counts = {c.name: c.document_count for c in previous.collections}
        created: List[DatabaseAlert] = []
        for collection in latest.collections:
            before = previous_counts.get(collection.name)
            if not before:
                continue
            growth_rate = (collection.document_count - before) / before * 100 / hours
            if growth_rate > self.thresholds.document_growth_rate_pct_per_hour:
                created.append(
                    self.create_alert(
                        AlertType.WARNING,
                        f"High document growth rate in {collection.name}: {growth_rate:.1f}% per hour",
                        {
                            "collection": collection.name,
                            "growth_rate": growth_rate,
                            "threshold": self.thresholds.document_growth_rate_pct_per_hour,
                        },
                    )
                )
        return created

    @staticmethod
    def _unused_indexes(snapshot: PerformanceMetrics) -> List[str]:
        return [
            f"{usage.collection}.{usage.index_name}"
            for usage in snapshot.indexes
            if usage.usage_ops == 0 and usage.index_name != PRIMARY_KEY_INDEX
        ]

    def create_alert(
        self, alert_type: AlertType, message: str, metadata: Optional[Dict[str, Any]] = None
    ) -> DatabaseAlert:
        alert = DatabaseAlert(
            id=uuid.uuid4().hex,
            type=alert_type,
            message=message,
            timestamp=datetime.now(timezone.utc),
            metadata=metadata or {},
        )
        self._alerts.append(alert)
        self.metrics.record_alert(AlertType(alert_type).value)
        logger.warning("Database alert created [%s]: %s", AlertType(alert_type).value, message)
        return alert

    def resolve_alert(self, alert_id: str) -> bool:
        """Mark one alert resolved. Returns `False` for an unknown id."""
        for alert in self._alerts:
            if alert.id == alert_id:
                alert.resolved = True
                logger.info("Database alert resolved: %s", alert_id)
                return True
        return False

    def get_alerts(self, resolved: Optional[bool] = None) -> List[DatabaseAlert]:
        if resolved is None:
            return list(self._alerts)
        return [alert for alert in self._alerts if alert.resolved == resolved]

    def get_performance_history(self, limit: Optional[int] = None) -> List[PerformanceMetrics]:
        """Samples in chronological order; the newest `limit` when given."""
        history = list(self._history)
        return history[-limit:] if limit else history

    def get_latest_metrics(self) -> Optional[PerformanceMetrics]:
        return self._history[-1] if self._history else None

    def clear_history(self):
        self._history.clear()
        logger.info("Performance history cleared")

    def clear_alerts(self):
        self._alerts.clear()
        logger.info("Database alerts cleared")

    # Reporting

    def generate_performance_report(self) -> PerformanceReport:
        """
        Summary and recommendations from the latest sample, plus unresolved alerts.

        Raises:
            MetricsUnavailableError: No sample has been collected yet.
        """
        latest = self.get_latest_metrics()
        if latest is None:
            raise MetricsUnavailableError("No performance metrics available")

        summary = PerformanceSummary(
            total_collections=len(latest.collections),
            total_documents=sum(c.document_count for c in latest.collections),
            total_indexes=sum(c.index_count for c in latest.collections),
            avg_response_time_ms=latest.queries.avg_response_time_ms,
            slow_queries=latest.queries.slow,
        )

        recommendations: List[str] = []
        if summary.avg_response_time_ms > self.thresholds.avg_response_time_ms:
            recommendations.append("Consider optimizing slow queries and adding appropriate indexes")

        unused = self._unused_indexes(latest)
        if unused:
            recommendations.append(f"Consider removing {len(unused)} unused indexes to improve write performance")

        if latest.connection_pool.utilization > self.thresholds.connection_utilization_pct:
            recommendations.append("Consider increasing connection pool size or optimizing connection usage")

        return PerformanceReport(
            generated_at=datetime.now(timezone.utc),
            summary=summary,
            recommendations=recommendations,
            alerts=self.get_alerts(resolved=False),
        )
