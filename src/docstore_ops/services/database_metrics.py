"""
# Database Metrics Service

This module publishes the database lifecycle subsystem as **Prometheus metrics**.

## Domain Overview

- **Pool**: total/active/idle connections and configured pool size.
- **Queries**: slow query count and average response time from the profiler.
- **Collections**: document counts, index counts, storage size.
- **Indexes**: `$indexStats` operation counters.
- **Lifecycle**: migrations applied/failed/rolled back, monitoring ticks, alerts raised.

## Key Features

### 1. Metric Types
- **Gauges**: Values copied from the latest `PerformanceMetrics` sample.
- **Counters**: Alerts, migrations, query analyses, monitoring ticks.
- **Histograms**: Query analysis and migration durations.

### 2. Registries
`DatabaseMetrics` registers into the default registry unless a `CollectorRegistry` is passed,
which keeps test instances isolated from each other.

## Usage Example

```python
from docstore_ops.services.database_metrics import database_metrics

database_metrics.record_migration("applied", duration=0.42)
database_metrics.record_alert("warning")
```
"""

from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.models.performance_models import PerformanceMetrics

logger = get_logger(prefix="[DatabaseMetrics]")


class DatabaseMetrics:
    """
    Prometheus metrics for the performance monitor, query optimizer and migration engine.

    **Integration:** Exposed by whatever `/metrics` endpoint the host application mounts on the
    same registry.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        registry = registry if registry is not None else REGISTRY

        # Gauges (latest sample)
        self.connections = Gauge(
            "docstore_connections",
            "Client-side connection pool figures",
            ["state"],
            registry=registry,
        )
        self.slow_queries = Gauge(
            "docstore_slow_queries",
            "Slow queries in the latest profiler window",
            registry=registry,
        )
        self.avg_response_time = Gauge(
            "docstore_avg_response_time_ms",
            "Average profiled operation duration in milliseconds",
            registry=registry,
        )
        self.collection_documents = Gauge(
            "docstore_collection_documents",
            "Documents per collection",
            ["collection"],
            registry=registry,
        )
        self.collection_indexes = Gauge(
            "docstore_collection_indexes",
            "Indexes per collection",
            ["collection"],
            registry=registry,
        )
        self.collection_size = Gauge(
            "docstore_collection_size_bytes",
            "Storage size per collection",
            ["collection"],
            registry=registry,
        )
        self.index_usage_ops = Gauge(
            "docstore_index_usage_ops",
            "Operations served by an index since its counter reference time",
            ["collection", "index"],
            registry=registry,
        )

        # Counters
        self.alerts_total = Counter(
            "docstore_alerts_total",
            "Alerts raised by the performance monitor",
            ["type"],
            registry=registry,
        )
        self.query_analyses_total = Counter(
            "docstore_query_analyses_total",
            "Explain-based query analyses",
            ["collection", "index_used"],
            registry=registry,
        )
        self.migrations_total = Counter(
            "docstore_migrations_total",
            "Migration executions",
            ["status"],
            registry=registry,
        )
        self.monitoring_ticks_total = Counter(
            "docstore_monitoring_ticks_total",
            "Performance monitor sampling ticks",
            ["status"],
            registry=registry,
        )

        # Histograms
        self.query_analysis_duration = Histogram(
            "docstore_query_analysis_seconds",
            "Duration of explain round-trips",
            ["collection"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
            registry=registry,
        )
        self.migration_duration = Histogram(
            "docstore_migration_duration_seconds",
            "Duration of a single migration step",
            buckets=(0.1, 0.5, 1, 5, 10, 30, 60, 300, 900),
            registry=registry,
        )

        logger.info("Database metrics initialized")

    def record_sample(self, metrics: PerformanceMetrics):
        """Copy a monitoring sample into the gauges."""
        pool = metrics.connection_pool
        self.connections.labels(state="total").set(pool.total)
        self.connections.labels(state="active").set(pool.active)
        self.connections.labels(state="idle").set(pool.idle)
        self.connections.labels(state="pool_size").set(pool.pool_size)

        self.slow_queries.set(metrics.queries.slow)
        self.avg_response_time.set(metrics.queries.avg_response_time_ms)

        for collection in metrics.collections:
            self.collection_documents.labels(collection=collection.name).set(collection.document_count)
            self.collection_indexes.labels(collection=collection.name).set(collection.index_count)
            self.collection_size.labels(collection=collection.name).set(collection.total_size)

        for usage in metrics.indexes:
            self.index_usage_ops.labels(collection=usage.collection, index=usage.index_name).set(usage.usage_ops)

    def record_tick(self, status: str):
        self.monitoring_ticks_total.labels(status=status).inc()

    def record_alert(self, alert_type: str):
        self.alerts_total.labels(type=alert_type).inc()

    def record_query_analysis(self, collection: str, duration: float, index_used: bool):
        self.query_analysis_duration.labels(collection=collection).observe(duration)
        self.query_analyses_total.labels(collection=collection, index_used=str(index_used).lower()).inc()

    def record_migration(self, status: str, duration: Optional[float] = None):
        """Record a migration step (`applied`, `failed`, `rolled_back`)."""
        self.migrations_total.labels(status=status).inc()
        if duration is not None:
            self.migration_duration.observe(duration)


# Global metrics instance
database_metrics = DatabaseMetrics()
