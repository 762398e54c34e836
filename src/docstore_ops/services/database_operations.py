"""
# Database Operations Facade

This module composes the connection layer, index catalog, migration engine, query optimizer
and performance monitor into the **lifecycle operations** consumed by the host application.

## Lifecycle

```
connect()
  ├─ DatabaseManager.connect()           (retries with backoff)
  ├─ perform_health_check()              (fails -> ConnectionError)
  ├─ MigrationEngine.run_migrations()    (DB_RUN_MIGRATIONS_ON_STARTUP; failures propagate)
  ├─ QueryOptimizer.enable_profiling()   (DB_ENABLE_PROFILING)
  └─ PerformanceMonitor.start_monitoring() (DB_MONITORING_ENABLED)

disconnect()
  ├─ PerformanceMonitor.stop_monitoring()
  ├─ QueryOptimizer.disable_profiling()  (only if this facade enabled it)
  └─ DatabaseManager.disconnect()
```

## Composition Root

Nothing in `docstore_ops` is a process-wide singleton. `build_database_operations()` wires
one instance of every service and registers the default migrations; the caller owns the
returned object's lifecycle.

## Usage Example

```python
from docstore_ops.config import settings
from docstore_ops.services.database_operations import build_database_operations

operations = build_database_operations(settings)
await operations.connect()

status = await operations.get_health_status()
report = await operations.optimize_database()

await operations.disconnect()
```
"""

from datetime import datetime, timezone
from typing import List, Optional

from pymongo.errors import PyMongoError

from docstore_ops.config import Settings
from docstore_ops.database.index_catalog import IndexCatalog
from docstore_ops.database.manager import DatabaseManager
from docstore_ops.exceptions import MetricsUnavailableError
from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.migrations.core_migrations import build_core_migrations
from docstore_ops.models.migration_models import (
    MigrationRunResult,
    MigrationStatusReport,
    MigrationValidationResult,
)
from docstore_ops.models.operations_models import (
    HealthCheckItem,
    HealthCheckResult,
    HealthStatus,
    OptimizationReport,
)
from docstore_ops.models.performance_models import AlertThresholds, AlertType
from docstore_ops.models.query_models import CollectionQueryStats
from docstore_ops.services.database_metrics import DatabaseMetrics, database_metrics
from docstore_ops.services.migration_engine import MigrationEngine
from docstore_ops.services.performance_monitor import PerformanceMonitor
from docstore_ops.services.query_optimizer import QueryOptimizer

logger = get_logger(prefix="[DatabaseOperations]")
health_logger = get_logger(prefix="[DB_HEALTH]")


class DatabaseOperations:
    """
    Lifecycle facade over the database subsystem.

    Attributes:
        db_manager (`DatabaseManager`): Connection layer.
        index_catalog (`IndexCatalog`): Declared index set.
        migration_engine (`MigrationEngine`): Registry and ledger of migrations.
        query_optimizer (`QueryOptimizer`): Explain and profiler access.
        performance_monitor (`PerformanceMonitor`): Sampling, alerts and reports.
    """

    def __init__(
        self,
        settings: Settings,
        db_manager: DatabaseManager,
        index_catalog: IndexCatalog,
        migration_engine: MigrationEngine,
        query_optimizer: QueryOptimizer,
        performance_monitor: PerformanceMonitor,
    ):
        self.settings = settings
        self.db_manager = db_manager
        self.index_catalog = index_catalog
        self.migration_engine = migration_engine
        self.query_optimizer = query_optimizer
        self.performance_monitor = performance_monitor
        self._initialized = False
        self._profiling_enabled = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def _require_connection(self):
        if not self.db_manager.is_connected:
            raise ConnectionError("Database not connected")

    async def connect(
        self,
        run_migrations: Optional[bool] = None,
        start_monitoring: Optional[bool] = None,
        enable_profiling: Optional[bool] = None,
    ):
        """
        Connect and bring every component up. Idempotent.

        Args:
            run_migrations: Override `DB_RUN_MIGRATIONS_ON_STARTUP`.
            start_monitoring: Override `DB_MONITORING_ENABLED`.
            enable_profiling: Override `DB_ENABLE_PROFILING`. Only profiling turned on here is
                turned off again by `disconnect()`.

        Raises:
            ConnectionError: The store is unreachable or the initial health check failed.
            MigrationError: A pending migration failed or the run lock was not acquired.
        """
        if self._initialized:
            logger.warning("Database already initialized")
            return

        if run_migrations is None:
            run_migrations = self.settings.DB_RUN_MIGRATIONS_ON_STARTUP
        if start_monitoring is None:
            start_monitoring = self.settings.DB_MONITORING_ENABLED
        if enable_profiling is None:
            enable_profiling = self.settings.DB_ENABLE_PROFILING

        logger.info("Initializing database components...")
        await self.db_manager.connect()

        health = await self.perform_health_check()
        if not health.is_healthy:
            await self.db_manager.disconnect()
            raise ConnectionError(f"Database health check failed during initialization: {health.issues}")

        if run_migrations:
            await self.migration_engine.run_migrations()

        if enable_profiling:
            self._profiling_enabled = await self.query_optimizer.enable_profiling(
                self.settings.DB_SLOW_QUERY_THRESHOLD_MS
            )

        if start_monitoring:
            self.performance_monitor.start_monitoring(self.settings.DB_MONITORING_INTERVAL_MS)

        await self.db_manager.log_database_stats()
        self._initialized = True
        logger.info("Database initialization completed")

    async def disconnect(self):
        """Stop monitoring, turn profiling back off and close the client."""
        if not self.db_manager.is_connected:
            logger.warning("Database not connected")
            return

        self.performance_monitor.stop_monitoring()
        if self._profiling_enabled:
            await self.query_optimizer.disable_profiling()
            self._profiling_enabled = False

        await self.db_manager.disconnect()
        self._initialized = False
        logger.info("Database disconnected successfully")

    # Migrations

    async def run_migrations(self) -> MigrationRunResult:
        self._require_connection()
        return await self.migration_engine.run_migrations()

    async def rollback_migration(self, migration_id: str) -> bool:
        self._require_connection()
        return await self.migration_engine.rollback_migration(migration_id)

    async def get_migration_status(self) -> MigrationStatusReport:
        self._require_connection()
        return await self.migration_engine.get_migration_status()

    async def validate_migrations(self) -> MigrationValidationResult:
        self._require_connection()
        return await self.migration_engine.validate_migrations()

    # Optimization

    async def optimize_database(self) -> OptimizationReport:
        """
        Optimize every collection in `DB_OPTIMIZE_COLLECTIONS`, analyze index usage and
        attach a performance report when a sample exists.

        One collection failing is recorded in `failed_collections`; the others still run.
        """
        self._require_connection()
        logger.info("Starting database optimization...")
        report = OptimizationReport(started_at=datetime.now(timezone.utc))

        for collection in self.settings.optimize_collections_list:
            logger.info("Optimizing collection: %s", collection)
            try:
                result = await self.query_optimizer.optimize_collection(collection)
            except PyMongoError as e:
                logger.error("Optimization of %s failed: %s", collection, e)
                report.failed_collections[collection] = str(e)
                continue
            report.collections[collection] = result
            logger.info(
                "Collection optimization completed: %s (%d analyzed, %d suggestions)",
                collection,
                result.analyzed,
                len(result.suggestions),
            )

        report.index_usage = await self.index_catalog.analyze_usage()
        report.index_suggestions = await self.index_catalog.generate_suggestions()

        try:
            report.performance_report = self.performance_monitor.generate_performance_report()
        except MetricsUnavailableError:
            logger.info("No performance sample yet; report omitted")

        report.completed_at = datetime.now(timezone.utc)
        logger.info("Database optimization completed")
        return report

    # Health

    async def perform_health_check(self) -> HealthCheckResult:
        """
        Connection, pool utilization and ping latency checks.

        A failed check also raises an `error` alert in the performance monitor.
        """
        result = HealthCheckResult(is_healthy=True, timestamp=datetime.now(timezone.utc))

        connected = await self.db_manager.health_check()
        result.checks.append(HealthCheckItem(name="connection", status="pass" if connected else "fail"))
        if not connected:
            result.is_healthy = False
            result.issues.append("Database connection is down")

        pool = self.db_manager.get_connection_pool_metrics()
        utilization = pool.active / pool.pool_size if pool.pool_size else 0.0
        warn_level = self.settings.DB_POOL_UTILIZATION_WARN
        result.checks.append(
            HealthCheckItem(
                name="connection_pool",
                status="pass" if utilization < warn_level else "warn",
                details={"utilization": utilization, **pool.model_dump()},
            )
        )
        if utilization >= warn_level:
            result.issues.append("Connection pool utilization is high")

        if connected:
            try:
                latency_ms = await self.db_manager.ping()
                warn_ms = self.settings.DB_HEALTH_PING_WARN_MS
                result.checks.append(
                    HealthCheckItem(
                        name="ping",
                        status="pass" if latency_ms < warn_ms else "warn",
                        details={"response_time_ms": latency_ms},
                    )
                )
                if latency_ms >= warn_ms:
                    result.issues.append(f"Database ping time is high: {latency_ms:.0f}ms")
            except (PyMongoError, ConnectionError) as e:
                result.is_healthy = False
                result.checks.append(HealthCheckItem(name="ping", status="fail", details={"error": str(e)}))
                result.issues.append("Database ping failed")

        if not result.is_healthy:
            health_logger.error("Database health check failed: %s", result.issues)
            self.performance_monitor.create_alert(
                AlertType.ERROR, "Database health check failed", {"issues": list(result.issues)}
            )
        return result

    async def get_health_status(self) -> HealthStatus:
        """Connection health, collection stats, migration status, latest sample and open alerts."""
        status = HealthStatus(
            connected=self.db_manager.is_connected,
            initialized=self._initialized,
            monitoring=self.performance_monitor.is_monitoring,
        )
        if not status.connected:
            return status

        status.connection_pool = self.db_manager.get_connection_pool_metrics()
        status.health = await self.perform_health_check()
        status.collections = await self._collection_stats()

        try:
            status.migrations = await self.migration_engine.get_migration_status()
        except PyMongoError as e:
            logger.error("Failed to read migration status: %s", e)

        status.performance = self.performance_monitor.get_latest_metrics()
        status.alerts = self.performance_monitor.get_alerts(resolved=False)
        return status

    async def _collection_stats(self) -> List[CollectionQueryStats]:
        stats: List[CollectionQueryStats] = []
        for collection in self.settings.monitored_collections_list:
            try:
                stats.append(await self.query_optimizer.get_query_stats(collection))
            except PyMongoError as e:
                logger.debug("Failed to get stats for collection %s: %s", collection, e)
        return stats


def build_database_operations(
    settings: Settings,
    db_manager: Optional[DatabaseManager] = None,
    metrics: Optional[DatabaseMetrics] = None,
) -> DatabaseOperations:
    """
    Composition root: construct and wire every service for one database.

    Args:
        settings: Configuration for all components.
        db_manager: Existing connection layer (tests pass one bound to a fake database).
        metrics: Prometheus sink; defaults to the process-wide `database_metrics`.
    """
    metrics = metrics or database_metrics
    db_manager = db_manager or DatabaseManager(settings)
    index_catalog = IndexCatalog(db_manager)

    migration_engine = MigrationEngine(db_manager, settings, metrics=metrics)
    migration_engine.register_all(build_core_migrations(index_catalog))

    query_optimizer = QueryOptimizer(db_manager, settings, index_catalog, metrics=metrics)
    performance_monitor = PerformanceMonitor(
        db_manager,
        settings,
        query_optimizer,
        index_catalog,
        thresholds=AlertThresholds.from_settings(settings),
        metrics=metrics,
    )

    return DatabaseOperations(
        settings=settings,
        db_manager=db_manager,
        index_catalog=index_catalog,
        migration_engine=migration_engine,
        query_optimizer=query_optimizer,
        performance_monitor=performance_monitor,
    )
