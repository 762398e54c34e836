"""Pydantic models for migrations, indexes, query analysis and performance telemetry."""

from docstore_ops.models.index_models import (
    IndexCreationSummary,
    IndexDefinition,
    IndexDiff,
    IndexInfo,
    IndexOptions,
    IndexUsage,
)
from docstore_ops.models.migration_models import (
    Migration,
    MigrationRecord,
    MigrationRunResult,
    MigrationStatusReport,
    MigrationSummary,
    MigrationValidationResult,
)
from docstore_ops.models.operations_models import (
    HealthCheckItem,
    HealthCheckResult,
    HealthStatus,
    OptimizationReport,
)
from docstore_ops.models.performance_models import (
    AlertThresholds,
    AlertType,
    CollectionMetrics,
    ConnectionPoolMetrics,
    DatabaseAlert,
    PerformanceMetrics,
    PerformanceReport,
    PerformanceSummary,
    QueryMetrics,
)
from docstore_ops.models.query_models import (
    CollectionOptimizationResult,
    CollectionQueryStats,
    QueryAnalysis,
    SlowQuery,
)

__all__ = [
    "AlertThresholds",
    "AlertType",
    "CollectionMetrics",
    "CollectionOptimizationResult",
    "CollectionQueryStats",
    "ConnectionPoolMetrics",
    "DatabaseAlert",
    "HealthCheckItem",
    "HealthCheckResult",
    "HealthStatus",
    "IndexCreationSummary",
    "IndexDefinition",
    "IndexDiff",
    "IndexInfo",
    "IndexOptions",
    "IndexUsage",
    "Migration",
    "MigrationRecord",
    "MigrationRunResult",
    "MigrationStatusReport",
    "MigrationSummary",
    "MigrationValidationResult",
    "OptimizationReport",
    "PerformanceMetrics",
    "PerformanceReport",
    "PerformanceSummary",
    "QueryAnalysis",
    "QueryMetrics",
    "SlowQuery",
]
