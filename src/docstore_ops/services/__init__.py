"""Services layer: migrations, query optimization, performance monitoring and the lifecycle facade."""

from docstore_ops.services.database_operations import DatabaseOperations, build_database_operations
from docstore_ops.services.migration_engine import MigrationEngine
from docstore_ops.services.performance_monitor import PerformanceMonitor
from docstore_ops.services.query_optimizer import QueryOptimizer

__all__ = [
    "DatabaseOperations",
    "MigrationEngine",
    "PerformanceMonitor",
    "QueryOptimizer",
    "build_database_operations",
]
