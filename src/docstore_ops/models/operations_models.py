"""
Aggregate models returned by the `DatabaseOperations` facade to the surrounding application.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from docstore_ops.models.index_models import IndexUsage
from docstore_ops.models.migration_models import MigrationStatusReport
from docstore_ops.models.performance_models import (
    ConnectionPoolMetrics,
    DatabaseAlert,
    PerformanceMetrics,
    PerformanceReport,
)
from docstore_ops.models.query_models import CollectionOptimizationResult, CollectionQueryStats

CheckStatus = Literal["pass", "warn", "fail"]


class HealthCheckItem(BaseModel):
    name: str
    status: CheckStatus
    details: Dict[str, Any] = Field(default_factory=dict)


class HealthCheckResult(BaseModel):
    """Result of `DatabaseOperations.perform_health_check()`."""

    is_healthy: bool
    timestamp: datetime
    checks: List[HealthCheckItem] = Field(default_factory=list)
    issues: List[str] = Field(default_factory=list)


class HealthStatus(BaseModel):
    """Aggregate of connection health, migrations, the latest sample and open alerts."""

    connected: bool
    initialized: bool
    monitoring: bool = False
    connection_pool: Optional[ConnectionPoolMetrics] = None
    health: Optional[HealthCheckResult] = None
    collections: List[CollectionQueryStats] = Field(default_factory=list)
    migrations: Optional[MigrationStatusReport] = None
    performance: Optional[PerformanceMetrics] = None
    alerts: List[DatabaseAlert] = Field(default_factory=list)


class OptimizationReport(BaseModel):
    """Findings of one `optimize_database()` pass."""

    started_at: datetime
    completed_at: Optional[datetime] = None
    collections: Dict[str, CollectionOptimizationResult] = Field(default_factory=dict)
    failed_collections: Dict[str, str] = Field(default_factory=dict)
    index_usage: Dict[str, List[IndexUsage]] = Field(default_factory=dict)
    index_suggestions: List[str] = Field(default_factory=list)
    performance_report: Optional[PerformanceReport] = None
