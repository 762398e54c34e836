"""
# Performance Telemetry Models

Snapshots, alerts and reports produced by `PerformanceMonitor`.

- **PerformanceMetrics** is immutable once created and appended to a bounded history.
- **DatabaseAlert** is created by threshold evaluation and mutated only through
  `PerformanceMonitor.resolve_alert()`.
- **AlertThresholds** carries the configurable alert limits; it is built from `Settings`
  so environments can tune them without code changes.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from docstore_ops.models.index_models import IndexUsage


class AlertType(str, Enum):
    """Alert severity levels."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class ConnectionPoolMetrics(BaseModel):
    """Client-side connection pool figures."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    active: int = 0
    idle: int = 0
    pool_size: int = 0

    @property
    def utilization(self) -> float:
        """Active connections as a percentage of the configured pool size."""
        if self.pool_size <= 0:
            return 0.0
        return self.active / self.pool_size * 100


class QueryMetrics(BaseModel):
    """Aggregates over the most recent profiler entries."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    slow: int = 0
    avg_response_time_ms: float = 0.0
    by_type: Dict[str, int] = Field(default_factory=dict)


class CollectionMetrics(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    document_count: int = 0
    index_count: int = 0
    total_size: int = 0
    avg_doc_size: float = 0.0


class PerformanceMetrics(BaseModel):
    """One sampling tick's worth of telemetry."""

    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    connection_pool: ConnectionPoolMetrics = Field(default_factory=ConnectionPoolMetrics)
    queries: QueryMetrics = Field(default_factory=QueryMetrics)
    collections: List[CollectionMetrics] = Field(default_factory=list)
    indexes: List[IndexUsage] = Field(default_factory=list)


class DatabaseAlert(BaseModel):
    """A threshold breach raised by the monitor."""

    id: str
    type: AlertType
    message: str
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)
    resolved: bool = False


class AlertThresholds(BaseModel):
    """Alert limits evaluated by `PerformanceMonitor.check_alerts()`."""

    model_config = ConfigDict(frozen=True)

    slow_query_ms: int = 100
    connection_utilization_pct: float = 80.0
    avg_response_time_ms: float = 50.0
    document_growth_rate_pct_per_hour: float = 50.0
    index_min_ops_per_day: float = 1.0

    @classmethod
    def from_settings(cls, settings: Any) -> "AlertThresholds":
        return cls(
            slow_query_ms=settings.DB_SLOW_QUERY_THRESHOLD_MS,
            connection_utilization_pct=settings.DB_CONNECTION_UTILIZATION_THRESHOLD,
            avg_response_time_ms=settings.DB_AVG_RESPONSE_TIME_THRESHOLD_MS,
            document_growth_rate_pct_per_hour=settings.DB_DOCUMENT_GROWTH_RATE_THRESHOLD,
            index_min_ops_per_day=settings.DB_INDEX_MIN_OPS_PER_DAY,
        )


class PerformanceSummary(BaseModel):
    total_collections: int = 0
    total_documents: int = 0
    total_indexes: int = 0
    avg_response_time_ms: float = 0.0
    slow_queries: int = 0


class PerformanceReport(BaseModel):
    """Summary, recommendations and unresolved alerts derived from the latest sample."""

    generated_at: datetime
    summary: PerformanceSummary
    recommendations: List[str] = Field(default_factory=list)
    alerts: List[DatabaseAlert] = Field(default_factory=list)
