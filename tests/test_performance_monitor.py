import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from docstore_ops.database.index_catalog import IndexCatalog
from docstore_ops.exceptions import MetricsUnavailableError
from docstore_ops.models.performance_models import (
    AlertType,
    CollectionMetrics,
    ConnectionPoolMetrics,
    PerformanceMetrics,
    QueryMetrics,
)
from docstore_ops.services.performance_monitor import PerformanceMonitor
from docstore_ops.services.query_optimizer import QueryOptimizer


@pytest.fixture
def monitor(db_manager, settings, metrics):
    catalog = IndexCatalog(db_manager)
    optimizer = QueryOptimizer(db_manager, settings, catalog, metrics=metrics)
    monitor = PerformanceMonitor(db_manager, settings, optimizer, catalog, metrics=metrics)
    yield monitor
    monitor.stop_monitoring()


def snapshot(timestamp=None, pool=None, queries=None, collections=None):
    return PerformanceMetrics(
        timestamp=timestamp or datetime.now(timezone.utc),
        connection_pool=pool or ConnectionPoolMetrics(),
        queries=queries or QueryMetrics(),
        collections=collections or [],
    )


def tick_count(metrics, status):
    return metrics.monitoring_ticks_total.labels(status=status)._value.get()


@pytest.mark.asyncio
async def test_history_keeps_newest_hundred_in_order(monitor):
    collected = [await monitor.collect_metrics() for _ in range(150)]

    history = monitor.get_performance_history()

    assert len(history) == 100
    assert history == collected[50:]
    assert monitor.get_latest_metrics() is collected[-1]
    assert monitor.get_performance_history(limit=5) == collected[-5:]


def test_alert_buffer_is_bounded_and_resolvable(monitor):
    created = [monitor.create_alert(AlertType.INFO, f"alert {i}") for i in range(150)]

    alerts = monitor.get_alerts()
    assert len(alerts) == 100
    assert alerts[0].id == created[50].id

    target = created[120]
    assert monitor.resolve_alert(target.id) is True
    assert [a.id for a in monitor.get_alerts(resolved=True)] == [target.id]
    assert len(monitor.get_alerts(resolved=False)) == 99
    assert monitor.resolve_alert("unknown") is False
    assert monitor.resolve_alert(created[0].id) is False


@pytest.mark.asyncio
async def test_high_pool_utilization_raises_one_warning(monitor, db_manager):
    listener = db_manager.pool_listener
    for _ in range(10):
        listener.connection_created(None)
    for _ in range(9):
        listener.connection_checked_out(None)

    sample = await monitor.collect_metrics()
    assert sample.connection_pool.active == 9
    assert sample.connection_pool.pool_size == 10

    alerts = monitor.check_alerts()

    assert len(alerts) == 1
    assert alerts[0].type == AlertType.WARNING
    assert alerts[0].metadata["utilization"] >= 80
    assert alerts[0].metadata["threshold"] == 80.0


@pytest.mark.asyncio
async def test_slow_query_and_response_time_alerts(monitor, fake_db):
    now = datetime.now(timezone.utc)
    fake_db["system.profile"].docs = [
        {"ts": now, "ns": "marketplace_test.users", "command": {"find": "users"}, "millis": 300},
        {"ts": now, "ns": "marketplace_test.users", "command": {"update": "users"}, "millis": 20},
    ]

    sample = await monitor.collect_metrics()
    assert sample.queries.total == 2
    assert sample.queries.slow == 1
    assert sample.queries.avg_response_time_ms == 160
    assert sample.queries.by_type == {"find": 1, "update": 1}

    messages = [a.message for a in monitor.check_alerts()]
    assert "1 slow queries detected" in messages
    assert "High average response time: 160.0ms" in messages


def test_growth_rate_alert(monitor):
    start = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    monitor._history.append(snapshot(start, collections=[CollectionMetrics(name="users", document_count=100)]))
    monitor._history.append(
        snapshot(start + timedelta(hours=1), collections=[CollectionMetrics(name="users", document_count=200)])
    )

    alerts = monitor.check_alerts()

    assert len(alerts) == 1
    assert alerts[0].message == "High document growth rate in users: 100.0% per hour"
    assert alerts[0].metadata["collection"] == "users"


@pytest.mark.asyncio
async def test_unused_index_info_alert(monitor, fake_db):
    await fake_db["companies"].create_index([("size", 1)])

    await monitor.collect_metrics()
    alerts = monitor.check_alerts()

    assert [a.type for a in alerts] == [AlertType.INFO]
    assert alerts[0].metadata["unused_indexes"] == ["companies.size_1"]


def test_report_requires_a_sample(monitor):
    with pytest.raises(MetricsUnavailableError):
        monitor.generate_performance_report()


def test_report_summary_and_recommendations(monitor):
    monitor._history.append(
        snapshot(
            pool=ConnectionPoolMetrics(total=10, active=10, idle=0, pool_size=10),
            queries=QueryMetrics(total=4, slow=2, avg_response_time_ms=75.0),
            collections=[
                CollectionMetrics(name="users", document_count=10, index_count=3),
                CollectionMetrics(name="companies", document_count=5, index_count=2),
            ],
        )
    )
    alert = monitor.create_alert(AlertType.WARNING, "something")

    report = monitor.generate_performance_report()

    assert report.summary.total_collections == 2
    assert report.summary.total_documents == 15
    assert report.summary.total_indexes == 5
    assert report.summary.slow_queries == 2
    assert report.recommendations == [
        "Consider optimizing slow queries and adding appropriate indexes",
        "Consider increasing connection pool size or optimizing connection usage",
    ]
    assert [a.id for a in report.alerts] == [alert.id]


@pytest.mark.asyncio
async def test_start_and_stop_monitoring(monitor):
    monitor.start_monitoring(1000)
    assert monitor.is_monitoring

    await asyncio.sleep(3.5)
    assert len(monitor.get_performance_history()) == 3

    monitor.stop_monitoring()
    assert not monitor.is_monitoring

    await asyncio.sleep(2)
    assert len(monitor.get_performance_history()) == 3


@pytest.mark.asyncio
async def test_start_twice_is_a_noop(monitor):
    monitor.start_monitoring(60000)
    scheduler = monitor._scheduler
    monitor.start_monitoring(1000)

    assert monitor._scheduler is scheduler
    monitor.stop_monitoring()
    assert monitor._scheduler is None


def test_non_positive_interval_rejected(monitor):
    with pytest.raises(ValueError):
        monitor.start_monitoring(-5)
    with pytest.raises(ValueError):
        monitor.start_monitoring(0)
    assert not monitor.is_monitoring


@pytest.mark.asyncio
async def test_overlapping_tick_is_skipped(monitor, metrics):
    monitor._running = True
    async with monitor._collect_lock:
        await monitor._tick()

    assert monitor.get_performance_history() == []
    assert tick_count(metrics, "skipped") == 1


@pytest.mark.asyncio
async def test_failed_tick_is_counted_not_raised(monitor, metrics, db_manager):
    monitor._running = True
    db_manager.database = None

    await monitor._tick()

    assert tick_count(metrics, "failed") == 1
    assert monitor.get_performance_history() == []


def test_clear_history_and_alerts(monitor):
    monitor._history.append(snapshot())
    monitor.create_alert(AlertType.ERROR, "down")

    monitor.clear_history()
    monitor.clear_alerts()

    assert monitor.get_latest_metrics() is None
    assert monitor.get_alerts() == []
