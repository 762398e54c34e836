from unittest.mock import AsyncMock, patch

import pytest
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError

from docstore_ops.exceptions import MigrationExecutionError
from docstore_ops.models.migration_models import Migration
from docstore_ops.models.performance_models import AlertType
from docstore_ops.services.database_operations import build_database_operations


@pytest.fixture
def operations(settings, db_manager, metrics):
    ops = build_database_operations(settings, db_manager=db_manager, metrics=metrics)
    yield ops
    ops.performance_monitor.stop_monitoring()


def test_composition_registers_core_migrations(operations):
    assert [m.id for m in operations.migration_engine.migrations] == [
        "001_initial_setup",
        "002_user_enhancements",
        "003_company_enhancements",
        "004_analytics_ttl",
    ]
    assert operations.query_optimizer.index_catalog is operations.index_catalog
    assert operations.performance_monitor.query_optimizer is operations.query_optimizer


@pytest.mark.asyncio
async def test_connect_runs_migrations_and_is_idempotent(operations, fake_db):
    await fake_db["users"].insert_one({"email": "buyer@example.com"})
    await fake_db["companies"].insert_one({"name": "Acme Foods"})

    await operations.connect(run_migrations=True)
    await operations.connect(run_migrations=True)

    assert operations.is_initialized
    ledger = [doc["migration_id"] for doc in fake_db["migrations"].docs]
    assert ledger == ["001_initial_setup", "002_user_enhancements", "003_company_enhancements", "004_analytics_ttl"]

    user = fake_db["users"].docs[0]
    assert user["onboardingStep"] == "email-verification"
    assert user["preferences"]["notifications"]["email"] is True
    company = fake_db["companies"].docs[0]
    assert company["businessHours"]["sunday"]["closed"] is True
    assert company["businessHours"]["monday"]["closed"] is False
    assert "email_1" in fake_db["users"].indexes
    assert "dbStats" in fake_db.commands


@pytest.mark.asyncio
async def test_connect_surfaces_migration_failure(operations):
    async def broken(db):
        raise RuntimeError("bad data")

    operations.migration_engine.register(
        Migration(id="005_broken", version="1.4.0", description="Broken", up=broken, down=broken)
    )

    with pytest.raises(MigrationExecutionError) as exc_info:
        await operations.connect(run_migrations=True)

    assert exc_info.value.migration_id == "005_broken"
    assert exc_info.value.applied[-1] == "004_analytics_ttl"
    assert not operations.is_initialized


@pytest.mark.asyncio
async def test_connect_starts_and_disconnect_stops_everything(settings, db_manager, metrics, fake_db):
    settings.DB_ENABLE_PROFILING = True
    ops = build_database_operations(settings, db_manager=db_manager, metrics=metrics)

    await ops.connect(start_monitoring=True)
    assert ops.performance_monitor.is_monitoring
    assert {"profile": 1, "slowms": 100} in fake_db.commands

    await ops.disconnect()

    assert not ops.performance_monitor.is_monitoring
    assert {"profile": 0} in fake_db.commands
    assert not db_manager.is_connected
    assert not ops.is_initialized


@pytest.mark.asyncio
async def test_connect_fails_when_health_check_fails(operations, db_manager):
    db_manager.client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))

    with pytest.raises(ConnectionError, match="health check failed"):
        await operations.connect()

    assert not db_manager.is_connected


@pytest.mark.asyncio
async def test_operations_require_a_connection(operations, db_manager):
    db_manager.client = None
    db_manager.database = None

    with pytest.raises(ConnectionError, match="Database not connected"):
        await operations.run_migrations()
    with pytest.raises(ConnectionError):
        await operations.get_migration_status()
    with pytest.raises(ConnectionError):
        await operations.optimize_database()


@pytest.mark.asyncio
async def test_health_check_pass(operations):
    result = await operations.perform_health_check()

    assert result.is_healthy is True
    assert [c.name for c in result.checks] == ["connection", "connection_pool", "ping"]
    assert all(c.status == "pass" for c in result.checks)
    assert result.issues == []


@pytest.mark.asyncio
async def test_health_check_warns_on_pool_pressure_and_slow_ping(operations, db_manager):
    listener = db_manager.pool_listener
    for _ in range(10):
        listener.connection_created(None)
        listener.connection_checked_out(None)

    with patch.object(db_manager, "ping", AsyncMock(return_value=250.0)):
        result = await operations.perform_health_check()

    assert result.is_healthy is True
    statuses = {c.name: c.status for c in result.checks}
    assert statuses == {"connection": "pass", "connection_pool": "warn", "ping": "warn"}
    assert "Connection pool utilization is high" in result.issues
    assert "Database ping time is high: 250ms" in result.issues


@pytest.mark.asyncio
async def test_pool_utilization_at_warn_level_is_reported(operations, db_manager):
    listener = db_manager.pool_listener
    for _ in range(9):
        listener.connection_created(None)
        listener.connection_checked_out(None)

    result = await operations.perform_health_check()

    pool_check = next(c for c in result.checks if c.name == "connection_pool")
    assert pool_check.status == "warn"
    assert pool_check.details["utilization"] == pytest.approx(0.9)
    assert "Connection pool utilization is high" in result.issues


@pytest.mark.asyncio
async def test_failed_health_check_raises_error_alert(operations, db_manager):
    with patch.object(db_manager, "health_check", AsyncMock(return_value=False)):
        result = await operations.perform_health_check()

    assert result.is_healthy is False
    alerts = operations.performance_monitor.get_alerts()
    assert [(a.type, a.message) for a in alerts] == [(AlertType.ERROR, "Database health check failed")]


@pytest.mark.asyncio
async def test_health_status_aggregate(operations):
    await operations.run_migrations()
    await operations.performance_monitor.collect_metrics()

    status = await operations.get_health_status()

    assert status.connected is True
    assert status.health.is_healthy is True
    assert status.migrations.applied == 4
    assert status.migrations.pending == 0
    assert [c.collection for c in status.collections] == ["users", "companies", "analyticsevents"]
    assert status.performance is not None
    assert status.alerts == operations.performance_monitor.get_alerts(resolved=False)


@pytest.mark.asyncio
async def test_health_status_when_disconnected(operations, db_manager):
    db_manager.client = None
    db_manager.database = None

    status = await operations.get_health_status()

    assert status.connected is False
    assert status.health is None
    assert status.migrations is None


@pytest.mark.asyncio
async def test_optimize_database_isolates_failing_collection(operations, fake_db):
    await operations.run_migrations()
    original = operations.query_optimizer.optimize_collection

    async def flaky(collection):
        if collection == "companies":
            raise OperationFailure("collection is being dropped")
        return await original(collection)

    with patch.object(operations.query_optimizer, "optimize_collection", flaky):
        report = await operations.optimize_database()

    assert set(report.collections) == {"users", "analyticsevents"}
    assert "companies" in report.failed_collections
    assert set(report.index_usage) == {"users", "companies", "analyticsevents"}
    assert report.performance_report is None
    assert report.completed_at is not None


@pytest.mark.asyncio
async def test_optimize_database_includes_performance_report(operations):
    await operations.performance_monitor.collect_metrics()

    report = await operations.optimize_database()

    assert report.performance_report is not None
    assert report.performance_report.summary.total_collections == 3


@pytest.mark.asyncio
async def test_rollback_and_validate_pass_through(operations, fake_db):
    await operations.run_migrations()

    assert await operations.rollback_migration("004_analytics_ttl") is True
    assert "timestamp_1" not in fake_db["analyticsevents"].indexes
    assert (await operations.validate_migrations()).valid is True
    assert (await operations.get_migration_status()).pending == 1
