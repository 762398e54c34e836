from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from docstore_ops.database.manager import DatabaseManager
from docstore_ops.database.pool_listener import PoolStatsListener
from tests.conftest import FakeDatabase


def make_client(fake_db, hello=None):
    client = MagicMock()

    async def admin_command(command):
        if command == {"hello": 1}:
            return hello or {"isWritablePrimary": True}
        return {"ok": 1.0}

    client.admin.command = AsyncMock(side_effect=admin_command)
    client.server_info = AsyncMock(return_value={"version": "7.0.4", "maxBsonObjectSize": 16777216})
    client.__getitem__.return_value = fake_db
    return client


@pytest.mark.asyncio
async def test_requires_connection(settings):
    manager = DatabaseManager(settings)

    assert not manager.is_connected
    with pytest.raises(ConnectionError, match="Call connect\\(\\) first"):
        manager.get_collection("users")
    with pytest.raises(ConnectionError):
        await manager.ping()
    assert await manager.health_check() is False


@pytest.mark.asyncio
async def test_connect_wires_pool_listener_and_detects_replica_set(settings):
    fake_db = FakeDatabase()
    client = make_client(fake_db, hello={"setName": "rs0"})
    manager = DatabaseManager(settings)

    with patch("docstore_ops.database.manager.AsyncIOMotorClient", return_value=client) as client_cls:
        await manager.connect()
        await manager.connect()

    client_cls.assert_called_once()
    kwargs = client_cls.call_args.kwargs
    assert kwargs["event_listeners"] == [manager.pool_listener]
    assert kwargs["maxPoolSize"] == 10
    assert manager.is_connected
    assert manager.get_database() is fake_db
    assert manager.transactions_supported is True


@pytest.mark.asyncio
async def test_connect_retries_with_backoff_then_raises(settings):
    client = make_client(FakeDatabase())
    client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))
    manager = DatabaseManager(settings)

    with patch("docstore_ops.database.manager.AsyncIOMotorClient", return_value=client) as client_cls, patch(
        "docstore_ops.database.manager.asyncio.sleep", new_callable=AsyncMock
    ) as sleep:
        with pytest.raises(ServerSelectionTimeoutError):
            await manager.connect()

    assert client_cls.call_count == 2
    sleep.assert_awaited_once_with(1)
    assert client.close.call_count == 2
    assert not manager.is_connected


@pytest.mark.asyncio
async def test_disconnect_is_safe_to_repeat(db_manager):
    client = db_manager.client

    await db_manager.disconnect()
    await db_manager.disconnect()

    client.close.assert_called_once()
    assert db_manager.client is None
    assert db_manager.database is None


@pytest.mark.asyncio
async def test_ping_and_collection_stats(db_manager, fake_db):
    await fake_db["users"].insert_one({"email": "a@example.com"})

    assert await db_manager.ping() >= 0
    stats = await db_manager.collection_stats("users")

    assert stats["count"] == 1
    assert ("collStats", "users") in fake_db.commands


def test_pool_metrics_from_listener(db_manager):
    listener = db_manager.pool_listener
    for _ in range(4):
        listener.connection_created(None)
    for _ in range(3):
        listener.connection_checked_out(None)
    listener.connection_checked_in(None)

    pool = db_manager.get_connection_pool_metrics()

    assert (pool.total, pool.active, pool.idle, pool.pool_size) == (4, 2, 2, 10)
    assert pool.utilization == 20.0


def test_pool_listener_reset_and_failures():
    listener = PoolStatsListener()
    listener.connection_created(None)
    listener.connection_check_out_failed(MagicMock(address=("localhost", 27017), reason="timeout"))

    assert listener.snapshot()["checkout_failures"] == 1

    listener.reset()
    assert listener.snapshot() == {"total": 0, "active": 0, "idle": 0, "checkout_failures": 0, "pools_cleared": 0}
