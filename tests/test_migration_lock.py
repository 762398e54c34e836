from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from docstore_ops.exceptions import MigrationLockError
from docstore_ops.services.migration_lock import MigrationLock


@pytest.fixture
def lock(db_manager):
    return MigrationLock(db_manager, "migration_locks", ttl_seconds=60)


@pytest.mark.asyncio
async def test_acquire_and_release(lock, fake_db):
    acquired, error = await lock.acquire_lock()

    assert acquired is True
    assert error is None
    lease = fake_db["migration_locks"].docs[0]
    assert lease["_id"] == "schema_migrations"
    assert lease["owner"] == lock.owner
    assert lease["expires_at"] - lease["acquired_at"] == timedelta(seconds=60)

    await lock.release_lock()
    assert fake_db["migration_locks"].docs == []


@pytest.mark.asyncio
async def test_second_runner_is_rejected_while_lease_is_live(lock, db_manager):
    other = MigrationLock(db_manager, "migration_locks", ttl_seconds=60)
    await lock.acquire_lock()

    acquired, error = await other.acquire_lock()

    assert acquired is False
    assert error == "Another migration run is in progress"


@pytest.mark.asyncio
async def test_expired_lease_is_taken_over(lock, fake_db):
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    await fake_db["migration_locks"].insert_one(
        {"_id": "schema_migrations", "owner": "crashed:1:dead", "acquired_at": past, "expires_at": past}
    )

    acquired, error = await lock.acquire_lock()

    assert acquired is True
    assert error is None
    assert fake_db["migration_locks"].docs[0]["owner"] == lock.owner


@pytest.mark.asyncio
async def test_release_does_not_delete_another_owners_lease(lock, db_manager, fake_db):
    other = MigrationLock(db_manager, "migration_locks", ttl_seconds=60)
    await other.acquire_lock()

    await lock.release_lock()

    assert len(fake_db["migration_locks"].docs) == 1
    assert fake_db["migration_locks"].docs[0]["owner"] == other.owner


@pytest.mark.asyncio
async def test_hold_raises_when_not_acquired(lock, db_manager):
    other = MigrationLock(db_manager, "migration_locks", ttl_seconds=60)
    await other.acquire_lock()

    with pytest.raises(MigrationLockError, match="in progress"):
        async with lock.hold():
            pass


@pytest.mark.asyncio
async def test_hold_releases_on_error(lock, fake_db):
    with pytest.raises(ValueError):
        async with lock.hold():
            assert len(fake_db["migration_locks"].docs) == 1
            raise ValueError("boom")

    assert fake_db["migration_locks"].docs == []


@pytest.mark.asyncio
async def test_store_failure_is_reported(lock, fake_db):
    collection = fake_db["migration_locks"]
    with patch.object(collection, "insert_one", AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))):
        acquired, error = await lock.acquire_lock()

    assert acquired is False
    assert error.startswith("Failed to acquire lock")
