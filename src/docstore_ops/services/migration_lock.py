"""
Run lock for schema migrations.

Ensures only one migration run is in flight at a time:

- **In-process**: an `asyncio.Lock`; concurrent callers in the same process queue up.
- **Cross-process**: a lease document in the lock collection (`_id` = lock name). It is taken
  by insert, or by taking over a lease whose `expires_at` has passed (a crashed runner), and
  released by deleting it with a matching owner.

A second process that finds a live lease fails fast with `MigrationLockError`.
"""

import asyncio
import os
import socket
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from docstore_ops.database.manager import DatabaseManager
from docstore_ops.exceptions import MigrationLockError
from docstore_ops.managers.logging_manager import get_logger

logger = get_logger(prefix="[MigrationLock]")

DEFAULT_LOCK_NAME = "schema_migrations"


class MigrationLock:
    """
    Lease-based migration lock.

    Args:
        db_manager: Connection layer used to reach the lock collection.
        collection_name: Lock collection (`DB_MIGRATION_LOCK_COLLECTION`).
        ttl_seconds: Lease length; an expired lease may be taken over.
    """

    def __init__(self, db_manager: DatabaseManager, collection_name: str, ttl_seconds: int = 3600):
        self.db_manager = db_manager
        self.collection_name = collection_name
        self.ttl_seconds = ttl_seconds
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"
        self._local_lock = asyncio.Lock()

    async def acquire_lock(self, lock_name: str = DEFAULT_LOCK_NAME) -> Tuple[bool, Optional[str]]:
        """
        Try to take the lease once.

        Returns:
            Tuple of (acquired, error_message)
        """
        collection = self.db_manager.get_collection(self.collection_name)
        now = datetime.now(timezone.utc)
        lease = {
            "owner": self.owner,
            "acquired_at": now,
            "expires_at": now + timedelta(seconds=self.ttl_seconds),
        }

        try:
            await collection.insert_one({"_id": lock_name, **lease})
            logger.info("Acquired migration lock '%s' as %s", lock_name, self.owner)
            return True, None
        except DuplicateKeyError:
            pass
        except PyMongoError as e:
            logger.error("Migration lock acquisition failed: %s", e)
            return False, f"Failed to acquire lock: {e}"

        try:
            taken = await collection.find_one_and_update(
                {"_id": lock_name, "expires_at": {"$lt": now}},
                {"$set": lease},
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as e:
            logger.error("Migration lock take-over failed: %s", e)
            return False, f"Failed to acquire lock: {e}"

        if taken:
            logger.warning("Took over expired migration lock '%s'", lock_name)
            return True, None
        return False, "Another migration run is in progress"

    async def release_lock(self, lock_name: str = DEFAULT_LOCK_NAME):
        try:
            collection = self.db_manager.get_collection(self.collection_name)
            result = await collection.delete_one({"_id": lock_name, "owner": self.owner})
            if result.deleted_count:
                logger.info("Released migration lock '%s'", lock_name)
            else:
                logger.warning("Migration lock '%s' was no longer held by %s", lock_name, self.owner)
        except PyMongoError as e:
            logger.error("Migration lock release failed: %s", e)

    @asynccontextmanager
    async def hold(self, lock_name: str = DEFAULT_LOCK_NAME) -> AsyncIterator[None]:
        """
        Hold the lock for the duration of the block.

        Raises:
            MigrationLockError: Another process holds a live lease.
        """
        async with self._local_lock:
            acquired, error = await self.acquire_lock(lock_name)
            if not acquired:
                raise MigrationLockError(error or "Migration lock not acquired")
            try:
                yield
            finally:
                await self.release_lock(lock_name)
