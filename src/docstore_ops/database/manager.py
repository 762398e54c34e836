"""
# Database Management Module

This module provides the **MongoDB connection layer** for `docstore_ops`. The
`DatabaseManager` owns the Motor client, the selected database and the client-side pool
listener; every other component (index catalog, migration engine, query optimizer,
performance monitor) reaches the store through it.

## Architecture Overview

```
┌──────────────────────────────────────────────────────────────┐
│                 Database Layer Architecture                  │
├──────────────────────────────────────────────────────────────┤
│                                                              │
│   ┌──────────────────┐     ┌──────────────────────────────┐  │
│   │ DatabaseOperations│───▶│       DatabaseManager        │  │
│   │ (facade/services) │    │  (constructed, not global)   │  │
│   └──────────────────┘     └──────────────┬───────────────┘  │
│                                           │                  │
│                         ┌─────────────────▼──────────────┐   │
│                         │ Motor client + PoolStatsListener│   │
│                         └─────────────────┬──────────────┘   │
│                                           ▼                  │
│                                  MongoDB deployment          │
└──────────────────────────────────────────────────────────────┘
```

## Key Features

### 1. Connection Lifecycle
- **Async Initialization**: `connect()` pings the server before declaring success
- **Exponential Backoff**: Up to `MONGODB_CONNECT_RETRIES` attempts, waiting 1s, 2s, 4s...
- **Graceful Shutdown**: `disconnect()` closes the pool and clears the handles

### 2. Introspection
- **Ping latency** (`ping()`) for health checks
- **serverStatus** and **collStats** passthroughs for diagnostics
- **Client-side pool figures** from `PoolStatsListener`, without a server round-trip

### 3. Observability
- Every round-trip is timed and logged to the `[DB_PERFORMANCE]` logger
- Health results go to `[DB_HEALTH]`

## Usage Example

```python
from docstore_ops.config import settings
from docstore_ops.database.manager import DatabaseManager

manager = DatabaseManager(settings)
await manager.connect()

users = manager.get_collection("users")
latency_ms = await manager.ping()
pool = manager.get_connection_pool_metrics()

await manager.disconnect()
```

## Thread Safety

The manager is designed for **asyncio** and must be used from a single event loop. Only
the pool listener is touched from driver threads, and it guards its own counters.

Attributes:
    db_logger (Logger): Logger for connection lifecycle (`[DATABASE]`).
    perf_logger (Logger): Logger for round-trip timings (`[DB_PERFORMANCE]`).
    health_logger (Logger): Logger for health checks (`[DB_HEALTH]`).
"""

import asyncio
import time
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from docstore_ops.config import Settings
from docstore_ops.database.pool_listener import PoolStatsListener
from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.models.performance_models import ConnectionPoolMetrics

db_logger = get_logger(prefix="[DATABASE]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")
health_logger = get_logger(prefix="[DB_HEALTH]")


class DatabaseManager:
    """
    Manages the MongoDB client, database handle and connection pool accounting.

    **Lifecycle:**
    1. **Instantiation**: `client` and `database` are `None`
    2. **Connection**: `connect()` builds the Motor client and verifies it with a ping
    3. **Operations**: `get_collection()` / `get_database()` hand out Motor objects
    4. **Shutdown**: `disconnect()` closes the pool

    **Transaction Support Detection:**
    After connecting, a `hello` command tells replica sets and mongos routers
    (`transactions_supported=True`) apart from standalone servers.

    Attributes:
        settings (`Settings`): Connection settings.
        client (`Optional[AsyncIOMotorClient]`): Motor client, `None` until connected.
        database (`Optional[AsyncIOMotorDatabase]`): Selected database, `None` until connected.
        pool_listener (`PoolStatsListener`): Client-side pool counters.
        transactions_supported (`Optional[bool]`): Detected during `connect()`.
    """

    def __init__(self, settings: Settings, pool_listener: Optional[PoolStatsListener] = None):
        self.settings = settings
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.pool_listener = pool_listener or PoolStatsListener()
        self._connection_retries = settings.MONGODB_CONNECT_RETRIES
        # True when connected to a replica set or mongos
        self.transactions_supported: Optional[bool] = None

    @property
    def is_connected(self) -> bool:
        return self.client is not None and self.database is not None

    async def connect(self):
        """
        Establish the MongoDB connection with exponential backoff.

        Calling `connect()` on an already connected manager is a no-op.

        Raises:
            `ServerSelectionTimeoutError`: MongoDB unreachable after all attempts.
            `ConnectionFailure`: Authentication failed or connection refused on the last attempt.
            `ConnectionError`, `TimeoutError`: Lower-level network errors (not retried).
        """
        if self.is_connected:
            db_logger.debug("connect() called on an already connected manager")
            return

        start_time = time.time()
        db_logger.info("Starting MongoDB connection process")

        for attempt in range(self._connection_retries):
            attempt_start = time.time()
            try:
                db_logger.info("Connection attempt %d/%d to MongoDB", attempt + 1, self._connection_retries)

                # Log connection parameters (without credentials)
                db_logger.info(
                    "MongoDB connection config - URL: %s, Database: %s, MaxPool: %d, MinPool: %d, ServerTimeout: %dms, ConnTimeout: %dms",
                    self.settings.MONGODB_URL,
                    self.settings.MONGODB_DATABASE,
                    self.settings.MONGODB_MAX_POOL_SIZE,
                    self.settings.MONGODB_MIN_POOL_SIZE,
                    self.settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    self.settings.MONGODB_CONNECTION_TIMEOUT,
                )

                self.pool_listener.reset()
                self.client = AsyncIOMotorClient(
                    self.settings.connection_string,
                    serverSelectionTimeoutMS=self.settings.MONGODB_SERVER_SELECTION_TIMEOUT,
                    connectTimeoutMS=self.settings.MONGODB_CONNECTION_TIMEOUT,
                    maxPoolSize=self.settings.MONGODB_MAX_POOL_SIZE,
                    minPoolSize=self.settings.MONGODB_MIN_POOL_SIZE,
                    event_listeners=[self.pool_listener],
                )
                self.database = self.client[self.settings.MONGODB_DATABASE]

                ping_start = time.time()
                await self.client.admin.command("ping")
                ping_duration = time.time() - ping_start

                try:
                    hello = await self.client.admin.command({"hello": 1})
                    self.transactions_supported = bool(hello.get("setName") or hello.get("msg") == "isdbgrid")
                except PyMongoError:
                    self.transactions_supported = False

                total_duration = time.time() - start_time
                perf_logger.info(
                    "MongoDB connection established successfully in %.3fs (ping: %.3fs)", total_duration, ping_duration
                )
                db_logger.info("Successfully connected to MongoDB database: %s", self.settings.MONGODB_DATABASE)
                await self._log_server_info()
                return

            except (ServerSelectionTimeoutError, ConnectionFailure) as e:
                attempt_duration = time.time() - attempt_start
                perf_logger.warning("Connection attempt %d failed after %.3fs", attempt + 1, attempt_duration)
                db_logger.warning(
                    "Failed to connect to MongoDB (attempt %d/%d): %s", attempt + 1, self._connection_retries, e
                )
                self._close_client()
                if attempt == self._connection_retries - 1:
                    total_duration = time.time() - start_time
                    db_logger.error("All connection attempts failed after %.3fs", total_duration)
                    raise

                backoff_time = 2**attempt
                db_logger.info("Waiting %.1fs before retry (exponential backoff)", backoff_time)
                await asyncio.sleep(backoff_time)

            except (ConnectionError, TimeoutError) as e:
                attempt_duration = time.time() - attempt_start
                perf_logger.error("Connection error after %.3fs", attempt_duration)
                db_logger.error("Connection error connecting to MongoDB: %s", e)
                self._close_client()
                raise

    async def _log_server_info(self):
        try:
            server_info = await self.client.server_info()
            health_logger.info(
                "MongoDB server info - Version: %s, MaxBsonSize: %d",
                server_info.get("version", "unknown"),
                server_info.get("maxBsonObjectSize", 0),
            )
            health_logger.info(
                "Connection pool config - MaxPoolSize: %d, MinPoolSize: %d",
                self.settings.MONGODB_MAX_POOL_SIZE,
                self.settings.MONGODB_MIN_POOL_SIZE,
            )
        except Exception as e:
            health_logger.warning("Failed to log server info: %s", e)

    def _close_client(self):
        if self.client is not None:
            self.client.close()
        self.client = None
        self.database = None

    async def disconnect(self):
        """
        Close the Motor client and release every pooled connection.

        Safe to call when not connected. After it returns, `connect()` may be called again.
        """
        start_time = time.time()
        db_logger.info("Starting MongoDB disconnection process")

        if self.client is None:
            db_logger.warning("Disconnect called but no active MongoDB connection found")
            return

        try:
            self.client.close()
            duration = time.time() - start_time
            perf_logger.info("MongoDB disconnection completed in %.3fs", duration)
            db_logger.info("Successfully disconnected from MongoDB")
        except Exception as e:
            duration = time.time() - start_time
            perf_logger.error("MongoDB disconnection failed after %.3fs", duration)
            db_logger.error("Error during MongoDB disconnection: %s", e)
            raise
        finally:
            self.client = None
            self.database = None

    async def ping(self) -> float:
        """
        Send a `ping` to the admin database and return the round-trip latency.

        Returns:
            float: Latency in milliseconds.

        Raises:
            ConnectionError: If `connect()` has not been called.
            PyMongoError: If the server does not answer.
        """
        if self.client is None:
            raise ConnectionError("Database not connected. Call connect() first.")
        start_time = time.time()
        await self.client.admin.command("ping")
        latency_ms = (time.time() - start_time) * 1000
        perf_logger.debug("Ping completed in %.1fms", latency_ms)
        return latency_ms

    async def health_check(self) -> bool:
        """
        Verify connectivity with a lightweight ping.

        Returns:
            bool: `True` if the server answered, `False` otherwise (never raises).
        """
        health_logger.debug("Starting database health check")
        if self.client is None:
            health_logger.warning("Health check failed: No database client available")
            return False

        try:
            latency_ms = await self.ping()
            health_logger.debug("Database health check passed (ping: %.1fms)", latency_ms)
            return True
        except (ServerSelectionTimeoutError, ConnectionFailure) as e:
            health_logger.error("Database health check failed: %s", e)
            return False
        except (ConnectionError, TimeoutError) as e:
            health_logger.error("Connection error during health check: %s", e)
            return False
        except Exception as e:
            health_logger.error("Unexpected error during health check: %s", e)
            return False

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Return the selected database.

        Raises:
            ConnectionError: If the database connection has not been established.
        """
        if self.database is None:
            db_logger.error("Attempted to access the database without a connection")
            raise ConnectionError("Database not connected. Call connect() first.")
        return self.database

    def get_collection(self, collection_name: str) -> AsyncIOMotorCollection:
        """
        Retrieve a collection by name from the connected database.

        Collections are created lazily by the server on first write; this call performs no I/O.

        Raises:
            ConnectionError: If the database connection has not been established.
        """
        if self.database is None:
            db_logger.error("Attempted to get collection '%s' without database connection", collection_name)
            raise ConnectionError("Database not connected. Call connect() first.")

        db_logger.debug("Retrieving collection: %s", collection_name)
        return self.database[collection_name]

    async def list_collection_names(self) -> List[str]:
        return await self.get_database().list_collection_names()

    async def server_status(self) -> Dict[str, Any]:
        """Return the admin `serverStatus` document."""
        if self.client is None:
            raise ConnectionError("Database not connected. Call connect() first.")
        start_time = time.time()
        status = await self.client.admin.command("serverStatus")
        perf_logger.debug("serverStatus retrieved in %.3fs", time.time() - start_time)
        return status

    async def collection_stats(self, collection_name: str) -> Dict[str, Any]:
        """Return the `collStats` document for one collection."""
        start_time = time.time()
        stats = await self.get_database().command("collStats", collection_name)
        perf_logger.debug("collStats for '%s' retrieved in %.3fs", collection_name, time.time() - start_time)
        return stats

    def get_connection_pool_metrics(self) -> ConnectionPoolMetrics:
        """Snapshot of client-side pool counters; no server round-trip."""
        snapshot = self.pool_listener.snapshot()
        return ConnectionPoolMetrics(
            total=snapshot["total"],
            active=snapshot["active"],
            idle=snapshot["idle"],
            pool_size=self.settings.MONGODB_MAX_POOL_SIZE,
        )

    async def log_database_stats(self):
        """Log overall database statistics for monitoring"""
        try:
            start_time = time.time()
            db_stats = await self.get_database().command("dbStats")
            duration = time.time() - start_time

            health_logger.info(
                "Database '%s' stats - Collections: %d, Objects: %d, DataSize: %d bytes, IndexSize: %d bytes (retrieved in %.3fs)",
                self.settings.MONGODB_DATABASE,
                db_stats.get("collections", 0),
                db_stats.get("objects", 0),
                db_stats.get("dataSize", 0),
                db_stats.get("indexSize", 0),
                duration,
            )
        except Exception as e:
            health_logger.warning("Failed to retrieve database stats: %s", e)
