"""
# Migration Engine

This module is the **schema migration engine** of `docstore_ops`. It keeps two clearly
separated structures and diffs them explicitly:

- **Registry**: the code-defined `Migration` objects, keyed by id. Immutable for the
  lifetime of the process.
- **Ledger**: the `MigrationRecord` documents persisted in the migrations collection, one
  per applied id (unique index on `migration_id`).

## Execution Model

```
run_migrations()
   │
   ├─ hold MigrationLock (in-process lock + lease document)
   ├─ ensure unique index on migration_id
   ├─ pending = registry ids - ledger ids, sorted by id
   └─ for each pending migration:
          up(db) ──fail──▶ MigrationExecutionError (run halts, nothing retried or rolled back)
            │
            └─ insert MigrationRecord ──duplicate──▶ MigrationConflictError
```

Running twice is safe: the second run finds nothing pending. Ordering is plain string
order of the ids, so ids carry a zero-padded prefix (`001_...`, `002_...`).

## Drift Detection

Each record stores a SHA-256 checksum over the migration's id, version, description and
the source of `up`/`down`. `validate_migrations()` recomputes it for every applied record and
reports mismatches. Drift is a diagnostic only; remediation is left to the operator.

## Usage Example

```python
engine = MigrationEngine(db_manager, settings)
engine.register_all(build_core_migrations(index_catalog))

result = await engine.run_migrations()
print(f"Applied: {result.applied}")

status = await engine.get_migration_status()
print(f"{status.applied}/{status.total} applied, {status.pending} pending")

validation = await engine.validate_migrations()
if not validation.valid:
    for issue in validation.issues:
        print(issue)
```
"""

import hashlib
import inspect
import json
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from pymongo.errors import DuplicateKeyError

from docstore_ops.config import Settings
from docstore_ops.database.manager import DatabaseManager
from docstore_ops.exceptions import (
    DuplicateMigrationError,
    MigrationConflictError,
    MigrationExecutionError,
    MigrationNotFoundError,
)
from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.models.migration_models import (
    Migration,
    MigrationCallable,
    MigrationRecord,
    MigrationRunResult,
    MigrationStatusReport,
    MigrationValidationResult,
)
from docstore_ops.services.database_metrics import DatabaseMetrics, database_metrics
from docstore_ops.services.migration_lock import MigrationLock

logger = get_logger(prefix="[MigrationEngine]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")

MIGRATION_ID_INDEX = "migration_id_unique"


def _callable_source(func: MigrationCallable) -> str:
    try:
        return inspect.getsource(func)
    except (OSError, TypeError):
        return f"{getattr(func, '__module__', '')}.{getattr(func, '__qualname__', repr(func))}"


def calculate_checksum(migration: Migration) -> str:
    """
    Deterministic fingerprint of a migration definition.

    Returns:
        str: `sha256:<hex>` over canonical JSON of id, version, description and the source
        text of `up`/`down`.
    """
    payload = {
        "id": migration.id,
        "version": migration.version,
        "description": migration.description,
        "up": _callable_source(migration.up),
        "down": _callable_source(migration.down),
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return f"sha256:{hashlib.sha256(canonical.encode('utf-8')).hexdigest()}"


class MigrationEngine:
    """
    Ordered, versioned registry of migrations plus the persisted ledger of applied ones.

    **Key Features:**
    - **Single-flight runs**: Every mutating operation holds `MigrationLock`.
    - **Halt on failure**: The first failing `up()` stops the run; earlier records stay.
    - **Manual rollback**: `rollback_migration(id)` runs `down()` and deletes the record.
    - **Drift diagnostics**: `validate_migrations()` compares stored and current checksums.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        settings: Settings,
        lock: Optional[MigrationLock] = None,
        metrics: Optional[DatabaseMetrics] = None,
    ):
        self.db_manager = db_manager
        self.collection_name = settings.DB_MIGRATIONS_COLLECTION
        self.lock = lock or MigrationLock(
            db_manager,
            settings.DB_MIGRATION_LOCK_COLLECTION,
            ttl_seconds=settings.DB_MIGRATION_LOCK_TTL_SECONDS,
        )
        self.metrics = metrics or database_metrics
        self._registry: Dict[str, Migration] = {}

    # Registry

    def register(self, migration: Migration):
        """
        Add a migration to the registry.

        Raises:
            DuplicateMigrationError: A migration with the same id is already registered.
        """
        if migration.id in self._registry:
            raise DuplicateMigrationError(migration.id)
        self._registry[migration.id] = migration
        logger.debug("Registered migration %s (v%s)", migration.id, migration.version)

    def register_all(self, migrations: Iterable[Migration]):
        for migration in migrations:
            self.register(migration)

    @property
    def migrations(self) -> List[Migration]:
        """Registered migrations in execution order."""
        return [self._registry[migration_id] for migration_id in sorted(self._registry)]

    def get_migration(self, migration_id: str) -> Migration:
        try:
            return self._registry[migration_id]
        except KeyError:
            raise MigrationNotFoundError(migration_id) from None

    # Ledger

    def _collection(self):
        return self.db_manager.get_collection(self.collection_name)

    async def ensure_migration_collection(self):
        """Create the migrations collection's unique index on `migration_id` (idempotent)."""
        await self._collection().create_index(
            [("migration_id", 1)], unique=True, name=MIGRATION_ID_INDEX, background=True
        )
        logger.debug("Ensured unique index on %s.migration_id", self.collection_name)

    async def get_applied_migrations(self) -> List[MigrationRecord]:
        """Applied records, oldest first."""
        docs = await self._collection().find({}).sort("applied_at", 1).to_list(length=None)
        return [MigrationRecord.from_document(doc) for doc in docs]

    async def get_pending_migrations(self) -> List[Migration]:
        """Registered migrations without a record, sorted by id."""
        applied_ids = {record.migration_id for record in await self.get_applied_migrations()}
        return [migration for migration in self.migrations if migration.id not in applied_ids]

    # Execution

    async def run_migrations(self) -> MigrationRunResult:
        """
        Apply every pending migration in ascending id order.

        Returns:
            MigrationRunResult: Ids applied by this call, in order.

        Raises:
            MigrationLockError: Another process is running migrations.
            MigrationExecutionError: A migration's `up()` failed; `applied` lists the ids
                applied before it in this run.
            MigrationConflictError: A record for the migration was inserted concurrently.
        """
        start_time = time.time()
        async with self.lock.hold():
            await self.ensure_migration_collection()
            pending = await self.get_pending_migrations()

            if not pending:
                logger.info("No pending migrations")
                return MigrationRunResult(applied=[], duration_seconds=time.time() - start_time)

            logger.info("Running %d pending migrations: %s", len(pending), [m.id for m in pending])
            applied: List[str] = []
            for migration in pending:
                try:
                    await self._apply(migration)
                except MigrationExecutionError as e:
                    logger.error(
                        "Migration run halted at %s after applying %d migrations", migration.id, len(applied)
                    )
                    raise MigrationExecutionError(migration.id, e.cause, applied) from e.cause
                applied.append(migration.id)

        duration = time.time() - start_time
        perf_logger.info("Applied %d migrations in %.3fs", len(applied), duration)
        return MigrationRunResult(applied=applied, duration_seconds=duration)

    async def run_migration(self, migration_id: str) -> bool:
        """
        Apply a single registered migration if it has not been applied yet.

        Returns:
            bool: `True` if it was applied by this call, `False` if a record already existed.

        Raises:
            MigrationNotFoundError: The id is not registered.
            MigrationExecutionError: `up()` failed.
        """
        migration = self.get_migration(migration_id)
        async with self.lock.hold():
            await self.ensure_migration_collection()
            if await self._collection().find_one({"migration_id": migration_id}):
                logger.info("Migration %s already applied", migration_id)
                return False
            await self._apply(migration)
            return True

    async def _apply(self, migration: Migration) -> MigrationRecord:
        logger.info("Running migration: %s - %s", migration.id, migration.description)
        start_time = time.time()

        try:
            await migration.up(self.db_manager.get_database())
        except Exception as e:
            duration = time.time() - start_time
            self.metrics.record_migration("failed", duration)
            logger.error("Migration %s failed after %.3fs: %s", migration.id, duration, e, exc_info=True)
            raise MigrationExecutionError(migration.id, e) from e

        record = MigrationRecord(
            migration_id=migration.id,
            version=migration.version,
            description=migration.description,
            applied_at=datetime.now(timezone.utc),
            checksum=calculate_checksum(migration),
        )
        try:
            await self._collection().insert_one(record.to_document())
        except DuplicateKeyError as e:
            logger.error("Record for migration %s was written by another runner", migration.id)
            raise MigrationConflictError(migration.id) from e

        duration = time.time() - start_time
        self.metrics.record_migration("applied", duration)
        perf_logger.info("Migration %s completed in %.3fs", migration.id, duration)
        return record

    async def rollback_migration(self, migration_id: str) -> bool:
        """
        Run a migration's `down()` and delete its record.

        The engine does not check dependencies between migrations; rolling back in a sensible
        order is the caller's responsibility.

        Returns:
            bool: `True` if a record was deleted, `False` if the migration had no record.

        Raises:
            MigrationNotFoundError: The id is not registered.
            MigrationExecutionError: `down()` failed; the record is kept.
        """
        migration = self.get_migration(migration_id)
        logger.info("Rolling back migration %s", migration_id)

        async with self.lock.hold():
            start_time = time.time()
            try:
                await migration.down(self.db_manager.get_database())
            except Exception as e:
                logger.error("Rollback of %s failed: %s", migration_id, e, exc_info=True)
                raise MigrationExecutionError(migration_id, e) from e

            result = await self._collection().delete_one({"migration_id": migration_id})

        duration = time.time() - start_time
        self.metrics.record_migration("rolled_back", duration)
        if result.deleted_count == 0:
            logger.warning("Rolled back %s but no record existed", migration_id)
            return False

        perf_logger.info("Rollback %s completed in %.3fs", migration_id, duration)
        return True

    # Reporting

    async def get_migration_status(self) -> MigrationStatusReport:
        """Counts and full applied/pending lists. Read-only."""
        applied = await self.get_applied_migrations()
        applied_ids = {record.migration_id for record in applied}
        pending = [m.summary() for m in self.migrations if m.id not in applied_ids]
        return MigrationStatusReport(
            total=len(self._registry),
            applied=len(applied),
            pending=len(pending),
            applied_migrations=applied,
            pending_migrations=pending,
        )

    async def validate_migrations(self) -> MigrationValidationResult:
        """
        Compare every applied record's checksum with the registered migration's checksum.

        Never modifies the ledger.
        """
        issues: List[str] = []
        for record in await self.get_applied_migrations():
            migration = self._registry.get(record.migration_id)
            if migration is None:
                issues.append(f"Applied migration not found in code: {record.migration_id}")
            elif calculate_checksum(migration) != record.checksum:
                issues.append(f"Migration checksum mismatch: {record.migration_id}")

        for issue in issues:
            logger.warning("Migration validation issue: %s", issue)

        return MigrationValidationResult(valid=not issues, issues=issues)
