"""
Error taxonomy for the database lifecycle subsystem.

ERROR CATEGORIES:
1. Fatal-on-startup - a migration's `up()` raised; execution halts (`MigrationExecutionError`)
2. Conflict        - duplicate registration or a racing record insert
                     (`DuplicateMigrationError`, `MigrationConflictError`, `MigrationLockError`)
3. Lookup          - unknown migration id (`MigrationNotFoundError`)
4. Reporting       - report requested before any sample exists (`MetricsUnavailableError`)

Soft failures (profiler disabled, `$indexStats` unsupported, one explain call failing) are not
represented here: they are logged and degrade a single data point.

Checksum drift is a diagnostic returned by `validate_migrations()`, never an exception.
"""

from typing import List, Optional


class DocstoreOpsError(Exception):
    """Base class for all errors raised by docstore_ops."""


class MigrationError(DocstoreOpsError):
    """Base class for migration engine errors."""


class DuplicateMigrationError(MigrationError):
    """A migration with the same id is already registered."""

    def __init__(self, migration_id: str):
        super().__init__(f"Migration already registered: {migration_id}")
        self.migration_id = migration_id


class MigrationNotFoundError(MigrationError):
    """The requested migration id is not in the in-process registry."""

    def __init__(self, migration_id: str):
        super().__init__(f"Migration not found: {migration_id}")
        self.migration_id = migration_id


class MigrationExecutionError(MigrationError):
    """
    A migration's `up()` (or `down()` during rollback) raised.

    Attributes:
        migration_id: The migration that failed.
        applied: Ids applied earlier in the same run, in order.
    """

    def __init__(self, migration_id: str, cause: BaseException, applied: Optional[List[str]] = None):
        super().__init__(f"Migration failed: {migration_id}: {cause}")
        self.migration_id = migration_id
        self.cause = cause
        self.applied = list(applied or [])


class MigrationConflictError(MigrationError):
    """A record for this migration was inserted concurrently by another runner."""

    def __init__(self, migration_id: str):
        super().__init__(f"Migration record already exists (concurrent run?): {migration_id}")
        self.migration_id = migration_id


class MigrationLockError(MigrationError):
    """The migration run lock could not be acquired."""


class MetricsUnavailableError(DocstoreOpsError):
    """No performance sample has been collected yet."""
