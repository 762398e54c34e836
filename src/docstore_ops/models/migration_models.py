"""
# Schema Migration Models

This module defines the **two halves** of the schema migration system:

- **Migration**: an immutable, code-defined transformation with an `up` and a `down`
  coroutine. Migrations live only in the in-process registry of `MigrationEngine`.
- **MigrationRecord**: the persisted ledger entry written to the `migrations`
  collection once a migration's `up()` has succeeded.

The engine diffs the registry against the ledger to decide what is pending; the two are
never merged into one structure.

## Ordering

Migrations are applied in ascending **string order of `id`**, so ids must carry a sortable
prefix (`001_initial_setup`, `002_user_enhancements`, ...).

## Usage Example

```python
async def up(db):
    await db["users"].update_many({"status": {"$exists": False}}, {"$set": {"status": "active"}})

async def down(db):
    await db["users"].update_many({}, {"$unset": {"status": ""}})

migration = Migration(id="005_user_status", version="1.4.0", description="Add user status", up=up, down=down)
```
"""

import re
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

MigrationCallable = Callable[[Any], Awaitable[Any]]

SEMVER_PATTERN = re.compile(r"^\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.\-+]+)?$")


class Migration(BaseModel):
    """A versioned schema/data transformation.

    Attributes:
        id (str): Unique, lexicographically sortable identifier.
        version (str): Semantic version of the schema after this migration.
        description (str): Human-readable summary.
        up (MigrationCallable): Coroutine function receiving the Motor database.
        down (MigrationCallable): Inverse coroutine function receiving the Motor database.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    id: str = Field(..., min_length=1)
    version: str
    description: str
    up: MigrationCallable
    down: MigrationCallable

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        if not SEMVER_PATTERN.match(v):
            raise ValueError(f"version must be a semantic version string, got {v!r}")
        return v

    def summary(self) -> "MigrationSummary":
        return MigrationSummary(id=self.id, version=self.version, description=self.description)


class MigrationSummary(BaseModel):
    """Serializable view of a registered migration (no callables)."""

    id: str
    version: str
    description: str


class MigrationRecord(BaseModel):
    """Persisted ledger entry for an applied migration.

    Attributes:
        migration_id (str): Id of the applied migration (unique in the collection).
        version (str): Version at the time of application.
        description (str): Description at the time of application.
        applied_at (datetime): When `up()` completed.
        checksum (str): Fingerprint of the migration definition that was applied.
    """

    migration_id: str
    version: str
    description: str
    applied_at: datetime
    checksum: str

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "MigrationRecord":
        return cls.model_validate({k: v for k, v in doc.items() if k != "_id"})


class MigrationStatusReport(BaseModel):
    """Read-only snapshot returned by `get_migration_status()`."""

    total: int
    applied: int
    pending: int
    applied_migrations: List[MigrationRecord] = Field(default_factory=list)
    pending_migrations: List[MigrationSummary] = Field(default_factory=list)


class MigrationValidationResult(BaseModel):
    """Outcome of checksum drift detection.

    `valid` is true iff every applied record matches a registered migration with the same
    checksum.
    """

    valid: bool
    issues: List[str] = Field(default_factory=list)


class MigrationRunResult(BaseModel):
    """Ids applied by one `run_migrations()` call, in application order."""

    applied: List[str] = Field(default_factory=list)
    duration_seconds: float = 0.0
