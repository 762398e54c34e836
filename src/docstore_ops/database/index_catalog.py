"""
# Index Catalog

This module declares the **target index set** of the application collections and applies
or compares it against the live store.

## Index Strategy

| Collection | Indexes | Purpose |
|------------|---------|---------|
| `users` | unique email, sparse token lookups, role/status compounds, text search | Login, admin filters, search |
| `companies` | owner, verification, business type/size compounds, text search | Directory browsing |
| `analyticsevents` | event type/user timelines, batch id, TTL on `timestamp` | Event ingestion and retention |

Every definition is built in the background. Creating an index that already exists with
the same key and options is a no-op on the server; a definition whose name or key collides
with a different live index is reported as a failure for that definition only.

## Management Operations

- `create_all()` / `create_collection_indexes(collection)`: Idempotent creation.
- `get_index_info(collection)`: Live indexes with their options.
- `diff(collection)`: Declared vs live (missing and undeclared index names).
- `analyze_usage(collection)`: Per-index `$indexStats` counters.
- `drop_unused(collection)`: Drops zero-usage indexes, never `_id_`. Destructive, for
  maintenance windows only.
- `generate_suggestions()`: Compound index hints for commonly combined filters.

## Usage Example

```python
catalog = IndexCatalog(db_manager)

summary = await catalog.create_all()
print(f"Created {len(summary.created)}/{summary.total} indexes")

for diff in await catalog.diff():
    if not diff.in_sync:
        print(diff.collection, diff.missing, diff.extra)
```
"""

import time
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from pymongo.errors import OperationFailure, PyMongoError

from docstore_ops.database.manager import DatabaseManager
from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.models.index_models import (
    PRIMARY_KEY_INDEX,
    IndexCreationSummary,
    IndexDefinition,
    IndexDiff,
    IndexInfo,
    IndexOptions,
    IndexUsage,
)

logger = get_logger(prefix="[IndexCatalog]")
perf_logger = get_logger(prefix="[DB_PERFORMANCE]")

ANALYTICS_RETENTION_SECONDS = 90 * 24 * 60 * 60


def _index(collection: str, fields: Dict, **options) -> IndexDefinition:
    return IndexDefinition(collection=collection, fields=fields, options=IndexOptions(**options))


DEFAULT_INDEXES: List[IndexDefinition] = [
    # users
    _index("users", {"email": 1}, unique=True),
    _index("users", {"refreshToken": 1}, sparse=True),
    _index("users", {"passwordResetToken": 1}, sparse=True),
    _index("users", {"role": 1, "accountStatus": 1}),
    _index("users", {"company": 1}),
    _index("users", {"onboardingStep": 1}),
    _index("users", {"isEmailVerified": 1}),
    _index("users", {"companyVerified": 1}),
    _index("users", {"accountStatus": 1, "failedLoginAttempts": 1}),
    _index("users", {"lastLoginAt": -1}),
    _index("users", {"createdAt": -1}),
    _index("users", {"role": 1, "createdAt": -1}),
    _index("users", {"company": 1, "role": 1}),
    _index("users", {"accountStatus": 1, "lastLoginAt": -1}),
    _index("users", {"firstName": "text", "lastName": "text", "email": "text"}),
    # companies
    _index("companies", {"name": 1}),
    _index("companies", {"createdBy": 1}),
    _index("companies", {"verificationStatus": 1}),
    _index("companies", {"businessType": 1}),
    _index("companies", {"size": 1}),
    _index("companies", {"industry": 1}),
    _index("companies", {"businessType": 1, "size": 1}),
    _index("companies", {"verificationStatus": 1, "businessType": 1}),
    _index("companies", {"industry": 1, "size": 1}),
    _index("companies", {"name": "text", "description": "text", "industry": "text"}),
    _index("companies", {"createdAt": -1}),
    _index("companies", {"updatedAt": -1}),
    # analyticsevents
    _index("analyticsevents", {"eventType": 1, "timestamp": -1}),
    _index("analyticsevents", {"userId": 1, "timestamp": -1}),
    _index("analyticsevents", {"timestamp": -1}),
    _index("analyticsevents", {"processed": 1, "timestamp": -1}),
    _index("analyticsevents", {"batchId": 1}),
    _index("analyticsevents", {"eventType": 1, "userId": 1, "timestamp": -1}),
    _index("analyticsevents", {"timestamp": 1}, expire_after_seconds=ANALYTICS_RETENTION_SECONDS),
]

# Filters that are usually combined in one query; separate single-field indexes on them
# are a hint that a compound index would serve better.
COMMON_FIELD_PAIRS: Dict[str, List[Tuple[str, str]]] = {
    "users": [("role", "accountStatus")],
    "companies": [("businessType", "size"), ("verificationStatus", "businessType")],
    "analyticsevents": [("eventType", "timestamp")],
}


class IndexCatalog:
    """Declared index set plus create/diff/usage/drop operations against the live store."""

    def __init__(self, db_manager: DatabaseManager, definitions: Optional[Sequence[IndexDefinition]] = None):
        self.db_manager = db_manager
        self.definitions: List[IndexDefinition] = list(DEFAULT_INDEXES if definitions is None else definitions)

    @property
    def collections(self) -> List[str]:
        """Collections with at least one declared index, in declaration order."""
        seen: List[str] = []
        for definition in self.definitions:
            if definition.collection not in seen:
                seen.append(definition.collection)
        return seen

    def definitions_for(self, collection: str) -> List[IndexDefinition]:
        return [d for d in self.definitions if d.collection == collection]

    async def create_all(self) -> IndexCreationSummary:
        """
        Apply every declared index.

        A failing definition (including a name or key conflict with a live index) is logged
        at error level and recorded in `failed`; the remaining definitions are still applied.

        Returns:
            IndexCreationSummary: `collection.index_name` entries for created and failed indexes.
        """
        return await self._create(self.definitions)

    async def create_collection_indexes(self, collection: str) -> IndexCreationSummary:
        return await self._create(self.definitions_for(collection))

    async def _create(self, definitions: Iterable[IndexDefinition]) -> IndexCreationSummary:
        start_time = time.time()
        summary = IndexCreationSummary()
        definitions = list(definitions)
        logger.info("Creating %d declared indexes", len(definitions))

        for definition in definitions:
            qualified_name = f"{definition.collection}.{definition.index_name}"
            index_start = time.time()
            try:
                collection = self.db_manager.get_collection(definition.collection)
                await collection.create_index(definition.keys, **definition.options.to_driver_kwargs())
                summary.created.append(qualified_name)
                perf_logger.debug("Created/ensured index '%s' in %.3fs", qualified_name, time.time() - index_start)
            except OperationFailure as e:
                summary.failed[qualified_name] = str(e)
                logger.error("Index '%s' conflicts with an existing index: %s", qualified_name, e)
            except PyMongoError as e:
                summary.failed[qualified_name] = str(e)
                logger.warning("Could not create index '%s': %s", qualified_name, e)

        perf_logger.info(
            "Index creation completed in %.3fs: %d created/ensured, %d failed",
            time.time() - start_time,
            len(summary.created),
            len(summary.failed),
        )
        return summary

    async def get_index_info(self, collection: str) -> List[IndexInfo]:
        """List the live indexes of a collection."""
        indexes = await self.db_manager.get_collection(collection).list_indexes().to_list(length=None)
        return [
            IndexInfo(
                name=index["name"],
                key=dict(index["key"]),
                unique=bool(index.get("unique", False)),
                sparse=bool(index.get("sparse", False)),
                background=bool(index.get("background", False)),
                expire_after_seconds=index.get("expireAfterSeconds"),
            )
            for index in indexes
        ]

    async def diff(self, collection: Optional[str] = None) -> List[IndexDiff]:
        """Compare declared and live index names for one or all declared collections."""
        targets = [collection] if collection else self.collections
        results: List[IndexDiff] = []
        for name in targets:
            declared = [d.index_name for d in self.definitions_for(name)]
            live = [info.name for info in await self.get_index_info(name)]
            results.append(
                IndexDiff(
                    collection=name,
                    missing=[index_name for index_name in declared if index_name not in live],
                    extra=[
                        index_name
                        for index_name in live
                        if index_name != PRIMARY_KEY_INDEX and index_name not in declared
                    ],
                )
            )
        return results

    async def collection_usage(self, collection: str) -> List[IndexUsage]:
        """
        Read `$indexStats` for one collection.

        Returns an empty list when the server does not support `$indexStats` or the call fails;
        this degrades the usage data point instead of failing the caller.
        """
        try:
            cursor = self.db_manager.get_collection(collection).aggregate([{"$indexStats": {}}])
            stats = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.warning("Index usage stats unavailable for '%s': %s", collection, e)
            return []

        usage: List[IndexUsage] = []
        for stat in stats:
            accesses = stat.get("accesses") or {}
            usage.append(
                IndexUsage(
                    collection=collection,
                    index_name=stat.get("name", ""),
                    usage_ops=int(accesses.get("ops", 0)),
                    last_used=accesses.get("since"),
                )
            )
        return usage

    async def analyze_usage(self, collection: Optional[str] = None) -> Dict[str, List[IndexUsage]]:
        """Per-index usage counters grouped by collection."""
        targets = [collection] if collection else self.collections
        return {name: await self.collection_usage(name) for name in targets}

    async def drop_unused(self, collection: str) -> List[str]:
        """
        Drop every index of `collection` whose usage counter is zero, except `_id_`.

        This is destructive and meant for maintenance windows; nothing calls it automatically.

        Returns:
            List[str]: Names of the dropped indexes.
        """
        dropped: List[str] = []
        coll = self.db_manager.get_collection(collection)
        for usage in await self.collection_usage(collection):
            if usage.index_name == PRIMARY_KEY_INDEX or usage.usage_ops > 0:
                continue
            try:
                await coll.drop_index(usage.index_name)
                dropped.append(usage.index_name)
                logger.warning("Dropped unused index %s.%s", collection, usage.index_name)
            except PyMongoError as e:
                logger.warning("Failed to drop index %s.%s: %s", collection, usage.index_name, e)
        return dropped

    async def drop_collection_indexes(self, collection: str) -> List[str]:
        """Drop every index of `collection` except `_id_`."""
        dropped: List[str] = []
        coll = self.db_manager.get_collection(collection)
        for info in await self.get_index_info(collection):
            if info.name == PRIMARY_KEY_INDEX:
                continue
            await coll.drop_index(info.name)
            dropped.append(info.name)
        logger.info("Dropped %d indexes from %s", len(dropped), collection)
        return dropped

    async def generate_suggestions(self) -> List[str]:
        suggestions: List[str] = []
        for collection, pairs in COMMON_FIELD_PAIRS.items():
            try:
                live = await self.get_index_info(collection)
            except PyMongoError as e:
                logger.warning("Could not read indexes of '%s': %s", collection, e)
                continue

            keys = [list(info.key.keys()) for info in live]
            for first, second in pairs:
                has_compound = any(k[:2] == [first, second] for k in keys)
                has_both_single = [first] in keys and [second] in keys
                if has_both_single and not has_compound:
                    suggestions.append(
                        f"Consider adding compound index on {collection}: {{ {first}: 1, {second}: 1 }}"
                    )
        return suggestions
