"""
Shared fixtures: an in-memory stand-in for the Motor database plus settings and metrics
bound to a private Prometheus registry.

The fakes implement only the driver surface docstore_ops touches, with the same call shapes
(awaitable collection methods, chainable cursors with an awaitable `to_list`).
"""

import copy
import itertools
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import CollectorRegistry
from pymongo.errors import DuplicateKeyError, OperationFailure

from docstore_ops.config import Settings
from docstore_ops.database.manager import DatabaseManager
from docstore_ops.services.database_metrics import DatabaseMetrics

_object_ids = itertools.count(1)

COLLSCAN_EXPLAIN = {
    "queryPlanner": {"winningPlan": {"stage": "COLLSCAN"}},
    "executionStats": {"nReturned": 5, "totalDocsExamined": 1000},
}

IXSCAN_EXPLAIN = {
    "queryPlanner": {
        "winningPlan": {"stage": "FETCH", "inputStage": {"stage": "IXSCAN", "indexName": "email_1"}}
    },
    "executionStats": {"nReturned": 1, "totalDocsExamined": 1},
}


def _get_path(doc, path):
    value = doc
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return None, False
        value = value[part]
    return value, True


def matches(doc, query):
    for field, condition in query.items():
        value, present = _get_path(doc, field)
        if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
            for op, operand in condition.items():
                if op == "$exists":
                    if present != bool(operand):
                        return False
                elif op == "$lt":
                    if not present or not value < operand:
                        return False
                elif op == "$lte":
                    if not present or not value <= operand:
                        return False
                elif op == "$gt":
                    if not present or not value > operand:
                        return False
                elif op == "$gte":
                    if not present or not value >= operand:
                        return False
                else:
                    raise NotImplementedError(op)
        elif not present or value != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, docs, explain_result=None, error=None):
        self._docs = [copy.deepcopy(doc) for doc in docs]
        self._explain_result = explain_result
        self._error = error
        self._limit = 0
        self.sort_spec = None
        self.max_time = None

    def sort(self, key_or_list, direction=None):
        keys = [(key_or_list, direction or 1)] if isinstance(key_or_list, str) else list(key_or_list)
        self.sort_spec = keys
        for key, key_direction in reversed(keys):
            self._docs.sort(
                key=lambda doc: (_get_path(doc, key)[0] is not None, _get_path(doc, key)[0]),
                reverse=key_direction == -1,
            )
        return self

    def limit(self, count):
        self._limit = count
        return self

    def max_time_ms(self, ms):
        self.max_time = ms
        return self

    async def to_list(self, length=None):
        if self._error is not None:
            raise self._error
        docs = self._docs[: self._limit] if self._limit else self._docs
        return docs[:length] if length else docs

    async def explain(self):
        if self._error is not None:
            raise self._error
        return copy.deepcopy(self._explain_result)


class FakeCollection:
    def __init__(self, name):
        self.name = name
        self.docs = []
        self.indexes = {"_id_": {"name": "_id_", "key": {"_id": 1}, "unique": True}}
        self.index_ops = {}
        self.index_since = datetime(2026, 1, 1, tzinfo=timezone.utc)
        self.explain_result = COLLSCAN_EXPLAIN
        self.explain_calls = 0
        self.error = None
        self.index_stats_error = None

    # Reads

    def find(self, query=None):
        self.explain_calls += 1
        matched = [doc for doc in self.docs if matches(doc, query or {})]
        return FakeCursor(matched, explain_result=self.explain_result, error=self.error)

    async def find_one(self, query=None):
        for doc in self.docs:
            if matches(doc, query or {}):
                return copy.deepcopy(doc)
        return None

    def aggregate(self, pipeline):
        assert pipeline == [{"$indexStats": {}}]
        stats = [
            {
                "name": name,
                "key": index["key"],
                "accesses": {"ops": self.index_ops.get(name, 0), "since": self.index_since},
            }
            for name, index in self.indexes.items()
        ]
        return FakeCursor(stats, error=self.index_stats_error)

    def list_indexes(self):
        return FakeCursor(list(self.indexes.values()))

    # Writes

    def _check_unique(self, doc, ignore=None):
        for index in self.indexes.values():
            if not index.get("unique"):
                continue
            fields = list(index["key"])
            values = [_get_path(doc, f)[0] for f in fields]
            for other in self.docs:
                if other is ignore:
                    continue
                if [_get_path(other, f)[0] for f in fields] == values:
                    raise DuplicateKeyError(f"E11000 duplicate key error index: {index['name']}", code=11000)

    async def insert_one(self, doc):
        if self.error is not None:
            raise self.error
        if "_id" not in doc:
            doc["_id"] = f"oid{next(_object_ids)}"
        self._check_unique(doc)
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def find_one_and_update(self, query, update, return_document=None):
        for doc in self.docs:
            if matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                return copy.deepcopy(doc)
        return None

    async def update_many(self, query, update):
        modified = 0
        for doc in self.docs:
            if not matches(doc, query):
                continue
            for field, value in update.get("$set", {}).items():
                doc[field] = copy.deepcopy(value)
            for field in update.get("$unset", {}):
                doc.pop(field, None)
            modified += 1
        return SimpleNamespace(modified_count=modified)

    async def delete_one(self, query):
        for doc in self.docs:
            if matches(doc, query):
                self.docs.remove(doc)
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    # Indexes

    async def create_index(self, keys, **kwargs):
        if self.error is not None:
            raise self.error
        key = dict(keys)
        name = kwargs.get("name") or "_".join(f"{field}_{direction}" for field, direction in keys)
        spec = {"name": name, "key": key}
        for option in ("unique", "sparse", "background", "expireAfterSeconds"):
            if option in kwargs:
                spec[option] = kwargs[option]

        existing = self.indexes.get(name)
        if existing is not None:
            if existing["key"] != key or existing.get("expireAfterSeconds") != spec.get("expireAfterSeconds"):
                raise OperationFailure(f"Index with name: {name} already exists with different options", code=85)
            return name
        for other in self.indexes.values():
            if other["key"] == key:
                raise OperationFailure(f"Index already exists with a different name: {other['name']}", code=85)
        self.indexes[name] = spec
        return name

    async def drop_index(self, name):
        if name == "_id_":
            raise OperationFailure("cannot drop _id index", code=72)
        if name not in self.indexes:
            raise OperationFailure(f"index not found with name [{name}]", code=27)
        del self.indexes[name]


class FakeDatabase:
    def __init__(self, name="marketplace_test"):
        self.name = name
        self.collections = {}
        self.commands = []
        self.command_errors = {}

    def __getitem__(self, name):
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def list_collection_names(self):
        return list(self.collections)

    async def command(self, command, value=None):
        self.commands.append(command if value is None else (command, value))
        command_name = command if isinstance(command, str) else next(iter(command))
        if command_name in self.command_errors:
            raise self.command_errors[command_name]

        if command_name == "collStats":
            collection = self[value]
            count = len(collection.docs)
            return {
                "ns": f"{self.name}.{value}",
                "count": count,
                "nindexes": len(collection.indexes),
                "size": count * 100,
                "avgObjSize": 100 if count else 0,
            }
        if command_name == "dbStats":
            return {"collections": len(self.collections), "objects": 0, "dataSize": 0, "indexSize": 0}
        if command_name == "profile":
            return {"was": 0, "slowms": 100, "ok": 1.0}
        return {"ok": 1.0}


@pytest.fixture
def settings():
    return Settings(
        MONGODB_URL="mongodb://localhost:27017",
        MONGODB_DATABASE="marketplace_test",
        MONGODB_MAX_POOL_SIZE=10,
        MONGODB_CONNECT_RETRIES=2,
        DB_RUN_MIGRATIONS_ON_STARTUP=False,
        DB_ENABLE_PROFILING=False,
        DB_MONITORING_ENABLED=False,
    )


@pytest.fixture
def metrics():
    return DatabaseMetrics(registry=CollectorRegistry())


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def db_manager(settings, fake_db):
    """A DatabaseManager that looks connected and is bound to the in-memory database."""
    manager = DatabaseManager(settings)
    manager.client = MagicMock()
    manager.client.admin.command = AsyncMock(return_value={"ok": 1.0})
    manager.database = fake_db
    return manager
