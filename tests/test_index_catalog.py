import pytest
from pymongo.errors import OperationFailure

from docstore_ops.database.index_catalog import ANALYTICS_RETENTION_SECONDS, DEFAULT_INDEXES, IndexCatalog
from docstore_ops.models.index_models import IndexDefinition, IndexOptions


@pytest.fixture
def catalog(db_manager):
    return IndexCatalog(db_manager)


def test_default_catalog_covers_marketplace_collections(catalog):
    assert catalog.collections == ["users", "companies", "analyticsevents"]
    names = [d.index_name for d in catalog.definitions_for("users")]
    assert "email_1" in names
    assert "firstName_text_lastName_text_email_text" in names
    assert len({(d.collection, d.index_name) for d in DEFAULT_INDEXES}) == len(DEFAULT_INDEXES)


def test_invalid_direction_rejected():
    with pytest.raises(ValueError):
        IndexDefinition(collection="users", fields={"email": 2})


@pytest.mark.asyncio
async def test_create_all_is_idempotent(catalog, fake_db):
    first = await catalog.create_all()
    second = await catalog.create_all()

    assert first.failed == {}
    assert second.failed == {}
    assert len(first.created) == len(DEFAULT_INDEXES)
    assert fake_db["users"].indexes["email_1"]["unique"] is True
    assert fake_db["users"].indexes["refreshToken_1"]["sparse"] is True
    assert fake_db["analyticsevents"].indexes["timestamp_1"]["expireAfterSeconds"] == ANALYTICS_RETENTION_SECONDS


@pytest.mark.asyncio
async def test_conflicting_definition_fails_alone(db_manager, fake_db):
    await fake_db["users"].create_index([("email", 1)], name="legacy_email")
    catalog = IndexCatalog(
        db_manager,
        definitions=[
            IndexDefinition(collection="users", fields={"email": 1}, options=IndexOptions(unique=True)),
            IndexDefinition(collection="users", fields={"role": 1}),
        ],
    )

    summary = await catalog.create_all()

    assert list(summary.failed) == ["users.email_1"]
    assert summary.created == ["users.role_1"]
    assert summary.total == 2


@pytest.mark.asyncio
async def test_diff_reports_missing_and_extra(catalog, fake_db):
    await catalog.create_collection_indexes("companies")
    await fake_db["companies"].drop_index("size_1")
    await fake_db["companies"].create_index([("legacyCode", 1)])

    (diff,) = await catalog.diff("companies")

    assert diff.missing == ["size_1"]
    assert diff.extra == ["legacyCode_1"]
    assert not diff.in_sync


@pytest.mark.asyncio
async def test_usage_and_drop_unused_never_touches_primary_key(catalog, fake_db):
    users = fake_db["users"]
    await users.create_index([("email", 1)], unique=True)
    await users.create_index([("role", 1)])
    users.index_ops = {"email_1": 42}

    usage = await catalog.collection_usage("users")
    assert {u.index_name: u.usage_ops for u in usage} == {"_id_": 0, "email_1": 42, "role_1": 0}
    assert all(u.last_used is not None for u in usage)

    dropped = await catalog.drop_unused("users")

    assert dropped == ["role_1"]
    assert set(users.indexes) == {"_id_", "email_1"}


@pytest.mark.asyncio
async def test_usage_degrades_when_index_stats_unsupported(catalog, fake_db):
    fake_db["users"].index_stats_error = OperationFailure("Unrecognized pipeline stage name: '$indexStats'")

    assert await catalog.collection_usage("users") == []


@pytest.mark.asyncio
async def test_compound_suggestion_when_only_single_field_indexes_exist(catalog, fake_db):
    users = fake_db["users"]
    await users.create_index([("role", 1)])
    await users.create_index([("accountStatus", 1)])

    suggestions = await catalog.generate_suggestions()
    assert suggestions == ["Consider adding compound index on users: { role: 1, accountStatus: 1 }"]

    await users.create_index([("role", 1), ("accountStatus", 1)])
    assert await catalog.generate_suggestions() == []
