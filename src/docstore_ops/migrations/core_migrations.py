"""
Default migration set for the marketplace collections.

| Id | Version | Effect |
|----|---------|--------|
| `001_initial_setup` | 1.0.0 | Creates every declared index |
| `002_user_enhancements` | 1.1.0 | Progressive profiling and security fields on `users` |
| `003_company_enhancements` | 1.2.0 | Verification and business fields on `companies` |
| `004_analytics_ttl` | 1.3.0 | 90-day TTL on `analyticsevents.timestamp`, `processed` flag |

Data migrations only touch documents that lack the new fields, so re-running `up()` after a
partial failure is harmless.
"""

from datetime import datetime, timezone
from typing import List

from pymongo.errors import PyMongoError

from docstore_ops.database.index_catalog import ANALYTICS_RETENTION_SECONDS, IndexCatalog
from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.models.migration_models import Migration

logger = get_logger(prefix="[CoreMigrations]")

INDEXED_COLLECTIONS = ["users", "companies", "analyticsevents"]

USER_ENHANCEMENT_FIELDS = [
    "onboardingStep",
    "profileCompletionPercentage",
    "failedLoginAttempts",
    "accountStatus",
    "isEmailVerified",
    "companyVerified",
    "lastPasswordChange",
    "securityQuestions",
    "preferences",
]

COMPANY_ENHANCEMENT_FIELDS = [
    "verificationStatus",
    "businessType",
    "size",
    "industry",
    "certifications",
    "businessHours",
]

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


async def add_user_enhancements(db):
    logger.info("Adding progressive profiling fields to users...")
    result = await db["users"].update_many(
        {"onboardingStep": {"$exists": False}},
        {
            "$set": {
                "onboardingStep": "email-verification",
                "profileCompletionPercentage": 0,
                "failedLoginAttempts": 0,
                "accountStatus": "active",
                "isEmailVerified": False,
                "companyVerified": False,
                "lastPasswordChange": datetime.now(timezone.utc),
                "securityQuestions": [],
                "preferences": {
                    "notifications": {"email": True, "sms": False, "push": True},
                    "privacy": {"profileVisibility": "public", "allowSearchEngineIndexing": True},
                },
            }
        },
    )
    logger.info("User enhancements applied to %d documents", result.modified_count)


async def remove_user_enhancements(db):
    logger.info("Removing progressive profiling fields from users...")
    await db["users"].update_many({}, {"$unset": {field: "" for field in USER_ENHANCEMENT_FIELDS}})


async def add_company_enhancements(db):
    logger.info("Adding verification fields to companies...")
    business_hours = {
        day: {"open": "09:00", "close": "17:00", "closed": day == "sunday"} for day in WEEKDAYS
    }
    result = await db["companies"].update_many(
        {"verificationStatus": {"$exists": False}},
        {
            "$set": {
                "verificationStatus": "pending",
                "businessType": "restaurant",
                "size": "small",
                "industry": "food-service",
                "certifications": [],
                "businessHours": business_hours,
            }
        },
    )
    logger.info("Company enhancements applied to %d documents", result.modified_count)


async def remove_company_enhancements(db):
    logger.info("Removing verification fields from companies...")
    await db["companies"].update_many({}, {"$unset": {field: "" for field in COMPANY_ENHANCEMENT_FIELDS}})


async def add_analytics_ttl(db):
    logger.info("Optimizing analytics collection with TTL indexes...")
    analytics = db["analyticsevents"]
    await analytics.create_index(
        [("timestamp", 1)], expireAfterSeconds=ANALYTICS_RETENTION_SECONDS, background=True
    )
    await analytics.update_many({"processed": {"$exists": False}}, {"$set": {"processed": False}})


async def remove_analytics_ttl(db):
    logger.info("Removing TTL optimization from analytics...")
    analytics = db["analyticsevents"]
    try:
        await analytics.drop_index("timestamp_1")
    except PyMongoError as e:
        logger.warning("TTL index may not exist: %s", e)
    await analytics.update_many({}, {"$unset": {"processed": ""}})


def build_core_migrations(index_catalog: IndexCatalog) -> List[Migration]:
    """Return the default migrations, wired to the given index catalog."""

    async def create_initial_indexes(db):
        logger.info("Running initial database setup...")
        summary = await index_catalog.create_all()
        if summary.failed:
            raise RuntimeError(f"Index creation failed for {sorted(summary.failed)}")
        logger.info("Initial setup completed: %d indexes ensured", len(summary.created))

    async def drop_initial_indexes(db):
        logger.info("Dropping all indexes...")
        for collection in INDEXED_COLLECTIONS:
            try:
                await index_catalog.drop_collection_indexes(collection)
            except PyMongoError as e:
                logger.error("Failed to drop indexes for %s: %s", collection, e)
        logger.info("Index cleanup completed")

    return [
        Migration(
            id="001_initial_setup",
            version="1.0.0",
            description="Initial database setup and indexes",
            up=create_initial_indexes,
            down=drop_initial_indexes,
        ),
        Migration(
            id="002_user_enhancements",
            version="1.1.0",
            description="Add progressive profiling and security fields to users",
            up=add_user_enhancements,
            down=remove_user_enhancements,
        ),
        Migration(
            id="003_company_enhancements",
            version="1.2.0",
            description="Add verification and business fields to companies",
            up=add_company_enhancements,
            down=remove_company_enhancements,
        ),
        Migration(
            id="004_analytics_ttl",
            version="1.3.0",
            description="Optimize analytics collection with TTL indexes",
            up=add_analytics_ttl,
            down=remove_analytics_ttl,
        ),
    ]
