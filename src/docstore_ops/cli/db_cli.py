"""
Command-line interface for database lifecycle operations.

This CLI tool runs migrations, reports status and health, manages indexes and toggles
the server profiler against the database configured through `docstore_ops.config`.
Every command prints its result as JSON on stdout and exits non-zero on failure.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Optional

from pymongo.errors import PyMongoError

from docstore_ops.config import settings
from docstore_ops.exceptions import DocstoreOpsError
from docstore_ops.managers.logging_manager import get_logger
from docstore_ops.services.database_operations import DatabaseOperations, build_database_operations

logger = get_logger(prefix="[DatabaseCLI]")


def _to_json(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {key: _to_json(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_json(item) for item in value]
    return value


def emit(value: Any):
    """Print a model, or a container of models, as indented JSON."""
    print(json.dumps(_to_json(value), indent=2, default=str))


class DatabaseCLI:
    """CLI tool for database lifecycle operations."""

    def __init__(self, operations: DatabaseOperations):
        """
        Initialize database CLI.

        Args:
            operations: Facade wired by `build_database_operations()`
        """
        self.operations = operations

    async def _session(self, action) -> bool:
        """Connect without startup migrations, monitoring or profiling, run `action`, always disconnect."""
        try:
            await self.operations.connect(run_migrations=False, start_monitoring=False, enable_profiling=False)
            return await action()
        except (DocstoreOpsError, PyMongoError, ConnectionError) as e:
            logger.error("Command failed: %s", e)
            return False
        finally:
            await self.operations.disconnect()

    async def migrate(self) -> bool:
        """Apply every pending migration."""

        async def action():
            result = await self.operations.run_migrations()
            emit(result)
            return True

        return await self._session(action)

    async def rollback(self, migration_id: str) -> bool:
        """
        Roll back one applied migration.

        Returns:
            True if the migration was rolled back, False if it was not applied
        """

        async def action():
            rolled_back = await self.operations.rollback_migration(migration_id)
            emit({"migration_id": migration_id, "rolled_back": rolled_back})
            return rolled_back

        return await self._session(action)

    async def status(self) -> bool:
        async def action():
            emit(await self.operations.get_migration_status())
            return True

        return await self._session(action)

    async def validate(self) -> bool:
        """Check applied migrations for drift; fails when any issue is found."""

        async def action():
            result = await self.operations.validate_migrations()
            emit(result)
            return result.valid

        return await self._session(action)

    async def optimize(self) -> bool:
        async def action():
            emit(await self.operations.optimize_database())
            return True

        return await self._session(action)

    async def health(self) -> bool:
        async def action():
            status = await self.operations.get_health_status()
            emit(status)
            return status.health is not None and status.health.is_healthy

        return await self._session(action)

    async def indexes(self, collection: Optional[str] = None, create: bool = False, drop_unused: bool = False) -> bool:
        """
        Create declared indexes, drop unused ones, or report drift and usage.

        Args:
            collection: Restrict the command to one collection
            create: Create the declared indexes
            drop_unused: Drop indexes with zero recorded operations (requires a collection)
        """
        catalog = self.operations.index_catalog

        async def action():
            if create:
                if collection:
                    summary = await catalog.create_collection_indexes(collection)
                else:
                    summary = await catalog.create_all()
                emit(summary)
                return not summary.failed
            if drop_unused:
                dropped = await catalog.drop_unused(collection)
                emit({"collection": collection, "dropped": dropped})
                return True
            emit(
                {
                    "diff": await catalog.diff(collection),
                    "usage": await catalog.analyze_usage(collection),
                }
            )
            return True

        return await self._session(action)

    async def profile(self, enabled: bool, slow_ms: Optional[int] = None) -> bool:
        """Turn the server profiler on (level 1) or off."""
        optimizer = self.operations.query_optimizer

        async def action():
            if enabled:
                changed = await optimizer.enable_profiling(slow_ms)
            else:
                changed = await optimizer.disable_profiling()
            emit({"profiling": enabled, "changed": changed})
            return changed

        return await self._session(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="docstore-ops",
        description="Database lifecycle CLI: migrations, indexes, profiling and health",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("migrate", help="Apply pending migrations")

    rollback_parser = subparsers.add_parser("rollback", help="Roll back an applied migration")
    rollback_parser.add_argument("migration_id", help="Id of the migration to roll back")

    subparsers.add_parser("status", help="Show applied and pending migrations")
    subparsers.add_parser("validate", help="Detect checksum drift in applied migrations")
    subparsers.add_parser("optimize", help="Analyze collections and report index suggestions")
    subparsers.add_parser("health", help="Show connection health, migrations and alerts")

    index_parser = subparsers.add_parser("indexes", help="Inspect or manage declared indexes")
    index_parser.add_argument("--collection", help="Restrict to one collection")
    index_group = index_parser.add_mutually_exclusive_group()
    index_group.add_argument("--create", action="store_true", help="Create the declared indexes")
    index_group.add_argument(
        "--drop-unused",
        action="store_true",
        help="Drop indexes with no recorded operations (requires --collection)",
    )

    profile_parser = subparsers.add_parser("profile", help="Turn the server profiler on or off")
    profile_parser.add_argument("state", choices=["on", "off"])
    profile_parser.add_argument(
        "--slow-ms",
        type=int,
        help=f"Slow operation threshold in ms (default: {settings.DB_SLOW_QUERY_THRESHOLD_MS})",
    )

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "indexes" and args.drop_unused and not args.collection:
        parser.error("--drop-unused requires --collection")

    cli = DatabaseCLI(build_database_operations(settings))

    # Execute command
    if args.command == "migrate":
        success = asyncio.run(cli.migrate())
    elif args.command == "rollback":
        success = asyncio.run(cli.rollback(args.migration_id))
    elif args.command == "status":
        success = asyncio.run(cli.status())
    elif args.command == "validate":
        success = asyncio.run(cli.validate())
    elif args.command == "optimize":
        success = asyncio.run(cli.optimize())
    elif args.command == "health":
        success = asyncio.run(cli.health())
    elif args.command == "indexes":
        success = asyncio.run(
            cli.indexes(
                collection=args.collection,
                create=args.create,
                drop_unused=args.drop_unused,
            )
        )
    elif args.command == "profile":
        success = asyncio.run(cli.profile(enabled=args.state == "on", slow_ms=args.slow_ms))
    else:
        parser.print_help()
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
