"""
# docstore_ops

Database lifecycle tooling for the marketplace's MongoDB store: **versioned schema migrations**,
a **declared index catalog**, **query plan analysis** and **periodic performance monitoring**,
all reachable through one facade.

## Architecture Overview

```
┌─────────────────────────────────────────────────────────────┐
│                  DatabaseOperations (facade)                 │
├─────────────────────────────────────────────────────────────┤
│  ┌────────────────┐  ┌────────────────┐  ┌───────────────┐  │
│  │ MigrationEngine│  │ QueryOptimizer │  │ Performance   │  │
│  │  + Migration   │  │  (explain,     │  │ Monitor       │  │
│  │    Lock        │  │   profiler)    │  │ (APScheduler) │  │
│  └───────┬────────┘  └───────┬────────┘  └───────┬───────┘  │
│          │                   │                   │          │
│          └──────► IndexCatalog ◄─────────────────┘          │
│                        │                                     │
│                 DatabaseManager (Motor)                      │
└─────────────────────────────────────────────────────────────┘
```

## Key Technologies

- **Motor / PyMongo**: Async MongoDB driver, pool event listeners and error types
- **Pydantic / pydantic-settings**: Models for every result and environment-driven configuration
- **APScheduler**: Periodic performance sampling on the running event loop
- **prometheus_client**: Counters, gauges and histograms for migrations, analyses and samples

## Entry Points

- `docstore_ops.services.database_operations.build_database_operations()` for applications
- `docstore-ops` console script (`docstore_ops.cli.db_cli:main`) for operators
"""

__version__ = "1.0.0"
