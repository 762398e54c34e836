"""
# Configuration Module

This module centralizes **all tunable parameters** of the database lifecycle subsystem:
connection settings, migration bookkeeping, profiling, and the alert thresholds used by the
performance monitor. It is built on **Pydantic Settings** so every value can be supplied
through environment variables or a dotenv-style configuration file.

## Configuration Precedence

Values are resolved in the following order (highest first):

- **Tier 1**: Environment variables (e.g., `export MONGODB_URL="..."`)
- **Tier 2**: The file named by `DOCSTORE_OPS_CONFIG_PATH`
- **Tier 3**: `.docstore` in the project root
- **Tier 4**: `.env` in the project root
- **Tier 5**: Defaults declared on `Settings`

## Setting Groups

### Connection
```
MONGODB_URL: str                       # Connection string
MONGODB_DATABASE: str                  # Database name
MONGODB_CONNECTION_TIMEOUT: int = 10000
MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
MONGODB_MAX_POOL_SIZE: int = 10
MONGODB_MIN_POOL_SIZE: int = 2
```

### Monitoring thresholds
```
DB_CONNECTION_UTILIZATION_THRESHOLD: float = 80.0   # percent
DB_AVG_RESPONSE_TIME_THRESHOLD_MS: float = 50.0
DB_DOCUMENT_GROWTH_RATE_THRESHOLD: float = 50.0     # percent per hour
DB_SLOW_QUERY_THRESHOLD_MS: int = 100
```

## Usage

```python
from docstore_ops.config import settings

print(settings.MONGODB_DATABASE)
print(settings.monitored_collections_list)
```

Services never read the module-level `settings` implicitly; they receive a `Settings`
instance from the composition root (`build_database_operations`) so tests can inject
their own values.
"""

import os
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
DOCSTORE_FILENAME: str = ".docstore"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "DOCSTORE_OPS_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determine the configuration file path based on a fixed precedence order.

    1.  **Environment Variable**: `DOCSTORE_OPS_CONFIG_PATH` (if set and the file exists).
    2.  **Docstore Config**: `.docstore` file in the project root directory.
    3.  **Dotenv Config**: `.env` file in the project root directory.
    4.  **Fallback**: `None`, meaning environment variables only.

    Returns:
        Optional[str]: The path to the configuration file, or `None` if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    docstore_path: Path = PROJECT_ROOT / DOCSTORE_FILENAME
    if docstore_path.exists():
        return str(docstore_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=False)


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    """
    Configuration model for the database lifecycle subsystem.

    **Configuration Groups:**
    *   **Connection**: MongoDB URL, credentials, timeouts, pool bounds.
    *   **Migrations**: Record/lock collection names, lock lease, startup behaviour.
    *   **Optimizer**: Profiling toggle, slow-query threshold, explain time bound, cache size.
    *   **Monitoring**: Sampling interval, buffer capacities, alert thresholds.
    *   **Health**: Ping latency and pool utilization warning levels.

    **Validation:**
    Custom validators make sure sizes and intervals are positive and that percentage
    thresholds stay within 0-100.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # MongoDB connection
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "foodxchange"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None
    MONGODB_MAX_POOL_SIZE: int = 10
    MONGODB_MIN_POOL_SIZE: int = 2
    MONGODB_CONNECT_RETRIES: int = 3

    # Migrations
    DB_MIGRATIONS_COLLECTION: str = "migrations"
    DB_MIGRATION_LOCK_COLLECTION: str = "migration_locks"
    DB_MIGRATION_LOCK_TTL_SECONDS: int = 3600
    DB_RUN_MIGRATIONS_ON_STARTUP: bool = True

    # Profiling and query analysis
    DB_ENABLE_PROFILING: bool = False
    DB_SLOW_QUERY_THRESHOLD_MS: int = 100
    DB_EXPLAIN_TIMEOUT_MS: int = 5000
    DB_QUERY_ANALYSIS_CACHE_SIZE: int = 500
    DB_OPTIMIZE_COLLECTIONS: str = "users,companies,analyticsevents"

    # Performance monitoring
    DB_MONITORING_ENABLED: bool = True
    DB_MONITORING_INTERVAL_MS: int = 60000
    DB_MONITORED_COLLECTIONS: str = "users,companies,analyticsevents"
    DB_HISTORY_CAPACITY: int = 100
    DB_ALERT_CAPACITY: int = 100
    DB_CONNECTION_UTILIZATION_THRESHOLD: float = 80.0
    DB_AVG_RESPONSE_TIME_THRESHOLD_MS: float = 50.0
    DB_DOCUMENT_GROWTH_RATE_THRESHOLD: float = 50.0
    DB_INDEX_MIN_OPS_PER_DAY: float = 1.0

    # Health checks
    DB_HEALTH_PING_WARN_MS: int = 100
    DB_POOL_UTILIZATION_WARN: float = 0.9

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("MONGODB_URL", mode="before")
    @classmethod
    def no_empty_urls(cls, v: Any, info: Any) -> Any:
        """
        Validate that the MongoDB URL is not empty.

        Raises:
            ValueError: If the URL is empty or whitespace.
        """
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .docstore and not empty!")
        return v

    @field_validator(
        "MONGODB_MAX_POOL_SIZE",
        "MONGODB_CONNECT_RETRIES",
        "DB_MIGRATION_LOCK_TTL_SECONDS",
        "DB_SLOW_QUERY_THRESHOLD_MS",
        "DB_EXPLAIN_TIMEOUT_MS",
        "DB_QUERY_ANALYSIS_CACHE_SIZE",
        "DB_MONITORING_INTERVAL_MS",
        "DB_HISTORY_CAPACITY",
        "DB_ALERT_CAPACITY",
        mode="before",
    )
    @classmethod
    def validate_positive_integers(cls, v: Any, info: Any) -> int:
        """
        Validate that numeric settings are positive integers.

        Raises:
            ValueError: If the value is not a positive integer.
        """
        value = int(v)
        if value <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer")
        return value

    @field_validator(
        "DB_CONNECTION_UTILIZATION_THRESHOLD",
        "DB_DOCUMENT_GROWTH_RATE_THRESHOLD",
        mode="before",
    )
    @classmethod
    def validate_percentage(cls, v: Any, info: Any) -> float:
        """Percentages must stay between 0 and 100."""
        value = float(v)
        if value < 0 or value > 100:
            raise ValueError(f"{info.field_name} must be between 0 and 100")
        return value

    @property
    def monitored_collections_list(self) -> List[str]:
        """Collections sampled by the performance monitor."""
        return _split_csv(self.DB_MONITORED_COLLECTIONS)

    @property
    def optimize_collections_list(self) -> List[str]:
        """Collections visited by `optimize_database()`."""
        return _split_csv(self.DB_OPTIMIZE_COLLECTIONS)

    @property
    def connection_string(self) -> str:
        """
        Build the effective connection string, injecting credentials when configured.

        The password is unwrapped from `SecretStr` only here, so it never reaches a log line.
        """
        if self.MONGODB_USERNAME and self.MONGODB_PASSWORD:
            password = self.MONGODB_PASSWORD.get_secret_value()
            return f"mongodb://{self.MONGODB_USERNAME}:{password}@{self.MONGODB_URL.replace('mongodb://', '')}"
        return self.MONGODB_URL


settings = Settings()
