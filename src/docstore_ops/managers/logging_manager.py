"""
# Logging Manager

Provides `get_logger()`, the single entry point for obtaining loggers in `docstore_ops`.

Every component logs through a **prefixed adapter** so that log lines can be filtered by
subsystem without structured-logging infrastructure:

```
2026-10-18 10:00:00 INFO docstore_ops [MigrationEngine] Running migration: 001_initial_setup
2026-10-18 10:00:01 INFO docstore_ops [DB_PERFORMANCE] Migration 001_initial_setup completed in 0.412s
```

Handlers are attached once to the package root logger (`docstore_ops`); child loggers
propagate to it. The level comes from `settings.LOG_LEVEL`.

## Usage

```python
from docstore_ops.managers.logging_manager import get_logger

logger = get_logger(prefix="[QueryOptimizer]")
logger.info("Analyzed %d queries", 12)
```
"""

import logging
import sys
from typing import Any, MutableMapping, Optional, Tuple

from docstore_ops.config import settings

ROOT_LOGGER_NAME = "docstore_ops"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_configured = False


class PrefixedLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that prepends a fixed component prefix to every message."""

    def __init__(self, logger: logging.Logger, prefix: str = ""):
        super().__init__(logger, {})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        if self.prefix:
            return f"{self.prefix} {msg}", kwargs
        return msg, kwargs


def _configure_root(level: Optional[str] = None) -> None:
    global _configured
    if _configured:
        return

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))

    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(handler)

    _configured = True


def get_logger(name: str = ROOT_LOGGER_NAME, prefix: str = "") -> PrefixedLoggerAdapter:
    """
    Return a prefixed logger for a component.

    Args:
        name: Logger name; names outside the package are nested under `docstore_ops`.
        prefix: Bracketed tag prepended to every message, e.g. `"[DATABASE]"`.

    Returns:
        PrefixedLoggerAdapter: Adapter exposing the standard `Logger` methods.
    """
    _configure_root()
    if name != ROOT_LOGGER_NAME and not name.startswith(ROOT_LOGGER_NAME + "."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return PrefixedLoggerAdapter(logging.getLogger(name), prefix)
