"""
Client-side connection pool accounting.

`PoolStatsListener` is registered on the Motor client through pymongo's event listener API.
It counts connections as they are created, checked out, checked in and closed, so the
performance monitor can read pool utilization without a server round-trip and without
touching the request path. Callbacks arrive on driver threads, hence the lock.
"""

import threading
from typing import Dict

from pymongo import monitoring

from docstore_ops.managers.logging_manager import get_logger

logger = get_logger(prefix="[DB_POOL]")


class PoolStatsListener(monitoring.ConnectionPoolListener):
    """Tracks open and checked-out connections across all server pools of one client."""

    def __init__(self):
        self._lock = threading.Lock()
        self._open = 0
        self._checked_out = 0
        self._checkout_failures = 0
        self._pools_cleared = 0

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            active = max(self._checked_out, 0)
            total = max(self._open, active)
            return {
                "total": total,
                "active": active,
                "idle": total - active,
                "checkout_failures": self._checkout_failures,
                "pools_cleared": self._pools_cleared,
            }

    def reset(self) -> None:
        with self._lock:
            self._open = 0
            self._checked_out = 0
            self._checkout_failures = 0
            self._pools_cleared = 0

    # Pool events
    def pool_created(self, event):
        logger.debug("Connection pool created for %s", event.address)

    def pool_ready(self, event):
        pass

    def pool_cleared(self, event):
        with self._lock:
            self._pools_cleared += 1
        logger.warning("Connection pool cleared for %s", event.address)

    def pool_closed(self, event):
        logger.debug("Connection pool closed for %s", event.address)

    # Connection events
    def connection_created(self, event):
        with self._lock:
            self._open += 1

    def connection_ready(self, event):
        pass

    def connection_closed(self, event):
        with self._lock:
            self._open -= 1

    def connection_check_out_started(self, event):
        pass

    def connection_check_out_failed(self, event):
        with self._lock:
            self._checkout_failures += 1
        logger.warning("Connection check out failed for %s: %s", event.address, event.reason)

    def connection_checked_out(self, event):
        with self._lock:
            self._checked_out += 1

    def connection_checked_in(self, event):
        with self._lock:
            self._checked_out -= 1
