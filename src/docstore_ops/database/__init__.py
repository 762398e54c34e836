"""MongoDB connection layer and declared index catalog."""

from docstore_ops.database.index_catalog import DEFAULT_INDEXES, IndexCatalog
from docstore_ops.database.manager import DatabaseManager
from docstore_ops.database.pool_listener import PoolStatsListener

__all__ = ["DEFAULT_INDEXES", "DatabaseManager", "IndexCatalog", "PoolStatsListener"]
