"""Cross-cutting managers (logging)."""

from docstore_ops.managers.logging_manager import get_logger

__all__ = ["get_logger"]
