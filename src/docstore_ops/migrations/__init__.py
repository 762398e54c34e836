from docstore_ops.migrations.core_migrations import build_core_migrations

__all__ = ["build_core_migrations"]
