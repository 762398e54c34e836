"""Command-line entry points for docstore_ops."""
