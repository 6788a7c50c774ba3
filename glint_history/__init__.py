"""SQLite historical storage and block-range scans for entity events."""

__version__ = "0.1.0"
__all__ = ["provider", "schema", "writer"]