"""Database bootstrap utilities for the quote persistence layer.

This module exposes convenience imports for engine construction and the
collection table definitions. The DB layer does not leak table objects into
callers of the gateway.
"""

from quote_store.db.base import create_isolated_engine, dispose_engine, get_engine
from quote_store.db.collections import (
    build_collection_tables,
    create_collections,
    drop_collections,
)

__all__ = [
    "get_engine",
    "create_isolated_engine",
    "dispose_engine",
    "build_collection_tables",
    "create_collections",
    "drop_collections",
]
