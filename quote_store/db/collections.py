"""Table definitions for the backing quote collections.

Every backing collection shares one physical layout: the fields the storage
layer interprets are promoted to columns, everything else stays in the
``doc`` JSON column untouched. Unique constraints carry stable names so a
violation can be traced back to the field that caused it.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Tuple

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

# Logical field path -> promoted column name
PROMOTED_FIELDS: Dict[str, str] = {
    "id": "id",
    "_id": "id",
    "quoteId": "quote_id",
    "service": "service",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "proformaInvoice.piNumber": "pi_number",
}

# Promoted column name -> logical field reported in uniqueness violations
UNIQUE_FIELDS: Dict[str, str] = {
    "quote_id": "quoteId",
    "pi_number": "proformaInvoice.piNumber",
}


def unique_constraint_name(table_name: str, column: str) -> str:
    return f"uq_{table_name}_{column}"


def build_collection_table(metadata: MetaData, name: str) -> Table:
    return Table(
        name,
        metadata,
        Column("id", String(64), primary_key=True),
        Column("quote_id", String(64), nullable=False),
        Column("service", String(32), nullable=False),
        Column("pi_number", String(64), nullable=True),
        Column("created_at", DateTime(), nullable=False),
        Column("updated_at", DateTime(), nullable=False),
        Column("doc", JSON(), nullable=False),
        UniqueConstraint("quote_id", name=unique_constraint_name(name, "quote_id")),
        # NULLs never collide, which gives the sparse semantics piNumber needs
        UniqueConstraint("pi_number", name=unique_constraint_name(name, "pi_number")),
        Index(f"ix_{name}_created_at", "created_at"),
        Index(f"ix_{name}_service", "service"),
    )


def build_collection_tables(names: Iterable[str]) -> Tuple[MetaData, Dict[str, Table]]:
    """Return a fresh MetaData holding one table per collection name."""
    metadata = MetaData()
    tables: Dict[str, Table] = {}
    for name in names:
        if name in tables:
            continue
        tables[name] = build_collection_table(metadata, name)
    return metadata, tables


def create_collections(engine: Engine, metadata: MetaData) -> None:
    """Create any missing collection tables; existing tables are left alone."""
    metadata.create_all(engine, checkfirst=True)
    logger.info("collections_ready tables=%s", ",".join(sorted(metadata.tables)))


def drop_collections(engine: Engine, metadata: MetaData) -> None:
    metadata.drop_all(engine, checkfirst=True)
    logger.info("collections_dropped tables=%s", ",".join(sorted(metadata.tables)))


__all__ = [
    "PROMOTED_FIELDS",
    "UNIQUE_FIELDS",
    "build_collection_table",
    "build_collection_tables",
    "create_collections",
    "drop_collections",
    "unique_constraint_name",
]
