"""Single-collection data access for quote documents.

One :class:`QuoteCollection` wraps one backing table. It converts between the
document shape callers see (``id``, ``quoteId``, ``service``, ``createdAt``,
``updatedAt`` plus payload) and the row layout, and translates driver
failures into :mod:`quote_store.errors`. Multi-collection routing lives in
the fan-out engine and the gateway, never here.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from enum import Enum
import json
import logging
import uuid
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.sql.schema import Table

from quote_store.db.base import json_serializer
from quote_store.db.collections import UNIQUE_FIELDS, unique_constraint_name
from quote_store.errors import DuplicateKeyError, StorageError
from quote_store.logic.filters import SortSpec, compile_criteria, get_path, storage_order
from quote_store.logic.patches import apply_update

logger = logging.getLogger(__name__)

_PROMOTED_KEYS = frozenset({"id", "_id", "quoteId", "service", "createdAt", "updatedAt"})


def _as_datetime(value: Any, field: str) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValueError(f"{field} is not an ISO-8601 timestamp: {value!r}") from None
    if not isinstance(value, datetime):
        raise ValueError(f"{field} must be a datetime, got {type(value).__name__}")
    if value.tzinfo is not None:
        # Stored timestamps are naive local time
        value = value.astimezone().replace(tzinfo=None)
    return value


def _service_value(service: Any) -> str:
    return service.value if isinstance(service, Enum) else str(service)


def record_to_row(record: Mapping[str, Any]) -> Dict[str, Any]:
    """Split a document into promoted columns and the JSON ``doc`` payload."""
    quote_id = record.get("quoteId")
    if not quote_id:
        raise ValueError("quoteId is required")
    created_at = _as_datetime(record.get("createdAt"), "createdAt")
    if created_at is None:
        raise ValueError("createdAt is required")
    updated_at = _as_datetime(record.get("updatedAt"), "updatedAt") or created_at
    identity = record.get("id") or record.get("_id") or uuid.uuid4().hex

    payload = {k: v for k, v in record.items() if k not in _PROMOTED_KEYS}
    # Round-trip through JSON so the stored payload matches what reads return
    doc = json.loads(json_serializer(payload))
    pi_number = get_path(doc, "proformaInvoice.piNumber")

    return {
        "id": str(identity),
        "quote_id": str(quote_id),
        "service": _service_value(record.get("service")),
        "pi_number": str(pi_number) if pi_number not in (None, "") else None,
        "created_at": created_at,
        "updated_at": updated_at,
        "doc": doc,
    }


def row_to_record(row: Mapping[str, Any]) -> Dict[str, Any]:
    record: Dict[str, Any] = {
        "id": row["id"],
        "quoteId": row["quote_id"],
        "service": row["service"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
    for key, value in (row["doc"] or {}).items():
        record.setdefault(key, value)
    return record


def violated_field(table_name: str, exc: IntegrityError) -> Tuple[bool, Optional[str]]:
    """Return ``(is_unique_violation, logical_field)`` for an IntegrityError."""
    orig = getattr(exc, "orig", None)
    message = str(orig if orig is not None else exc)
    lowered = message.lower()
    diag = getattr(orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None) or ""
    is_unique = (
        "unique constraint" in lowered
        or "duplicate key" in lowered
        or getattr(orig, "pgcode", None) == "23505"
    )
    if not is_unique:
        return False, None
    for column, field in UNIQUE_FIELDS.items():
        name = unique_constraint_name(table_name, column)
        if constraint == name or name in message or f"{table_name}.{column}" in message:
            return True, field
    if constraint == f"{table_name}_pkey" or f"{table_name}.id" in message:
        return True, "id"
    return True, None


class QuoteCollection:
    """Data access for one backing collection table."""

    def __init__(self, engine: Engine, table: Table) -> None:
        self._engine = engine
        self._table = table

    @property
    def name(self) -> str:
        return self._table.name

    @property
    def table(self) -> Table:
        return self._table

    def __repr__(self) -> str:
        return f"QuoteCollection({self.name!r})"

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            unique, field = violated_field(self.name, exc)
            if unique:
                logger.info(
                    "duplicate_key collection=%s op=%s field=%s", self.name, operation, field
                )
                raise DuplicateKeyError(
                    f"duplicate key on {field or 'unknown field'} in {self.name}",
                    collection=self.name,
                    field=field,
                ) from exc
            logger.error(
                "integrity_error collection=%s op=%s", self.name, operation, exc_info=True
            )
            raise StorageError(f"{operation} failed on {self.name}: {exc.orig}", collection=self.name) from exc
        except SQLAlchemyError as exc:
            logger.error(
                "storage_error collection=%s op=%s", self.name, operation, exc_info=True
            )
            raise StorageError(f"{operation} failed on {self.name}: {exc}", collection=self.name) from exc

    def _where(self, criteria: Optional[Mapping[str, Any]], service: Any) -> list:
        clauses = compile_criteria(self._table, criteria)
        if service is not None:
            clauses.append(self._table.c.service == _service_value(service))
        return clauses

    def insert(self, record: Mapping[str, Any]) -> Dict[str, Any]:
        row = record_to_row(record)
        with self._storage_errors("insert"):
            with self._engine.begin() as conn:
                conn.execute(insert(self._table).values(**row))
        return row_to_record(row)

    def get(self, identity: Any) -> Optional[Dict[str, Any]]:
        if identity is None:
            return None
        stmt = select(self._table).where(self._table.c.id == str(identity))
        with self._storage_errors("get"):
            with self._engine.connect() as conn:
                row = conn.execute(stmt).mappings().first()
        return row_to_record(row) if row is not None else None

    def find(
        self,
        criteria: Optional[Mapping[str, Any]] = None,
        service: Any = None,
        sort: Optional[SortSpec] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Return matching records.

        ``sort`` and ``limit`` are applied in SQL only when every sort key is
        a promoted column; otherwise all matches are returned unordered and
        the caller sorts.
        """
        stmt = select(self._table).where(*self._where(criteria, service))
        order = storage_order(self._table, sort) if sort else None
        if order is not None:
            stmt = stmt.order_by(*order)
            if limit is not None:
                stmt = stmt.limit(limit)
        with self._storage_errors("find"):
            with self._engine.connect() as conn:
                rows = conn.execute(stmt).mappings().all()
        return [row_to_record(row) for row in rows]

    def count(self, criteria: Optional[Mapping[str, Any]] = None, service: Any = None) -> int:
        stmt = select(func.count()).select_from(self._table).where(*self._where(criteria, service))
        with self._storage_errors("count"):
            with self._engine.connect() as conn:
                return int(conn.execute(stmt).scalar_one())

    def update_by_id(
        self,
        identity: Any,
        patch: Mapping[str, Any],
        updated_at: datetime,
        allowed_services: Optional[Iterable[str]] = None,
    ) -> Optional[Tuple[Dict[str, Any], Dict[str, Any]]]:
        """Apply ``patch`` to one document; return ``(before, after)`` or None.

        Read and write share one transaction and the row is locked where the
        dialect supports ``SELECT ... FOR UPDATE``. When ``allowed_services``
        is given, a patch leaving ``service`` outside it raises ValueError and
        nothing is written.
        """
        if identity is None:
            return None
        key = str(identity)
        stmt = select(self._table).where(self._table.c.id == key).with_for_update()
        with self._storage_errors("update"):
            with self._engine.begin() as conn:
                row = conn.execute(stmt).mappings().first()
                if row is None:
                    return None
                before = row_to_record(row)
                after = apply_update(before, patch)
                after["id"] = before["id"]
                after["updatedAt"] = updated_at
                if allowed_services is not None and after.get("service") not in allowed_services:
                    raise ValueError(
                        f"service {after.get('service')!r} cannot be stored in {self.name}"
                    )
                values = record_to_row(after)
                values.pop("id")
                conn.execute(
                    update(self._table).where(self._table.c.id == key).values(**values)
                )
        return before, row_to_record({"id": key, **values})

    def delete_by_id(self, identity: Any) -> int:
        if identity is None:
            return 0
        stmt = delete(self._table).where(self._table.c.id == str(identity))
        with self._storage_errors("delete"):
            with self._engine.begin() as conn:
                return int(conn.execute(stmt).rowcount or 0)

    def delete_many(self, criteria: Optional[Mapping[str, Any]] = None, service: Any = None) -> int:
        stmt = delete(self._table).where(*self._where(criteria, service))
        with self._storage_errors("delete_many"):
            with self._engine.begin() as conn:
                return int(conn.execute(stmt).rowcount or 0)


__all__ = ["QuoteCollection", "record_to_row", "row_to_record", "violated_field"]
