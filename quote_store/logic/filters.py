"""Filter, sort and ordering helpers for quote queries.

Filters are plain mappings of field path to condition. A condition is either
a literal (equality) or a mapping of operators: ``$eq``, ``$ne``, ``$gt``,
``$gte``, ``$lt``, ``$lte``, ``$in``, ``$nin`` and ``$exists``. Promoted
fields compile to column expressions; every other path is extracted from the
``doc`` JSON column with an accessor chosen from the compared value's type.

The in-memory ordering defined here is the one used to merge result sets
from several collections: null/missing first, then numbers, strings,
mappings, sequences, booleans and datetimes.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import and_, false, or_, true
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.sql.schema import Table

from quote_store.db.collections import PROMOTED_FIELDS

SortSpec = List[Tuple[str, int]]

DEFAULT_SORT: Tuple[Tuple[str, int], ...] = (("createdAt", -1),)
TIEBREAKER_FIELD = "id"

_OPERATORS = frozenset({"$eq", "$ne", "$gt", "$gte", "$lt", "$lte", "$in", "$nin", "$exists"})
_DATETIME_COLUMNS = frozenset({"created_at", "updated_at"})


# -----------------------------
# Filter splitting
# -----------------------------

def split_service_condition(criteria: Optional[Mapping[str, Any]]) -> Tuple[Any, Dict[str, Any]]:
    """Return ``(service_condition, remaining_criteria)``."""
    if not criteria:
        return None, {}
    if not isinstance(criteria, Mapping):
        raise ValueError(f"filter must be a mapping, got {type(criteria).__name__}")
    rest = {k: v for k, v in criteria.items() if k != "service"}
    return criteria.get("service"), rest


def _is_operator_mapping(condition: Any) -> bool:
    return (
        isinstance(condition, Mapping)
        and bool(condition)
        and all(isinstance(k, str) and k.startswith("$") for k in condition)
    )


# -----------------------------
# SQL compilation
# -----------------------------

def _parse_datetime(value: Any) -> Any:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            raise ValueError(f"invalid datetime value: {value!r}") from None
    if isinstance(value, datetime) and value.tzinfo is not None:
        # Stored timestamps are naive local time
        value = value.astimezone().replace(tzinfo=None)
    return value


def _json_path(path: str) -> Tuple[str, ...]:
    parts = tuple(p for p in path.split(".") if p)
    if not parts:
        raise ValueError("empty field path")
    return parts


def _json_value(table: Table, path: str, value: Any) -> Tuple[ColumnElement, Any]:
    """Return a typed JSON accessor for ``path`` and the bound value to compare."""
    element = table.c.doc[_json_path(path)]
    if isinstance(value, bool):
        return element.as_boolean(), value
    if isinstance(value, (int, float, Decimal)):
        return element.as_float(), float(value)
    if isinstance(value, (datetime, date)):
        return element.as_string(), value.isoformat()
    if isinstance(value, str):
        return element.as_string(), value
    raise ValueError(f"unsupported comparison value for '{path}': {type(value).__name__}")


def _present(table: Table, path: str) -> ColumnElement:
    return table.c.doc[_json_path(path)].as_string()


class _FieldCompiler:
    """Builds SQL expressions for one field path of one table."""

    def __init__(self, table: Table, path: str) -> None:
        self.table = table
        self.path = path
        column_name = PROMOTED_FIELDS.get(path)
        self.column = table.c[column_name] if column_name else None

    def _operand(self, value: Any) -> Tuple[ColumnElement, Any]:
        if self.column is not None:
            if self.column.name in _DATETIME_COLUMNS:
                return self.column, _parse_datetime(value)
            if self.column.name == "id" and value is not None:
                return self.column, str(value)
            return self.column, value
        return _json_value(self.table, self.path, value)

    def _null(self) -> ColumnElement:
        if self.column is not None:
            return self.column.is_(None)
        return _present(self.table, self.path).is_(None)

    def eq(self, value: Any) -> ColumnElement:
        if value is None:
            return self._null()
        expr, bound = self._operand(value)
        return expr == bound

    def ne(self, value: Any) -> ColumnElement:
        if value is None:
            return ~self._null()
        expr, bound = self._operand(value)
        return or_(expr != bound, self._null())

    def compare(self, op: str, value: Any) -> ColumnElement:
        if value is None:
            raise ValueError(f"{op} requires a non-null value for '{self.path}'")
        expr, bound = self._operand(value)
        if op == "$gt":
            return expr > bound
        if op == "$gte":
            return expr >= bound
        if op == "$lt":
            return expr < bound
        return expr <= bound

    def _grouped(self, values: Sequence[Any]) -> List[Tuple[ColumnElement, List[Any]]]:
        # JSON accessors differ per value type, so group values by accessor
        groups: Dict[str, Tuple[ColumnElement, List[Any]]] = {}
        for value in values:
            expr, bound = self._operand(value)
            key = type(bound).__name__
            if key not in groups:
                groups[key] = (expr, [])
            groups[key][1].append(bound)
        return list(groups.values())

    def in_(self, values: Any) -> ColumnElement:
        values = _as_list(values, self.path, "$in")
        clauses = [expr.in_(bound) for expr, bound in self._grouped([v for v in values if v is not None])]
        if any(v is None for v in values):
            clauses.append(self._null())
        if not clauses:
            return false()
        return or_(*clauses)

    def nin(self, values: Any) -> ColumnElement:
        values = _as_list(values, self.path, "$nin")
        clauses = [expr.not_in(bound) for expr, bound in self._grouped([v for v in values if v is not None])]
        if any(v is None for v in values):
            clauses.append(~self._null())
            return and_(*clauses)
        if not clauses:
            return true()
        return or_(self._null(), and_(*clauses))

    def exists(self, flag: Any) -> ColumnElement:
        return ~self._null() if flag else self._null()


def _as_list(values: Any, path: str, op: str) -> List[Any]:
    if isinstance(values, (list, tuple, set, frozenset)):
        return list(values)
    raise ValueError(f"{op} for '{path}' requires a list of values")


def compile_criteria(table: Table, criteria: Optional[Mapping[str, Any]]) -> List[ColumnElement]:
    """Translate a filter mapping into WHERE clauses for ``table``."""
    clauses: List[ColumnElement] = []
    for path, condition in (criteria or {}).items():
        if not isinstance(path, str) or not path or path.startswith("$"):
            raise ValueError(f"unsupported filter key: {path!r}")
        field = _FieldCompiler(table, path)
        if not _is_operator_mapping(condition):
            if isinstance(condition, (Mapping, list, tuple, set)):
                raise ValueError(f"sub-document equality is not supported for '{path}'")
            clauses.append(field.eq(condition))
            continue
        for op, value in condition.items():
            if op not in _OPERATORS:
                raise ValueError(f"unsupported operator {op} for '{path}'")
            if op == "$eq":
                clauses.append(field.eq(value))
            elif op == "$ne":
                clauses.append(field.ne(value))
            elif op == "$in":
                clauses.append(field.in_(value))
            elif op == "$nin":
                clauses.append(field.nin(value))
            elif op == "$exists":
                clauses.append(field.exists(value))
            else:
                clauses.append(field.compare(op, value))
    return clauses


# -----------------------------
# Sorting
# -----------------------------

def _direction(value: Any) -> int:
    if isinstance(value, str):
        return -1 if value.strip().lower() in ("desc", "descending", "-1") else 1
    return -1 if value == -1 else 1


def normalize_sort(sort: Any = None) -> SortSpec:
    """Return the sort as ordered ``(field, direction)`` pairs.

    Accepts a mapping (``{"createdAt": -1}``), a sequence of pairs, or a
    single field name; anything empty yields the default newest-first order.
    """
    if not sort:
        return list(DEFAULT_SORT)
    if isinstance(sort, str):
        return [(sort, 1)]
    if isinstance(sort, Mapping):
        entries = list(sort.items())
    elif isinstance(sort, (list, tuple)):
        entries = []
        for item in sort:
            if isinstance(item, str):
                entries.append((item, 1))
            elif isinstance(item, (list, tuple)) and len(item) == 2:
                entries.append((item[0], item[1]))
            else:
                raise ValueError(f"invalid sort entry: {item!r}")
    else:
        return list(DEFAULT_SORT)
    spec = [(str(field), _direction(direction)) for field, direction in entries]
    return spec or list(DEFAULT_SORT)


def with_tiebreaker(spec: SortSpec) -> SortSpec:
    if any(PROMOTED_FIELDS.get(field) == "id" for field, _ in spec):
        return list(spec)
    return [*spec, (TIEBREAKER_FIELD, 1)]


def storage_order(table: Table, spec: SortSpec) -> Optional[List[ColumnElement]]:
    """ORDER BY clauses for ``spec``, or None when a key is not a promoted column.

    Nulls sort first ascending and last descending to agree with the
    in-memory merge order.
    """
    clauses: List[ColumnElement] = []
    for field, direction in spec:
        column_name = PROMOTED_FIELDS.get(field)
        if column_name is None:
            return None
        column = table.c[column_name]
        clauses.append(column.desc().nulls_last() if direction < 0 else column.asc().nulls_first())
    return clauses


# -----------------------------
# In-memory merge ordering
# -----------------------------

_MISSING = object()


def get_path(record: Mapping[str, Any], path: str) -> Any:
    """Resolve a dotted ``path`` in ``record``; missing segments yield None."""
    if path == "_id":
        path = "id"
    current: Any = record
    for part in path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
        if current is _MISSING:
            return None
    return current


def _rank(value: Any) -> Tuple[int, Any]:
    if value is None:
        return 0, 0
    if isinstance(value, bool):
        return 5, value
    if isinstance(value, (int, float, Decimal)):
        return 1, value
    if isinstance(value, str):
        return 2, value
    if isinstance(value, Mapping):
        return 3, json.dumps(value, sort_keys=True, default=str)
    if isinstance(value, (list, tuple)):
        return 4, json.dumps(list(value), sort_keys=True, default=str)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return 6, value
    if isinstance(value, date):
        return 6, datetime(value.year, value.month, value.day)
    return 7, str(value)


def compare_values(a: Any, b: Any) -> int:
    rank_a, key_a = _rank(a)
    rank_b, key_b = _rank(b)
    if rank_a != rank_b:
        return -1 if rank_a < rank_b else 1
    if key_a < key_b:
        return -1
    if key_a > key_b:
        return 1
    return 0


def record_comparator(spec: SortSpec) -> Callable[[Mapping[str, Any], Mapping[str, Any]], int]:
    def compare(a: Mapping[str, Any], b: Mapping[str, Any]) -> int:
        for field, direction in spec:
            result = compare_values(get_path(a, field), get_path(b, field))
            if result:
                return result * direction
        return 0

    return compare


__all__ = [
    "DEFAULT_SORT",
    "SortSpec",
    "compare_values",
    "compile_criteria",
    "get_path",
    "normalize_sort",
    "record_comparator",
    "split_service_condition",
    "storage_order",
    "with_tiebreaker",
]
