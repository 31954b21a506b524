"""Apply update documents to a stored quote record.

Supported forms: a plain mapping of field path to value (implicit ``$set``),
or any combination of ``$set``, ``$unset`` and ``$inc``. Dotted paths create
intermediate mappings as needed. The storage identity ``id`` is immutable.
"""

from __future__ import annotations

import copy
from typing import Any, Dict, Mapping, MutableMapping

_IMMUTABLE_FIELDS = frozenset({"id", "_id"})
_UPDATE_OPERATORS = frozenset({"$set", "$unset", "$inc"})


def _split(path: str) -> list[str]:
    parts = [p for p in str(path).split(".") if p]
    if not parts:
        raise ValueError("empty update path")
    if parts[0] in _IMMUTABLE_FIELDS:
        raise ValueError(f"field '{parts[0]}' is immutable")
    return parts


def _parent(record: MutableMapping[str, Any], parts: list[str], create: bool) -> MutableMapping[str, Any] | None:
    current: Any = record
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, MutableMapping):
            if not create:
                return None
            nxt = {}
            current[part] = nxt
        current = nxt
    return current


def normalize_update(patch: Mapping[str, Any] | None) -> Dict[str, Dict[str, Any]]:
    """Return ``patch`` in operator form: ``{"$set": {...}, "$unset": {...}, "$inc": {...}}``."""
    if not patch:
        return {}
    if not isinstance(patch, Mapping):
        raise ValueError(f"update must be a mapping, got {type(patch).__name__}")
    ops: Dict[str, Dict[str, Any]] = {}
    for key, value in patch.items():
        if isinstance(key, str) and key.startswith("$"):
            if key not in _UPDATE_OPERATORS:
                raise ValueError(f"unsupported update operator {key}")
            if not isinstance(value, Mapping):
                raise ValueError(f"{key} requires a mapping of field paths")
            ops.setdefault(key, {}).update(value)
        else:
            ops.setdefault("$set", {})[key] = value
    return ops


def apply_update(record: Mapping[str, Any], patch: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Return a new record with ``patch`` applied; ``record`` is left untouched."""
    result: Dict[str, Any] = copy.deepcopy(dict(record))
    ops = normalize_update(patch)

    for path, value in ops.get("$set", {}).items():
        parts = _split(path)
        parent = _parent(result, parts, create=True)
        parent[parts[-1]] = copy.deepcopy(value)

    for path in ops.get("$unset", {}):
        parts = _split(path)
        parent = _parent(result, parts, create=False)
        if parent is not None:
            parent.pop(parts[-1], None)

    for path, amount in ops.get("$inc", {}).items():
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValueError(f"$inc amount for '{path}' must be numeric")
        parts = _split(path)
        parent = _parent(result, parts, create=True)
        current = parent.get(parts[-1], 0)
        if current is None:
            current = 0
        if isinstance(current, bool) or not isinstance(current, (int, float)):
            raise ValueError(f"cannot $inc non-numeric field '{path}'")
        parent[parts[-1]] = current + amount

    return result


__all__ = ["apply_update", "normalize_update"]
