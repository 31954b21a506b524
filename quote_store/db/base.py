"""SQLAlchemy engine construction for the quote collections.

The service targets PostgreSQL in production but supports SQLite for local
development and CI. Table definitions live in ``quote_store.db.collections``;
this module only manages connection lifecycle.
"""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///:memory:"

# Module-level cached Engine to ensure a single shared connection pool
_ENGINE: Engine | None = None
_ENGINE_URL: str | None = None


def _json_default(value: Any) -> Any:
    # Payload timestamps round-trip as ISO-8601 strings
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def json_serializer(obj: Any) -> str:
    return json.dumps(obj, default=_json_default, ensure_ascii=False)


def engine_kwargs(url: str) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {
        "future": True,
        "pool_pre_ping": True,
        "json_serializer": json_serializer,
    }
    if url.startswith("sqlite") and ":memory:" in url:
        # Keep a single in-memory DB connection shared across the process
        kwargs.update({
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        })
    elif url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    return kwargs


def get_engine(url: str | None = None) -> Engine:
    """Return a singleton SQLAlchemy Engine for the given URL.

    Reuses a module-level Engine so every collection handle shares the same
    pool. A different URL replaces the cached engine.
    """
    global _ENGINE, _ENGINE_URL
    resolved_url = url or DEFAULT_DATABASE_URL

    if _ENGINE is None or _ENGINE_URL != resolved_url:
        if _ENGINE is not None:
            logger.info("engine_replaced previous=%s", _ENGINE_URL)
            _ENGINE.dispose()
        _ENGINE = create_engine(resolved_url, **engine_kwargs(resolved_url))
        _ENGINE_URL = resolved_url

    return _ENGINE


def create_isolated_engine(url: str) -> Engine:
    """Build a fresh Engine that bypasses the module-level cache."""
    return create_engine(url, **engine_kwargs(url))


def dispose_engine() -> None:
    global _ENGINE, _ENGINE_URL
    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = None
    _ENGINE_URL = None
