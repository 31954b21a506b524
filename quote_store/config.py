"""Configuration utilities for the quote persistence layer.

This module loads process-start configuration with the following rules:
- Primary source: `quote_store_config.json` at the project root.
- Overrides: environment variables, then optional text files under `config/`.
- Validation: Pydantic models enforce required fields and value constraints.

Only bootstrap code calls `load_config()`; the gateway itself is handed a
validated `QuoteStoreConfig` and never reads the environment.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from quote_store.models.service import ServiceKey


CONFIG_DIR = Path("config")
ROOT_CONFIG = Path("quote_store_config.json")
logger = logging.getLogger(__name__)


def _read_config_file(rel_path: str) -> Optional[str]:
    path = CONFIG_DIR / rel_path
    try:
        if path.exists():
            return path.read_text(encoding="utf-8").strip()
    except (OSError, UnicodeDecodeError) as e:
        # Recoverable: log and ignore unreadable override
        logger.warning("Failed to read override %s: %s", path, e)
        return None
    return None


def _env(key: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(key, default)


class DatabaseConfig(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def url_must_be_non_empty(cls, v: str) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("database.url must be a non-empty string")
        return v.strip()


class QuoteStoreConfig(BaseModel):
    default_service: ServiceKey = Field(default=ServiceKey.PCB)
    max_create_attempts: int = Field(default=5, ge=1, le=50)
    strict_service_filters: bool = Field(default=False)
    sequence_width: int = Field(default=3, ge=1, le=9)

    @field_validator("default_service", mode="before")
    @classmethod
    def default_service_must_be_known(cls, v: object) -> object:
        allowed = [key.value for key in ServiceKey]
        if isinstance(v, str) and v.strip() not in allowed:
            raise ValueError(f"quotes.default_service must be one of {allowed}")
        return v.strip() if isinstance(v, str) else v


class AppConfig(BaseModel):
    database: DatabaseConfig
    quotes: QuoteStoreConfig = Field(default_factory=QuoteStoreConfig)


def _read_json_file(path: Path) -> dict:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.error("Failed to read JSON config %s: %s", path, e)
    return {}


def _as_bool(text: Optional[str]) -> bool:
    return str(text).strip().lower() in ("true", "1", "yes")


def load_config() -> AppConfig:
    """Load configuration with validation.

    Precedence (highest first):
    1) Environment variables
    2) Text files in `config/` (optional)
    3) quote_store_config.json at project root (primary base)
    4) Safe defaults for development
    """

    base = _read_json_file(ROOT_CONFIG)

    def _base(path: str, default: Optional[str] = None) -> Optional[str]:
        cur: object = base
        for key in path.split("."):
            if not isinstance(cur, dict) or key not in cur:
                return default
            cur = cur[key]
        return str(cur) if cur is not None else default

    # Database
    url = (
        _env("DATABASE_URL")
        or _read_config_file("database.url")
        or _base("database.url")
        or "sqlite+pysqlite:///:memory:"
    )

    # Quote routing and identifier allocation
    default_service = (
        _env("QUOTES_DEFAULT_SERVICE")
        or _read_config_file("quotes.default_service")
        or _base("quotes.default_service", ServiceKey.PCB.value)
    )
    max_attempts_text = (
        _env("QUOTES_MAX_CREATE_ATTEMPTS")
        or _read_config_file("quotes.max_create_attempts")
        or _base("quotes.max_create_attempts", "5")
    )
    strict_text = (
        _env("QUOTES_STRICT_SERVICE_FILTERS")
        or _read_config_file("quotes.strict_service_filters")
        or _base("quotes.strict_service_filters", "false")
    )
    width_text = (
        _env("QUOTES_SEQUENCE_WIDTH")
        or _read_config_file("quotes.sequence_width")
        or _base("quotes.sequence_width", "3")
    )

    try:
        quotes_cfg = QuoteStoreConfig(
            default_service=default_service,
            max_create_attempts=int(str(max_attempts_text).strip()),
            strict_service_filters=_as_bool(strict_text),
            sequence_width=int(str(width_text).strip()),
        )
        cfg = AppConfig(database=DatabaseConfig(url=url), quotes=quotes_cfg)
        return cfg
    except PydanticValidationError as e:
        logger.error("Invalid application configuration: %s", e)
        raise
    except ValueError as e:
        # int() on a malformed numeric override
        logger.error("Invalid numeric configuration value: %s", e)
        raise


__all__ = [
    "AppConfig",
    "DatabaseConfig",
    "QuoteStoreConfig",
    "load_config",
]
