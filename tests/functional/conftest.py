"""Functional test bootstrap for the quote persistence layer.

Each test gets its own in-memory SQLite engine (bypassing the process-wide
engine cache) and a gateway wired through ``build_gateway`` with a frozen
clock, so quote ids are deterministic: the first quote of the day is
``Q20250615001``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable

import pytest

from quote_store.bootstrap import build_gateway
from quote_store.config import AppConfig, DatabaseConfig, QuoteStoreConfig
from quote_store.db.base import create_isolated_engine


FROZEN_NOW = datetime(2025, 6, 15, 10, 30, 0)
MEMORY_URL = "sqlite+pysqlite:///:memory:"


class FrozenClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def make_config(url: str = MEMORY_URL, **quotes) -> AppConfig:
    return AppConfig(database=DatabaseConfig(url=url), quotes=QuoteStoreConfig(**quotes))


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(FROZEN_NOW)


@pytest.fixture
def engine():
    eng = create_isolated_engine(MEMORY_URL)
    yield eng
    eng.dispose()


@pytest.fixture
def gateway(engine, clock):
    return build_gateway(config=make_config(), engine=engine, clock=clock)


@pytest.fixture
def gateway_factory(engine, clock) -> Callable[..., object]:
    """Build extra gateways over the same engine with different settings."""

    def _factory(**quotes):
        return build_gateway(config=make_config(**quotes), engine=engine, clock=clock)

    return _factory
