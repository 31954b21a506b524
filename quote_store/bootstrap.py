"""Wire a ready-to-use :class:`DocumentGateway` from configuration.

This is the only place that reads configuration and builds engines; every
collaborator below it receives its settings as constructor arguments.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from sqlalchemy.engine import Engine

from quote_store.config import AppConfig, load_config
from quote_store.db.base import get_engine
from quote_store.db.collections import build_collection_tables, create_collections
from quote_store.logic.collection_router import CollectionRouter
from quote_store.logic.fanout import FanoutQueryEngine
from quote_store.logic.gateway import DocumentGateway
from quote_store.logic.identifiers import Clock, QuoteIdGenerator, local_now
from quote_store.logic.repository_quotes import QuoteCollection
from quote_store.logic.service_registry import ServiceRegistry

logger = logging.getLogger(__name__)


def build_collections(engine: Engine, registry: ServiceRegistry, create_schema: bool = True) -> Dict[str, QuoteCollection]:
    """Return one :class:`QuoteCollection` per backing collection, creating tables if asked."""
    metadata, tables = build_collection_tables(registry.collection_names())
    if create_schema:
        create_collections(engine, metadata)
    return {name: QuoteCollection(engine, table) for name, table in tables.items()}


def build_gateway(
    config: Optional[AppConfig] = None,
    engine: Optional[Engine] = None,
    create_schema: bool = True,
    clock: Optional[Clock] = None,
) -> DocumentGateway:
    """Assemble registry, router, collections, id generator and gateway.

    ``config`` defaults to :func:`load_config`; ``engine`` defaults to the
    process-wide engine for ``config.database.url``. Tests pass an isolated
    engine and a frozen ``clock``.
    """
    cfg = config if config is not None else load_config()
    if engine is None:
        engine = get_engine(cfg.database.url)
    clock = clock or local_now

    registry = ServiceRegistry(default_service=cfg.quotes.default_service)
    collections = build_collections(engine, registry, create_schema=create_schema)
    router = CollectionRouter(registry, strict=cfg.quotes.strict_service_filters)
    fanout = FanoutQueryEngine(router, collections)
    id_generator = QuoteIdGenerator(
        registry,
        collections,
        clock=clock,
        sequence_width=cfg.quotes.sequence_width,
    )
    gateway = DocumentGateway(
        registry,
        collections,
        fanout,
        id_generator,
        clock=clock,
        max_create_attempts=cfg.quotes.max_create_attempts,
    )
    logger.info(
        "gateway_ready collections=%d default_service=%s strict_filters=%s",
        len(collections),
        registry.default_service.value,
        cfg.quotes.strict_service_filters,
    )
    return gateway


__all__ = ["build_collections", "build_gateway"]
