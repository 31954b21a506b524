"""Public façade over the partitioned quote collections.

Callers treat quotes as one collection. The gateway decides which backing
collection a write goes to, fans reads out through :class:`FanoutQueryEngine`
and scans collections in registry order for id lookups, since storage ids are
only unique within their own collection.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from quote_store.errors import DuplicateKeyError, IdentifierAllocationError
from quote_store.logic.fanout import FanoutQueryEngine
from quote_store.logic.identifiers import Clock, QuoteIdGenerator, local_now, naive_local
from quote_store.logic.patches import normalize_update
from quote_store.logic.repository_quotes import QuoteCollection
from quote_store.logic.service_registry import ServiceRegistry
from quote_store.models.quote import materialize

logger = logging.getLogger(__name__)

DEFAULT_MAX_CREATE_ATTEMPTS = 5


class DocumentGateway:
    def __init__(
        self,
        registry: ServiceRegistry,
        collections: Mapping[str, QuoteCollection],
        fanout: FanoutQueryEngine,
        id_generator: QuoteIdGenerator,
        clock: Clock = local_now,
        max_create_attempts: int = DEFAULT_MAX_CREATE_ATTEMPTS,
    ) -> None:
        if max_create_attempts < 1:
            raise ValueError("max_create_attempts must be at least 1")
        missing = [name for name in registry.collection_names() if name not in collections]
        if missing:
            raise ValueError(f"no storage handle for collections: {', '.join(missing)}")
        self._registry = registry
        self._collections = collections
        self._fanout = fanout
        self._ids = id_generator
        self._clock = clock
        self._max_attempts = int(max_create_attempts)

    @property
    def registry(self) -> ServiceRegistry:
        return self._registry

    def _now(self) -> datetime:
        return naive_local(self._clock())

    # -----------------------------
    # Writes
    # -----------------------------

    def create(self, payload: Optional[Mapping[str, Any]] = None, lean: bool = False) -> Any:
        """Persist a new quote in its service's collection.

        A missing or unknown ``service`` is stored as the default service.
        When ``quoteId`` is absent one is generated; a collision with a
        concurrent writer is retried with the next sequence number, up to
        the configured attempt budget.
        """
        data: Dict[str, Any] = dict(payload or {})
        service = self._registry.normalize(data.get("service"))
        descriptor = self._registry.descriptor_for(service)
        collection = self._collections[descriptor.collection_name]
        supplied_id = data.get("quoteId") or None
        created_at = data.get("createdAt") or self._now()

        for attempt in range(self._max_attempts):
            quote_id = supplied_id or self._ids.next_quote_id(service, attempt)
            document = {**data, "service": service.value, "quoteId": quote_id, "createdAt": created_at}
            try:
                record = collection.insert(document)
            except DuplicateKeyError as exc:
                if exc.field != "quoteId" or supplied_id:
                    raise
                logger.info(
                    "quote_create_retry service=%s attempt=%d quote_id=%s",
                    service.value,
                    attempt + 1,
                    quote_id,
                )
                continue
            logger.info(
                "quote_created service=%s collection=%s quote_id=%s id=%s",
                service.value,
                collection.name,
                record["quoteId"],
                record["id"],
            )
            return materialize(record, collection.name, lean)

        logger.error(
            "quote_id_allocation_exhausted service=%s attempts=%d",
            service.value,
            self._max_attempts,
        )
        raise IdentifierAllocationError(service.value, self._max_attempts)

    def _normalize_patch(self, patch: Optional[Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
        ops = normalize_update(patch)
        if "service" in ops.get("$set", {}):
            ops["$set"]["service"] = self._registry.normalize(ops["$set"]["service"]).value
        return ops

    def find_by_id_and_update(
        self,
        identity: Any,
        patch: Optional[Mapping[str, Any]],
        new: bool = False,
        lean: bool = False,
    ) -> Any:
        """Update the first collection holding ``identity``.

        Returns the document as it was before the update, or after it when
        ``new`` is true; None when no collection holds the id. A ``service``
        change the hosting collection does not accept raises ValueError.
        """
        ops = self._normalize_patch(patch)
        for name in self._registry.collection_names():
            collection = self._collections[name]
            result = collection.update_by_id(
                identity,
                ops,
                updated_at=self._now(),
                allowed_services=self._registry.allowed_services(name),
            )
            if result is None:
                continue
            before, after = result
            logger.info("quote_updated collection=%s id=%s", name, identity)
            return materialize(after if new else before, name, lean)
        return None

    def delete_by_id(self, identity: Any, lean: bool = False) -> Any:
        """Delete the document with ``identity`` and return it, or None if absent."""
        located = self._locate(identity)
        if located is None:
            return None
        record, collection = located
        if not collection.delete_by_id(identity):
            return None
        logger.info("quote_deleted collection=%s id=%s", collection.name, identity)
        return materialize(record, collection.name, lean)

    def delete_many(self, criteria: Optional[Mapping[str, Any]] = None) -> int:
        return self._fanout.delete(criteria)

    # -----------------------------
    # Reads
    # -----------------------------

    def count(self, criteria: Optional[Mapping[str, Any]] = None) -> int:
        return self._fanout.count(criteria)

    def find_many(
        self,
        criteria: Optional[Mapping[str, Any]] = None,
        sort: Any = None,
        skip: Any = 0,
        limit: Any = None,
        lean: bool = False,
    ) -> list:
        return self._fanout.find(criteria, sort=sort, skip=skip, limit=limit, lean=lean)

    def find_one(
        self,
        criteria: Optional[Mapping[str, Any]] = None,
        sort: Any = None,
        lean: bool = False,
    ) -> Any:
        found = self._fanout.find(criteria, sort=sort, limit=1, lean=lean)
        return found[0] if found else None

    def _locate(self, identity: Any) -> Optional[Tuple[Dict[str, Any], QuoteCollection]]:
        for name in self._registry.collection_names():
            collection = self._collections[name]
            record = collection.get(identity)
            if record is not None:
                return record, collection
        return None

    def find_by_id(self, identity: Any, lean: bool = False) -> Any:
        located = self._locate(identity)
        if located is None:
            return None
        record, collection = located
        return materialize(record, collection.name, lean)

    # -----------------------------
    # Identifiers
    # -----------------------------

    def related_invoice_id(self, quote_id: Optional[str] = None) -> str:
        return self._ids.related_invoice_id(quote_id)


__all__ = ["DEFAULT_MAX_CREATE_ATTEMPTS", "DocumentGateway"]
