"""Resolve a service filter into the concrete collections to query.

A filter's ``service`` condition may be absent, a literal, an inclusion set
(``{"$in": [...]}`` or a plain list/tuple/set), or an exclusion set
(``{"$nin": [...]}``, ``{"$ne": value}``). Each resolved service key is then
expanded to every backing collection that may hold documents tagged with it,
so documents written under an older layout stay visible without a data
migration.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, List, Mapping, NamedTuple

from quote_store.errors import ServiceFilterError
from quote_store.logic.service_registry import ServiceRegistry
from quote_store.models.service import ServiceKey

logger = logging.getLogger(__name__)


class QueryTarget(NamedTuple):
    collection_name: str
    service_value: ServiceKey


class CollectionRouter:
    def __init__(self, registry: ServiceRegistry, strict: bool = False) -> None:
        self._registry = registry
        self._strict = bool(strict)

    @property
    def registry(self) -> ServiceRegistry:
        return self._registry

    def resolve_services(self, condition: Any = None) -> List[ServiceKey]:
        """Return the service keys selected by ``condition``.

        Inclusion sets keep the caller's order; every other form yields
        registry order.

        Empty selections fall back to every service (inclusion) or to the
        default service (exclusion) unless the router is strict.
        """
        all_keys = list(self._registry.all_service_keys())
        if condition is None or condition == "":
            return all_keys
        if isinstance(condition, str):
            return [self._registry.normalize(condition)]
        if isinstance(condition, (list, tuple, set, frozenset)):
            return self._include(condition)
        if isinstance(condition, Mapping):
            if "$eq" in condition:
                return self.resolve_services(condition["$eq"])
            if isinstance(condition.get("$in"), (list, tuple, set, frozenset)):
                return self._include(condition["$in"])
            if isinstance(condition.get("$nin"), (list, tuple, set, frozenset)):
                return self._exclude(condition["$nin"])
            if "$ne" in condition:
                return self._exclude([condition["$ne"]])
        logger.debug("service_condition_unrecognised condition=%r", condition)
        return all_keys

    def _include(self, values: Iterable[Any]) -> List[ServiceKey]:
        selected: List[ServiceKey] = []
        for value in values:
            if self._registry.is_known(value):
                key = ServiceKey(str(value))
                if key not in selected:
                    selected.append(key)
        if selected:
            return selected
        if self._strict:
            raise ServiceFilterError(f"service filter selects no known service: {sorted(map(str, values))}")
        logger.info("service_inclusion_empty fallback=all")
        return list(self._registry.all_service_keys())

    def _exclude(self, values: Iterable[Any]) -> List[ServiceKey]:
        excluded = {str(v) for v in values if isinstance(v, str)}
        remaining = [key for key in self._registry.all_service_keys() if key.value not in excluded]
        if remaining:
            return remaining
        if self._strict:
            raise ServiceFilterError("service filter excludes every known service")
        default = self._registry.default_service
        logger.info("service_exclusion_empty fallback=%s", default.value)
        return [default]

    def resolve_targets(self, condition: Any = None) -> List[QueryTarget]:
        """Expand ``condition`` to deduplicated (collection, service) pairs."""
        targets: List[QueryTarget] = []
        seen = set()
        for service in self.resolve_services(condition):
            for collection_name in self._registry.collections_for(service):
                target = QueryTarget(collection_name, service)
                if target in seen:
                    continue
                seen.add(target)
                targets.append(target)
        return targets


__all__ = ["CollectionRouter", "QueryTarget"]
