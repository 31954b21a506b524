"""Static service registry for the quote collections.

Maps every service key to the backing collection it is written to, plus the
service values each collection may legitimately hold. The pcb collection
predates the per-service split and still holds documents of every service,
which is why reads for a service also consult it.

The registry is built once at import/bootstrap time and never mutated.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, Mapping, Tuple

from quote_store.models.service import ServiceDescriptor, ServiceKey

logger = logging.getLogger(__name__)

_ALL_KEYS = frozenset(ServiceKey)

DEFAULT_DESCRIPTORS: Tuple[ServiceDescriptor, ...] = (
    ServiceDescriptor(
        service_key=ServiceKey.PCB,
        collection_name="quotes",
        model_name="Quote",
        allowed_service_values=_ALL_KEYS,
    ),
    ServiceDescriptor(
        service_key=ServiceKey.PCB_ASSEMBLY,
        collection_name="assembly_quotes",
        model_name="AssemblyQuote",
        allowed_service_values=frozenset({ServiceKey.PCB_ASSEMBLY}),
    ),
    ServiceDescriptor(
        service_key=ServiceKey.THREE_D_PRINTING,
        collection_name="3d_printing_quotes",
        model_name="ThreeDPrintingQuote",
        allowed_service_values=frozenset({ServiceKey.THREE_D_PRINTING}),
    ),
    ServiceDescriptor(
        service_key=ServiceKey.TESTING,
        collection_name="testing_quotes",
        model_name="TestingQuote",
        allowed_service_values=frozenset({ServiceKey.TESTING}),
    ),
    ServiceDescriptor(
        service_key=ServiceKey.WIRE_HARNESS,
        collection_name="wire_harness_quotes",
        model_name="WireHarnessQuote",
        allowed_service_values=frozenset({ServiceKey.WIRE_HARNESS}),
    ),
)


class ServiceRegistry:
    """Immutable lookup table from service key to :class:`ServiceDescriptor`.

    Unknown or missing service values are coerced to the default key by
    :meth:`normalize`; the registry routes, it does not validate.
    """

    def __init__(
        self,
        default_service: ServiceKey | str = ServiceKey.PCB,
        descriptors: Iterable[ServiceDescriptor] = DEFAULT_DESCRIPTORS,
    ) -> None:
        table = {}
        for descriptor in descriptors:
            if descriptor.service_key in table:
                raise ValueError(f"duplicate service descriptor: {descriptor.service_key.value}")
            table[descriptor.service_key] = descriptor
        missing = [key.value for key in ServiceKey if key not in table]
        if missing:
            raise ValueError(f"service descriptors missing for: {', '.join(missing)}")

        self._descriptors: Mapping[ServiceKey, ServiceDescriptor] = MappingProxyType(table)
        self._keys: Tuple[ServiceKey, ...] = tuple(table)
        self._known = frozenset(key.value for key in self._keys)
        try:
            self._default = ServiceKey(default_service)
        except ValueError:
            raise ValueError(f"unknown default service: {default_service!r}") from None

        reads = {}
        for key in self._keys:
            own = table[key].collection_name
            others = [
                d.collection_name
                for d in table.values()
                if d.collection_name != own and d.accepts(key)
            ]
            reads[key] = (own, *others)
        self._read_collections: Mapping[ServiceKey, Tuple[str, ...]] = MappingProxyType(reads)

        names = []
        hosted = {}
        for descriptor in table.values():
            if descriptor.collection_name not in names:
                names.append(descriptor.collection_name)
            allowed = {key.value for key in descriptor.allowed_service_values}
            hosted[descriptor.collection_name] = hosted.get(descriptor.collection_name, frozenset()) | allowed
        self._collection_names: Tuple[str, ...] = tuple(names)
        self._hosted_services: Mapping[str, FrozenSet[str]] = MappingProxyType(hosted)

    @property
    def default_service(self) -> ServiceKey:
        return self._default

    def all_service_keys(self) -> Tuple[ServiceKey, ...]:
        return self._keys

    def collection_names(self) -> Tuple[str, ...]:
        return self._collection_names

    def allowed_services(self, collection_name: str) -> FrozenSet[str]:
        """Service values documents in ``collection_name`` may carry."""
        return self._hosted_services[collection_name]

    def is_known(self, value: Any) -> bool:
        if isinstance(value, ServiceKey):
            return value.value in self._known
        return isinstance(value, str) and value in self._known

    def normalize(self, value: Any) -> ServiceKey:
        """Return the service key for ``value``, or the default when unknown."""
        if isinstance(value, ServiceKey):
            return value
        if self.is_known(value):
            return ServiceKey(value)
        if value not in (None, ""):
            logger.debug("service_normalized value=%r default=%s", value, self._default.value)
        return self._default

    def descriptor_for(self, service: Any) -> ServiceDescriptor:
        return self._descriptors[self.normalize(service)]

    def collections_for(self, service: Any) -> Tuple[str, ...]:
        """Collections that may hold documents tagged with ``service``.

        The service's own collection comes first, followed by any shared
        collection whose allowed values include it.
        """
        return self._read_collections[self.normalize(service)]


__all__ = ["DEFAULT_DESCRIPTORS", "ServiceRegistry"]
