"""Quote persistence layer package init.

Exposes one logical quote store over several backing collections. Callers
build a gateway with :func:`build_gateway` and use its Mongoose-style
operations (``create``, ``find_many``, ``find_by_id_and_update`` ...).
Routing and identifier logic lives in `quote_store/logic/`, table layout in
`quote_store/db/`.
"""

from __future__ import annotations

from quote_store.bootstrap import build_gateway
from quote_store.errors import (
    DuplicateKeyError,
    IdentifierAllocationError,
    QuoteStoreError,
    ServiceFilterError,
    StorageError,
)
from quote_store.logic.gateway import DocumentGateway

__all__ = [
    "build_gateway",
    "DocumentGateway",
    "QuoteStoreError",
    "StorageError",
    "DuplicateKeyError",
    "IdentifierAllocationError",
    "ServiceFilterError",
]
