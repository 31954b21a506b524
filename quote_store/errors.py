"""Error taxonomy for the quote persistence layer.

Only one failure is recovered inside the package: a duplicate ``quoteId``
on insert, which the gateway retries with the next candidate sequence.
Everything else surfaces to the caller unchanged. "Not found" is never an
error; lookups return ``None``.
"""

from __future__ import annotations

from typing import Optional


class QuoteStoreError(Exception):
    """Base class for every error raised by the quote persistence layer."""


class StorageError(QuoteStoreError):
    """An underlying persistence failure (connectivity, constraint, encoding)."""

    def __init__(self, message: str, *, collection: Optional[str] = None) -> None:
        super().__init__(message)
        self.collection = collection


class DuplicateKeyError(StorageError):
    """A unique constraint rejected a write.

    ``field`` names the logical field whose constraint fired, e.g.
    ``quoteId`` or ``proformaInvoice.piNumber``; ``None`` when the driver
    message could not be attributed.
    """

    def __init__(
        self,
        message: str,
        *,
        collection: Optional[str] = None,
        field: Optional[str] = None,
    ) -> None:
        super().__init__(message, collection=collection)
        self.field = field


class IdentifierAllocationError(QuoteStoreError):
    """``create`` could not claim a free quoteId within its attempt budget."""

    def __init__(self, service: str, attempts: int) -> None:
        super().__init__(
            f"Failed to generate unique quoteId for service '{service}' after {attempts} attempts"
        )
        self.service = service
        self.attempts = attempts


class ServiceFilterError(QuoteStoreError, ValueError):
    """A service filter selected no known service while strict filtering is on."""


__all__ = [
    "QuoteStoreError",
    "StorageError",
    "DuplicateKeyError",
    "IdentifierAllocationError",
    "ServiceFilterError",
]
