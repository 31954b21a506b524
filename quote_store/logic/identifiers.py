"""Day-scoped, human-readable quote identifiers.

Quote ids look like ``Q20250615007``: ``Q`` + year + month + day + a
sequence number zero-padded to three digits. The sequence is derived from
how many documents the service's collection already holds for the current
local day, so two concurrent writers can compute the same candidate; the
gateway resolves that by retrying with ``retry_attempt`` incremented.

Related (proforma) invoice ids swap the leading ``Q`` for ``PI``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any, Callable, Mapping, Optional, Tuple

from quote_store.logic.repository_quotes import QuoteCollection
from quote_store.logic.service_registry import ServiceRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

QUOTE_PREFIX = "Q"
INVOICE_PREFIX = "PI"


def local_now() -> datetime:
    return datetime.now()


def naive_local(moment: datetime) -> datetime:
    """Express ``moment`` as naive local time, the form timestamps are stored in."""
    if moment.tzinfo is not None:
        return moment.astimezone().replace(tzinfo=None)
    return moment


def day_window(moment: datetime) -> Tuple[datetime, datetime]:
    """Return ``[midnight, next midnight)`` around ``moment``."""
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


class QuoteIdGenerator:
    def __init__(
        self,
        registry: ServiceRegistry,
        collections: Mapping[str, QuoteCollection],
        clock: Clock = local_now,
        sequence_width: int = 3,
    ) -> None:
        if sequence_width < 1:
            raise ValueError("sequence_width must be positive")
        self._registry = registry
        self._collections = collections
        self._clock = clock
        self._width = int(sequence_width)

    def _format(self, prefix: str, moment: datetime, sequence: int) -> str:
        return f"{prefix}{moment:%Y%m%d}{sequence:0{self._width}d}"

    def next_quote_id(self, service: Any, retry_attempt: int = 0) -> str:
        """Return the candidate quote id for ``service`` on today's date.

        ``retry_attempt`` is added to the sequence so a writer that lost a
        race moves past the number the winner claimed.
        """
        now = naive_local(self._clock())
        start, end = day_window(now)
        descriptor = self._registry.descriptor_for(service)
        collection = self._collections[descriptor.collection_name]
        today = collection.count({"createdAt": {"$gte": start, "$lt": end}})
        sequence = today + 1 + max(0, int(retry_attempt))
        quote_id = self._format(QUOTE_PREFIX, now, sequence)
        logger.debug(
            "quote_id_candidate service=%s collection=%s today=%d attempt=%d quote_id=%s",
            descriptor.service_key.value,
            collection.name,
            today,
            retry_attempt,
            quote_id,
        )
        return quote_id

    def related_invoice_id(self, quote_id: Optional[str] = None) -> str:
        """Derive the proforma invoice id for ``quote_id``.

        Without a quote id, number the invoice by how many of today's
        documents in the default collection already carry one.
        """
        if quote_id:
            quote_id = str(quote_id)
            if quote_id.startswith(QUOTE_PREFIX):
                return INVOICE_PREFIX + quote_id[len(QUOTE_PREFIX):]
            return quote_id

        now = naive_local(self._clock())
        start, end = day_window(now)
        descriptor = self._registry.descriptor_for(self._registry.default_service)
        collection = self._collections[descriptor.collection_name]
        issued = collection.count({
            "proformaInvoice.piNumber": {"$exists": True},
            "createdAt": {"$gte": start, "$lt": end},
        })
        return self._format(INVOICE_PREFIX, now, issued + 1)


__all__ = ["Clock", "QuoteIdGenerator", "day_window", "local_now", "naive_local"]
