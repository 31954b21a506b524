"""Fan-out find/count across the collections a filter resolves to.

Each target collection is queried independently with the same sort and, when
a limit is given, ``skip + limit`` rows, which is enough for any document of
the final page to survive the merge. The concatenated rows are deduplicated
by ``id`` (first occurrence wins), re-sorted in memory with the full sort and
only then windowed by ``skip``/``limit``.

Counts are summed per target without deduplication; during a migration
window a document present in two collections is counted twice.
"""

from __future__ import annotations

from functools import cmp_to_key
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from quote_store.logic.collection_router import CollectionRouter, QueryTarget
from quote_store.logic.filters import (
    normalize_sort,
    record_comparator,
    split_service_condition,
    with_tiebreaker,
)
from quote_store.logic.repository_quotes import QuoteCollection
from quote_store.models.quote import materialize

logger = logging.getLogger(__name__)


def _window(skip: Any, limit: Any) -> Tuple[int, Optional[int]]:
    skip = max(0, int(skip or 0))
    if limit is None:
        return skip, None
    limit = int(limit)
    return skip, (limit if limit >= 0 else None)


def dedupe_by_id(rows: List[Tuple[Dict[str, Any], str]]) -> List[Tuple[Dict[str, Any], str]]:
    seen = set()
    unique: List[Tuple[Dict[str, Any], str]] = []
    for record, collection in rows:
        identity = record.get("id")
        if identity is not None:
            if identity in seen:
                continue
            seen.add(identity)
        unique.append((record, collection))
    return unique


class FanoutQueryEngine:
    def __init__(self, router: CollectionRouter, collections: Mapping[str, QuoteCollection]) -> None:
        self._router = router
        self._collections = collections

    def targets(self, criteria: Optional[Mapping[str, Any]]) -> Tuple[List[QueryTarget], Dict[str, Any]]:
        service_condition, rest = split_service_condition(criteria)
        return self._router.resolve_targets(service_condition), rest

    def find(
        self,
        criteria: Optional[Mapping[str, Any]] = None,
        sort: Any = None,
        skip: Any = 0,
        limit: Any = None,
        lean: bool = False,
    ) -> List[Any]:
        targets, rest = self.targets(criteria)
        spec = with_tiebreaker(normalize_sort(sort))
        skip, limit = _window(skip, limit)
        if limit == 0:
            return []
        per_target = skip + limit if limit is not None else None

        rows: List[Tuple[Dict[str, Any], str]] = []
        for target in targets:
            collection = self._collections[target.collection_name]
            found = collection.find(rest, service=target.service_value, sort=spec, limit=per_target)
            rows.extend((record, collection.name) for record in found)

        unique = dedupe_by_id(rows)
        compare = record_comparator(spec)
        unique.sort(key=cmp_to_key(lambda a, b: compare(a[0], b[0])))
        page = unique[skip:]
        if limit is not None:
            page = page[:limit]

        logger.debug(
            "fanout_find targets=%d fetched=%d merged=%d returned=%d",
            len(targets),
            len(rows),
            len(unique),
            len(page),
        )
        return [materialize(record, collection, lean) for record, collection in page]

    def count(self, criteria: Optional[Mapping[str, Any]] = None) -> int:
        targets, rest = self.targets(criteria)
        total = 0
        for target in targets:
            total += self._collections[target.collection_name].count(rest, service=target.service_value)
        logger.debug("fanout_count targets=%d total=%d", len(targets), total)
        return total

    def delete(self, criteria: Optional[Mapping[str, Any]] = None) -> int:
        """Delete per target and sum; earlier targets stay deleted if a later one fails."""
        targets, rest = self.targets(criteria)
        deleted = 0
        for target in targets:
            deleted += self._collections[target.collection_name].delete_many(rest, service=target.service_value)
        logger.info("fanout_delete targets=%d deleted=%d", len(targets), deleted)
        return deleted


__all__ = ["FanoutQueryEngine", "dedupe_by_id"]
