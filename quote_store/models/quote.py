"""Materialised quote documents returned by the gateway."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from quote_store.logic.filters import get_path


class QuoteDocument(BaseModel):
    """A quote read from one backing collection.

    Service-specific payload fields are kept as extra attributes. The
    collection the document was read from is available as
    ``source_collection``, so a payload field named ``collection`` stays
    reachable as an attribute.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    quote_id: str = Field(alias="quoteId")
    service: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    _collection: Optional[str] = PrivateAttr(default=None)

    @classmethod
    def from_record(cls, record: Mapping[str, Any], collection: Optional[str] = None) -> "QuoteDocument":
        doc = cls.model_validate(dict(record))
        doc._collection = collection
        return doc

    @property
    def source_collection(self) -> Optional[str]:
        return self._collection

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def get(self, path: str, default: Any = None) -> Any:
        value = get_path(self.to_dict(), path)
        return default if value is None else value


def materialize(record: Mapping[str, Any], collection: Optional[str], lean: bool) -> Any:
    """Return ``record`` as a plain dict (lean) or a :class:`QuoteDocument`."""
    if lean:
        return dict(record)
    return QuoteDocument.from_record(record, collection)


__all__ = ["QuoteDocument", "materialize"]
