"""Functional tests for DocumentGateway writes, id lookups and error surfacing.

Every test runs against its own in-memory SQLite database wired through
``build_gateway`` with the frozen clock from ``conftest.py``.
"""

from __future__ import annotations

from datetime import datetime, timedelta
import logging
import re

import pytest
from sqlalchemy import text as sql_text
from sqlalchemy.exc import SQLAlchemyError

from quote_store.errors import (
    DuplicateKeyError,
    IdentifierAllocationError,
    ServiceFilterError,
    StorageError,
)
from quote_store.models.quote import QuoteDocument


QUOTE_ID_PATTERN = re.compile(r"^Q\d{8}\d{3,}$")


# -----------------------------
# create
# -----------------------------

def test_create_assigns_quote_id_and_timestamps(gateway, clock) -> None:
    doc = gateway.create({"service": "pcb", "customer": {"name": "Acme"}, "layers": 4})
    assert isinstance(doc, QuoteDocument)
    assert QUOTE_ID_PATTERN.match(doc.quote_id)
    assert doc.quote_id == "Q20250615001"
    assert doc.service == "pcb"
    assert doc.source_collection == "quotes"
    assert doc.created_at == clock.now
    assert doc.updated_at == clock.now
    assert doc.get("customer.name") == "Acme"
    assert doc.layers == 4

    second = gateway.create({"service": "pcb"})
    assert second.quote_id == "Q20250615002"


def test_create_routes_each_service_to_its_own_collection(gateway) -> None:
    expected = {
        "pcb": "quotes",
        "pcb_assembly": "assembly_quotes",
        "3dprinting": "3d_printing_quotes",
        "testing": "testing_quotes",
        "wire_harness": "wire_harness_quotes",
    }
    for service, collection in expected.items():
        doc = gateway.create({"service": service})
        assert doc.source_collection == collection
        assert doc.service == service


def test_create_normalizes_unknown_service_to_default(gateway) -> None:
    doc = gateway.create({"service": "not_a_real_service", "note": "x"}, lean=True)
    assert isinstance(doc, dict)
    assert doc["service"] == "pcb"
    stored = gateway.find_by_id(doc["id"])
    assert stored.source_collection == "quotes"
    assert stored.service == "pcb"

    missing = gateway.create({})
    assert missing.service == "pcb"


def test_quote_sequences_are_counted_per_collection(gateway) -> None:
    gateway.create({"service": "pcb"})
    gateway.create({"service": "pcb"})
    testing = gateway.create({"service": "testing"})
    assert testing.quote_id == "Q20250615001"


def test_create_counts_only_todays_documents(gateway, clock) -> None:
    gateway.create({"service": "pcb"})
    clock.now = clock.now + timedelta(days=1)
    doc = gateway.create({"service": "pcb"})
    assert doc.quote_id == "Q20250616001"


def test_create_retries_past_a_taken_candidate(gateway, clock, caplog) -> None:
    # Dated yesterday, so today's count is still zero and 001 collides
    gateway.create({
        "service": "pcb",
        "quoteId": "Q20250615001",
        "createdAt": clock.now - timedelta(days=1),
    })
    with caplog.at_level(logging.INFO, logger="quote_store"):
        doc = gateway.create({"service": "pcb"})
    assert doc.quote_id == "Q20250615002"
    assert "quote_create_retry service=pcb attempt=1" in caplog.text


def test_create_raises_after_exhausting_attempts(gateway_factory, clock) -> None:
    gateway = gateway_factory(max_create_attempts=2)
    yesterday = clock.now - timedelta(days=1)
    gateway.create({"service": "pcb", "quoteId": "Q20250615001", "createdAt": yesterday})
    gateway.create({"service": "pcb", "quoteId": "Q20250615002", "createdAt": yesterday})
    with pytest.raises(IdentifierAllocationError) as excinfo:
        gateway.create({"service": "pcb"})
    assert excinfo.value.attempts == 2
    assert excinfo.value.service == "pcb"
    assert "after 2 attempts" in str(excinfo.value)


def test_create_with_supplied_quote_id_does_not_retry(gateway) -> None:
    gateway.create({"service": "pcb", "quoteId": "Q-CUSTOM-1"})
    with pytest.raises(DuplicateKeyError) as excinfo:
        gateway.create({"service": "pcb", "quoteId": "Q-CUSTOM-1"})
    assert excinfo.value.field == "quoteId"
    assert excinfo.value.collection == "quotes"
    assert isinstance(excinfo.value, StorageError)


def test_one_thousand_creates_on_one_day(gateway) -> None:
    ids = [gateway.create({"service": "pcb"}, lean=True)["quoteId"] for _ in range(1000)]
    assert len(set(ids)) == 1000
    assert all(QUOTE_ID_PATTERN.match(quote_id) for quote_id in ids)
    assert ids[0] == "Q20250615001"
    assert ids[-1] == "Q202506151000"
    assert ids[-1].endswith("1000")
    assert gateway.count({"service": "pcb"}) == 1000


# -----------------------------
# related invoice ids
# -----------------------------

def test_related_invoice_id_is_derived_from_quote_id(gateway) -> None:
    assert gateway.related_invoice_id("Q20250615007") == "PI20250615007"
    assert gateway.related_invoice_id("Q20250615007") == "PI20250615007"


def test_related_invoice_id_without_quote_counts_issued_invoices(gateway) -> None:
    assert gateway.related_invoice_id() == "PI20250615001"
    gateway.create({"service": "pcb", "proformaInvoice": {"piNumber": "PI20250615001"}})
    gateway.create({"service": "pcb"})
    assert gateway.related_invoice_id() == "PI20250615002"


# -----------------------------
# id lookups, updates, deletes
# -----------------------------

def test_find_by_id_scans_all_collections(gateway) -> None:
    doc = gateway.create({"service": "wire_harness", "wires": 12})
    found = gateway.find_by_id(doc.id)
    assert found.source_collection == "wire_harness_quotes"
    assert found.quote_id == doc.quote_id
    assert gateway.find_by_id("does-not-exist") is None
    assert gateway.find_by_id(None) is None


def test_find_by_id_and_update_returns_old_or_new(gateway, clock) -> None:
    doc = gateway.create({"service": "testing", "status": "draft", "pricing": {"total": 100}})
    clock.now = clock.now + timedelta(hours=2)

    before = gateway.find_by_id_and_update(doc.id, {"status": "sent"})
    assert before.status == "draft"
    assert before.updated_at == doc.created_at

    after = gateway.find_by_id_and_update(doc.id, {"$inc": {"pricing.total": 25}}, new=True, lean=True)
    assert after["status"] == "sent"
    assert after["pricing"] == {"total": 125}
    assert after["updatedAt"] == clock.now
    assert after["createdAt"] == doc.created_at

    stored = gateway.find_by_id(doc.id)
    assert stored.source_collection == "testing_quotes"
    assert stored.status == "sent"


def test_find_by_id_and_update_unknown_id_returns_none(gateway) -> None:
    assert gateway.find_by_id_and_update("missing", {"status": "sent"}) is None


def test_update_keeps_identity_and_normalizes_service(gateway) -> None:
    doc = gateway.create({"service": "pcb"})
    with pytest.raises(ValueError):
        gateway.find_by_id_and_update(doc.id, {"id": "other"})
    updated = gateway.find_by_id_and_update(doc.id, {"service": "laser"}, new=True)
    assert updated.service == "pcb"
    assert updated.id == doc.id


def test_update_conflicting_invoice_number_raises_duplicate(gateway) -> None:
    gateway.create({"service": "pcb", "proformaInvoice": {"piNumber": "PI20250615001"}})
    other = gateway.create({"service": "pcb"})
    with pytest.raises(DuplicateKeyError) as excinfo:
        gateway.find_by_id_and_update(other.id, {"proformaInvoice.piNumber": "PI20250615001"})
    assert excinfo.value.field == "proformaInvoice.piNumber"
    # The failed update leaves the document untouched
    assert gateway.find_by_id(other.id).get("proformaInvoice.piNumber") is None


def test_update_rejects_service_its_collection_cannot_hold(gateway) -> None:
    doc = gateway.create({"service": "testing", "status": "draft"})
    with pytest.raises(ValueError):
        gateway.find_by_id_and_update(doc.id, {"service": "pcb", "status": "sent"})
    with pytest.raises(ValueError):
        gateway.find_by_id_and_update(doc.id, {"$unset": {"service": ""}})

    # Nothing was written, so filtered reads still see the quote
    stored = gateway.find_by_id(doc.id)
    assert stored.service == "testing"
    assert stored.status == "draft"
    assert gateway.count({"service": "testing"}) == 1
    assert [d.id for d in gateway.find_many()] == [doc.id]

    # The shared collection accepts every service
    pcb = gateway.create({"service": "pcb"})
    moved = gateway.find_by_id_and_update(pcb.id, {"service": "testing"}, new=True)
    assert moved.service == "testing"
    assert moved.source_collection == "quotes"
    assert gateway.count({"service": "testing"}) == 2


def test_payload_field_named_collection_stays_readable(gateway) -> None:
    doc = gateway.create({"service": "testing", "collection": "mine"})
    assert doc.collection == "mine"
    assert doc.source_collection == "testing_quotes"
    assert gateway.find_by_id(doc.id).collection == "mine"


def test_delete_by_id_returns_deleted_document(gateway) -> None:
    doc = gateway.create({"service": "3dprinting", "material": "PLA"})
    deleted = gateway.delete_by_id(doc.id)
    assert deleted.quote_id == doc.quote_id
    assert deleted.source_collection == "3d_printing_quotes"
    assert gateway.find_by_id(doc.id) is None
    assert gateway.delete_by_id(doc.id) is None


def test_delete_many_and_count_by_service(gateway) -> None:
    for service in ("pcb", "pcb", "testing", "testing", "testing", "wire_harness"):
        gateway.create({"service": service})
    assert gateway.count() == 6
    assert gateway.count({"service": {"$in": ["testing", "pcb"]}}) == 5
    assert gateway.count({"service": {"$nin": ["testing"]}}) == 3

    assert gateway.delete_many({"service": "testing"}) == 3
    assert gateway.count({"service": "testing"}) == 0
    assert gateway.count() == 3


# -----------------------------
# failures
# -----------------------------

def test_storage_failures_surface_as_storage_error(gateway, engine) -> None:
    gateway.create({"service": "testing"})
    with engine.begin() as conn:
        conn.execute(sql_text("DROP TABLE testing_quotes"))
    with pytest.raises(StorageError) as excinfo:
        gateway.find_many({"service": "testing"})
    assert excinfo.value.collection == "testing_quotes"
    assert isinstance(excinfo.value.__cause__, SQLAlchemyError)
    assert not isinstance(excinfo.value, DuplicateKeyError)


def test_delete_many_keeps_earlier_deletes_when_a_later_collection_fails(gateway, engine) -> None:
    gateway.create({"service": "pcb"})
    gateway.create({"service": "testing"})
    gateway.create({"service": "wire_harness"})
    with engine.begin() as conn:
        conn.execute(sql_text("DROP TABLE wire_harness_quotes"))

    with pytest.raises(StorageError) as excinfo:
        gateway.delete_many()
    assert excinfo.value.collection == "wire_harness_quotes"
    # Collections ahead of the failing one in registry order stay deleted
    assert gateway.count({"service": "pcb"}) == 0
    assert gateway.count({"service": "testing"}) == 0


def test_strict_service_filters_reject_empty_selection(gateway_factory) -> None:
    strict = gateway_factory(strict_service_filters=True)
    with pytest.raises(ServiceFilterError):
        strict.find_many({"service": {"$in": ["laser_cutting"]}})
    lenient = gateway_factory()
    assert lenient.find_many({"service": {"$in": ["laser_cutting"]}}) == []


def test_invalid_filters_raise_value_error(gateway) -> None:
    with pytest.raises(ValueError):
        gateway.find_many({"status": {"$regex": "^dr"}})
    with pytest.raises(ValueError):
        gateway.find_many({"customer": {"name": "Acme"}})
