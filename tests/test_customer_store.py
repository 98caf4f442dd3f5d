import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app import customer_store
from app.customer_store import upsert_batch
from app.db_models import INVALID_COLLECTION, MALFORMED_COLLECTION, VALID_COLLECTION, InvalidCustomer, MalformedCustomer, ValidCustomer
from app.schemas import MalformedRecord, ParsedRecord


def customer(name: str, phone: str = "5551234567", email: str = "a@x.com", city: str = "City") -> ParsedRecord:
    return ParsedRecord(name, "Branch", city, "ST", "12345", phone, email, "10.0.0.1")


def test_upsert_twice_keeps_one_document_with_latest_fields(session_factory) -> None:
    upsert_batch(session_factory, [customer("First", city="Old")], VALID_COLLECTION)
    result = upsert_batch(session_factory, [customer("Second", city="New")], VALID_COLLECTION)

    assert result.processed == 1
    assert result.succeeded

    with session_factory() as db:
        rows = db.execute(select(ValidCustomer)).scalars().all()
        assert len(rows) == 1
        assert rows[0].name == "Second"
        assert rows[0].city == "New"
        assert (rows[0].email, rows[0].phone) == ("a@x.com", "5551234567")


def test_identity_key_is_email_and_phone_pair(session_factory) -> None:
    records = [
        customer("A", phone="5551234567", email="a@x.com"),
        customer("B", phone="5551234567", email="b@x.com"),
        customer("C", phone="5550000000", email="a@x.com"),
    ]

    upsert_batch(session_factory, records, INVALID_COLLECTION)

    with session_factory() as db:
        names = sorted(row.name for row in db.execute(select(InvalidCustomer)).scalars())
        assert names == ["A", "B", "C"]
        assert db.execute(select(ValidCustomer)).scalars().all() == []


def test_malformed_records_keyed_by_raw_line(session_factory) -> None:
    records = [MalformedRecord("a,b,c"), MalformedRecord("d,e"), MalformedRecord("a,b,c")]

    result = upsert_batch(session_factory, records, MALFORMED_COLLECTION)

    assert result.processed == 3
    with session_factory() as db:
        raw_lines = sorted(row.raw_line for row in db.execute(select(MalformedCustomer)).scalars())
        assert raw_lines == ["a,b,c", "d,e"]


def test_failed_record_is_skipped_and_batch_continues(session_factory, monkeypatch) -> None:
    original = customer_store.upsert_customer

    def flaky_upsert(db, record, collection_name):
        if record.name == "Broken":
            raise OperationalError("UPDATE", {}, Exception("database is locked"))
        original(db, record, collection_name)

    monkeypatch.setattr(customer_store, "upsert_customer", flaky_upsert)
    records = [
        customer("Before", phone="5550000001", email="b1@x.com"),
        customer("Broken", phone="5550000002", email="b2@x.com"),
        customer("After", phone="5550000003", email="b3@x.com"),
    ]

    result = upsert_batch(session_factory, records, VALID_COLLECTION, max_retries=1, backoff_seconds=0)

    assert result.processed == 2
    assert result.failed == 1
    assert not result.succeeded
    with session_factory() as db:
        names = sorted(row.name for row in db.execute(select(ValidCustomer)).scalars())
        assert names == ["After", "Before"]


def test_transient_error_is_retried(session_factory, monkeypatch) -> None:
    original = customer_store.upsert_customer
    calls = {"count": 0}

    def flaky_once(db, record, collection_name):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("INSERT", {}, Exception("database is locked"))
        original(db, record, collection_name)

    monkeypatch.setattr(customer_store, "upsert_customer", flaky_once)

    result = upsert_batch(session_factory, [customer("Retry")], VALID_COLLECTION, max_retries=1, backoff_seconds=0)

    assert result.processed == 1
    assert result.failed == 0
    assert calls["count"] == 2


def test_unknown_collection_is_rejected(session_factory) -> None:
    with pytest.raises(ValueError):
        upsert_batch(session_factory, [customer("A")], "customers")


def test_malformed_record_rejected_from_customer_collection(session_factory) -> None:
    with pytest.raises(ValueError):
        upsert_batch(session_factory, [MalformedRecord("x")], VALID_COLLECTION)
