from collections.abc import Iterable
import logging

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.db_models import COLLECTIONS, MALFORMED_COLLECTION, MalformedCustomer
from app.retry import RetryExhaustedError, run_with_retries
from app.schemas import MalformedRecord, ParsedRecord, UnitResult


logger = logging.getLogger(__name__)

MUTABLE_FIELDS = ("name", "branch", "city", "state", "zip", "ip")


def upsert_customer(db: Session, record: ParsedRecord, collection_name: str) -> None:
    model = COLLECTIONS[collection_name]
    stmt = select(model).where(model.email == record.email, model.phone == record.phone)
    existing = db.execute(stmt).scalar_one_or_none()
    if existing is None:
        existing = model(email=record.email, phone=record.phone)
        db.add(existing)

    for field_name in MUTABLE_FIELDS:
        setattr(existing, field_name, getattr(record, field_name))
    db.commit()


def upsert_malformed(db: Session, record: MalformedRecord) -> None:
    stmt = select(MalformedCustomer).where(MalformedCustomer.raw_line == record.raw_line)
    if db.execute(stmt).scalar_one_or_none() is not None:
        return
    db.add(MalformedCustomer(raw_line=record.raw_line))
    db.commit()


def _upsert_one(db: Session, record: ParsedRecord | MalformedRecord, collection_name: str) -> None:
    try:
        if isinstance(record, MalformedRecord):
            upsert_malformed(db, record)
        else:
            upsert_customer(db, record, collection_name)
    except Exception:
        db.rollback()
        raise


def upsert_batch(
    session_factory: sessionmaker[Session],
    records: Iterable[ParsedRecord | MalformedRecord],
    collection_name: str,
    *,
    max_retries: int = 0,
    backoff_seconds: float = 0,
) -> UnitResult:
    """Upsert records one at a time into ``collection_name``.

    Each record commits on its own. A record that still fails after retrying
    transient errors is logged and skipped so the rest of the batch goes through.
    """
    if collection_name not in COLLECTIONS:
        raise ValueError(f"unknown collection: {collection_name}")

    processed = 0
    failed = 0
    with session_factory() as db:
        for index, record in enumerate(records):
            if isinstance(record, MalformedRecord) != (collection_name == MALFORMED_COLLECTION):
                raise ValueError(f"{type(record).__name__} cannot be stored in {collection_name}")
            try:
                run_with_retries(
                    lambda: _upsert_one(db, record, collection_name),
                    max_retries=max_retries,
                    backoff_seconds=backoff_seconds,
                    should_retry=lambda exc: isinstance(exc, OperationalError),
                )
                processed += 1
            except RetryExhaustedError:
                failed += 1
                logger.exception(
                    "record upsert failed",
                    extra={"collection": collection_name, "record_index": index},
                )

    if failed:
        logger.warning(
            "upsert batch finished with failures",
            extra={"collection": collection_name, "processed": processed, "failed": failed},
        )
    return UnitResult(name=f"persist:{collection_name}", processed=processed, failed=failed)
