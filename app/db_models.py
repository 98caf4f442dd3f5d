from datetime import UTC, datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def utc_now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


class CustomerColumns:
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), index=True)
    phone: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(Text, default="")
    branch: Mapped[str] = mapped_column(Text, default="")
    city: Mapped[str] = mapped_column(Text, default="")
    state: Mapped[str] = mapped_column(Text, default="")
    zip: Mapped[str] = mapped_column(Text, default="")
    ip: Mapped[str] = mapped_column(Text, default="")
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


class ValidCustomer(CustomerColumns, Base):
    __tablename__ = "valid_customers"
    __table_args__ = (UniqueConstraint("email", "phone", name="uq_valid_customers_identity"),)


class InvalidCustomer(CustomerColumns, Base):
    __tablename__ = "invalid_customers"
    __table_args__ = (UniqueConstraint("email", "phone", name="uq_invalid_customers_identity"),)


class MalformedCustomer(Base):
    __tablename__ = "malformed_customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    raw_line: Mapped[str] = mapped_column(Text, unique=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, onupdate=utc_now)


VALID_COLLECTION = ValidCustomer.__tablename__
INVALID_COLLECTION = InvalidCustomer.__tablename__
MALFORMED_COLLECTION = MalformedCustomer.__tablename__

COLLECTIONS: dict[str, type[Base]] = {
    VALID_COLLECTION: ValidCustomer,
    INVALID_COLLECTION: InvalidCustomer,
    MALFORMED_COLLECTION: MalformedCustomer,
}
