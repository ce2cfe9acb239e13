from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class Priority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


# largest id SQLite (and BIGINT columns elsewhere) can store
MAX_ROW_ID = 2**63 - 1


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Owner(Base, TimestampMixin):
    __tablename__ = "owners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class Category(Base, TimestampMixin):
    """A spending or income bucket.

    Rows are either ``SystemCategory`` (no owner, visible to everybody and
    never changed on behalf of a single owner) or ``OwnedCategory``. The
    ``kind`` column discriminates between the two.
    """

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[Optional[int]] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(120), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(10), nullable=False)

    __mapper_args__ = {"polymorphic_on": "kind"}

    __table_args__ = (
        UniqueConstraint("owner_id", "slug", name="uq_category_owner_slug"),
        Index(
            "uq_category_system_slug",
            "slug",
            unique=True,
            sqlite_where=text("owner_id IS NULL"),
            postgresql_where=text("owner_id IS NULL"),
        ),
    )

    @property
    def is_system(self) -> bool:
        return self.owner_id is None


class SystemCategory(Category):
    __mapper_args__ = {"polymorphic_identity": "system"}


class OwnedCategory(Category):
    __mapper_args__ = {"polymorphic_identity": "owned"}


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # weak reference: deleting a category leaves its transactions untouched
    category_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_name: Mapped[str] = mapped_column(String(100), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    priority: Mapped[Priority] = mapped_column(
        SAEnum(Priority), nullable=False, default=Priority.medium
    )

    __table_args__ = (
        Index("ix_transactions_owner_date", "owner_id", "date"),
        Index("ix_transactions_owner_type_date", "owner_id", "type", "date"),
        Index("ix_transactions_owner_category", "owner_id", "category_id"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)


def amount_to_cents(amount: Decimal) -> int:
    cents = (Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(cents)


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(int(cents or 0)) / 100).quantize(Decimal("0.01"))
