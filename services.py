from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import (
    MAX_ROW_ID,
    Category,
    OwnedCategory,
    Owner,
    SystemCategory,
    Transaction,
    TransactionType,
    amount_to_cents,
    cents_to_amount,
)
from periods import Period
from schemas import CategoryIn, CategoryUpdate, OwnerIn, TransactionIn, TransactionPatch
from slugs import resolve_slug, slugify

logger = logging.getLogger(__name__)

MAX_PROVISION_ATTEMPTS = 5

_ROW_ID = re.compile(r"[0-9]+")

DEFAULT_CATEGORIES: tuple[tuple[str, TransactionType], ...] = (
    ("Salary", TransactionType.income),
    ("Groceries", TransactionType.expense),
    ("Utilities", TransactionType.expense),
    ("Entertainment", TransactionType.expense),
    ("Transport", TransactionType.expense),
    ("Miscellaneous", TransactionType.expense),
)


class ServiceError(ValueError):
    pass


class ValidationError(ServiceError):
    pass


class ConflictError(ServiceError):
    pass


class NotFoundError(ServiceError):
    pass


def ensure_system_defaults(session: Session) -> int:
    """Create the shared default catalog once; returns how many rows were added."""
    existing = set(
        session.scalars(select(Category.slug).where(Category.owner_id.is_(None))).all()
    )
    created = 0
    for name, txn_type in DEFAULT_CATEGORIES:
        slug = slugify(name)
        if slug in existing:
            continue
        session.add(SystemCategory(owner_id=None, name=name, slug=slug, type=txn_type))
        existing.add(slug)
        created += 1
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise ConflictError("System categories were seeded concurrently") from exc
    return created


class OwnerService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def register(self, data: OwnerIn) -> Owner:
        owner = Owner(name=data.name.strip(), email=data.email.strip().lower())
        self.session.add(owner)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Owner already exists") from exc
        self.session.refresh(owner)
        CategoryService(self.session, owner.id).seed_owner_defaults()
        logger.info(f"owner_registered: owner={owner.id}")
        return owner

    def get(self, owner_id: int) -> Owner:
        owner = self.session.get(Owner, owner_id)
        if not owner:
            raise NotFoundError("Owner not found")
        return owner


class CategoryService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def find_by_id(self, category_id: int) -> Optional[Category]:
        return self.session.get(Category, category_id)

    def find_visible(self, category_id: int) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.id == category_id,
                or_(Category.owner_id == self.owner_id, Category.owner_id.is_(None)),
            )
        )

    def find_by_slug(self, slug: str) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.owner_id == self.owner_id, Category.slug == slug
            )
        )

    def list_visible(self) -> list[Category]:
        system = self.session.scalars(
            select(Category).where(Category.owner_id.is_(None)).order_by(Category.id)
        ).all()
        owned = self.session.scalars(
            select(Category)
            .where(Category.owner_id == self.owner_id)
            .order_by(Category.id)
        ).all()
        return [*system, *owned]

    def owner_slugs(self, exclude_id: Optional[int] = None) -> set[str]:
        stmt = select(Category.slug).where(Category.owner_id == self.owner_id)
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return set(self.session.scalars(stmt).all())

    def get_owned(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.owner_id != self.owner_id:
            raise NotFoundError("Category not found")
        return category

    def create(self, name: str, slug: str, txn_type: TransactionType) -> Category:
        category = OwnedCategory(
            owner_id=self.owner_id, name=name.strip(), slug=slug, type=txn_type
        )
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            logger.info(f"category_conflict: owner={self.owner_id} slug={slug}")
            raise ConflictError("Category already exists") from exc
        self.session.refresh(category)
        logger.info(
            f"category_created: owner={self.owner_id} id={category.id} slug={slug}"
        )
        return category

    def create_named(self, data: CategoryIn) -> Category:
        return self.create(data.name, slugify(data.name), data.type)

    def rename(self, category: Category, new_name: str) -> Category:
        if category.owner_id != self.owner_id:
            raise NotFoundError("Category not found")
        name = new_name.strip()
        slug = resolve_slug(name, self.owner_slugs(exclude_id=category.id))
        category.name = name
        category.slug = slug
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ConflictError("Category already exists") from exc
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get_owned(category_id)
        if data.type is not None:
            category.type = data.type
        if data.name is not None:
            return self.rename(category, data.name)
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> bool:
        category = self.session.get(Category, category_id)
        if not category or category.owner_id != self.owner_id:
            return False
        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: owner={self.owner_id} id={category_id}")
        return True

    def seed_owner_defaults(self) -> list[Category]:
        existing = self.owner_slugs()
        created: list[Category] = []
        for name, txn_type in DEFAULT_CATEGORIES:
            slug = slugify(name)
            if slug in existing:
                continue
            try:
                created.append(self.create(name, slug, txn_type))
            except ConflictError:
                # seeded by a concurrent request in the meantime
                continue
            existing.add(slug)
        return created


class CategoryProvisioner:
    """Turns a category reference from a transaction payload into a row.

    A known id must point at a category the owner can see. A free-text name
    is matched on its slug and reused when the owner already has it,
    otherwise a new owned category is created.
    """

    def __init__(self, session: Session, owner_id: int) -> None:
        self.owner_id = owner_id
        self.categories = CategoryService(session, owner_id)

    def resolve(
        self,
        txn_type: TransactionType,
        *,
        category_id: Optional[int] = None,
        category_name: Optional[str] = None,
    ) -> Category:
        if category_id is not None:
            category = None
            if 1 <= category_id <= MAX_ROW_ID:
                category = self.categories.find_visible(category_id)
            if not category:
                raise ValidationError("Category required")
            return category

        name = (category_name or "").strip()
        if not name:
            raise ValidationError("Category required")

        base_slug = slugify(name)
        for attempt in range(1, MAX_PROVISION_ATTEMPTS + 1):
            existing = self.categories.find_by_slug(base_slug)
            if existing:
                return existing
            slug = resolve_slug(name, self.categories.owner_slugs())
            try:
                return self.categories.create(name, slug, txn_type)
            except ConflictError:
                logger.warning(
                    f"category_provision_retry: owner={self.owner_id} "
                    f"slug={slug} attempt={attempt}"
                )
        raise ConflictError(f"Could not provision category '{name}'")


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    query: Optional[str] = None


SORT_COLUMNS = {
    "date": Transaction.date,
    "amount": Transaction.amount_cents,
    "description": Transaction.description,
    "type": Transaction.type,
    "categoryname": Transaction.category_name,
    "priority": Transaction.priority,
    "createdat": Transaction.created_at,
    "updatedat": Transaction.updated_at,
}


def parse_row_id(value: str) -> Optional[int]:
    """Storable row id spelled by ``value``, or None for anything else."""
    if not _ROW_ID.fullmatch(value):
        return None
    row_id = int(value)
    return row_id if row_id <= MAX_ROW_ID else None


def parse_sort(sort: Optional[str]):
    """``"field:direction"`` -> (column, descending). Direction defaults to asc."""
    field, _, direction = (sort or "date:desc").partition(":")
    key = field.strip().replace("_", "").lower()
    column = SORT_COLUMNS.get(key)
    if column is None:
        raise ValidationError(f"Cannot sort by '{field.strip()}'")
    return column, direction.strip().lower() == "desc"


class TransactionService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def create(self, data: TransactionIn) -> Transaction:
        category = CategoryProvisioner(self.session, self.owner_id).resolve(
            data.type,
            category_id=data.category_id,
            category_name=data.category_name,
        )
        txn = Transaction(
            owner_id=self.owner_id,
            type=data.type,
            amount_cents=amount_to_cents(data.amount),
            description=data.description,
            category_id=category.id,
            category_name=category.name,
            date=data.date,
            priority=data.priority,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: owner={self.owner_id} id={txn.id} "
            f"category={category.id}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.owner_id == self.owner_id,
                Transaction.id == transaction_id,
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, patch: TransactionPatch) -> Transaction:
        txn = self.get(transaction_id)
        changes = {
            field: value
            for field, value in patch.model_dump(exclude_unset=True).items()
            if value is not None
        }
        category_id = changes.pop("category_id", None)
        category_name = changes.pop("category_name", None)
        if category_id is not None or category_name:
            effective_type = changes.get("type", txn.type)
            category = CategoryProvisioner(self.session, self.owner_id).resolve(
                effective_type,
                category_id=category_id,
                category_name=category_name,
            )
            txn.category_id = category.id
            txn.category_name = category.name

        if "amount" in changes:
            txn.amount_cents = amount_to_cents(changes.pop("amount"))
        for field, value in changes.items():
            setattr(txn, field, value)
        txn.updated_at = datetime.utcnow()

        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> bool:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.owner_id == self.owner_id,
                Transaction.id == transaction_id,
            )
        )
        if not txn:
            return False
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: owner={self.owner_id} id={transaction_id}")
        return True

    def query(
        self,
        filters: TransactionFilters,
        sort: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Transaction], int]:
        if page < 1 or page_size < 1:
            raise ValidationError("Page and page size must be positive")
        column, descending = parse_sort(sort)

        stmt = select(Transaction).where(Transaction.owner_id == self.owner_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            value = filters.category.strip()
            category_id = parse_row_id(value)
            if category_id is not None:
                stmt = stmt.where(Transaction.category_id == category_id)
            else:
                stmt = stmt.where(
                    Transaction.category_name.icontains(value, autoescape=True)
                )
        if filters.date_from:
            stmt = stmt.where(
                Transaction.date >= datetime.combine(filters.date_from, time.min)
            )
        if filters.date_to:
            stmt = stmt.where(
                Transaction.date <= datetime.combine(filters.date_to, time.max)
            )
        if filters.query:
            stmt = stmt.where(
                Transaction.description.icontains(filters.query, autoescape=True)
            )

        total = int(
            self.session.execute(
                select(func.count()).select_from(stmt.subquery())
            ).scalar_one()
        )
        if descending:
            stmt = stmt.order_by(column.desc(), Transaction.id.desc())
        else:
            stmt = stmt.order_by(column.asc(), Transaction.id.asc())
        items = self.session.scalars(
            stmt.offset((page - 1) * page_size).limit(page_size)
        ).all()
        return list(items), total


class ReportService:
    def __init__(self, session: Session, owner_id: int) -> None:
        self.session = session
        self.owner_id = owner_id

    def _window(self, period: Period) -> list:
        return [
            Transaction.owner_id == self.owner_id,
            Transaction.date.between(period.start_at, period.end_at),
        ]

    @staticmethod
    def _day():
        return func.strftime("%Y-%m-%d", Transaction.date).label("day")

    def totals(self, period: Period) -> list[dict[str, object]]:
        rows = self.session.execute(
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(*self._window(period))
            .group_by(Transaction.type)
        ).all()
        return [
            {"type": row.type, "total": cents_to_amount(row.total)}
            for row in sorted(rows, key=lambda r: r.type.value)
        ]

    def by_category(self, period: Period) -> list[dict[str, object]]:
        rows = self.session.execute(
            select(
                Transaction.type,
                Transaction.category_name,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(*self._window(period))
            .group_by(Transaction.type, Transaction.category_name)
        ).all()
        rows = sorted(rows, key=lambda r: (r.type.value, r.category_name))
        return [
            {
                "type": row.type,
                "categoryName": row.category_name,
                "total": cents_to_amount(row.total),
            }
            for row in rows
        ]

    def time_series(self, period: Period) -> list[dict[str, object]]:
        day = self._day()
        income = func.sum(
            case(
                (Transaction.type == TransactionType.income, Transaction.amount_cents),
                else_=0,
            )
        ).label("income")
        expense = func.sum(
            case(
                (Transaction.type == TransactionType.expense, Transaction.amount_cents),
                else_=0,
            )
        ).label("expense")
        rows = self.session.execute(
            select(day, income, expense)
            .where(*self._window(period))
            .group_by(day)
            .order_by(day)
        ).all()
        return [
            {
                "day": row.day,
                "income": cents_to_amount(row.income),
                "expense": cents_to_amount(row.expense),
                "total": cents_to_amount((row.income or 0) + (row.expense or 0)),
            }
            for row in rows
        ]

    def daily_totals(
        self, period: Period, txn_type: TransactionType
    ) -> list[dict[str, object]]:
        day = self._day()
        rows = self.session.execute(
            select(day, func.sum(Transaction.amount_cents).label("total"))
            .where(*self._window(period), Transaction.type == txn_type)
            .group_by(day)
            .order_by(day)
        ).all()
        return [{"day": row.day, "total": cents_to_amount(row.total)} for row in rows]

    def summarize(self, period: Period) -> dict[str, object]:
        return {
            "dateFrom": period.start,
            "dateTo": period.end,
            "totals": self.totals(period),
            "byCategory": self.by_category(period),
            "timeSeries": self.time_series(period),
        }

    def balance_series(self, period: Period) -> dict[str, object]:
        return {
            "dateFrom": period.start,
            "dateTo": period.end,
            "incomeSeries": self.daily_totals(period, TransactionType.income),
            "expenseSeries": self.daily_totals(period, TransactionType.expense),
        }
