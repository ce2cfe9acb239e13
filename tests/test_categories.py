import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from models import Category, OwnedCategory, SystemCategory, TransactionType
from schemas import CategoryIn, CategoryUpdate, OwnerIn
from services import (
    CategoryService,
    ConflictError,
    NotFoundError,
    OwnerService,
    ensure_system_defaults,
)


def make_engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def test_seeding_owner_defaults_is_idempotent() -> None:
    engine = make_engine()

    with Session(engine) as session:
        service = CategoryService(session, 1)
        created = service.seed_owner_defaults()
        assert [c.name for c in created] == [
            "Salary",
            "Groceries",
            "Utilities",
            "Entertainment",
            "Transport",
            "Miscellaneous",
        ]
        assert created[0].type == TransactionType.income
        assert all(c.type == TransactionType.expense for c in created[1:])

        assert service.seed_owner_defaults() == []
        assert len(service.list_visible()) == 6


def test_seeding_skips_slugs_the_owner_already_has() -> None:
    engine = make_engine()

    with Session(engine) as session:
        service = CategoryService(session, 1)
        service.create("GROCERIES", "groceries", TransactionType.expense)

        created = service.seed_owner_defaults()

        assert "Groceries" not in [c.name for c in created]
        assert len(created) == 5
        assert service.owner_slugs() == {
            "salary",
            "groceries",
            "utilities",
            "entertainment",
            "transport",
            "miscellaneous",
        }


def test_create_rejects_duplicate_slug_for_same_owner() -> None:
    engine = make_engine()

    with Session(engine) as session:
        service = CategoryService(session, 1)
        service.create_named(CategoryIn(name="Food", type=TransactionType.expense))
        with pytest.raises(ConflictError):
            service.create_named(
                CategoryIn(name="food!", type=TransactionType.expense)
            )

        other = CategoryService(session, 2).create_named(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        assert other.slug == "food"

        count = session.scalar(select(func.count(Category.id)))
        assert count == 2


def test_list_visible_puts_system_defaults_first() -> None:
    engine = make_engine()

    with Session(engine) as session:
        assert ensure_system_defaults(session) == 6
        assert ensure_system_defaults(session) == 0

        mine = CategoryService(session, 1)
        mine.create("Salary", "salary", TransactionType.income)
        mine.create("Pets", "pets", TransactionType.expense)
        CategoryService(session, 2).create("Hidden", "hidden", TransactionType.expense)

        visible = mine.list_visible()

        assert [c.slug for c in visible[:6]] == [
            "salary",
            "groceries",
            "utilities",
            "entertainment",
            "transport",
            "miscellaneous",
        ]
        assert all(isinstance(c, SystemCategory) for c in visible[:6])
        assert all(c.is_system for c in visible[:6])
        assert [c.slug for c in visible[6:]] == ["salary", "pets"]
        assert all(isinstance(c, OwnedCategory) for c in visible[6:])


def test_rename_recomputes_slug_against_other_owner_slugs() -> None:
    engine = make_engine()

    with Session(engine) as session:
        service = CategoryService(session, 1)
        service.create("Food", "food", TransactionType.expense)
        snacks = service.create("Snacks", "snacks", TransactionType.expense)

        renamed = service.rename(snacks, "Food")
        assert renamed.name == "Food"
        assert renamed.slug == "food-1"

        same = service.rename(renamed, "Food (weekly)")
        assert same.slug == "food-weekly"

        again = service.rename(same, "FOOD WEEKLY!")
        assert again.slug == "food-weekly"


def test_update_is_owner_scoped_and_can_change_type() -> None:
    engine = make_engine()

    with Session(engine) as session:
        category = CategoryService(session, 1).create(
            "Bonus", "bonus", TransactionType.expense
        )

        with pytest.raises(NotFoundError):
            CategoryService(session, 2).update(
                category.id, CategoryUpdate(name="Stolen")
            )

        updated = CategoryService(session, 1).update(
            category.id, CategoryUpdate(type=TransactionType.income)
        )
        assert updated.type == TransactionType.income
        assert updated.slug == "bonus"


def test_system_categories_cannot_be_changed_by_an_owner() -> None:
    engine = make_engine()

    with Session(engine) as session:
        ensure_system_defaults(session)
        salary = session.scalar(
            select(Category).where(
                Category.owner_id.is_(None), Category.slug == "salary"
            )
        )
        service = CategoryService(session, 1)

        with pytest.raises(NotFoundError):
            service.update(salary.id, CategoryUpdate(name="Wages"))
        with pytest.raises(NotFoundError):
            service.rename(salary, "Wages")
        assert service.delete(salary.id) is False


def test_delete_only_removes_own_categories() -> None:
    engine = make_engine()

    with Session(engine) as session:
        category = CategoryService(session, 1).create(
            "Books", "books", TransactionType.expense
        )

        assert CategoryService(session, 2).delete(category.id) is False
        assert CategoryService(session, 1).delete(category.id) is True
        assert CategoryService(session, 1).delete(category.id) is False
        assert CategoryService(session, 1).find_by_id(category.id) is None


def test_registering_owner_seeds_defaults() -> None:
    engine = make_engine()

    with Session(engine) as session:
        owner = OwnerService(session).register(
            OwnerIn(name="Ada", email="Ada@Example.com")
        )
        assert owner.email == "ada@example.com"

        categories = CategoryService(session, owner.id).list_visible()
        assert len(categories) == 6
        assert all(c.owner_id == owner.id for c in categories)

        with pytest.raises(ConflictError):
            OwnerService(session).register(
                OwnerIn(name="Ada again", email="ada@example.com")
            )
