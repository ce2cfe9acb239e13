from collections import defaultdict
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import TransactionType
from periods import Period, resolve_period
from schemas import SummaryOut, TransactionIn
from services import CategoryService, ReportService, TransactionService

MARCH = Period("custom", date(2024, 3, 1), date(2024, 3, 31))


def make_engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def add(
    session: Session,
    owner_id: int,
    txn_type: TransactionType,
    amount: str,
    when: datetime,
    category: str,
):
    return TransactionService(session, owner_id).create(
        TransactionIn(
            type=txn_type,
            amount=Decimal(amount),
            date=when,
            category_name=category,
        )
    )


def test_summary_for_two_days_in_march() -> None:
    engine = make_engine()

    with Session(engine) as session:
        add(session, 1, TransactionType.expense, "50", datetime(2024, 3, 1), "Food")
        add(session, 1, TransactionType.income, "200", datetime(2024, 3, 2), "Salary")

        summary = ReportService(session, 1).summarize(MARCH)

        assert summary["totals"] == [
            {"type": TransactionType.expense, "total": Decimal("50.00")},
            {"type": TransactionType.income, "total": Decimal("200.00")},
        ]
        assert summary["timeSeries"] == [
            {
                "day": "2024-03-01",
                "income": Decimal("0.00"),
                "expense": Decimal("50.00"),
                "total": Decimal("50.00"),
            },
            {
                "day": "2024-03-02",
                "income": Decimal("200.00"),
                "expense": Decimal("0.00"),
                "total": Decimal("200.00"),
            },
        ]


def test_mixed_day_carries_both_type_subtotals() -> None:
    engine = make_engine()

    with Session(engine) as session:
        add(session, 1, TransactionType.income, "100", datetime(2024, 3, 7, 9), "Gift")
        add(session, 1, TransactionType.expense, "30", datetime(2024, 3, 7, 20), "Food")
        add(session, 1, TransactionType.expense, "5.25", datetime(2024, 3, 7), "Food")

        series = ReportService(session, 1).time_series(MARCH)

        assert series == [
            {
                "day": "2024-03-07",
                "income": Decimal("100.00"),
                "expense": Decimal("35.25"),
                "total": Decimal("135.25"),
            }
        ]


def test_totals_match_category_breakdown() -> None:
    engine = make_engine()

    with Session(engine) as session:
        add(session, 1, TransactionType.expense, "12.40", datetime(2024, 3, 1), "Food")
        add(session, 1, TransactionType.expense, "7.60", datetime(2024, 3, 9), "Food")
        add(session, 1, TransactionType.expense, "80", datetime(2024, 3, 9), "Rent")
        add(session, 1, TransactionType.income, "900", datetime(2024, 3, 15), "Salary")
        add(session, 1, TransactionType.income, "45.5", datetime(2024, 3, 20), "Resale")

        summary = ReportService(session, 1).summarize(MARCH)

        per_type: dict[TransactionType, Decimal] = defaultdict(Decimal)
        for row in summary["byCategory"]:
            per_type[row["type"]] += row["total"]
        assert {row["type"]: row["total"] for row in summary["totals"]} == per_type
        assert summary["byCategory"] == [
            {
                "type": TransactionType.expense,
                "categoryName": "Food",
                "total": Decimal("20.00"),
            },
            {
                "type": TransactionType.expense,
                "categoryName": "Rent",
                "total": Decimal("80.00"),
            },
            {
                "type": TransactionType.income,
                "categoryName": "Resale",
                "total": Decimal("45.50"),
            },
            {
                "type": TransactionType.income,
                "categoryName": "Salary",
                "total": Decimal("900.00"),
            },
        ]


def test_category_breakdown_groups_by_snapshot_name() -> None:
    engine = make_engine()

    with Session(engine) as session:
        first = add(
            session, 1, TransactionType.expense, "10", datetime(2024, 3, 2), "Food"
        )
        categories = CategoryService(session, 1)
        categories.rename(categories.get_owned(first.category_id), "Meals")
        second = add(
            session, 1, TransactionType.expense, "15", datetime(2024, 3, 3), "Food"
        )
        assert first.category_id != second.category_id

        breakdown = ReportService(session, 1).by_category(MARCH)

        assert breakdown == [
            {
                "type": TransactionType.expense,
                "categoryName": "Food",
                "total": Decimal("25.00"),
            }
        ]


def test_reports_are_owner_scoped_and_windowed() -> None:
    engine = make_engine()

    with Session(engine) as session:
        add(session, 1, TransactionType.expense, "10", datetime(2024, 2, 29, 23), "A")
        add(session, 1, TransactionType.expense, "20", datetime(2024, 3, 31, 23, 59), "A")
        add(session, 1, TransactionType.expense, "40", datetime(2024, 4, 1), "A")
        add(session, 2, TransactionType.expense, "80", datetime(2024, 3, 15), "A")

        totals = ReportService(session, 1).totals(MARCH)

        assert totals == [{"type": TransactionType.expense, "total": Decimal("20.00")}]
        assert ReportService(session, 3).summarize(MARCH)["totals"] == []


def test_balance_series_splits_income_and_expense() -> None:
    engine = make_engine()

    with Session(engine) as session:
        add(session, 1, TransactionType.income, "500", datetime(2024, 3, 5), "Salary")
        add(session, 1, TransactionType.expense, "20", datetime(2024, 3, 5), "Food")
        add(session, 1, TransactionType.expense, "30", datetime(2024, 3, 2), "Food")
        add(session, 1, TransactionType.expense, "5", datetime(2024, 3, 2, 18), "Bus")

        balance = ReportService(session, 1).balance_series(MARCH)

        assert balance["incomeSeries"] == [
            {"day": "2024-03-05", "total": Decimal("500.00")}
        ]
        assert balance["expenseSeries"] == [
            {"day": "2024-03-02", "total": Decimal("35.00")},
            {"day": "2024-03-05", "total": Decimal("20.00")},
        ]


def test_summary_serializes_with_contract_field_names() -> None:
    engine = make_engine()

    with Session(engine) as session:
        add(session, 1, TransactionType.expense, "50", datetime(2024, 3, 1), "Food")
        period = resolve_period(None, None, today=date(2024, 3, 20))

        summary = SummaryOut.model_validate(ReportService(session, 1).summarize(period))
        payload = summary.model_dump(mode="json", by_alias=True)

        assert set(payload) == {"dateFrom", "dateTo", "totals", "byCategory", "timeSeries"}
        assert payload["dateFrom"] == "2024-03-01"
        assert payload["dateTo"] == "2024-03-31"
        assert payload["byCategory"] == [
            {"type": "expense", "categoryName": "Food", "total": 50.0}
        ]
