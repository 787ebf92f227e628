from datetime import date, datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from identity import IdentityClaims
from models import Category, Transaction, TransactionType
from schemas import CategoryIn, TransactionIn
from services import (
    CategoryService,
    InsightsService,
    MetricsService,
    TransactionService,
    UserService,
)


def _user(session: Session, sub: str = "user-1") -> int:
    user, _ = UserService(session).store_user(IdentityClaims(sub=sub, name="Test"))
    return user.id


def _ledger(session: Session, user_id: int) -> dict[str, Category]:
    categories = CategoryService(session, user_id)
    food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
    rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    salary = categories.create(CategoryIn(name="Salary", type=TransactionType.income))
    txns = TransactionService(session, user_id)
    rows = [
        (1000, TransactionType.income, salary, datetime(2025, 1, 5, 9, 0)),
        (200, TransactionType.expense, food, datetime(2025, 1, 10, 12, 0)),
        (50, TransactionType.expense, food, datetime(2025, 2, 1, 0, 0)),
    ]
    for amount, type_, category, when in rows:
        txns.create(
            TransactionIn(
                amount=amount, type=type_, category_id=category.id, occurred_at=when
            )
        )
    return {"food": food, "rent": rent, "salary": salary}


def test_yearly_summary_buckets_by_calendar_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        cats = _ledger(session, user_id)

        summary = MetricsService(session, user_id).yearly_summary(2025)

        assert summary["months"][0] == {"income": 1000, "expense": 200, "balance": 800}
        assert summary["months"][1] == {"income": 0, "expense": 50, "balance": -50}
        assert len(summary["months"]) == 12
        assert summary["total_income"] == 1000
        assert summary["total_expense"] == 250
        assert summary["balance"] == 750
        assert summary["transaction_count"] == 3
        assert summary["savings_rate"] == pytest.approx(75.0)
        assert summary["category_spending"] == {cats["food"].id: 250}


def test_monthly_summary_window_and_daily_average() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        _ledger(session, user_id)
        metrics = MetricsService(session, user_id)

        january = metrics.monthly_summary(2025, 1, today=date(2025, 6, 1))
        assert january["total_income"] == 1000
        assert january["total_expense"] == 200
        assert january["balance"] == january["total_income"] - january["total_expense"]
        assert january["transaction_count"] == 2
        assert january["avg_daily_spend"] == pytest.approx(200 / 31)
        assert january["savings_rate"] == pytest.approx(80.0)

        # Current month divides by the days elapsed so far.
        february = metrics.monthly_summary(2025, 2, today=date(2025, 2, 10))
        assert february["avg_daily_spend"] == pytest.approx(5.0)
        assert february["savings_rate"] == 0.0
        assert february["balance"] == -50


def test_monthly_window_includes_last_instant_of_month() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        food = CategoryService(session, user_id).create(
            CategoryIn(name="Food", type=TransactionType.expense)
        )
        txns = TransactionService(session, user_id)
        for when in (
            datetime(2025, 3, 31, 23, 59, 59, 999000),
            datetime(2025, 4, 1, 0, 0),
            datetime(2025, 3, 1, 0, 0),
        ):
            txns.create(
                TransactionIn(
                    amount=10,
                    type=TransactionType.expense,
                    category_id=food.id,
                    occurred_at=when,
                )
            )

        march = MetricsService(session, user_id).monthly_summary(
            2025, 3, today=date(2025, 5, 1)
        )
        assert march["transaction_count"] == 2
        assert march["total_expense"] == 20


def test_all_time_summary_tracks_years_and_first_date() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        cats = _ledger(session, user_id)
        TransactionService(session, user_id).create(
            TransactionIn(
                amount=300,
                type=TransactionType.income,
                category_id=cats["salary"].id,
                occurred_at=datetime(2023, 12, 24, 8, 0),
            )
        )

        summary = MetricsService(session, user_id).all_time_summary()

        assert summary["first_transaction_date"] == datetime(2023, 12, 24, 8, 0)
        assert summary["yearly_data"] == {
            2023: {"income": 300, "expense": 0, "balance": 300},
            2025: {"income": 1000, "expense": 250, "balance": 750},
        }
        assert summary["balance"] == 1050
        assert summary["transaction_count"] == 4


def test_summaries_without_user_are_null() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        metrics = MetricsService(session, None)
        assert metrics.monthly_summary(2025, 1) is None
        assert metrics.yearly_summary(2025) is None
        assert metrics.all_time_summary() is None
        assert InsightsService(session, None).analytics(6) is None


def test_analytics_trend_is_dense_and_breakdowns_sorted() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        cats = _ledger(session, user_id)
        txns = TransactionService(session, user_id)
        txns.create(
            TransactionIn(
                amount=700,
                type=TransactionType.expense,
                category_id=cats["rent"].id,
                occurred_at=datetime(2025, 3, 1, 10, 0),
            )
        )
        # Before the window: ignored everywhere.
        txns.create(
            TransactionIn(
                amount=999,
                type=TransactionType.expense,
                category_id=cats["rent"].id,
                occurred_at=datetime(2024, 11, 30, 10, 0),
            )
        )

        data = InsightsService(session, user_id).analytics(
            4, today=date(2025, 3, 15)
        )

        trend = data["monthly_trend"]
        assert [m["month"] for m in trend] == [
            "2024-12",
            "2025-01",
            "2025-02",
            "2025-03",
        ]
        assert trend[0]["income"] == 0 and trend[0]["expense"] == 0
        assert trend[1]["balance"] == 800
        assert trend[2]["expense"] == 50
        assert trend[3]["expense"] == 700
        assert trend[3]["month_label"] == "Mar 25"

        expense = data["expense_by_category"]
        assert [row["name"] for row in expense] == ["Rent", "Food"]
        assert expense[0]["amount"] == 700 and expense[0]["count"] == 1
        assert expense[1]["amount"] == 250 and expense[1]["count"] == 2
        assert data["income_by_category"][0]["name"] == "Salary"
        assert data["total_income"] == 1000
        assert data["total_expense"] == 950
        assert data["total_transactions"] == 4


def test_analytics_uses_unknown_for_dangling_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        alice = _user(session, "alice")
        bob = _user(session, "bob")
        foreign = CategoryService(session, alice).create(
            CategoryIn(name="Alice only", type=TransactionType.expense, icon="Star")
        )
        session.add(
            Transaction(
                user_id=bob,
                amount=42,
                type=TransactionType.expense,
                category_id=foreign.id,
                occurred_at=datetime(2025, 3, 2),
            )
        )
        session.commit()

        data = InsightsService(session, bob).analytics(1, today=date(2025, 3, 15))

        row = data["expense_by_category"][0]
        assert row["name"] == "Unknown"
        assert row["color"] == "#71717a"
        assert row["icon"] == "Circle"
        assert row["amount"] == 42


def test_analytics_rejects_empty_window() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user_id = _user(session)
        with pytest.raises(ValueError):
            InsightsService(session, user_id).analytics(0)
