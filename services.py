from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from csv_utils import parse_date
from identity import IdentityClaims, NotAuthenticated, require_user
from models import (
    Budget,
    Category,
    Debt,
    DebtType,
    SavingsGoal,
    Transaction,
    TransactionType,
    User,
)
from periods import (
    Period,
    add_months,
    elapsed_days_in_month,
    local_now,
    local_today,
    month_key,
    month_period,
    parse_month_key,
    to_local_naive,
    year_period,
)
from schemas import (
    BudgetIn,
    BudgetUpdateIn,
    CategoryIn,
    CategoryUpdateIn,
    DebtIn,
    DebtUpdateIn,
    ImportRowIn,
    ProfileIn,
    SavingsGoalIn,
    SplitTransactionIn,
    TransactionEditIn,
    TransactionIn,
)

logger = logging.getLogger(__name__)

UNKNOWN_CATEGORY_NAME = "Unknown"
UNKNOWN_CATEGORY_COLOR = "#71717a"
UNKNOWN_CATEGORY_ICON = "Circle"

OTHER_CATEGORY_NAMES = {
    TransactionType.income: "Other Income",
    TransactionType.expense: "Other Expense",
}

DEFAULT_CATEGORIES: list[tuple[str, TransactionType, str, str]] = [
    ("Food & Dining", TransactionType.expense, "Utensils", "#f97316"),
    ("Rent & Housing", TransactionType.expense, "Home", "#8b5cf6"),
    ("Transport", TransactionType.expense, "Car", "#3b82f6"),
    ("Shopping", TransactionType.expense, "ShoppingBag", "#ec4899"),
    ("Entertainment", TransactionType.expense, "Gamepad2", "#a855f7"),
    ("Health", TransactionType.expense, "Heart", "#ef4444"),
    ("Education", TransactionType.expense, "GraduationCap", "#06b6d4"),
    ("Bills & Utilities", TransactionType.expense, "Zap", "#eab308"),
    ("Groceries", TransactionType.expense, "ShoppingCart", "#22c55e"),
    ("Personal Care", TransactionType.expense, "Sparkles", "#f472b6"),
    ("Travel", TransactionType.expense, "Plane", "#0ea5e9"),
    ("Subscriptions", TransactionType.expense, "CreditCard", "#6366f1"),
    ("Other Expense", TransactionType.expense, "MoreHorizontal", "#71717a"),
    ("Salary", TransactionType.income, "Briefcase", "#22c55e"),
    ("Freelance", TransactionType.income, "Laptop", "#10b981"),
    ("Investments", TransactionType.income, "TrendingUp", "#14b8a6"),
    ("Gifts", TransactionType.income, "Gift", "#f59e0b"),
    ("Refunds", TransactionType.income, "RotateCcw", "#6366f1"),
    ("Other Income", TransactionType.income, "MoreHorizontal", "#71717a"),
]


class NotFoundError(ValueError):
    pass


class CategoryInUse(ValueError):
    pass


def budget_percentage(spent: float, amount: float) -> float:
    return (spent / amount) * 100 if amount > 0 else 0.0


def budget_status(percentage: float) -> str:
    if percentage >= 100:
        return "exceeded"
    if percentage >= 75:
        return "warning"
    return "safe"


def savings_rate(income: float, expense: float) -> float:
    return ((income - expense) / income) * 100 if income > 0 else 0.0


def category_display(category: Optional[Category]) -> dict[str, str]:
    if category is None:
        return {
            "name": UNKNOWN_CATEGORY_NAME,
            "color": UNKNOWN_CATEGORY_COLOR,
            "icon": UNKNOWN_CATEGORY_ICON,
        }
    return {"name": category.name, "color": category.color, "icon": category.icon}


@dataclass
class FlowTotals:
    income: float = 0.0
    expense: float = 0.0

    def add(self, txn: Transaction) -> None:
        if txn.type == TransactionType.income:
            self.income += txn.amount
        else:
            self.expense += txn.amount

    @property
    def balance(self) -> float:
        return self.income - self.expense

    def as_dict(self) -> dict[str, float]:
        return {"income": self.income, "expense": self.expense, "balance": self.balance}


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _by_token(self, token_identifier: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.token_identifier == token_identifier)
        )

    def current_user(self, identity: Optional[IdentityClaims]) -> Optional[User]:
        if identity is None:
            return None
        return self._by_token(identity.sub)

    def store_user(self, identity: Optional[IdentityClaims]) -> tuple[User, bool]:
        """
        Resolve the caller to a user row, creating it on first contact.
        Returns the user and whether it was created by this call.
        """
        if identity is None:
            raise NotAuthenticated("Called store_user without authentication present")

        user = self._by_token(identity.sub)
        if user is not None:
            changed = False
            if identity.name and user.name != identity.name:
                user.name = identity.name
                changed = True
            if identity.email and user.email != identity.email:
                user.email = identity.email
                changed = True
            if identity.picture and user.photo_url != identity.picture:
                user.photo_url = identity.picture
                changed = True
            if changed:
                self.session.commit()
            return user, False

        # country/currency stay empty until onboarding fills them in
        user = User(
            token_identifier=identity.sub,
            name=identity.name or "",
            email=identity.email or "",
            photo_url=identity.picture or "",
            country="",
            currency="",
        )
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_created: user_id={user.id}")
        return user, True

    def update_profile(self, user_id: Optional[int], data: ProfileIn) -> User:
        require_user(user_id)
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        user.name = data.name.strip()
        user.country = data.country.strip()
        user.currency = data.currency.strip()
        if data.theme is not None:
            user.theme = data.theme
        self.session.commit()
        self.session.refresh(user)
        return user


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = user_id

    def _visible(self):
        return or_(Category.user_id == self.user_id, Category.user_id.is_(None))

    def _get_owned(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id is None or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def get_visible(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or (
            category.user_id is not None and category.user_id != self.user_id
        ):
            raise NotFoundError("Category not found")
        return category

    def seed_defaults(self) -> int:
        user_id = require_user(self.user_id)
        existing = self.session.scalar(
            select(Category.id).where(Category.user_id == user_id).limit(1)
        )
        if existing is not None:
            return 0

        for name, type_, icon, color in DEFAULT_CATEGORIES:
            self.session.add(
                Category(
                    user_id=user_id,
                    name=name,
                    type=type_,
                    icon=icon,
                    color=color,
                    is_default=True,
                )
            )
        self.session.commit()
        logger.info(
            f"categories_seeded: user_id={user_id} count={len(DEFAULT_CATEGORIES)}"
        )
        return len(DEFAULT_CATEGORIES)

    def list_all(self) -> list[Category]:
        if self.user_id is None:
            return []
        stmt = (
            select(Category)
            .where(self._visible())
            .order_by(Category.type, Category.name, Category.id)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: CategoryIn) -> Category:
        user_id = require_user(self.user_id)
        category = Category(
            user_id=user_id,
            name=data.name.strip(),
            type=data.type,
            icon=data.icon,
            color=data.color,
            is_default=False,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdateIn) -> Category:
        require_user(self.user_id)
        category = self._get_owned(category_id)
        category.name = data.name.strip()
        category.icon = data.icon
        category.color = data.color
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> None:
        require_user(self.user_id)
        category = self._get_owned(category_id)

        txn_refs = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category.id
                )
            ).scalar_one()
            or 0
        )
        if txn_refs:
            raise CategoryInUse(
                f"Cannot delete category '{category.name}': "
                f"it is used by {txn_refs} transaction(s)"
            )

        budget_refs = int(
            self.session.execute(
                select(func.count(Budget.id)).where(Budget.category_id == category.id)
            ).scalar_one()
            or 0
        )
        if budget_refs:
            raise CategoryInUse(
                f"Cannot delete category '{category.name}': "
                f"it is used by {budget_refs} budget(s)"
            )

        self.session.delete(category)
        self.session.commit()
        logger.info(f"category_deleted: user_id={self.user_id} category_id={category_id}")


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = user_id

    def _check_goal(self, goal_id: Optional[int]) -> None:
        if goal_id is None:
            return
        goal = self.session.get(SavingsGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise NotFoundError("Savings goal not found")

    def create(self, data: TransactionIn) -> Transaction:
        user_id = require_user(self.user_id)
        CategoryService(self.session, user_id).get_visible(data.category_id)
        self._check_goal(data.goal_id)

        txn = Transaction(
            user_id=user_id,
            amount=data.amount,
            type=data.type,
            category_id=data.category_id,
            occurred_at=data.occurred_at,
            description=data.description,
            goal_id=data.goal_id,
            is_recurring=data.is_recurring,
            recurring_frequency=data.recurring_frequency,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def create_split(self, data: SplitTransactionIn) -> dict[str, object]:
        # Callers make sure the parts add up; no server-side total check.
        user_id = require_user(self.user_id)
        categories = CategoryService(self.session, user_id)
        for split in data.splits:
            categories.get_visible(split.category_id)

        split_group_id = str(uuid.uuid4())
        rows: list[Transaction] = []
        for split in data.splits:
            txn = Transaction(
                user_id=user_id,
                amount=split.amount,
                type=data.type,
                category_id=split.category_id,
                occurred_at=data.occurred_at,
                description=split.description,
                split_group_id=split_group_id,
            )
            self.session.add(txn)
            rows.append(txn)
        self.session.flush()
        transaction_ids = [txn.id for txn in rows]
        self.session.commit()
        logger.info(
            f"split_created: user_id={user_id} group={split_group_id} parts={len(rows)}"
        )
        return {"split_group_id": split_group_id, "transaction_ids": transaction_ids}

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionEditIn) -> Transaction:
        user_id = require_user(self.user_id)
        txn = self.get(transaction_id)
        CategoryService(self.session, user_id).get_visible(data.category_id)
        self._check_goal(data.goal_id)

        txn.amount = data.amount
        txn.type = data.type
        txn.category_id = data.category_id
        txn.occurred_at = data.occurred_at
        txn.description = data.description
        txn.goal_id = data.goal_id
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        require_user(self.user_id)
        txn = self.get(transaction_id)
        self.session.delete(txn)
        self.session.commit()

    def list(
        self,
        type: Optional[TransactionType] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[Transaction]:
        if self.user_id is None:
            return []
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
        )
        if start is not None:
            stmt = stmt.where(Transaction.occurred_at >= to_local_naive(start))
        if end is not None:
            stmt = stmt.where(Transaction.occurred_at <= to_local_naive(end))
        if type is not None:
            stmt = stmt.where(Transaction.type == type)
        return list(self.session.scalars(stmt).all())

    def all_for_period(self, period: Optional[Period] = None) -> list[Transaction]:
        if self.user_id is None:
            return []
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        )
        if period is not None:
            stmt = stmt.where(Transaction.occurred_at.between(period.start, period.end))
        return list(self.session.scalars(stmt).all())

    def recent(self, limit: int = 10) -> list[Transaction]:
        if self.user_id is None:
            return []
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())


class MetricsService:
    """Monthly, yearly and all-time rollups, re-derived from the ledger on every call."""

    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionService(session, user_id)

    @staticmethod
    def _totals(transactions: list[Transaction]) -> dict[str, object]:
        totals = FlowTotals()
        category_spending: dict[int, float] = {}
        for txn in transactions:
            totals.add(txn)
            if txn.type == TransactionType.expense:
                category_spending[txn.category_id] = (
                    category_spending.get(txn.category_id, 0.0) + txn.amount
                )
        return {
            "total_income": totals.income,
            "total_expense": totals.expense,
            "balance": totals.balance,
            "transaction_count": len(transactions),
            "savings_rate": savings_rate(totals.income, totals.expense),
            "category_spending": category_spending,
        }

    def monthly_summary(
        self, year: int, month: int, *, today: Optional[date] = None
    ) -> Optional[dict[str, object]]:
        if self.user_id is None:
            return None
        transactions = self.transactions.all_for_period(month_period(year, month))
        summary = self._totals(transactions)
        days = elapsed_days_in_month(year, month, today=today)
        summary["avg_daily_spend"] = (
            summary["total_expense"] / days if days > 0 else 0.0
        )
        return summary

    def yearly_summary(self, year: int) -> Optional[dict[str, object]]:
        if self.user_id is None:
            return None
        transactions = self.transactions.all_for_period(year_period(year))
        months = [FlowTotals() for _ in range(12)]
        for txn in transactions:
            months[txn.occurred_at.month - 1].add(txn)
        summary = self._totals(transactions)
        summary["months"] = [m.as_dict() for m in months]
        return summary

    def all_time_summary(self) -> Optional[dict[str, object]]:
        if self.user_id is None:
            return None
        transactions = self.transactions.all_for_period(None)
        first_date: Optional[datetime] = None
        years: dict[int, FlowTotals] = {}
        for txn in transactions:
            if first_date is None or txn.occurred_at < first_date:
                first_date = txn.occurred_at
            years.setdefault(txn.occurred_at.year, FlowTotals()).add(txn)
        summary = self._totals(transactions)
        summary["first_transaction_date"] = first_date
        summary["yearly_data"] = {
            year: totals.as_dict() for year, totals in sorted(years.items())
        }
        return summary


class InsightsService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def _breakdown(
        buckets: dict[int, list[float]], categories: dict[int, Category]
    ) -> list[dict[str, object]]:
        rows = []
        for category_id, (amount, count) in buckets.items():
            rows.append(
                {
                    "category_id": category_id,
                    **category_display(categories.get(category_id)),
                    "amount": amount,
                    "count": int(count),
                }
            )
        rows.sort(key=lambda row: row["amount"], reverse=True)
        return rows

    def analytics(
        self, months_back: int, *, today: Optional[date] = None
    ) -> Optional[dict[str, object]]:
        if self.user_id is None:
            return None
        if months_back < 1:
            raise ValueError("months must be at least 1")

        today = today or local_today()
        oldest = add_months(today.replace(day=1), -(months_back - 1))

        trend: dict[str, tuple[date, FlowTotals]] = {}
        for offset in range(months_back):
            d = add_months(oldest, offset)
            trend[month_key(d)] = (d, FlowTotals())

        transactions = TransactionService(self.session, self.user_id).list(
            start=datetime.combine(oldest, time.min)
        )

        expense_buckets: dict[int, list[float]] = {}
        income_buckets: dict[int, list[float]] = {}
        totals = FlowTotals()
        for txn in transactions:
            totals.add(txn)
            entry = trend.get(month_key(txn.occurred_at.date()))
            if entry is not None:
                entry[1].add(txn)
            buckets = (
                income_buckets
                if txn.type == TransactionType.income
                else expense_buckets
            )
            bucket = buckets.setdefault(txn.category_id, [0.0, 0])
            bucket[0] += txn.amount
            bucket[1] += 1

        categories = {
            c.id: c for c in CategoryService(self.session, self.user_id).list_all()
        }
        return {
            "monthly_trend": [
                {"month": key, "month_label": d.strftime("%b %y"), **flow.as_dict()}
                for key, (d, flow) in trend.items()
            ],
            "expense_by_category": self._breakdown(expense_buckets, categories),
            "income_by_category": self._breakdown(income_buckets, categories),
            "total_income": totals.income,
            "total_expense": totals.expense,
            "total_transactions": len(transactions),
        }


class BudgetService:
    @dataclass
    class EffectiveBudget:
        id: int
        category_id: int
        month: str
        amount: float
        is_recurring: bool
        is_virtual: bool = False

    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise NotFoundError("Budget not found")
        return budget

    def list_for_month(self, month: str) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.month == month)
            .order_by(Budget.id)
        )
        return list(self.session.scalars(stmt).all())

    def upsert(self, data: BudgetIn) -> Budget:
        user_id = require_user(self.user_id)
        CategoryService(self.session, user_id).get_visible(data.category_id)

        existing = self.session.scalar(
            select(Budget).where(
                Budget.user_id == user_id,
                Budget.month == data.month,
                Budget.category_id == data.category_id,
            )
        )
        if existing:
            existing.amount = data.amount
            existing.is_recurring = data.is_recurring
            self.session.commit()
            self.session.refresh(existing)
            return existing

        budget = Budget(
            user_id=user_id,
            category_id=data.category_id,
            month=data.month,
            amount=data.amount,
            is_recurring=data.is_recurring,
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def update(self, budget_id: int, data: BudgetUpdateIn) -> Budget:
        require_user(self.user_id)
        budget = self.get(budget_id)
        budget.amount = data.amount
        budget.is_recurring = data.is_recurring
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def delete(self, budget_id: int, *, delete_all_future: bool = False) -> int:
        """Delete a budget; returns how many rows were removed in total."""
        require_user(self.user_id)
        budget = self.get(budget_id)
        category_id = budget.category_id
        month = budget.month
        cascade = delete_all_future and budget.is_recurring

        self.session.delete(budget)
        removed = 1
        if cascade:
            # String comparison is chronological because months are zero-padded.
            result = self.session.execute(
                delete(Budget).where(
                    Budget.user_id == self.user_id,
                    Budget.category_id == category_id,
                    Budget.month > month,
                )
            )
            removed += result.rowcount or 0
        self.session.commit()
        if cascade:
            logger.info(
                f"budget_cascade_delete: user_id={self.user_id} "
                f"category_id={category_id} from={month} removed={removed}"
            )
        return removed

    def effective_budgets_for_month(self, month: str) -> list[EffectiveBudget]:
        parse_month_key(month)
        explicit = self.list_for_month(month)
        if explicit:
            return [
                BudgetService.EffectiveBudget(
                    id=b.id,
                    category_id=b.category_id,
                    month=b.month,
                    amount=b.amount,
                    is_recurring=b.is_recurring,
                )
                for b in explicit
            ]

        recurring = self.session.scalars(
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.is_recurring.is_(True),
                Budget.month < month,
            )
            .order_by(Budget.id)
        ).all()
        latest: dict[int, Budget] = {}
        for b in recurring:
            current = latest.get(b.category_id)
            if current is None or b.month > current.month:
                latest[b.category_id] = b

        return [
            BudgetService.EffectiveBudget(
                id=b.id,
                category_id=b.category_id,
                month=month,
                amount=b.amount,
                is_recurring=b.is_recurring,
                is_virtual=True,
            )
            for b in latest.values()
        ]

    def spent_by_category_for_month(self, month: str) -> dict[int, float]:
        year, month_num = parse_month_key(month)
        transactions = TransactionService(self.session, self.user_id).all_for_period(
            month_period(year, month_num)
        )
        spent: dict[int, float] = {}
        for txn in transactions:
            if txn.type != TransactionType.expense:
                continue
            spent[txn.category_id] = spent.get(txn.category_id, 0.0) + txn.amount
        return spent

    def with_spending(self, month: str) -> list[dict[str, object]]:
        if self.user_id is None:
            return []
        effective = self.effective_budgets_for_month(month)
        spent_by_category = self.spent_by_category_for_month(month)
        categories = {
            c.id: c for c in CategoryService(self.session, self.user_id).list_all()
        }

        rows = []
        for budget in effective:
            display = category_display(categories.get(budget.category_id))
            spent = spent_by_category.get(budget.category_id, 0.0)
            percentage = budget_percentage(spent, budget.amount)
            rows.append(
                {
                    "id": budget.id,
                    "category_id": budget.category_id,
                    "category_name": display["name"],
                    "category_color": display["color"],
                    "category_icon": display["icon"],
                    "month": budget.month,
                    "budget_amount": budget.amount,
                    "spent": spent,
                    "percentage": percentage,
                    "is_recurring": budget.is_recurring,
                    "is_virtual": budget.is_virtual,
                    "status": budget_status(percentage),
                }
            )
        return rows


class SavingsGoalService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, goal_id: int) -> SavingsGoal:
        goal = self.session.get(SavingsGoal, goal_id)
        if not goal or goal.user_id != self.user_id:
            raise NotFoundError("Savings goal not found")
        return goal

    def create(self, data: SavingsGoalIn) -> SavingsGoal:
        user_id = require_user(self.user_id)
        goal = SavingsGoal(
            user_id=user_id,
            name=data.name.strip(),
            target_amount=data.target_amount,
            target_date=data.target_date,
            description=data.description,
        )
        self.session.add(goal)
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def update(self, goal_id: int, data: SavingsGoalIn) -> SavingsGoal:
        require_user(self.user_id)
        goal = self.get(goal_id)
        goal.name = data.name.strip()
        goal.target_amount = data.target_amount
        goal.target_date = data.target_date
        goal.description = data.description
        self.session.commit()
        self.session.refresh(goal)
        return goal

    def delete(self, goal_id: int) -> None:
        require_user(self.user_id)
        goal = self.get(goal_id)
        self.session.execute(
            update(Transaction)
            .where(Transaction.user_id == self.user_id, Transaction.goal_id == goal.id)
            .values(goal_id=None)
        )
        self.session.delete(goal)
        self.session.commit()

    def list_all(self) -> list[SavingsGoal]:
        if self.user_id is None:
            return []
        stmt = (
            select(SavingsGoal)
            .where(SavingsGoal.user_id == self.user_id)
            .order_by(SavingsGoal.target_date, SavingsGoal.id)
        )
        return list(self.session.scalars(stmt).all())

    def saved_by_goal(self) -> dict[int, float]:
        rows = self.session.execute(
            select(Transaction.goal_id, Transaction.amount).where(
                Transaction.user_id == self.user_id,
                Transaction.goal_id.isnot(None),
            )
        ).all()
        saved: dict[int, float] = {}
        for goal_id, amount in rows:
            saved[goal_id] = saved.get(goal_id, 0.0) + amount
        return saved

    def with_progress(
        self, *, now: Optional[datetime] = None
    ) -> list[dict[str, object]]:
        if self.user_id is None:
            return []
        now = now or local_now()
        saved = self.saved_by_goal()

        rows = []
        for goal in self.list_all():
            current_amount = saved.get(goal.id, 0.0)
            ratio = (
                (current_amount / goal.target_amount) * 100
                if goal.target_amount > 0
                else 0.0
            )
            seconds_left = (goal.target_date - now).total_seconds()
            rows.append(
                {
                    "id": goal.id,
                    "name": goal.name,
                    "target_amount": goal.target_amount,
                    "target_date": goal.target_date,
                    "description": goal.description,
                    "current_amount": current_amount,
                    "percentage": max(0.0, min(ratio, 100.0)),
                    "days_left": max(0, math.ceil(seconds_left / 86400)),
                    "is_completed": ratio >= 100,
                    "is_overdue": goal.target_date < now and ratio < 100,
                }
            )
        return rows


class DebtService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = user_id

    def get(self, debt_id: int) -> Debt:
        debt = self.session.get(Debt, debt_id)
        if not debt or debt.user_id != self.user_id:
            raise NotFoundError("Debt not found")
        return debt

    def list_all(self) -> list[Debt]:
        if self.user_id is None:
            return []
        stmt = (
            select(Debt)
            .where(Debt.user_id == self.user_id)
            .order_by(Debt.id)
        )
        return list(self.session.scalars(stmt).all())

    def create(self, data: DebtIn) -> Debt:
        user_id = require_user(self.user_id)
        debt = Debt(
            user_id=user_id,
            type=data.type,
            person_name=data.person_name.strip(),
            amount=data.amount,
            description=data.description,
            due_date=data.due_date,
            is_completed=False,
        )
        self.session.add(debt)
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def update(self, debt_id: int, data: DebtUpdateIn) -> Debt:
        require_user(self.user_id)
        debt = self.get(debt_id)
        debt.person_name = data.person_name.strip()
        debt.amount = data.amount
        debt.description = data.description
        debt.due_date = data.due_date
        self.session.commit()
        self.session.refresh(debt)
        return debt

    def delete(self, debt_id: int) -> None:
        require_user(self.user_id)
        debt = self.get(debt_id)
        self.session.delete(debt)
        self.session.commit()

    def _settlement_category(
        self, txn_type: TransactionType, category_id: Optional[int]
    ) -> Optional[int]:
        categories = CategoryService(self.session, self.user_id)
        if category_id is not None:
            return categories.get_visible(category_id).id

        same_type = [c for c in categories.list_all() if c.type == txn_type]
        for category in same_type:
            if category.name in OTHER_CATEGORY_NAMES.values():
                return category.id
        if same_type:
            return same_type[0].id
        return None

    def mark_settled(
        self,
        debt_id: int,
        *,
        record_as_transaction: bool,
        category_id: Optional[int] = None,
    ) -> Optional[Transaction]:
        """
        Mark a debt completed and optionally book the settlement in the ledger.
        Money lent comes back as income; money borrowed goes out as expense.
        """
        user_id = require_user(self.user_id)
        debt = self.get(debt_id)
        now = local_now()
        debt.is_completed = True
        debt.completed_at = now

        txn: Optional[Transaction] = None
        if record_as_transaction:
            txn_type = (
                TransactionType.income
                if debt.type == DebtType.lent
                else TransactionType.expense
            )
            resolved_category_id = self._settlement_category(txn_type, category_id)
            if resolved_category_id is not None:
                description = f"Debt settled: {debt.person_name}"
                if debt.description:
                    description += f" - {debt.description}"
                txn = Transaction(
                    user_id=user_id,
                    amount=debt.amount,
                    type=txn_type,
                    category_id=resolved_category_id,
                    occurred_at=now,
                    description=description,
                )
                self.session.add(txn)
            else:
                logger.warning(
                    f"debt_settled_without_category: user_id={user_id} debt_id={debt.id}"
                )

        self.session.commit()
        if txn is not None:
            self.session.refresh(txn)
        logger.info(
            f"debt_settled: user_id={user_id} debt_id={debt.id} "
            f"transaction_id={txn.id if txn else None}"
        )
        return txn

    def undo_settle(self, debt_id: int) -> Debt:
        # Any settlement transaction stays in the ledger.
        require_user(self.user_id)
        debt = self.get(debt_id)
        debt.is_completed = False
        debt.completed_at = None
        self.session.commit()
        self.session.refresh(debt)
        return debt


class ImportService:
    def __init__(self, session: Session, user_id: Optional[int]) -> None:
        self.session = session
        self.user_id = user_id

    def import_rows(self, rows: list[ImportRowIn]) -> dict[str, object]:
        user_id = require_user(self.user_id)
        categories = CategoryService(self.session, user_id).list_all()
        by_name: dict[str, int] = {}
        for category in categories:
            by_name.setdefault(category.name.lower(), category.id)

        imported = 0
        skipped = 0
        for idx, row in enumerate(rows, start=1):
            category_id = None
            if row.category_name:
                category_id = by_name.get(row.category_name.strip().lower())
            if category_id is None:
                fallback = OTHER_CATEGORY_NAMES[row.type]
                category_id = next(
                    (c.id for c in categories if c.name == fallback), None
                )
            if category_id is None:
                logger.warning(f"import_skip: user_id={user_id} row={idx} no_category")
                skipped += 1
                continue

            try:
                occurred_at = to_local_naive(parse_date(row.date))
            except ValueError:
                logger.warning(f"import_skip: user_id={user_id} row={idx} bad_date")
                skipped += 1
                continue

            self.session.add(
                Transaction(
                    user_id=user_id,
                    amount=row.amount,
                    type=row.type,
                    category_id=category_id,
                    occurred_at=occurred_at,
                    description=row.description,
                )
            )
            imported += 1

        self.session.commit()
        logger.info(f"import: user_id={user_id} imported={imported} skipped={skipped}")
        return {"success": True, "count": imported}
