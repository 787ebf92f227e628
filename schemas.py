from datetime import datetime
from typing import Annotated, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from models import DebtType, RecurringFrequency, Theme, TransactionType
from periods import MONTH_KEY_RE, to_local_naive


LocalDatetime = Annotated[datetime, AfterValidator(to_local_naive)]


class ProfileIn(BaseModel):
    name: str = Field(..., max_length=200)
    country: str = Field(..., max_length=8)
    currency: str = Field(..., max_length=8)
    theme: Optional[Theme] = None


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon: str = Field("Circle", max_length=50)
    color: str = Field("#71717a", max_length=9)


class CategoryUpdateIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    icon: str = Field(..., max_length=50)
    color: str = Field(..., max_length=9)


class TransactionIn(BaseModel):
    amount: float
    type: TransactionType
    category_id: int
    occurred_at: LocalDatetime
    description: Optional[str] = None
    goal_id: Optional[int] = None
    is_recurring: Optional[bool] = None
    recurring_frequency: Optional[RecurringFrequency] = None


class TransactionEditIn(BaseModel):
    amount: float
    type: TransactionType
    category_id: int
    occurred_at: LocalDatetime
    description: Optional[str] = None
    goal_id: Optional[int] = None


class SplitIn(BaseModel):
    amount: float
    category_id: int
    description: Optional[str] = None


class SplitTransactionIn(BaseModel):
    splits: list[SplitIn] = Field(..., min_length=2)
    occurred_at: LocalDatetime
    type: TransactionType


class BudgetIn(BaseModel):
    category_id: int
    month: str
    amount: float = Field(..., ge=0)
    is_recurring: bool = False

    @field_validator("month")
    @classmethod
    def _month_key(cls, value: str) -> str:
        if not MONTH_KEY_RE.match(value):
            raise ValueError("Month must be formatted as YYYY-MM")
        return value


class BudgetUpdateIn(BaseModel):
    amount: float = Field(..., ge=0)
    is_recurring: bool


class SavingsGoalIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    target_amount: float
    target_date: LocalDatetime
    description: Optional[str] = None


class DebtIn(BaseModel):
    type: DebtType
    person_name: str = Field(..., min_length=1, max_length=120)
    amount: float
    description: Optional[str] = None
    due_date: Optional[LocalDatetime] = None


class DebtUpdateIn(BaseModel):
    person_name: str = Field(..., min_length=1, max_length=120)
    amount: float
    description: Optional[str] = None
    due_date: Optional[LocalDatetime] = None


class SettleDebtIn(BaseModel):
    record_as_transaction: bool
    category_id: Optional[int] = None


class ImportRowIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: float
    date: str
    description: str
    type: TransactionType
    category_name: Optional[str] = None


class ImportIn(BaseModel):
    transactions: list[ImportRowIn]


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    photo_url: Optional[str]
    country: str
    currency: str
    theme: Optional[Theme]


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int]
    name: str
    type: TransactionType
    icon: str
    color: str
    is_default: bool


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: float
    type: TransactionType
    category_id: int
    occurred_at: datetime
    description: Optional[str]
    split_group_id: Optional[str]
    goal_id: Optional[int]
    is_recurring: Optional[bool]
    recurring_frequency: Optional[RecurringFrequency]


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    month: str
    amount: float
    is_recurring: bool


class SavingsGoalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    target_amount: float
    target_date: datetime
    description: Optional[str]


class DebtOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: DebtType
    person_name: str
    amount: float
    description: Optional[str]
    due_date: Optional[datetime]
    is_completed: bool
    completed_at: Optional[datetime]
