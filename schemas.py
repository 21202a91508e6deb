import datetime as dt
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import BudgetPeriod, TransactionType


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


class TransactionSortField(str, Enum):
    date = "date"
    amount = "amount"
    type = "type"
    created_at = "created_at"


class BudgetSortField(str, Enum):
    amount = "amount"
    start_date = "start_date"
    end_date = "end_date"
    created_at = "created_at"


def _split_sort(value: Any) -> Any:
    """Accept ``-field`` shorthand as well as an explicit {field, direction} pair."""
    if isinstance(value, str):
        raw = value.strip()
        if raw.startswith("-"):
            return {"field": raw[1:], "direction": SortDirection.desc}
        return {"field": raw, "direction": SortDirection.asc}
    return value


class TransactionSort(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    field: TransactionSortField = TransactionSortField.created_at
    direction: SortDirection = SortDirection.desc


class BudgetSort(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    field: BudgetSortField = BudgetSortField.created_at
    direction: SortDirection = SortDirection.desc


class PageQuery(BaseModel):
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class CategoryUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=50)
    color: Optional[str] = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    type: TransactionType
    category_id: int
    description: Optional[str] = Field(default=None, max_length=500)
    date: dt.date


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    description: Optional[str] = Field(default=None, max_length=500)
    date: Optional[dt.date] = None


class TransactionQuery(PageQuery):
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    min_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    max_amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    search: Optional[str] = Field(default=None, max_length=200)
    sort: TransactionSort = Field(default_factory=TransactionSort)

    @field_validator("sort", mode="before")
    @classmethod
    def _parse_sort(cls, value: Any) -> Any:
        return _split_sort(value)


class StatisticsQuery(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BudgetIn(BaseModel):
    category_id: int
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    period: BudgetPeriod
    start_date: date
    end_date: date


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category_id: Optional[int] = None
    amount: Optional[Decimal] = Field(
        default=None, gt=0, max_digits=12, decimal_places=2
    )
    period: Optional[BudgetPeriod] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class BudgetQuery(PageQuery):
    category_id: Optional[int] = None
    period: Optional[BudgetPeriod] = None
    active: bool = False
    sort: BudgetSort = Field(default_factory=BudgetSort)

    @field_validator("sort", mode="before")
    @classmethod
    def _parse_sort(cls, value: Any) -> Any:
        return _split_sort(value)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: TransactionType
    icon: Optional[str]
    color: Optional[str]
    is_default: bool


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    type: TransactionType
    category_id: int
    category: CategoryOut
    description: Optional[str]
    date: dt.date
    created_at: datetime


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    category: CategoryOut
    amount: Decimal
    period: BudgetPeriod
    start_date: date
    end_date: date
    created_at: datetime
    spent: Optional[Decimal] = None
    remaining: Optional[Decimal] = None
    percentage: Optional[Decimal] = None


class PaginationOut(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class TrendBucketOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    month: str
    income: Decimal
    expenses: Decimal


class DashboardOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_income: Decimal
    total_expenses: Decimal
    net_income: Decimal
    accounts_balance: Decimal
    recent_transactions: list[TransactionOut]
    monthly_trend: list[TrendBucketOut]


class CategoryTotalsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    income: Decimal
    expense: Decimal


class StatisticsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    transaction_count: int
    category_breakdown: dict[int, CategoryTotalsOut]


class SeedResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    created: int
    total: int
