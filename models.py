from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DDL,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base
from money import from_cents


class TransactionType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"


class BudgetPeriod(str, Enum):
    monthly = "MONTHLY"
    yearly = "YEARLY"


def _values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


TRANSACTION_TYPE_ENUM = SAEnum(
    TransactionType, name="transactiontype", values_callable=_values
)
BUDGET_PERIOD_ENUM = SAEnum(BudgetPeriod, name="budgetperiod", values_callable=_values)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    icon: Mapped[Optional[str]] = mapped_column(String(50))
    color: Mapped[Optional[str]] = mapped_column(String(7))
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )
    budgets: Mapped[list["Budget"]] = relationship("Budget", back_populates="category")

    __table_args__ = (
        UniqueConstraint("name", "type", name="uq_category_name_type"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        TRANSACTION_TYPE_ENUM, nullable=False
    )
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    description: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped["Category"] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
        Index("ix_transactions_user_type_date", "user_id", "type", "date"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(BUDGET_PERIOD_ENUM, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped["Category"] = relationship("Category", back_populates="budgets")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_budgets_amount_positive"),
        CheckConstraint("end_date > start_date", name="ck_budgets_date_order"),
        Index("ix_budgets_user_category_start", "user_id", "category_id", "start_date"),
    )

    @property
    def amount(self) -> Decimal:
        return from_cents(self.amount_cents)


# SQLite has no exclusion constraints; these triggers reject overlapping
# budgets for one (user, category) at the store.
BUDGET_OVERLAP_TRIGGERS = (
    """
    CREATE TRIGGER budgets_no_overlap_insert
    BEFORE INSERT ON budgets
    WHEN EXISTS (
        SELECT 1 FROM budgets b
        WHERE b.user_id = NEW.user_id
          AND b.category_id = NEW.category_id
          AND b.start_date <= NEW.end_date
          AND b.end_date >= NEW.start_date
    )
    BEGIN
        SELECT RAISE(ABORT, 'overlapping budget');
    END
    """,
    """
    CREATE TRIGGER budgets_no_overlap_update
    BEFORE UPDATE OF user_id, category_id, start_date, end_date ON budgets
    WHEN EXISTS (
        SELECT 1 FROM budgets b
        WHERE b.id != NEW.id
          AND b.user_id = NEW.user_id
          AND b.category_id = NEW.category_id
          AND b.start_date <= NEW.end_date
          AND b.end_date >= NEW.start_date
    )
    BEGIN
        SELECT RAISE(ABORT, 'overlapping budget');
    END
    """,
)

for _statement in BUDGET_OVERLAP_TRIGGERS:
    event.listen(
        Budget.__table__, "after_create", DDL(_statement).execute_if(dialect="sqlite")
    )
