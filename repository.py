from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, joinedload

from models import Budget, BudgetPeriod, Category, Transaction, TransactionType
from periods import Window
from schemas import (
    BudgetSort,
    BudgetSortField,
    SortDirection,
    TransactionSort,
    TransactionSortField,
)

TRANSACTION_SORT_COLUMNS = {
    TransactionSortField.date: Transaction.date,
    TransactionSortField.amount: Transaction.amount_cents,
    TransactionSortField.type: Transaction.type,
    TransactionSortField.created_at: Transaction.created_at,
}

BUDGET_SORT_COLUMNS = {
    BudgetSortField.amount: Budget.amount_cents,
    BudgetSortField.start_date: Budget.start_date,
    BudgetSortField.end_date: Budget.end_date,
    BudgetSortField.created_at: Budget.created_at,
}


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    window: Window = field(default_factory=Window)
    min_amount_cents: Optional[int] = None
    max_amount_cents: Optional[int] = None
    search: Optional[str] = None


@dataclass
class BudgetFilters:
    category_id: Optional[int] = None
    period: Optional[BudgetPeriod] = None
    active_on: Optional[date] = None


def _ordering(columns: dict, sort, tiebreak) -> list:
    try:
        column = columns[sort.field]
    except KeyError as exc:
        raise ValueError(f"Unsupported sort field: {sort.field}") from exc
    if sort.direction == SortDirection.desc:
        return [column.desc(), tiebreak.desc()]
    return [column.asc(), tiebreak.asc()]


def _window_conditions(column, window: Window) -> list:
    conditions = []
    if window.start is not None:
        conditions.append(column >= window.start)
    if window.end is not None:
        conditions.append(column <= window.end)
    return conditions


class LedgerRepository:
    """Data access for categories, transactions and budgets.

    Holds no business rules: callers decide what a missing row or a matching
    overlap means.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # Unit of work

    def add(self, obj: object) -> None:
        self.session.add(obj)

    def delete(self, obj: object) -> None:
        self.session.delete(obj)

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def refresh(self, obj: object) -> None:
        self.session.refresh(obj)

    # Categories

    def get_category(self, category_id: int) -> Optional[Category]:
        return self.session.get(Category, category_id)

    def find_category(
        self,
        name: str,
        category_type: TransactionType,
        *,
        exclude_id: Optional[int] = None,
    ) -> Optional[Category]:
        stmt = select(Category).where(
            Category.type == category_type,
            func.lower(Category.name) == name.strip().lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalars(stmt).first()

    def list_categories(
        self, category_type: Optional[TransactionType] = None
    ) -> Sequence[Category]:
        stmt = select(Category).order_by(
            Category.is_default.desc(), Category.name.asc()
        )
        if category_type is not None:
            stmt = stmt.where(Category.type == category_type)
        return self.session.scalars(stmt).all()

    def category_usage(self, category_id: int) -> tuple[int, int]:
        transactions = self.session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.category_id == category_id
            )
        ).scalar_one()
        budgets = self.session.execute(
            select(func.count(Budget.id)).where(Budget.category_id == category_id)
        ).scalar_one()
        return int(transactions or 0), int(budgets or 0)

    # Transactions

    def get_transaction(self, transaction_id: int) -> Optional[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.id == transaction_id)
        )
        return self.session.scalar(stmt)

    @staticmethod
    def _transaction_conditions(user_id: int, filters: TransactionFilters) -> list:
        conditions = [Transaction.user_id == user_id]
        if filters.type:
            conditions.append(Transaction.type == filters.type)
        if filters.category_id is not None:
            conditions.append(Transaction.category_id == filters.category_id)
        conditions.extend(_window_conditions(Transaction.date, filters.window))
        if filters.min_amount_cents is not None:
            conditions.append(Transaction.amount_cents >= filters.min_amount_cents)
        if filters.max_amount_cents is not None:
            conditions.append(Transaction.amount_cents <= filters.max_amount_cents)
        if filters.search:
            like = f"%{filters.search.lower()}%"
            conditions.append(
                func.lower(func.coalesce(Transaction.description, "")).like(like)
            )
        return conditions

    def list_transactions(
        self,
        user_id: int,
        filters: TransactionFilters,
        sort: TransactionSort,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> Sequence[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(*self._transaction_conditions(user_id, filters))
            .order_by(*_ordering(TRANSACTION_SORT_COLUMNS, sort, Transaction.id))
            .offset(offset)
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def count_transactions(self, user_id: int, filters: TransactionFilters) -> int:
        stmt = select(func.count(Transaction.id)).where(
            *self._transaction_conditions(user_id, filters)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def all_transactions(self, user_id: int) -> Sequence[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(Transaction.user_id == user_id)
            .order_by(
                Transaction.date.desc(),
                Transaction.created_at.desc(),
                Transaction.id.desc(),
            )
        )
        return self.session.scalars(stmt).all()

    def transaction_totals(self, user_id: int, window: Window) -> tuple[int, int, int]:
        """Income cents, expense cents and row count inside ``window``."""
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.income,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (
                            Transaction.type == TransactionType.expense,
                            Transaction.amount_cents,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label("expense"),
            func.count(Transaction.id).label("count"),
        ).where(
            Transaction.user_id == user_id,
            *_window_conditions(Transaction.date, window),
        )
        row = self.session.execute(stmt).one()
        return int(row.income or 0), int(row.expense or 0), int(row.count or 0)

    def category_breakdown(
        self, user_id: int, window: Window
    ) -> list[tuple[int, TransactionType, int]]:
        stmt = (
            select(
                Transaction.category_id,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == user_id,
                *_window_conditions(Transaction.date, window),
            )
            .group_by(Transaction.category_id, Transaction.type)
            .order_by(Transaction.category_id)
        )
        return [
            (int(row.category_id), row.type, int(row.total or 0))
            for row in self.session.execute(stmt)
        ]

    def sum_expenses(
        self, user_id: int, category_id: int, start: date, end: date
    ) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            Transaction.user_id == user_id,
            Transaction.category_id == category_id,
            Transaction.type == TransactionType.expense,
            Transaction.date.between(start, end),
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    # Budgets

    def get_budget(self, budget_id: int) -> Optional[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.id == budget_id)
        )
        return self.session.scalar(stmt)

    @staticmethod
    def _budget_conditions(user_id: int, filters: BudgetFilters) -> list:
        conditions = [Budget.user_id == user_id]
        if filters.category_id is not None:
            conditions.append(Budget.category_id == filters.category_id)
        if filters.period:
            conditions.append(Budget.period == filters.period)
        if filters.active_on is not None:
            conditions.append(Budget.start_date <= filters.active_on)
            conditions.append(Budget.end_date >= filters.active_on)
        return conditions

    def list_budgets(
        self,
        user_id: int,
        filters: BudgetFilters,
        sort: BudgetSort,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> Sequence[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(*self._budget_conditions(user_id, filters))
            .order_by(*_ordering(BUDGET_SORT_COLUMNS, sort, Budget.id))
            .offset(offset)
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def count_budgets(self, user_id: int, filters: BudgetFilters) -> int:
        stmt = select(func.count(Budget.id)).where(
            *self._budget_conditions(user_id, filters)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def find_overlapping_budget(
        self,
        user_id: int,
        category_id: int,
        start: date,
        end: date,
        *,
        exclude_id: Optional[int] = None,
    ) -> Optional[Budget]:
        # Closed intervals [s1, e1] and [s2, e2] intersect iff s1 <= e2 and s2 <= e1.
        stmt = select(Budget).where(
            Budget.user_id == user_id,
            Budget.category_id == category_id,
            Budget.start_date <= end,
            Budget.end_date >= start,
        )
        if exclude_id is not None:
            stmt = stmt.where(Budget.id != exclude_id)
        return self.session.scalars(stmt.limit(1)).first()
