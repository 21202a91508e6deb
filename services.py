from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Generic, Optional, TypeVar

from sqlalchemy.exc import IntegrityError

from errors import Conflict, InvalidRange, NotFound, TypeMismatch, Unauthorized
from models import Budget, Category, Transaction, TransactionType
from money import from_cents, percentage, to_cents
from periods import MONTH_LABELS, Window, month_key, today_local, trailing_months
from repository import BudgetFilters, LedgerRepository, TransactionFilters
from schemas import (
    BudgetIn,
    BudgetQuery,
    BudgetUpdate,
    CategoryIn,
    CategoryUpdate,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECENT_TRANSACTIONS_LIMIT = 5
TREND_MONTHS = 6

DEFAULT_CATEGORIES: tuple[tuple[str, TransactionType, str, str], ...] = (
    ("Salary", TransactionType.income, "cash-multiple", "#4CAF50"),
    ("Freelance", TransactionType.income, "laptop", "#8BC34A"),
    ("Investment", TransactionType.income, "chart-line", "#66BB6A"),
    ("Gift", TransactionType.income, "gift", "#81C784"),
    ("Other Income", TransactionType.income, "cash", "#9CCC65"),
    ("Groceries", TransactionType.expense, "cart", "#FF5722"),
    ("Transportation", TransactionType.expense, "car", "#FF9800"),
    ("Utilities", TransactionType.expense, "lightning-bolt", "#FFC107"),
    ("Rent", TransactionType.expense, "home", "#F44336"),
    ("Healthcare", TransactionType.expense, "medical-bag", "#E91E63"),
    ("Entertainment", TransactionType.expense, "movie", "#9C27B0"),
    ("Dining Out", TransactionType.expense, "silverware-fork-knife", "#FF6F00"),
    ("Shopping", TransactionType.expense, "shopping", "#E040FB"),
    ("Education", TransactionType.expense, "school", "#3F51B5"),
    ("Insurance", TransactionType.expense, "shield-check", "#2196F3"),
    ("Other Expense", TransactionType.expense, "dots-horizontal", "#607D8B"),
)


@dataclass(frozen=True)
class Result(Generic[T]):
    data: T
    message: str


@dataclass(frozen=True)
class Page(Generic[T]):
    items: list[T]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(frozen=True)
class BudgetProgress:
    spent: Decimal
    remaining: Decimal
    percentage: Decimal


@dataclass(frozen=True)
class BudgetReport:
    budget: Budget
    progress: BudgetProgress


@dataclass(frozen=True)
class TrendBucket:
    key: str
    month: str
    income: Decimal
    expenses: Decimal


@dataclass(frozen=True)
class DashboardSnapshot:
    total_income: Decimal
    total_expenses: Decimal
    net_income: Decimal
    # Mirrors net_income until accounts exist as their own concept.
    accounts_balance: Decimal
    recent_transactions: list[Transaction]
    monthly_trend: list[TrendBucket]


@dataclass(frozen=True)
class CategoryTotals:
    income: Decimal
    expense: Decimal


@dataclass(frozen=True)
class StatisticsSummary:
    total_income: Decimal
    total_expense: Decimal
    balance: Decimal
    transaction_count: int
    category_breakdown: dict[int, CategoryTotals]


@dataclass(frozen=True)
class SeedResult:
    created: int
    total: int


def _window(start: Optional[date], end: Optional[date]) -> Window:
    if start is not None and end is not None and end < start:
        raise InvalidRange("End date must not be before start date")
    return Window(start, end)


def _commit_or_conflict(repo: LedgerRepository, what: str) -> None:
    try:
        repo.commit()
    except IntegrityError as exc:
        repo.rollback()
        raise Conflict(f"{what} conflicts with existing data") from exc


_scope_locks: dict[tuple[int, int], threading.Lock] = {}
_scope_locks_guard = threading.Lock()


def budget_scope_lock(user_id: int, category_id: int) -> threading.Lock:
    """Lock serializing overlap check and write for one (user, category) pair."""
    with _scope_locks_guard:
        lock = _scope_locks.get((user_id, category_id))
        if lock is None:
            lock = threading.Lock()
            _scope_locks[(user_id, category_id)] = lock
        return lock


class CategoryValidator:
    def __init__(self, repo: LedgerRepository) -> None:
        self.repo = repo

    def validate(
        self, transaction_type: TransactionType, category_id: int
    ) -> Category:
        category = self.repo.get_category(category_id)
        if category is None:
            raise NotFound("Category not found")
        if category.type != transaction_type:
            raise TypeMismatch(
                f"Category type ({category.type.value}) does not match "
                f"transaction type ({transaction_type.value})"
            )
        return category


class BudgetOverlapChecker:
    def __init__(self, repo: LedgerRepository) -> None:
        self.repo = repo

    @staticmethod
    def validate_range(start_date: date, end_date: date) -> None:
        if end_date <= start_date:
            raise InvalidRange("End date must be after start date")

    def has_overlap(
        self,
        user_id: int,
        category_id: int,
        start_date: date,
        end_date: date,
        exclude_budget_id: Optional[int] = None,
    ) -> bool:
        existing = self.repo.find_overlapping_budget(
            user_id, category_id, start_date, end_date, exclude_id=exclude_budget_id
        )
        return existing is not None

    def ensure_free(
        self,
        user_id: int,
        category_id: int,
        start_date: date,
        end_date: date,
        exclude_budget_id: Optional[int] = None,
    ) -> None:
        self.validate_range(start_date, end_date)
        if self.has_overlap(
            user_id, category_id, start_date, end_date, exclude_budget_id
        ):
            logger.warning(
                f"budget_overlap_rejected: user_id={user_id} category_id={category_id}"
            )
            raise Conflict(
                "A budget already exists for this category in the specified period"
            )


class SpendAggregator:
    def __init__(self, repo: LedgerRepository) -> None:
        self.repo = repo

    def sum_expenses_cents(
        self, user_id: int, category_id: int, start_date: date, end_date: date
    ) -> int:
        return self.repo.sum_expenses(user_id, category_id, start_date, end_date)

    def sum_expenses(
        self, user_id: int, category_id: int, start_date: date, end_date: date
    ) -> Decimal:
        return from_cents(
            self.sum_expenses_cents(user_id, category_id, start_date, end_date)
        )


class BudgetProgressCalculator:
    def __init__(self, spend: SpendAggregator) -> None:
        self.spend = spend

    def progress(self, budget: Budget) -> BudgetProgress:
        spent = self.spend.sum_expenses_cents(
            budget.user_id, budget.category_id, budget.start_date, budget.end_date
        )
        return BudgetProgress(
            spent=from_cents(spent),
            remaining=from_cents(budget.amount_cents - spent),
            percentage=percentage(spent, budget.amount_cents),
        )


class DashboardAggregator:
    def __init__(self, repo: LedgerRepository) -> None:
        self.repo = repo

    def snapshot(
        self, user_id: int, *, today: Optional[date] = None
    ) -> DashboardSnapshot:
        today = today or today_local()
        transactions = self.repo.all_transactions(user_id)

        months = trailing_months(today, TREND_MONTHS)
        buckets: dict[str, dict[TransactionType, int]] = {
            month_key(m): {TransactionType.income: 0, TransactionType.expense: 0}
            for m in months
        }

        totals = {TransactionType.income: 0, TransactionType.expense: 0}
        for txn in transactions:
            totals[txn.type] += txn.amount_cents
            bucket = buckets.get(month_key(txn.date))
            if bucket is not None:
                bucket[txn.type] += txn.amount_cents

        income = totals[TransactionType.income]
        expenses = totals[TransactionType.expense]
        net = from_cents(income - expenses)
        trend = [
            TrendBucket(
                key=month_key(m),
                month=MONTH_LABELS[m.month - 1],
                income=from_cents(buckets[month_key(m)][TransactionType.income]),
                expenses=from_cents(buckets[month_key(m)][TransactionType.expense]),
            )
            for m in months
        ]
        return DashboardSnapshot(
            total_income=from_cents(income),
            total_expenses=from_cents(expenses),
            net_income=net,
            accounts_balance=net,
            recent_transactions=list(transactions[:RECENT_TRANSACTIONS_LIMIT]),
            monthly_trend=trend,
        )


class StatisticsAggregator:
    def __init__(self, repo: LedgerRepository) -> None:
        self.repo = repo

    def statistics(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> StatisticsSummary:
        window = _window(start_date, end_date)
        income, expense, count = self.repo.transaction_totals(user_id, window)

        breakdown_cents: dict[int, dict[TransactionType, int]] = {}
        for category_id, txn_type, total in self.repo.category_breakdown(
            user_id, window
        ):
            bucket = breakdown_cents.setdefault(
                category_id, {TransactionType.income: 0, TransactionType.expense: 0}
            )
            bucket[txn_type] += total

        breakdown = {
            category_id: CategoryTotals(
                income=from_cents(bucket[TransactionType.income]),
                expense=from_cents(bucket[TransactionType.expense]),
            )
            for category_id, bucket in breakdown_cents.items()
        }
        return StatisticsSummary(
            total_income=from_cents(income),
            total_expense=from_cents(expense),
            balance=from_cents(income - expense),
            transaction_count=count,
            category_breakdown=breakdown,
        )


class CategoryService:
    def __init__(self, repo: LedgerRepository) -> None:
        self.repo = repo

    def list_all(
        self, category_type: Optional[TransactionType] = None
    ) -> list[Category]:
        return list(self.repo.list_categories(category_type))

    def get(self, category_id: int) -> Category:
        category = self.repo.get_category(category_id)
        if category is None:
            raise NotFound("Category not found")
        return category

    def create(self, data: CategoryIn) -> Result[Category]:
        name = data.name.strip()
        if self.repo.find_category(name, data.type):
            raise Conflict(
                f"Category with name '{name}' and type "
                f"'{data.type.value}' already exists"
            )
        category = Category(
            name=name,
            type=data.type,
            icon=data.icon,
            color=data.color,
            is_default=False,
        )
        self.repo.add(category)
        _commit_or_conflict(self.repo, "Category")
        self.repo.refresh(category)
        logger.info(
            f"category_created: category_id={category.id} type={category.type.value}"
        )
        return Result(category, "Category created successfully")

    def update(self, category_id: int, data: CategoryUpdate) -> Result[Category]:
        category = self.get(category_id)
        if data.name is not None:
            name = data.name.strip()
            if self.repo.find_category(name, category.type, exclude_id=category.id):
                raise Conflict(
                    f"Category with name '{name}' and type "
                    f"'{category.type.value}' already exists"
                )
            category.name = name
        if "icon" in data.model_fields_set:
            category.icon = data.icon
        if "color" in data.model_fields_set:
            category.color = data.color
        _commit_or_conflict(self.repo, "Category")
        self.repo.refresh(category)
        logger.info(f"category_updated: category_id={category.id}")
        return Result(category, "Category updated successfully")

    def delete(self, category_id: int) -> Result[None]:
        category = self.get(category_id)
        transactions, budgets = self.repo.category_usage(category.id)
        if transactions or budgets:
            logger.warning(
                f"category_delete_rejected: category_id={category.id} "
                f"transactions={transactions} budgets={budgets}"
            )
            raise Conflict(
                "Cannot delete category with existing transactions or budgets"
            )
        self.repo.delete(category)
        self.repo.commit()
        logger.info(f"category_deleted: category_id={category_id}")
        return Result(None, "Category deleted successfully")

    def seed_defaults(self) -> Result[SeedResult]:
        created = 0
        for name, category_type, icon, color in DEFAULT_CATEGORIES:
            if self.repo.find_category(name, category_type):
                continue
            self.repo.add(
                Category(
                    name=name,
                    type=category_type,
                    icon=icon,
                    color=color,
                    is_default=True,
                )
            )
            created += 1
        _commit_or_conflict(self.repo, "Default categories")
        total = len(DEFAULT_CATEGORIES)
        logger.info(f"categories_seeded: created={created} total={total}")
        return Result(
            SeedResult(created=created, total=total),
            f"Default categories seeded successfully. "
            f"Created {created} new categories.",
        )


class TransactionService:
    def __init__(self, repo: LedgerRepository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id
        self.validator = CategoryValidator(repo)
        self.stats = StatisticsAggregator(repo)

    def get(self, transaction_id: int) -> Transaction:
        txn = self.repo.get_transaction(transaction_id)
        if txn is None:
            raise NotFound("Transaction not found")
        if txn.user_id != self.user_id:
            raise Unauthorized("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Result[Transaction]:
        try:
            self.validator.validate(data.type, data.category_id)
        except TypeMismatch:
            logger.warning(
                f"transaction_type_mismatch: user_id={self.user_id} "
                f"category_id={data.category_id}"
            )
            raise
        txn = Transaction(
            user_id=self.user_id,
            amount_cents=to_cents(data.amount),
            type=data.type,
            category_id=data.category_id,
            description=data.description,
            date=data.date,
        )
        self.repo.add(txn)
        _commit_or_conflict(self.repo, "Transaction")
        self.repo.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} transaction_id={txn.id} "
            f"type={txn.type.value}"
        )
        return Result(txn, "Transaction created successfully")

    def list(self, query: TransactionQuery) -> Page[Transaction]:
        filters = TransactionFilters(
            type=query.type,
            category_id=query.category_id,
            window=_window(query.start_date, query.end_date),
            min_amount_cents=(
                to_cents(query.min_amount) if query.min_amount is not None else None
            ),
            max_amount_cents=(
                to_cents(query.max_amount) if query.max_amount is not None else None
            ),
            search=query.search,
        )
        offset = (query.page - 1) * query.limit
        items = self.repo.list_transactions(
            self.user_id, filters, query.sort, offset=offset, limit=query.limit
        )
        total = self.repo.count_transactions(self.user_id, filters)
        return Page(list(items), query.page, query.limit, total)

    def update(
        self, transaction_id: int, data: TransactionUpdate
    ) -> Result[Transaction]:
        txn = self.get(transaction_id)

        type_changed = data.type is not None
        category_changed = data.category_id is not None
        if type_changed or category_changed:
            new_type = data.type if type_changed else txn.type
            new_category_id = data.category_id if category_changed else txn.category_id
            category = self.validator.validate(new_type, new_category_id)
            txn.category = category

        if data.amount is not None:
            txn.amount_cents = to_cents(data.amount)
        if type_changed:
            txn.type = data.type
        if "description" in data.model_fields_set:
            txn.description = data.description
        if data.date is not None:
            txn.date = data.date

        _commit_or_conflict(self.repo, "Transaction")
        self.repo.refresh(txn)
        logger.info(
            f"transaction_updated: user_id={self.user_id} transaction_id={txn.id}"
        )
        return Result(txn, "Transaction updated successfully")

    def delete(self, transaction_id: int) -> Result[None]:
        txn = self.get(transaction_id)
        self.repo.delete(txn)
        self.repo.commit()
        logger.info(
            f"transaction_deleted: user_id={self.user_id} "
            f"transaction_id={transaction_id}"
        )
        return Result(None, "Transaction deleted successfully")

    def statistics(
        self, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> StatisticsSummary:
        return self.stats.statistics(self.user_id, start_date, end_date)


class BudgetService:
    def __init__(self, repo: LedgerRepository, user_id: int) -> None:
        self.repo = repo
        self.user_id = user_id
        self.overlap = BudgetOverlapChecker(repo)
        self.progress = BudgetProgressCalculator(SpendAggregator(repo))

    def _owned(self, budget_id: int) -> Budget:
        budget = self.repo.get_budget(budget_id)
        if budget is None:
            raise NotFound("Budget not found")
        if budget.user_id != self.user_id:
            raise Unauthorized("Budget not found")
        return budget

    def _require_category(self, category_id: int) -> Category:
        category = self.repo.get_category(category_id)
        if category is None:
            raise NotFound("Category not found")
        return category

    def _report(self, budget: Budget) -> BudgetReport:
        return BudgetReport(budget, self.progress.progress(budget))

    def create(self, data: BudgetIn) -> Result[Budget]:
        self._require_category(data.category_id)
        with budget_scope_lock(self.user_id, data.category_id):
            self.overlap.ensure_free(
                self.user_id, data.category_id, data.start_date, data.end_date
            )
            budget = Budget(
                user_id=self.user_id,
                category_id=data.category_id,
                amount_cents=to_cents(data.amount),
                period=data.period,
                start_date=data.start_date,
                end_date=data.end_date,
            )
            self.repo.add(budget)
            _commit_or_conflict(self.repo, "Budget")
        self.repo.refresh(budget)
        logger.info(
            f"budget_created: user_id={self.user_id} budget_id={budget.id} "
            f"category_id={budget.category_id}"
        )
        return Result(budget, "Budget created successfully")

    def get(self, budget_id: int) -> BudgetReport:
        return self._report(self._owned(budget_id))

    def list(
        self, query: BudgetQuery, *, today: Optional[date] = None
    ) -> Page[BudgetReport]:
        filters = BudgetFilters(
            category_id=query.category_id,
            period=query.period,
            active_on=(today or today_local()) if query.active else None,
        )
        offset = (query.page - 1) * query.limit
        budgets = self.repo.list_budgets(
            self.user_id, filters, query.sort, offset=offset, limit=query.limit
        )
        total = self.repo.count_budgets(self.user_id, filters)
        # Any progress failure aborts the whole page.
        reports = [self._report(budget) for budget in budgets]
        return Page(reports, query.page, query.limit, total)

    def update(self, budget_id: int, data: BudgetUpdate) -> Result[Budget]:
        budget = self._owned(budget_id)
        category = budget.category
        if data.category_id is not None:
            category = self._require_category(data.category_id)

        fields = data.model_dump(exclude_none=True)
        category_id = fields.get("category_id", budget.category_id)
        start_date = fields.get("start_date", budget.start_date)
        end_date = fields.get("end_date", budget.end_date)

        with budget_scope_lock(self.user_id, category_id):
            self.overlap.ensure_free(
                self.user_id,
                category_id,
                start_date,
                end_date,
                exclude_budget_id=budget.id,
            )
            if data.amount is not None:
                budget.amount_cents = to_cents(data.amount)
            if data.period is not None:
                budget.period = data.period
            budget.category = category
            budget.start_date = start_date
            budget.end_date = end_date
            _commit_or_conflict(self.repo, "Budget")
        self.repo.refresh(budget)
        logger.info(f"budget_updated: user_id={self.user_id} budget_id={budget.id}")
        return Result(budget, "Budget updated successfully")

    def delete(self, budget_id: int) -> Result[None]:
        budget = self._owned(budget_id)
        self.repo.delete(budget)
        self.repo.commit()
        logger.info(f"budget_deleted: user_id={self.user_id} budget_id={budget_id}")
        return Result(None, "Budget deleted successfully")
