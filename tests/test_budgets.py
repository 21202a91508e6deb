from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import Base
from errors import Conflict, InvalidRange, NotFound
from models import Budget, BudgetPeriod, TransactionType
from repository import LedgerRepository
from schemas import BudgetIn, BudgetQuery, BudgetUpdate, CategoryIn, TransactionIn
from services import (
    BudgetOverlapChecker,
    BudgetService,
    CategoryService,
    SpendAggregator,
    TransactionService,
    budget_scope_lock,
)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _category(repo: LedgerRepository, name: str, kind=TransactionType.expense) -> int:
    return CategoryService(repo).create(CategoryIn(name=name, type=kind)).data.id


def _spend(repo, user_id, category_id, amount, day, kind=TransactionType.expense):
    TransactionService(repo, user_id).create(
        TransactionIn(
            amount=Decimal(amount), type=kind, category_id=category_id, date=day
        )
    )


def _budget_in(category_id, start, end, amount="400.00") -> BudgetIn:
    return BudgetIn(
        category_id=category_id,
        amount=Decimal(amount),
        period=BudgetPeriod.monthly,
        start_date=start,
        end_date=end,
    )


def test_budget_progress_sums_expenses_inside_window() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        salary = _category(repo, "Salary", TransactionType.income)

        budgets = BudgetService(repo, user_id=1)
        budget = budgets.create(
            _budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31))
        ).data

        _spend(repo, 1, groceries, "150.50", date(2025, 1, 1))
        _spend(repo, 1, groceries, "45.00", date(2025, 1, 31))
        # Outside the window, another user, and income: none count.
        _spend(repo, 1, groceries, "99.00", date(2025, 2, 1))
        _spend(repo, 2, groceries, "10.00", date(2025, 1, 15))
        _spend(repo, 1, salary, "5000.00", date(2025, 1, 15), TransactionType.income)

        report = budgets.get(budget.id)
        assert report.progress.spent == Decimal("195.50")
        assert report.progress.remaining == Decimal("204.50")
        assert report.progress.percentage == Decimal("48.875")
        assert report.progress.spent + report.progress.remaining == budget.amount


def test_overspent_budget_reports_negative_remaining() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        dining = _category(repo, "Dining Out")
        budgets = BudgetService(repo, user_id=1)
        budget = budgets.create(
            _budget_in(dining, date(2025, 3, 1), date(2025, 3, 31), "100.00")
        ).data
        _spend(repo, 1, dining, "80.00", date(2025, 3, 5))
        _spend(repo, 1, dining, "45.25", date(2025, 3, 20))

        progress = budgets.get(budget.id).progress
        assert progress.spent == Decimal("125.25")
        assert progress.remaining == Decimal("-25.25")
        assert progress.percentage == Decimal("125.25")
        assert progress.spent + progress.remaining == Decimal("100.00")


def test_sum_expenses_is_zero_for_empty_window() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        rent = _category(repo, "Rent")
        spent = SpendAggregator(repo).sum_expenses(
            1, rent, date(2025, 1, 1), date(2025, 1, 31)
        )
        assert spent == Decimal("0.00")


def test_overlapping_budgets_are_rejected() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        budgets = BudgetService(repo, user_id=1)
        budgets.create(_budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31)))

        overlapping = [
            (date(2025, 1, 1), date(2025, 1, 31)),
            (date(2025, 1, 10), date(2025, 1, 20)),
            (date(2024, 12, 1), date(2025, 2, 28)),
            # Shared endpoint counts as overlap.
            (date(2025, 1, 31), date(2025, 2, 28)),
            (date(2024, 12, 1), date(2025, 1, 1)),
        ]
        for start, end in overlapping:
            with pytest.raises(Conflict):
                budgets.create(_budget_in(groceries, start, end))

        count = session.scalar(select(func.count(Budget.id)))
        assert count == 1


def test_adjacent_and_unrelated_budgets_are_accepted() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        transport = _category(repo, "Transportation")
        budgets = BudgetService(repo, user_id=1)
        budgets.create(_budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31)))

        budgets.create(_budget_in(groceries, date(2025, 2, 1), date(2025, 2, 28)))
        budgets.create(_budget_in(transport, date(2025, 1, 1), date(2025, 1, 31)))
        BudgetService(repo, user_id=2).create(
            _budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31))
        )

        checker = BudgetOverlapChecker(repo)
        assert checker.has_overlap(1, groceries, date(2025, 1, 15), date(2025, 2, 5))
        assert not checker.has_overlap(
            1, groceries, date(2025, 3, 1), date(2025, 3, 31)
        )


def test_budget_date_range_must_move_forward() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        budgets = BudgetService(repo, user_id=1)

        with pytest.raises(InvalidRange):
            budgets.create(_budget_in(groceries, date(2025, 1, 1), date(2025, 1, 1)))
        with pytest.raises(InvalidRange):
            budgets.create(_budget_in(groceries, date(2025, 2, 1), date(2025, 1, 1)))
        assert session.scalar(select(func.count(Budget.id))) == 0


def test_budget_update_ignores_itself_but_not_siblings() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        budgets = BudgetService(repo, user_id=1)
        january = budgets.create(
            _budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31))
        ).data
        budgets.create(_budget_in(groceries, date(2025, 2, 1), date(2025, 2, 28)))

        updated = budgets.update(
            january.id,
            BudgetUpdate(amount=Decimal("450.00"), end_date=date(2025, 1, 30)),
        ).data
        assert updated.amount == Decimal("450.00")
        assert updated.start_date == date(2025, 1, 1)
        assert updated.end_date == date(2025, 1, 30)

        with pytest.raises(Conflict):
            budgets.update(january.id, BudgetUpdate(end_date=date(2025, 2, 10)))
        with pytest.raises(InvalidRange):
            budgets.update(january.id, BudgetUpdate(start_date=date(2025, 1, 30)))

        session.expire_all()
        assert budgets.get(january.id).budget.end_date == date(2025, 1, 30)


def test_budget_move_to_other_category() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        shopping = _category(repo, "Shopping")
        budgets = BudgetService(repo, user_id=1)
        budget = budgets.create(
            _budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31))
        ).data
        _spend(repo, 1, shopping, "12.34", date(2025, 1, 9))

        budgets.update(budget.id, BudgetUpdate(category_id=shopping))

        report = budgets.get(budget.id)
        assert report.budget.category_id == shopping
        assert report.budget.category.name == "Shopping"
        assert report.progress.spent == Decimal("12.34")

        with pytest.raises(NotFound):
            budgets.update(budget.id, BudgetUpdate(category_id=9999))


def test_budgets_of_other_users_are_not_found() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        budget = BudgetService(repo, user_id=1).create(
            _budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31))
        ).data

        intruder = BudgetService(repo, user_id=2)
        with pytest.raises(NotFound, match="Budget not found"):
            intruder.get(budget.id)
        with pytest.raises(NotFound):
            intruder.update(budget.id, BudgetUpdate(amount=Decimal("1.00")))
        with pytest.raises(NotFound):
            intruder.delete(budget.id)
        with pytest.raises(NotFound):
            intruder.get(budget.id + 100)


def test_budget_requires_existing_category() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        with pytest.raises(NotFound, match="Category not found"):
            BudgetService(repo, user_id=1).create(
                _budget_in(42, date(2025, 1, 1), date(2025, 1, 31))
            )


def test_budget_list_filters_active_and_paginates() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        budgets = BudgetService(repo, user_id=1)
        for month in range(1, 6):
            budgets.create(
                _budget_in(
                    groceries, date(2025, month, 1), date(2025, month, 28), "100.00"
                )
            )
        _spend(repo, 1, groceries, "25.00", date(2025, 3, 3))

        page = budgets.list(
            BudgetQuery(page=2, limit=2, sort="start_date"), today=date(2025, 3, 10)
        )
        assert page.total == 5
        assert page.total_pages == 3
        assert page.has_next and page.has_prev
        assert [r.budget.start_date.month for r in page.items] == [3, 4]
        assert page.items[0].progress.spent == Decimal("25.00")
        assert page.items[1].progress.percentage == Decimal("0")

        active = budgets.list(BudgetQuery(active=True), today=date(2025, 3, 10))
        assert [r.budget.start_date for r in active.items] == [date(2025, 3, 1)]

        gap = budgets.list(BudgetQuery(active=True), today=date(2025, 3, 30))
        assert gap.total == 0
        assert gap.items == []


def test_deleted_budget_frees_its_window() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        budgets = BudgetService(repo, user_id=1)
        budget = budgets.create(
            _budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31))
        ).data

        assert budgets.delete(budget.id).message == "Budget deleted successfully"
        budgets.create(_budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31)))


def test_scope_lock_is_shared_per_user_and_category() -> None:
    assert budget_scope_lock(1, 5) is budget_scope_lock(1, 5)
    assert budget_scope_lock(1, 5) is not budget_scope_lock(1, 6)
    assert budget_scope_lock(1, 5) is not budget_scope_lock(2, 5)


def test_store_rejects_overlap_written_around_the_service() -> None:
    with _session() as session:
        repo = LedgerRepository(session)
        groceries = _category(repo, "Groceries")
        BudgetService(repo, user_id=1).create(
            _budget_in(groceries, date(2025, 1, 1), date(2025, 1, 31))
        )

        session.add(
            Budget(
                user_id=1,
                category_id=groceries,
                amount_cents=100,
                period=BudgetPeriod.monthly,
                start_date=date(2025, 1, 15),
                end_date=date(2025, 2, 15),
            )
        )
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()

        second = BudgetService(repo, user_id=1).create(
            _budget_in(groceries, date(2025, 2, 1), date(2025, 2, 28))
        ).data
        second.start_date = date(2025, 1, 20)
        with pytest.raises(IntegrityError):
            session.commit()
        session.rollback()
        assert session.scalar(select(func.count(Budget.id))) == 2
