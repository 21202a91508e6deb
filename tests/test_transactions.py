from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from errors import InvalidRange, NotFound, TypeMismatch
from models import Transaction, TransactionType
from repository import LedgerRepository
from schemas import (
    CategoryIn,
    SortDirection,
    TransactionIn,
    TransactionQuery,
    TransactionSortField,
    TransactionUpdate,
)
from services import CategoryService, TransactionService


def _setup(session: Session) -> tuple[LedgerRepository, int, int]:
    repo = LedgerRepository(session)
    categories = CategoryService(repo)
    salary = categories.create(CategoryIn(name="Salary", type=TransactionType.income))
    groceries = categories.create(
        CategoryIn(name="Groceries", type=TransactionType.expense)
    )
    return repo, salary.data.id, groceries.data.id


def test_create_transaction_keeps_exact_amount() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        repo, _, groceries = _setup(session)
        result = TransactionService(repo, user_id=7).create(
            TransactionIn(
                amount=Decimal("19.99"),
                type=TransactionType.expense,
                category_id=groceries,
                description="Weekly shop",
                date=date(2025, 4, 2),
            )
        )
        txn = result.data
        assert result.message == "Transaction created successfully"
        assert txn.user_id == 7
        assert txn.amount_cents == 1999
        assert txn.amount == Decimal("19.99")
        assert txn.category.name == "Groceries"


def test_category_type_mismatch_persists_nothing() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        repo, salary, groceries = _setup(session)
        service = TransactionService(repo, user_id=1)

        with pytest.raises(TypeMismatch, match=r"Category type \(INCOME\)"):
            service.create(
                TransactionIn(
                    amount=Decimal("10.00"),
                    type=TransactionType.expense,
                    category_id=salary,
                    date=date(2025, 1, 1),
                )
            )
        with pytest.raises(NotFound, match="Category not found"):
            service.create(
                TransactionIn(
                    amount=Decimal("10.00"),
                    type=TransactionType.expense,
                    category_id=groceries + 100,
                    date=date(2025, 1, 1),
                )
            )
        assert session.scalar(select(func.count(Transaction.id))) == 0


def test_amount_validation_happens_before_the_service() -> None:
    with pytest.raises(ValidationError):
        TransactionIn(
            amount=Decimal("0"),
            type=TransactionType.expense,
            category_id=1,
            date=date(2025, 1, 1),
        )
    with pytest.raises(ValidationError):
        TransactionIn(
            amount=Decimal("1.005"),
            type=TransactionType.expense,
            category_id=1,
            date=date(2025, 1, 1),
        )


def test_partial_update_keeps_unspecified_fields() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        repo, salary, groceries = _setup(session)
        service = TransactionService(repo, user_id=1)
        txn = service.create(
            TransactionIn(
                amount=Decimal("42.00"),
                type=TransactionType.expense,
                category_id=groceries,
                description="Market",
                date=date(2025, 5, 1),
            )
        ).data

        updated = service.update(
            txn.id, TransactionUpdate(amount=Decimal("40.50"))
        ).data
        assert updated.amount == Decimal("40.50")
        assert updated.description == "Market"
        assert updated.date == date(2025, 5, 1)

        cleared = service.update(txn.id, TransactionUpdate(description=None)).data
        assert cleared.description is None
        assert cleared.amount == Decimal("40.50")

        # Switching only the type must still agree with the current category.
        with pytest.raises(TypeMismatch):
            service.update(txn.id, TransactionUpdate(type=TransactionType.income))

        moved = service.update(
            txn.id,
            TransactionUpdate(type=TransactionType.income, category_id=salary),
        ).data
        assert moved.type == TransactionType.income
        assert moved.category_id == salary
        assert moved.category.name == "Salary"


def test_transactions_of_other_users_are_not_found() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        repo, _, groceries = _setup(session)
        txn = TransactionService(repo, user_id=1).create(
            TransactionIn(
                amount=Decimal("5.00"),
                type=TransactionType.expense,
                category_id=groceries,
                date=date(2025, 1, 1),
            )
        ).data

        intruder = TransactionService(repo, user_id=2)
        with pytest.raises(NotFound, match="Transaction not found"):
            intruder.get(txn.id)
        with pytest.raises(NotFound):
            intruder.update(txn.id, TransactionUpdate(amount=Decimal("1.00")))
        with pytest.raises(NotFound):
            intruder.delete(txn.id)

        TransactionService(repo, user_id=1).delete(txn.id)
        with pytest.raises(NotFound):
            TransactionService(repo, user_id=1).get(txn.id)


def test_list_filters_sorts_and_paginates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        repo, salary, groceries = _setup(session)
        service = TransactionService(repo, user_id=1)
        for day, amount, note in [
            (3, "12.00", "Bakery"),
            (5, "80.00", "Supermarket run"),
            (9, "7.25", "Corner shop"),
            (12, "64.10", "supermarket"),
        ]:
            service.create(
                TransactionIn(
                    amount=Decimal(amount),
                    type=TransactionType.expense,
                    category_id=groceries,
                    description=note,
                    date=date(2025, 6, day),
                )
            )
        service.create(
            TransactionIn(
                amount=Decimal("3000.00"),
                type=TransactionType.income,
                category_id=salary,
                date=date(2025, 6, 1),
            )
        )

        by_amount = service.list(TransactionQuery(sort="-amount", limit=2))
        assert by_amount.total == 5
        assert by_amount.total_pages == 3
        assert by_amount.has_next and not by_amount.has_prev
        assert [t.amount for t in by_amount.items] == [
            Decimal("3000.00"),
            Decimal("80.00"),
        ]

        expenses = service.list(
            TransactionQuery(
                type=TransactionType.expense,
                start_date=date(2025, 6, 3),
                end_date=date(2025, 6, 9),
                sort={"field": "date", "direction": "asc"},
            )
        )
        assert [t.date.day for t in expenses.items] == [3, 5, 9]

        searched = service.list(TransactionQuery(search="SUPERMARKET", sort="date"))
        assert [t.date.day for t in searched.items] == [5, 12]

        ranged = service.list(
            TransactionQuery(min_amount=Decimal("10"), max_amount=Decimal("64.10"))
        )
        assert sorted(t.amount for t in ranged.items) == [
            Decimal("12.00"),
            Decimal("64.10"),
        ]

        assert service.list(TransactionQuery()).items[0].amount == Decimal("3000.00")
        assert TransactionService(repo, user_id=2).list(TransactionQuery()).total == 0

        with pytest.raises(InvalidRange):
            service.list(
                TransactionQuery(start_date=date(2025, 6, 9), end_date=date(2025, 6, 3))
            )


def test_sort_accepts_only_known_fields() -> None:
    query = TransactionQuery(sort="-date")
    assert query.sort.field == TransactionSortField.date
    assert query.sort.direction == SortDirection.desc

    default = TransactionQuery()
    assert default.sort.field == TransactionSortField.created_at
    assert default.sort.direction == SortDirection.desc

    for bad in ["description", "-user_id", "amount; DROP TABLE transactions"]:
        with pytest.raises(ValidationError):
            TransactionQuery(sort=bad)
    with pytest.raises(ValidationError):
        TransactionQuery(sort={"field": "date", "direction": "sideways"})
    with pytest.raises(ValidationError):
        TransactionQuery(limit=101)
