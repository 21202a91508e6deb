import logging
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import get_settings
from database import database_is_up, get_session
from errors import Conflict, InvalidRange, LedgerError, NotFound, TypeMismatch
from models import TransactionType
from repository import LedgerRepository
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetQuery,
    BudgetUpdate,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    DashboardOut,
    PaginationOut,
    SeedResultOut,
    StatisticsOut,
    StatisticsQuery,
    TransactionIn,
    TransactionOut,
    TransactionQuery,
    TransactionUpdate,
)
from services import (
    BudgetReport,
    BudgetService,
    CategoryService,
    DashboardAggregator,
    Page,
    TransactionService,
)

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Ledger")

ERROR_STATUS = (
    (NotFound, 404),
    (InvalidRange, 400),
    (Conflict, 409),
    (TypeMismatch, 403),
)


def get_repo(db: Session = Depends(get_session)) -> LedgerRepository:
    return LedgerRepository(db)


def current_user_id(x_user_id: int = Header(..., gt=0)) -> int:
    """Caller identity; authentication happens upstream of this service."""
    return x_user_id


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: Optional[list] = None,
) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": error,
            "timestamp": _timestamp(),
            "path": request.url.path,
        },
    )


def _field_errors(errors: list) -> list:
    return [
        {
            "field": ".".join(str(part) for part in err.get("loc", ())),
            "message": err.get("msg", ""),
        }
        for err in errors
    ]


@app.exception_handler(LedgerError)
def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    status_code = 400
    for error_type, status in ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = status
            break
    return error_response(request, status_code, exc.code, str(exc))


@app.exception_handler(RequestValidationError)
def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = _field_errors(exc.errors())
    return error_response(
        request, 422, "VALIDATION_ERROR", "Validation failed", details
    )


@app.exception_handler(ValidationError)
def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    details = _field_errors(exc.errors())
    return error_response(
        request, 422, "VALIDATION_ERROR", "Validation failed", details
    )


@app.exception_handler(Exception)
def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"unhandled_error: path={request.url.path}")
    return error_response(request, 500, "INTERNAL_ERROR", "Internal server error")


def envelope(
    data: Any = None,
    message: Optional[str] = None,
    pagination: Optional[dict] = None,
) -> dict:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    if pagination is not None:
        body["pagination"] = pagination
    return body


def pagination_of(page: Page) -> dict:
    return PaginationOut(
        page=page.page,
        limit=page.limit,
        total=page.total,
        total_pages=page.total_pages,
        has_next=page.has_next,
        has_prev=page.has_prev,
    ).model_dump()


def category_payload(category) -> dict:
    return CategoryOut.model_validate(category).model_dump(mode="json")


def transaction_payload(txn) -> dict:
    return TransactionOut.model_validate(txn).model_dump(mode="json")


def budget_payload(budget, report: Optional[BudgetReport] = None) -> dict:
    out = BudgetOut.model_validate(budget)
    if report is not None:
        out = out.model_copy(
            update={
                "spent": report.progress.spent,
                "remaining": report.progress.remaining,
                "percentage": report.progress.percentage,
            }
        )
    return out.model_dump(mode="json")


@app.get("/health")
def health(db: Session = Depends(get_session)):
    up = database_is_up(db)
    return {
        "status": "healthy" if up else "degraded",
        "timestamp": _timestamp(),
        "services": {"database": "up" if up else "down"},
    }


# Categories


@app.get("/categories")
def list_categories(
    type: Optional[TransactionType] = None,
    repo: LedgerRepository = Depends(get_repo),
):
    categories = CategoryService(repo).list_all(type)
    return envelope([category_payload(c) for c in categories])


@app.post("/categories", status_code=201)
def create_category(data: CategoryIn, repo: LedgerRepository = Depends(get_repo)):
    result = CategoryService(repo).create(data)
    return envelope(category_payload(result.data), result.message)


@app.post("/categories/seed")
def seed_categories(repo: LedgerRepository = Depends(get_repo)):
    result = CategoryService(repo).seed_defaults()
    payload = SeedResultOut.model_validate(result.data).model_dump()
    return envelope(payload, result.message)


@app.get("/categories/{category_id}")
def get_category(category_id: int, repo: LedgerRepository = Depends(get_repo)):
    return envelope(category_payload(CategoryService(repo).get(category_id)))


@app.put("/categories/{category_id}")
def update_category(
    category_id: int,
    data: CategoryUpdate,
    repo: LedgerRepository = Depends(get_repo),
):
    result = CategoryService(repo).update(category_id, data)
    return envelope(category_payload(result.data), result.message)


@app.delete("/categories/{category_id}")
def delete_category(category_id: int, repo: LedgerRepository = Depends(get_repo)):
    result = CategoryService(repo).delete(category_id)
    return envelope(None, result.message)


# Transactions


@app.get("/transactions")
def list_transactions(
    request: Request,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    query = TransactionQuery.model_validate(dict(request.query_params))
    page = TransactionService(repo, user_id).list(query)
    return envelope(
        [transaction_payload(txn) for txn in page.items],
        pagination=pagination_of(page),
    )


@app.post("/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    result = TransactionService(repo, user_id).create(data)
    return envelope(transaction_payload(result.data), result.message)


@app.get("/transactions/statistics")
def transaction_statistics(
    request: Request,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    query = StatisticsQuery.model_validate(dict(request.query_params))
    summary = TransactionService(repo, user_id).statistics(
        query.start_date, query.end_date
    )
    return envelope(StatisticsOut.model_validate(summary).model_dump(mode="json"))


@app.get("/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    txn = TransactionService(repo, user_id).get(transaction_id)
    return envelope(transaction_payload(txn))


@app.put("/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    result = TransactionService(repo, user_id).update(transaction_id, data)
    return envelope(transaction_payload(result.data), result.message)


@app.delete("/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    result = TransactionService(repo, user_id).delete(transaction_id)
    return envelope(None, result.message)


# Budgets


@app.get("/budgets")
def list_budgets(
    request: Request,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    query = BudgetQuery.model_validate(dict(request.query_params))
    page = BudgetService(repo, user_id).list(query)
    return envelope(
        [budget_payload(report.budget, report) for report in page.items],
        pagination=pagination_of(page),
    )


@app.post("/budgets", status_code=201)
def create_budget(
    data: BudgetIn,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    result = BudgetService(repo, user_id).create(data)
    return envelope(budget_payload(result.data), result.message)


@app.get("/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    report = BudgetService(repo, user_id).get(budget_id)
    return envelope(budget_payload(report.budget, report))


@app.put("/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    result = BudgetService(repo, user_id).update(budget_id, data)
    return envelope(budget_payload(result.data), result.message)


@app.delete("/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    result = BudgetService(repo, user_id).delete(budget_id)
    return envelope(None, result.message)


# Dashboard


@app.get("/dashboard")
def dashboard(
    repo: LedgerRepository = Depends(get_repo),
    user_id: int = Depends(current_user_id),
):
    snapshot = DashboardAggregator(repo).snapshot(user_id)
    return envelope(DashboardOut.model_validate(snapshot).model_dump(mode="json"))
