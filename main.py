import logging
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from config import get_settings
from csv_utils import export_transactions, parse_csv
from database import get_db, init_db
from identity import IdentityClaims, NotAuthenticated, identity_from_header
from models import TransactionType
from periods import local_today, month_key
from schemas import (
    BudgetIn,
    BudgetOut,
    BudgetUpdateIn,
    CategoryIn,
    CategoryOut,
    CategoryUpdateIn,
    DebtIn,
    DebtOut,
    DebtUpdateIn,
    ImportIn,
    ProfileIn,
    SavingsGoalIn,
    SavingsGoalOut,
    SettleDebtIn,
    SplitTransactionIn,
    TransactionEditIn,
    TransactionIn,
    TransactionOut,
    UserOut,
)
from services import (
    BudgetService,
    CategoryService,
    DebtService,
    ImportService,
    InsightsService,
    MetricsService,
    NotFoundError,
    SavingsGoalService,
    TransactionService,
    UserService,
)

logging.basicConfig(level=get_settings().log_level)
logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

app = FastAPI(title="finhash", version=APP_VERSION)


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info(f"startup: version={APP_VERSION}")


@app.exception_handler(NotAuthenticated)
async def not_authenticated_handler(request: Request, exc: NotAuthenticated):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


def get_identity(
    authorization: Optional[str] = Header(default=None),
) -> Optional[IdentityClaims]:
    return identity_from_header(authorization)


def get_user_id(
    identity: Optional[IdentityClaims] = Depends(get_identity),
    db: Session = Depends(get_db),
) -> Optional[int]:
    user = UserService(db).current_user(identity)
    return user.id if user else None


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def get_writer_id(
    identity: Optional[IdentityClaims] = Depends(get_identity),
    db: Session = Depends(get_db),
) -> Optional[int]:
    # Signed in but never stored: writes fail with 404 rather than 401.
    user = UserService(db).current_user(identity)
    if identity is not None and user is None:
        raise _http_error(NotFoundError("User not found"))
    return user.id if user else None


@app.get("/healthz")
def healthz():
    return {"status": "ok", "version": APP_VERSION}


# Users


@app.get("/api/users/me", response_model=Optional[UserOut])
def current_user(
    identity: Optional[IdentityClaims] = Depends(get_identity),
    db: Session = Depends(get_db),
):
    return UserService(db).current_user(identity)


@app.post("/api/users/me")
def store_user(
    identity: Optional[IdentityClaims] = Depends(get_identity),
    db: Session = Depends(get_db),
):
    user, created = UserService(db).store_user(identity)
    seeded = 0
    if created:
        seeded = CategoryService(db, user.id).seed_defaults()
    return {
        "user": UserOut.model_validate(user),
        "created": created,
        "seeded_categories": seeded,
    }


@app.put("/api/users/me", response_model=UserOut)
def update_profile(
    data: ProfileIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return UserService(db).update_profile(user_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


# Categories


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    user_id: Optional[int] = Depends(get_user_id), db: Session = Depends(get_db)
):
    return CategoryService(db, user_id).list_all()


@app.post("/api/categories/seed")
def seed_categories(
    user_id: Optional[int] = Depends(get_writer_id), db: Session = Depends(get_db)
):
    return {"seeded": CategoryService(db, user_id).seed_defaults()}


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(
    data: CategoryIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    return CategoryService(db, user_id).create(data)


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    data: CategoryUpdateIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return CategoryService(db, user_id).update(category_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: int,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        CategoryService(db, user_id).delete(category_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# Transactions


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    type: Optional[TransactionType] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
    user_id: Optional[int] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).list(type=type, start=start, end=end)


@app.get("/api/transactions/recent", response_model=list[TransactionOut])
def recent_transactions(
    limit: int = Query(default=10, ge=1, le=500),
    user_id: Optional[int] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return TransactionService(db, user_id).recent(limit)


@app.get("/api/transactions/export.csv")
def export_csv(
    user_id: Optional[int] = Depends(get_user_id), db: Session = Depends(get_db)
):
    transactions = TransactionService(db, user_id).all_for_period(None)
    return Response(
        content=export_transactions(transactions),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="transactions.csv"'},
    )


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    data: TransactionIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).create(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/transactions/split", status_code=201)
def split_transaction(
    data: SplitTransactionIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).create_split(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def edit_transaction(
    transaction_id: int,
    data: TransactionEditIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, user_id).update(transaction_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# Summaries and analytics


@app.get("/api/summary/monthly")
def monthly_summary(
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    month: Optional[int] = Query(default=None, ge=1, le=12),
    user_id: Optional[int] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    today = local_today()
    return MetricsService(db, user_id).monthly_summary(
        year or today.year, month or today.month
    )


@app.get("/api/summary/yearly")
def yearly_summary(
    year: Optional[int] = Query(default=None, ge=1970, le=3000),
    user_id: Optional[int] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return MetricsService(db, user_id).yearly_summary(year or local_today().year)


@app.get("/api/summary/all-time")
def all_time_summary(
    user_id: Optional[int] = Depends(get_user_id), db: Session = Depends(get_db)
):
    return MetricsService(db, user_id).all_time_summary()


@app.get("/api/analytics")
def analytics(
    months: int = Query(default=6, ge=1, le=120),
    user_id: Optional[int] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    return InsightsService(db, user_id).analytics(months)


# Budgets


@app.get("/api/budgets")
def budgets_with_spending(
    month: Optional[str] = Query(default=None),
    user_id: Optional[int] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    today = local_today()
    month = month or month_key(today)
    try:
        return BudgetService(db, user_id).with_spending(month)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/budgets", response_model=BudgetOut)
def upsert_budget(
    data: BudgetIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return BudgetService(db, user_id).upsert(data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/budgets/{budget_id}", response_model=BudgetOut)
def update_budget(
    budget_id: int,
    data: BudgetUpdateIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return BudgetService(db, user_id).update(budget_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    delete_all_future: bool = Query(default=False),
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        removed = BudgetService(db, user_id).delete(
            budget_id, delete_all_future=delete_all_future
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {"removed": removed}


# Savings goals


@app.get("/api/goals")
def goals_with_progress(
    user_id: Optional[int] = Depends(get_user_id), db: Session = Depends(get_db)
):
    return SavingsGoalService(db, user_id).with_progress()


@app.post("/api/goals", response_model=SavingsGoalOut, status_code=201)
def create_goal(
    data: SavingsGoalIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    return SavingsGoalService(db, user_id).create(data)


@app.put("/api/goals/{goal_id}", response_model=SavingsGoalOut)
def update_goal(
    goal_id: int,
    data: SavingsGoalIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return SavingsGoalService(db, user_id).update(goal_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/goals/{goal_id}", status_code=204)
def delete_goal(
    goal_id: int,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        SavingsGoalService(db, user_id).delete(goal_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


# Debts


@app.get("/api/debts", response_model=list[DebtOut])
def list_debts(
    user_id: Optional[int] = Depends(get_user_id), db: Session = Depends(get_db)
):
    return DebtService(db, user_id).list_all()


@app.post("/api/debts", response_model=DebtOut, status_code=201)
def create_debt(
    data: DebtIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    return DebtService(db, user_id).create(data)


@app.put("/api/debts/{debt_id}", response_model=DebtOut)
def update_debt(
    debt_id: int,
    data: DebtUpdateIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return DebtService(db, user_id).update(debt_id, data)
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/debts/{debt_id}", status_code=204)
def delete_debt(
    debt_id: int,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        DebtService(db, user_id).delete(debt_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.post("/api/debts/{debt_id}/settle")
def settle_debt(
    debt_id: int,
    data: SettleDebtIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    service = DebtService(db, user_id)
    try:
        txn = service.mark_settled(
            debt_id,
            record_as_transaction=data.record_as_transaction,
            category_id=data.category_id,
        )
        debt = service.get(debt_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return {
        "debt": DebtOut.model_validate(debt),
        "transaction": TransactionOut.model_validate(txn) if txn else None,
    }


@app.post("/api/debts/{debt_id}/undo", response_model=DebtOut)
def undo_settle_debt(
    debt_id: int,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    try:
        return DebtService(db, user_id).undo_settle(debt_id)
    except ValueError as exc:
        raise _http_error(exc) from exc


# Bulk import


@app.post("/api/import")
def import_transactions(
    data: ImportIn,
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    return ImportService(db, user_id).import_rows(data.transactions)


@app.post("/api/import/csv")
async def import_csv(
    file: UploadFile = File(...),
    user_id: Optional[int] = Depends(get_writer_id),
    db: Session = Depends(get_db),
):
    raw = await file.read()
    try:
        content = raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8") from exc
    rows, errors = parse_csv(content)
    if not rows:
        raise HTTPException(status_code=400, detail="No valid transactions found")
    result = ImportService(db, user_id).import_rows(rows)
    result["errors"] = errors
    return result


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
