import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Cookie, Depends, FastAPI, File, Header, HTTPException, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import resolve_session_token, token_from_headers
from config import get_settings
from csv_utils import mapping_progress, read_csv, suggest_mapping
from database import check_db, get_db
from periods import resolve_period
from schemas import (
    AccountIn,
    AccountOut,
    BulkDeleteIn,
    CSVUploadOut,
    CategoryIn,
    CategoryOut,
    ImportIn,
    TransactionIn,
)
from services import (
    AccountService,
    CategoryService,
    ImportService,
    NotFoundError,
    SummaryService,
    TransactionService,
)

settings = get_settings()

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Dashboard")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        {"error": str(exc.detail)},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse({"error": "; ".join(messages) or "Invalid request."}, status_code=400)


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: method={request.method} path={request.url.path}")
    return JSONResponse({"error": "Internal server error."}, status_code=500)


def current_user_id(
    authorization: Optional[str] = Header(default=None),
    session: Optional[str] = Cookie(default=None),
) -> str:
    user_id = resolve_session_token(token_from_headers(authorization, session))
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized.")
    return user_id


def optional_id(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "database": check_db(db),
    }


# Accounts


@app.get("/api/accounts")
def list_accounts(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    accounts = AccountService(db, user_id).list_all()
    return {"data": [AccountOut.model_validate(a) for a in accounts]}


@app.get("/api/accounts/{account_id}")
def get_account(
    account_id: int,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user_id).get(account_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": AccountOut.model_validate(account)}


@app.post("/api/accounts")
def create_account(
    payload: AccountIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    account = AccountService(db, user_id).create(payload)
    return {"data": AccountOut.model_validate(account)}


@app.post("/api/accounts/bulk-delete")
def bulk_delete_accounts(
    payload: BulkDeleteIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    deleted = AccountService(db, user_id).bulk_delete(payload.ids)
    return {"data": [{"id": account_id} for account_id in deleted]}


@app.patch("/api/accounts/{account_id}")
def update_account(
    account_id: int,
    payload: AccountIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        account = AccountService(db, user_id).update(account_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": AccountOut.model_validate(account)}


@app.delete("/api/accounts/{account_id}")
def delete_account(
    account_id: int,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        deleted = AccountService(db, user_id).delete(account_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": {"id": deleted}}


# Categories


@app.get("/api/categories")
def list_categories(
    user_id: str = Depends(current_user_id), db: Session = Depends(get_db)
):
    categories = CategoryService(db, user_id).list_all()
    return {"data": [CategoryOut.model_validate(c) for c in categories]}


@app.get("/api/categories/{category_id}")
def get_category(
    category_id: int,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).get(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": CategoryOut.model_validate(category)}


@app.post("/api/categories")
def create_category(
    payload: CategoryIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    category = CategoryService(db, user_id).create(payload)
    return {"data": CategoryOut.model_validate(category)}


@app.post("/api/categories/bulk-delete")
def bulk_delete_categories(
    payload: BulkDeleteIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    deleted = CategoryService(db, user_id).bulk_delete(payload.ids)
    return {"data": [{"id": category_id} for category_id in deleted]}


@app.patch("/api/categories/{category_id}")
def update_category(
    category_id: int,
    payload: CategoryIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        category = CategoryService(db, user_id).update(category_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": CategoryOut.model_validate(category)}


@app.delete("/api/categories/{category_id}")
def delete_category(
    category_id: int,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        deleted = CategoryService(db, user_id).delete(category_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": {"id": deleted}}


# Transactions


@app.get("/api/transactions")
def list_transactions(
    start: Optional[str] = Query(default=None, alias="from"),
    end: Optional[str] = Query(default=None, alias="to"),
    account_id: Optional[str] = Query(default=None, alias="accountId"),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    period = resolve_period(start, end)
    service = TransactionService(db, user_id)
    txns = service.list(period, optional_id(account_id))
    return {"data": [service.to_out(txn) for txn in txns]}


@app.post("/api/transactions/bulk-create")
def bulk_create_transactions(
    payload: list[TransactionIn],
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, user_id)
    try:
        txns = service.bulk_create(payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": [service.to_out(txn) for txn in txns]}


@app.post("/api/transactions/bulk-delete")
def bulk_delete_transactions(
    payload: BulkDeleteIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    deleted = TransactionService(db, user_id).bulk_delete(payload.ids)
    return {"data": [{"id": transaction_id} for transaction_id in deleted]}


@app.post("/api/transactions/import/upload")
async def upload_import_file(
    file: UploadFile = File(...),
    user_id: str = Depends(current_user_id),
):
    raw = await file.read(settings.import_max_bytes + 1)
    if not raw:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(raw) > settings.import_max_bytes:
        raise HTTPException(status_code=400, detail="CSV file too large")
    try:
        headers, rows = read_csv(raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise HTTPException(status_code=400, detail="CSV file must be UTF-8") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    suggested = suggest_mapping(headers)
    logger.info(f"import_upload: user={user_id} columns={len(headers)} rows={len(rows)}")
    return {
        "data": CSVUploadOut(
            headers=headers,
            rows=rows,
            suggested_mapping=suggested,
            progress=mapping_progress(suggested),
        )
    }


@app.post("/api/transactions/import")
def import_transactions(
    payload: ImportIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = ImportService(db, user_id)
    try:
        if payload.dry_run:
            return {"data": service.preview(payload)}
        txns = service.commit(payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"data": [TransactionService.to_out(txn) for txn in txns]}


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, user_id)
    try:
        txn = service.get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": service.to_out(txn)}


@app.post("/api/transactions")
def create_transaction(
    payload: TransactionIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, user_id)
    try:
        txn = service.create(payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": service.to_out(txn)}


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    payload: TransactionIn,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, user_id)
    try:
        txn = service.update(transaction_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": service.to_out(txn)}


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        deleted = TransactionService(db, user_id).delete(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"data": {"id": deleted}}


# Summary


@app.get("/api/summary")
def summary(
    start: Optional[str] = Query(default=None, alias="from"),
    end: Optional[str] = Query(default=None, alias="to"),
    account_id: Optional[str] = Query(default=None, alias="accountId"),
    user_id: str = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    period = resolve_period(start, end)
    data = SummaryService(db, user_id).summary(period, optional_id(account_id))
    return {"data": data}


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
