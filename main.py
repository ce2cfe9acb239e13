import logging
import math
from datetime import date
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, HTTPException, Path, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.orm import Session

from auth import issue_owner_token, owner_id_from_header
from config import get_settings
from database import SessionLocal, session_scope
from models import MAX_ROW_ID, Owner, TransactionType
from periods import Period, parse_period_params
from schemas import (
    BalanceOut,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    OwnerIn,
    OwnerOut,
    OwnerRegistered,
    SummaryOut,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionPatch,
)
from services import (
    CategoryService,
    ConflictError,
    NotFoundError,
    OwnerService,
    ReportService,
    TransactionFilters,
    TransactionService,
    ValidationError,
    ensure_system_defaults,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

settings = get_settings()

RowId = Annotated[int, Path(ge=1, le=MAX_ROW_ID)]

app = FastAPI(title="Expense Tracker API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(GZipMiddleware, minimum_size=1024)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def current_owner_id(request: Request, db: Session = Depends(get_db)) -> int:
    owner_id = owner_id_from_header(request.headers.get("Authorization"))
    if owner_id is None or db.get(Owner, owner_id) is None:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return owner_id


@app.on_event("startup")
def startup_event():
    if not get_settings().seed_system_categories:
        return
    with session_scope() as session:
        created = ensure_system_defaults(session)
    logger.info(f"system_categories_seeded: created={created}")


def period_from_request(request: Request) -> Period:
    try:
        return parse_period_params(
            request.query_params.get("from"), request.query_params.get("to")
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


def _date_param(raw: Optional[str]) -> Optional[date]:
    return date.fromisoformat(raw[:10]) if raw else None


def filters_from_request(request: Request) -> TransactionFilters:
    params = request.query_params
    txn_type = None
    if params.get("type"):
        try:
            txn_type = TransactionType(params["type"])
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid type") from exc
    try:
        date_from = _date_param(params.get("from"))
        date_to = _date_param(params.get("to"))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionFilters(
        type=txn_type,
        category=params.get("category") or None,
        date_from=date_from,
        date_to=date_to,
        query=params.get("q") or None,
    )


def _int_param(request: Request, name: str, default: int) -> int:
    raw = request.query_params.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {name}") from exc


def _status_for(exc: ValueError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    return 400


@app.post("/api/owners", status_code=201, response_model=OwnerRegistered)
def register_owner(data: OwnerIn, db: Session = Depends(get_db)):
    try:
        owner = OwnerService(db).register(data)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return OwnerRegistered(
        owner=OwnerOut.model_validate(owner), token=issue_owner_token(owner.id)
    )


@app.get("/api/owners/me", response_model=OwnerOut)
def current_owner(
    owner_id: int = Depends(current_owner_id), db: Session = Depends(get_db)
):
    try:
        return OwnerService(db).get(owner_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    owner_id: int = Depends(current_owner_id), db: Session = Depends(get_db)
):
    return CategoryService(db, owner_id).list_visible()


@app.post("/api/categories", status_code=201, response_model=CategoryOut)
def create_category(
    data: CategoryIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    try:
        return CategoryService(db, owner_id).create_named(data)
    except ConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: RowId,
    data: CategoryUpdate,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    try:
        return CategoryService(db, owner_id).update(category_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc


@app.delete("/api/categories/{category_id}", status_code=204)
def delete_category(
    category_id: RowId,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    if not CategoryService(db, owner_id).delete(category_id):
        raise HTTPException(status_code=404, detail="Category not found")
    return Response(status_code=204)


@app.get("/api/transactions", response_model=TransactionPage)
def list_transactions(
    request: Request,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    page = max(_int_param(request, "page", 1), 1)
    limit = _int_param(request, "limit", settings.default_page_size)
    limit = min(max(limit, 1), settings.max_page_size)
    try:
        items, total = TransactionService(db, owner_id).query(
            filters, request.query_params.get("sort"), page, limit
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return TransactionPage(
        items=[TransactionOut.model_validate(txn) for txn in items],
        total=total,
        page=page,
        page_size=limit,
        total_pages=math.ceil(total / limit),
    )


@app.post("/api/transactions", status_code=201, response_model=TransactionOut)
def create_transaction(
    data: TransactionIn,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, owner_id).create(data)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: RowId,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, owner_id).get(transaction_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: RowId,
    patch: TransactionPatch,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    try:
        return TransactionService(db, owner_id).update(transaction_id, patch)
    except ValueError as exc:
        raise HTTPException(status_code=_status_for(exc), detail=str(exc)) from exc


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: RowId,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    if not TransactionService(db, owner_id).delete(transaction_id):
        raise HTTPException(status_code=404, detail="Transaction not found")
    return Response(status_code=204)


@app.get("/api/reports/summary", response_model=SummaryOut)
def report_summary(
    request: Request,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    return SummaryOut.model_validate(ReportService(db, owner_id).summarize(period))


@app.get("/api/reports/balance", response_model=BalanceOut)
def report_balance(
    request: Request,
    owner_id: int = Depends(current_owner_id),
    db: Session = Depends(get_db),
):
    period = period_from_request(request)
    return BalanceOut.model_validate(
        ReportService(db, owner_id).balance_series(period)
    )

