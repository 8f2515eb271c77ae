"""FastAPI router configuration."""
from __future__ import annotations

from datetime import date, datetime
from typing import Sequence
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Query, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import crud, imports, ledger, reports, schemas, store
from .computation import MovementKind
from .config import Settings, get_settings
from .database import get_session, get_session_factory
from .errors import ConflictError, LedgerError, NotFoundError, ValidationError
from .logging_setup import setup_logging

router = APIRouter()

SessionMaker = async_sessionmaker[AsyncSession]


def provide_settings() -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return get_settings()


def _http_error(exc: LedgerError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    elif isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(exc))


def _this_month(settings: Settings) -> tuple[int, int]:
    now = datetime.now(ZoneInfo(settings.default_timezone))
    return now.month, now.year


@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


@router.post(
    "/categories",
    response_model=schemas.CategoryOut,
    status_code=status.HTTP_201_CREATED,
    tags=["categories"],
)
async def create_category(
    payload: schemas.CategoryCreate, session: AsyncSession = Depends(get_session)
) -> schemas.CategoryOut:
    if await crud.get_category_by_code(session, payload.code) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Category {payload.code} already exists",
        )
    category = await crud.create_category(session, payload)
    await session.commit()
    return schemas.CategoryOut.model_validate(category)


@router.get("/categories", response_model=list[schemas.CategoryOut], tags=["categories"])
async def list_categories(
    include_inactive: bool = False, session: AsyncSession = Depends(get_session)
) -> Sequence[schemas.CategoryOut]:
    categories = await crud.list_categories(session, include_inactive=include_inactive)
    return [schemas.CategoryOut.model_validate(category) for category in categories]


@router.get("/categories/{category_id}", response_model=schemas.CategoryOut, tags=["categories"])
async def get_category(
    category_id: int, session: AsyncSession = Depends(get_session)
) -> schemas.CategoryOut:
    try:
        category = await crud.get_category(session, category_id)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return schemas.CategoryOut.model_validate(category)


@router.put("/categories/{category_id}", response_model=schemas.CategoryOut, tags=["categories"])
async def update_category(
    category_id: int,
    payload: schemas.CategoryUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.CategoryOut:
    try:
        category = await crud.get_category(session, category_id)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    category = await crud.update_category(session, category, payload)
    await session.commit()
    await session.refresh(category)
    return schemas.CategoryOut.model_validate(category)


@router.delete(
    "/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["categories"]
)
async def deactivate_category(
    category_id: int, session: AsyncSession = Depends(get_session)
) -> None:
    try:
        category = await crud.get_category(session, category_id)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    await crud.deactivate_category(session, category)
    await session.commit()


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


@router.post(
    "/items", response_model=schemas.ItemOut, status_code=status.HTTP_201_CREATED, tags=["items"]
)
async def create_item(
    payload: schemas.ItemCreate, session: AsyncSession = Depends(get_session)
) -> schemas.ItemOut:
    try:
        item = await crud.create_item(session, payload)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    await session.commit()
    return schemas.ItemOut.model_validate(item)


@router.get("/items", response_model=list[schemas.ItemOut], tags=["items"])
async def list_items(
    category_id: int | None = None,
    search: str | None = None,
    include_inactive: bool = False,
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.ItemOut]:
    items = await crud.list_items(
        session, category_id=category_id, search=search, include_inactive=include_inactive
    )
    return [schemas.ItemOut.model_validate(item) for item in items]


@router.get("/items/stock", response_model=list[schemas.CurrentStock], tags=["items"])
async def list_current_stock(
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None, ge=1900, le=2100),
    category_id: int | None = None,
    search: str | None = None,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> Sequence[schemas.CurrentStock]:
    default_month, default_year = _this_month(settings)
    return await reports.all_current_stock(
        session,
        month or default_month,
        year or default_year,
        category_id=category_id,
        search=search,
    )


@router.get("/items/{item_id}", response_model=schemas.ItemOut, tags=["items"])
async def get_item(item_id: int, session: AsyncSession = Depends(get_session)) -> schemas.ItemOut:
    try:
        item = await crud.get_item(session, item_id)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return schemas.ItemOut.model_validate(item)


@router.put("/items/{item_id}", response_model=schemas.ItemOut, tags=["items"])
async def update_item(
    item_id: int,
    payload: schemas.ItemUpdate,
    session: AsyncSession = Depends(get_session),
) -> schemas.ItemOut:
    try:
        item = await crud.get_item(session, item_id)
        item = await crud.update_item(session, item, payload)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    await session.commit()
    await session.refresh(item)
    return schemas.ItemOut.model_validate(item)


@router.delete("/items/{item_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["items"])
async def deactivate_item(item_id: int, session: AsyncSession = Depends(get_session)) -> None:
    try:
        item = await crud.get_item(session, item_id)
    except LedgerError as exc:
        raise _http_error(exc) from exc
    await crud.deactivate_item(session, item)
    await session.commit()


@router.get("/items/{item_id}/stock", response_model=schemas.CurrentStock, tags=["items"])
async def get_current_stock(
    item_id: int,
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None, ge=1900, le=2100),
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.CurrentStock:
    default_month, default_year = _this_month(settings)
    try:
        return await reports.current_stock(
            session, item_id, month or default_month, year or default_year
        )
    except LedgerError as exc:
        raise _http_error(exc) from exc


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@router.post(
    "/ledger/entries",
    response_model=schemas.LedgerEntryOut,
    status_code=status.HTTP_201_CREATED,
    tags=["ledger"],
)
async def record_movement(
    payload: schemas.MovementCreate,
    session_factory: SessionMaker = Depends(get_session_factory),
) -> schemas.LedgerEntryOut:
    try:
        entry = await store.run_in_transaction(
            session_factory, lambda session: ledger.record(session, payload)
        )
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return schemas.LedgerEntryOut.model_validate(entry)


@router.get("/ledger/entries", response_model=list[schemas.LedgerEntryOut], tags=["ledger"])
async def list_movements(
    item_id: int | None = None,
    kind: MovementKind | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = None,
    reference_id: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> Sequence[schemas.LedgerEntryOut]:
    entries = await ledger.list_entries(
        session,
        item_id=item_id,
        kind=kind,
        start=start,
        end=end,
        month=month,
        year=year,
        reference_id=reference_id,
    )
    return [schemas.LedgerEntryOut.model_validate(entry) for entry in entries]


@router.post("/ledger/reversals", response_model=schemas.ReversalResult, tags=["ledger"])
async def reverse_movements(
    payload: schemas.ReversalRequest,
    session_factory: SessionMaker = Depends(get_session_factory),
) -> schemas.ReversalResult:
    try:
        removed = await store.run_in_transaction(
            session_factory,
            lambda session: ledger.reverse(
                session, payload.item_id, payload.reference_id, payload.kind
            ),
        )
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return schemas.ReversalResult(
        item_id=payload.item_id,
        reference_id=payload.reference_id,
        kind=payload.kind,
        reversed=removed,
    )


# ---------------------------------------------------------------------------
# Balances
# ---------------------------------------------------------------------------


@router.get("/balances/{item_id}", response_model=schemas.BalancePeriodOut, tags=["balances"])
async def get_balance(
    item_id: int,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1900, le=2100),
    session: AsyncSession = Depends(get_session),
) -> schemas.BalancePeriodOut:
    period = await store.get_period(session, item_id, month, year)
    if period is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No balance for item {item_id} in {month:02d}/{year}",
        )
    return schemas.BalancePeriodOut.model_validate(period)


@router.patch("/balances", response_model=schemas.BalancePeriodOut, tags=["balances"])
async def update_balance(
    payload: schemas.BalanceUpdate,
    session_factory: SessionMaker = Depends(get_session_factory),
) -> schemas.BalancePeriodOut:
    try:
        period = await store.run_in_transaction(
            session_factory, lambda session: ledger.update_balance(session, payload)
        )
    except LedgerError as exc:
        raise _http_error(exc) from exc
    return schemas.BalancePeriodOut.model_validate(period)


# ---------------------------------------------------------------------------
# Imports
# ---------------------------------------------------------------------------


@router.post("/imports/full", response_model=schemas.ImportSummary, tags=["imports"])
async def import_full(
    payload: schemas.FullImportRequest,
    session_factory: SessionMaker = Depends(get_session_factory),
) -> schemas.ImportSummary:
    return await imports.full_import(session_factory, payload.month, payload.year, payload.rows)


@router.post("/imports/simplified", response_model=schemas.ImportSummary, tags=["imports"])
async def import_simplified(
    payload: schemas.SimplifiedImportRequest,
    session_factory: SessionMaker = Depends(get_session_factory),
) -> schemas.ImportSummary:
    return await imports.simplified_import(
        session_factory, payload.month, payload.year, payload.rows
    )


@router.post("/imports/sheet", response_model=schemas.ImportSummary, tags=["imports"])
async def import_sheet(
    payload: schemas.SheetImportRequest,
    session_factory: SessionMaker = Depends(get_session_factory),
) -> schemas.ImportSummary:
    try:
        return await imports.import_sheet(session_factory, payload.title, payload.rows)
    except LedgerError as exc:
        raise _http_error(exc) from exc


@router.post("/imports/workbook", response_model=schemas.ImportSummary, tags=["imports"])
async def import_workbook(
    file: UploadFile = File(...),
    session_factory: SessionMaker = Depends(get_session_factory),
) -> schemas.ImportSummary:
    data = await file.read()
    try:
        return await imports.import_workbook(session_factory, data)
    except LedgerError as exc:
        raise _http_error(exc) from exc


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


@router.get("/reports/monthly", response_model=schemas.MonthlyReport, tags=["reports"])
async def get_monthly_report(
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None, ge=1900, le=2100),
    category_id: int | None = None,
    search: str | None = None,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.MonthlyReport:
    default_month, default_year = _this_month(settings)
    return await reports.monthly_report(
        session,
        month or default_month,
        year or default_year,
        category_id=category_id,
        search=search,
    )


@router.get("/reports/yearly", response_model=list[schemas.MonthlyReport], tags=["reports"])
async def get_yearly_report(
    year: int = Query(..., ge=1900, le=2100),
    category_id: int | None = None,
    session: AsyncSession = Depends(get_session),
) -> list[schemas.MonthlyReport]:
    return await reports.yearly_report(session, year, category_id=category_id)


@router.get("/reports/alerts", response_model=schemas.StockAlerts, tags=["reports"])
async def get_stock_alerts(
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None, ge=1900, le=2100),
    min_threshold: int | None = Query(None, ge=0),
    days_until_expiry: int | None = Query(None, ge=0),
    today: date | None = None,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(provide_settings),
) -> schemas.StockAlerts:
    default_month, default_year = _this_month(settings)
    return await reports.stock_alerts(
        session,
        month or default_month,
        year or default_year,
        min_threshold=min_threshold,
        days_until_expiry=days_until_expiry,
        today=today,
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level, echo_sql=settings.echo_sql)
    app = FastAPI(title=settings.app_name)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            origin.strip()
            for origin in settings.access_control_allow_origin.split(",")
            if origin.strip()
        ],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.dependency_overrides[provide_settings] = lambda: settings
    app.include_router(router)
    return app


app = create_app()


__all__ = ["app", "create_app"]
