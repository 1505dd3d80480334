from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Annotated, AsyncIterator

from fastapi import Depends, FastAPI, HTTPException, Query, Response, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from lookup.errors import BatchValidationError
from lookup.service import BillLookupService, build_lookup_service

from . import schemas
from .core import config
from .core.config import settings
from .core.logging import configure_logging
from .db import get_db, init_db
from .services.export_service import history_csv, stock_csv
from .services.sales_service import (
    HistoryQuery,
    MemberNotFoundError,
    MemberValidationError,
    SalesService,
    parse_date_bound,
)
from .services.stock_service import StockQuery, StockService, StockValidationError


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    """Configure logging and create tables when the API boots."""

    configure_logging()
    init_db()
    logger.info("Bill Desk API starting in {} environment", config.get_settings().environment)
    yield


app = FastAPI(title="Bill Desk API", version="0.1.0", debug=settings.debug, lifespan=lifespan)

bearer_scheme = HTTPBearer(auto_error=False)


@app.get("/healthz", tags=["system"])
def healthcheck() -> dict[str, str]:
    """Basic readiness probe consumed by infrastructure monitors."""

    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


def require_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str | None:
    """Accept the request when it carries one of the configured bearer tokens."""

    current = config.get_settings()
    if current.skip_auth:
        return None
    if credentials is None or credentials.credentials not in current.api_tokens:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


async def _lookup_service() -> AsyncIterator[BillLookupService]:
    """Provide a lookup service whose HTTP client lives for one request."""

    service = build_lookup_service(config.get_settings())
    try:
        yield service
    finally:
        await service.aclose()


def _stock_service(db=Depends(get_db)) -> StockService:
    return StockService(db, max_import=config.get_settings().stock_import_max_bills)


def _sales_service(db=Depends(get_db)) -> SalesService:
    return SalesService(db, max_sale_keys=config.get_settings().sale_max_keys)


def _decimal(value: float | None) -> Decimal | None:
    return None if value is None else Decimal(str(value))


def _stock_query(
    *,
    provider_code: Annotated[str | None, Query(description="Provider code filter")] = None,
    min_total: Annotated[float | None, Query(description="Minimum bill total")] = None,
    max_total: Annotated[float | None, Query(description="Maximum bill total")] = None,
    search: Annotated[
        str | None, Query(description="Case-insensitive match on name, address or account")
    ] = None,
    limit: Annotated[int, Query(ge=1, le=2000)] = 200,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> StockQuery:
    return StockQuery(
        provider_code=provider_code.strip() if provider_code else None,
        min_total=_decimal(min_total),
        max_total=_decimal(max_total),
        search=search,
        limit=limit,
        offset=offset,
    )


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


def _export_name(prefix: str) -> str:
    return f"{prefix}-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}.csv"


# ----------------------------------------------------------------------
# Bill lookups


@app.post(
    "/bills/bulk-check",
    response_model=list[schemas.BatchResult],
    tags=["bills"],
    dependencies=[Depends(require_token)],
)
async def bulk_check(
    payload: schemas.BulkCheckRequest,
    service: BillLookupService = Depends(_lookup_service),
):
    """Look up many accounts for one provider; results follow the input order."""

    try:
        results = await service.run_batch(payload.provider_code, payload.account_ids)
    except BatchValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [schemas.batch_result(result) for result in results]


@app.post(
    "/bills/check",
    response_model=schemas.BatchSuccess,
    tags=["bills"],
    dependencies=[Depends(require_token)],
)
async def check_bill(
    payload: schemas.CheckRequest,
    service: BillLookupService = Depends(_lookup_service),
):
    """Look up a single account; a failed lookup is reported as a 502."""

    try:
        result = await service.check_one(payload.provider_code, payload.account_id)
    except BatchValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not result.ok:
        raise HTTPException(
            status_code=502,
            detail=schemas.BatchFailure.model_validate(result).model_dump(),
        )
    return schemas.batch_result(result)


# ----------------------------------------------------------------------
# Stock


@app.post(
    "/stock/import",
    response_model=schemas.StockImportResponse,
    tags=["stock"],
    dependencies=[Depends(require_token)],
)
def import_stock(
    payload: schemas.StockImportRequest,
    service: StockService = Depends(_stock_service),
):
    """Upsert bills into stock keyed by ``provider_code::account_id``."""

    try:
        summary = service.import_bills([bill.model_dump() for bill in payload.bills])
    except StockValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return schemas.StockImportResponse(
        added=summary.added,
        updated=summary.updated,
        skipped=summary.skipped,
        total=summary.total,
    )


@app.get(
    "/stock",
    response_model=schemas.StockList,
    tags=["stock"],
    dependencies=[Depends(require_token)],
)
def list_stock(
    *,
    query: StockQuery = Depends(_stock_query),
    service: StockService = Depends(_stock_service),
):
    """List stocked bills, newest import first."""

    result = service.list_stock(query)
    return schemas.StockList(
        total=result.total,
        items=[schemas.StockItem.model_validate(item) for item in result.items],
    )


@app.post(
    "/stock/remove",
    response_model=schemas.StockRemoveResponse,
    tags=["stock"],
    dependencies=[Depends(require_token)],
)
def remove_stock(
    payload: schemas.StockRemoveRequest,
    service: StockService = Depends(_stock_service),
):
    try:
        removed = service.remove(payload.keys)
    except StockValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return schemas.StockRemoveResponse(removed=removed)


@app.get("/stock/export", tags=["stock"], dependencies=[Depends(require_token)])
def export_stock(
    *,
    query: StockQuery = Depends(_stock_query),
    service: StockService = Depends(_stock_service),
):
    """Download the filtered stock listing as CSV."""

    result = service.list_stock(query)
    return _csv_response(stock_csv(result.items), _export_name("stock"))


# ----------------------------------------------------------------------
# Members


@app.get(
    "/members",
    response_model=list[schemas.Member],
    tags=["members"],
    dependencies=[Depends(require_token)],
)
def list_members(service: SalesService = Depends(_sales_service)):
    return service.list_members()


@app.post(
    "/members",
    response_model=schemas.Member,
    status_code=201,
    tags=["members"],
    dependencies=[Depends(require_token)],
)
def create_member(payload: schemas.MemberCreate, service: SalesService = Depends(_sales_service)):
    try:
        return service.create_member(name=payload.name, zalo=payload.zalo, bank=payload.bank)
    except MemberValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.get(
    "/members/{member_id}",
    response_model=schemas.Member,
    tags=["members"],
    dependencies=[Depends(require_token)],
)
def get_member(member_id: int, service: SalesService = Depends(_sales_service)):
    try:
        return service.get_member(member_id)
    except MemberNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Member not found") from exc


@app.put(
    "/members/{member_id}",
    response_model=schemas.Member,
    tags=["members"],
    dependencies=[Depends(require_token)],
)
def update_member(
    member_id: int,
    payload: schemas.MemberUpdate,
    service: SalesService = Depends(_sales_service),
):
    try:
        return service.update_member(
            member_id, name=payload.name, zalo=payload.zalo, bank=payload.bank
        )
    except MemberNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Member not found") from exc
    except MemberValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


# ----------------------------------------------------------------------
# Sales & history


@app.post(
    "/sales",
    response_model=schemas.SaleResponse,
    tags=["sales"],
    dependencies=[Depends(require_token)],
)
def sell(payload: schemas.SaleRequest, service: SalesService = Depends(_sales_service)):
    """Move stocked bills to the history ledger under one member."""

    try:
        record = service.sell(
            payload.member_id, payload.keys, employee_username=payload.employee_username
        )
    except MemberNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Member not found") from exc
    except StockValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if record.missing_keys:
        logger.warning("Sale skipped keys not in stock: {}", record.missing_keys)
    return schemas.SaleResponse(
        sold_count=len(record.sold),
        sold=[schemas.HistoryItem.model_validate(entry) for entry in record.sold],
        missing_keys=record.missing_keys,
    )


@app.get("/history", tags=["sales"], dependencies=[Depends(require_token)])
def list_history(
    *,
    search: Annotated[str | None, Query(description="Match on bill, member or employee")] = None,
    from_date: Annotated[str | None, Query(description="ISO date or timestamp, inclusive")] = None,
    to_date: Annotated[str | None, Query(description="ISO date or timestamp, inclusive")] = None,
    min_total: Annotated[float | None, Query()] = None,
    max_total: Annotated[float | None, Query()] = None,
    limit: Annotated[int, Query(ge=1, le=5000)] = 500,
    offset: Annotated[int, Query(ge=0)] = 0,
    export: Annotated[str | None, Query(pattern="^csv$")] = None,
    service: SalesService = Depends(_sales_service),
):
    """Return sold bills newest first, or the same page as a CSV download."""

    try:
        query = HistoryQuery(
            search=search,
            sold_from=parse_date_bound(from_date),
            sold_to=parse_date_bound(to_date, end_of_day=True),
            min_total=_decimal(min_total),
            max_total=_decimal(max_total),
            limit=limit,
            offset=offset,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid date filter: {exc}") from exc

    result = service.list_history(query)
    if export == "csv":
        return _csv_response(history_csv(result.items), _export_name("history"))
    return schemas.HistoryList(
        total=result.total,
        items=[schemas.HistoryItem.model_validate(entry) for entry in result.items],
    )
