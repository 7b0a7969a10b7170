"""FX API: stored rates, manual and fetched ingestion, and re-pricing of fallback entries."""

from datetime import UTC, datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from ledgerflow.api.deps import DbDep, FXDep, LedgerDep
from ledgerflow.api.schemas.market import (
    FXRateCreate,
    FXRateList,
    FXRateResponse,
    FXRecalculateRequest,
    FXRecalculateResponse,
    FXRefreshRequest,
)
from ledgerflow.db.session import unit_of_work

router = APIRouter(prefix="/api/fx", tags=["fx"])


def _naive(moment: Optional[datetime]) -> Optional[datetime]:
    return moment.replace(tzinfo=None) if moment is not None else None


@router.get("/rates", response_model=FXRateList)
async def list_rates(
    fx: FXDep,
    from_currency: str = Query("USD"),
    to_currency: str = Query("VND"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
) -> FXRateList:
    rows = await fx.history(from_currency, to_currency, _naive(start_date), _naive(end_date))
    return FXRateList(rates=[FXRateResponse.model_validate(r) for r in rows], total=len(rows))


@router.get("/rates/latest", response_model=FXRateResponse)
async def latest_rate(
    fx: FXDep,
    from_currency: str = Query("USD"),
    to_currency: str = Query("VND"),
    as_of: Optional[datetime] = Query(None),
) -> FXRateResponse:
    """Rate in effect on as_of, including the configured fallback for USD/VND."""
    moment = _naive(as_of) or datetime.now(UTC).replace(tzinfo=None)
    quote = await fx.resolve(from_currency, to_currency, moment)
    return FXRateResponse(
        from_currency=from_currency.upper(),
        to_currency=to_currency.upper(),
        rate=quote.rate,
        date=quote.timestamp or moment,
        source=quote.source,
    )


@router.post("/rates", response_model=FXRateResponse, status_code=status.HTTP_201_CREATED)
async def store_rate(body: FXRateCreate, db: DbDep, fx: FXDep) -> FXRateResponse:
    async with unit_of_work(db):
        row = await fx.store(body.from_currency, body.to_currency, body.rate, _naive(body.date), body.source)
    return FXRateResponse.model_validate(row)


@router.post("/refresh", response_model=FXRateList)
async def refresh_rates(body: FXRefreshRequest, db: DbDep, fx: FXDep) -> FXRateList:
    day = _naive(body.date) or datetime.now(UTC).replace(tzinfo=None)
    async with unit_of_work(db):
        rows = await fx.refresh(body.base, body.targets, day)
    if not rows:
        raise HTTPException(status_code=404, detail="exchange rate API returned none of the requested rates")
    return FXRateList(rates=[FXRateResponse.model_validate(r) for r in rows], total=len(rows))


@router.post("/recalculate", response_model=FXRecalculateResponse)
async def recalculate(body: FXRecalculateRequest, db: DbDep, ledger: LedgerDep) -> FXRecalculateResponse:
    async with unit_of_work(db):
        updated = await ledger.recalculate_fx(_naive(body.start_date), _naive(body.end_date))
    return FXRecalculateResponse(updated=updated)
