from datetime import datetime

from fastapi import APIRouter, HTTPException, Query, status

from ledgerflow.api.deps import DbDep, PricesDep
from ledgerflow.api.schemas.market import (
    PriceCreate,
    PricePopulateRequest,
    PricePopulateResponse,
    PriceResponse,
)
from ledgerflow.db.session import unit_of_work
from ledgerflow.infra.price.service import day_start

router = APIRouter(prefix="/api/prices", tags=["prices"])


@router.get("/{symbol}", response_model=PriceResponse)
async def daily_price(
    symbol: str, prices: PricesDep, db: DbDep, date: datetime = Query(...), currency: str = Query("USD")
) -> PriceResponse:
    """Cached daily price, fetched and cached on a miss."""
    async with unit_of_work(db):
        price = await prices.get_daily(symbol, date.replace(tzinfo=None), currency)
    if price is None:
        raise HTTPException(status_code=404, detail=f"No {currency.upper()} price for {symbol.upper()} on {date.date()}")
    return PriceResponse(
        symbol=symbol.upper(), currency=currency.upper(), date=day_start(date.replace(tzinfo=None)), price=price
    )


@router.post("", response_model=PriceResponse, status_code=status.HTTP_201_CREATED)
async def store_price(body: PriceCreate, db: DbDep, prices: PricesDep) -> PriceResponse:
    async with unit_of_work(db):
        row = await prices.store(body.symbol, body.date.replace(tzinfo=None), body.price, body.currency, body.source)
    return PriceResponse.model_validate(row)


@router.post("/populate", response_model=PricePopulateResponse)
async def populate(body: PricePopulateRequest, db: DbDep, prices: PricesDep) -> PricePopulateResponse:
    async with unit_of_work(db):
        filled = await prices.populate(
            body.start_date.replace(tzinfo=None), body.end_date.replace(tzinfo=None), body.symbols, body.currency
        )
    return PricePopulateResponse(days_filled=filled)
