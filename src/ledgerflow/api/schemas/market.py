from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class FXRateCreate(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    date: datetime
    source: str = "manual"


class FXRateResponse(BaseModel):
    from_currency: str
    to_currency: str
    rate: Decimal
    date: datetime
    source: str

    model_config = ConfigDict(from_attributes=True)


class FXRateList(BaseModel):
    rates: list[FXRateResponse]
    total: int


class FXRefreshRequest(BaseModel):
    """Today's rates from base to each target, dated on date (default today)."""

    base: str = "USD"
    targets: list[str] = Field(default_factory=lambda: ["VND"])
    date: Optional[datetime] = None


class FXRecalculateRequest(BaseModel):
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class FXRecalculateResponse(BaseModel):
    updated: int


class PriceCreate(BaseModel):
    symbol: str
    date: datetime
    price: Decimal
    currency: str = "USD"
    source: str = "manual"


class PriceResponse(BaseModel):
    symbol: str
    currency: str
    date: datetime
    price: Decimal
    source: Optional[str] = None  # None when derived, e.g. a stablecoin's fixed 1

    model_config = ConfigDict(from_attributes=True)


class PricePopulateRequest(BaseModel):
    """Backfill daily prices; symbols default to every priced ledger asset."""

    start_date: datetime
    end_date: datetime
    symbols: Optional[list[str]] = None
    currency: str = "USD"


class PricePopulateResponse(BaseModel):
    days_filled: dict[str, int]
