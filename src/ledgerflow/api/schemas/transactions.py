import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class TransactionCreate(BaseModel):
    """A raw entry. FX rates left empty are resolved from stored rates as of date."""

    date: datetime
    type: str
    asset: str
    account: str
    quantity: Decimal
    price_local: Decimal = Decimal(1)
    local_currency: Optional[str] = None
    fx_to_usd: Optional[Decimal] = None
    fx_to_vnd: Optional[Decimal] = None
    fee_local: Decimal = Decimal(0)
    counterparty: Optional[str] = None
    tag: Optional[str] = None
    note: Optional[str] = None
    horizon: Optional[str] = None
    internal_flow: bool = False
    borrow_apr: Optional[Decimal] = None
    borrow_term_days: Optional[int] = None


class TransactionAmend(BaseModel):
    """Fields to change; anything left out keeps its stored value."""

    date: Optional[datetime] = None
    type: Optional[str] = None
    asset: Optional[str] = None
    account: Optional[str] = None
    quantity: Optional[Decimal] = None
    price_local: Optional[Decimal] = None
    local_currency: Optional[str] = None
    fx_to_usd: Optional[Decimal] = None
    fx_to_vnd: Optional[Decimal] = None
    fee_local: Optional[Decimal] = None
    counterparty: Optional[str] = None
    tag: Optional[str] = None
    note: Optional[str] = None
    horizon: Optional[str] = None
    internal_flow: Optional[bool] = None
    borrow_apr: Optional[Decimal] = None
    borrow_term_days: Optional[int] = None
    borrow_active: Optional[bool] = None


class ReverseRequest(BaseModel):
    date: Optional[datetime] = None


class TransactionResponse(BaseModel):
    id: uuid.UUID
    date: datetime
    type: str
    asset: str
    account: str
    counterparty: Optional[str]
    tag: Optional[str]
    note: Optional[str]
    quantity: Decimal
    price_local: Decimal
    local_currency: str
    fx_to_usd: Decimal
    fx_to_vnd: Decimal
    fee_local: Decimal
    fee_usd: Decimal
    fee_vnd: Decimal
    amount_local: Decimal
    amount_usd: Decimal
    amount_vnd: Decimal
    delta_qty: Decimal
    cashflow_local: Decimal
    cashflow_usd: Decimal
    cashflow_vnd: Decimal
    internal_flow: bool
    position_id: Optional[uuid.UUID]
    horizon: Optional[str]
    entry_date: Optional[datetime]
    exit_date: Optional[datetime]
    fx_source: Optional[str]
    fx_timestamp: Optional[datetime]
    borrow_apr: Optional[Decimal]
    borrow_term_days: Optional[int]
    borrow_active: Optional[bool]
    reverses_id: Optional[uuid.UUID]
    deleted_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class TransactionList(BaseModel):
    transactions: list[TransactionResponse]
    total: int
    limit: int
    offset: int
