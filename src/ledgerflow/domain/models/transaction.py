"""Domain types for ledger entries before and after derivation."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class TransactionDraft(BaseModel):
    """Raw caller input. Prices and FX are already resolved; nothing here is derived."""

    date: datetime
    type: str
    asset: str
    account: str
    quantity: Decimal  # Magnitude; direction comes from type
    price_local: Decimal = Decimal(1)
    local_currency: str = "USD"
    fx_to_usd: Optional[Decimal] = None
    fx_to_vnd: Optional[Decimal] = None
    fee_local: Decimal = Decimal(0)
    fee_usd: Optional[Decimal] = None
    fee_vnd: Optional[Decimal] = None
    counterparty: Optional[str] = None
    tag: Optional[str] = None
    note: Optional[str] = None
    position_id: Optional[uuid.UUID] = None
    horizon: Optional[str] = None
    entry_date: Optional[datetime] = None
    exit_date: Optional[datetime] = None
    internal_flow: bool = False
    fx_source: Optional[str] = None
    fx_timestamp: Optional[datetime] = None
    borrow_apr: Optional[Decimal] = None
    borrow_term_days: Optional[int] = None
    borrow_active: Optional[bool] = None
    reverses_id: Optional[uuid.UUID] = None

    model_config = ConfigDict(from_attributes=True)


class DerivedTransaction(TransactionDraft):
    """A draft with every derived column filled in. Ready to persist."""

    fx_to_usd: Decimal
    fx_to_vnd: Decimal
    fee_usd: Decimal
    fee_vnd: Decimal
    amount_local: Decimal
    amount_usd: Decimal
    amount_vnd: Decimal
    delta_qty: Decimal
    cashflow_local: Decimal
    cashflow_usd: Decimal
    cashflow_vnd: Decimal


class TransactionFilter(BaseModel):
    """Ledger query filter. Every field is optional; set fields are ANDed."""

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    types: Optional[list[str]] = None
    assets: Optional[list[str]] = None
    accounts: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    counterparty: Optional[str] = None
    position_id: Optional[uuid.UUID] = None
    include_deleted: bool = False
    limit: Optional[int] = None
    offset: int = 0


class LedgerEntry(DerivedTransaction):
    """A persisted ledger row."""

    id: uuid.UUID
    created_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
