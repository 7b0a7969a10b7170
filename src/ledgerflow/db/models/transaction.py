import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ledgerflow.db.session import Base, SoftDeleteMixin, TimestampMixin, UUIDPrimaryKey


class Transaction(UUIDPrimaryKey, TimestampMixin, SoftDeleteMixin, Base):
    """One ledger entry. Derived columns are written once by derivation and only
    rewritten by an explicit amend, which re-derives everything."""

    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_asset_account", "asset", "account"),
    )

    date: Mapped[datetime] = mapped_column(index=True)
    type: Mapped[str] = mapped_column(String(50), index=True)
    asset: Mapped[str] = mapped_column(String(50), index=True)
    account: Mapped[str] = mapped_column(String(100), index=True)
    counterparty: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    tag: Mapped[Optional[str]] = mapped_column(String(255), default=None, index=True)
    note: Mapped[Optional[str]] = mapped_column(Text, default=None)

    quantity: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    price_local: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    local_currency: Mapped[str] = mapped_column(String(10), default="USD")
    fx_to_usd: Mapped[Decimal] = mapped_column(Numeric(30, 12))
    fx_to_vnd: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    fee_local: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    fee_usd: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    fee_vnd: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))

    # Derived
    amount_local: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    amount_usd: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    amount_vnd: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    delta_qty: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    cashflow_local: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    cashflow_usd: Mapped[Decimal] = mapped_column(Numeric(30, 8))
    cashflow_vnd: Mapped[Decimal] = mapped_column(Numeric(30, 8))

    internal_flow: Mapped[bool] = mapped_column(default=False)
    position_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("positions.id"), default=None, index=True
    )
    horizon: Mapped[Optional[str]] = mapped_column(String(20), default=None)
    entry_date: Mapped[Optional[datetime]] = mapped_column(default=None)
    exit_date: Mapped[Optional[datetime]] = mapped_column(default=None, index=True)

    # FX provenance, carried unchanged through amends and reversals
    fx_source: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    fx_timestamp: Mapped[Optional[datetime]] = mapped_column(default=None)

    # Borrow metadata (type = borrow)
    borrow_apr: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 8), default=None)
    borrow_term_days: Mapped[Optional[int]] = mapped_column(Integer, default=None)
    borrow_active: Mapped[Optional[bool]] = mapped_column(default=None)

    # Reversal entry -> the entry it cancels
    reverses_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("transactions.id"), default=None)
