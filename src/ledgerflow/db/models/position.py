import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ledgerflow.db.session import Base, TimestampMixin, UUIDPrimaryKey


class Position(UUIDPrimaryKey, TimestampMixin, Base):
    """Weighted-average cost basis for one logical holding.

    Staking positions and vaults share the same cost-basis columns; a vault is
    a position with is_vault set and a unique name.
    """

    __tablename__ = "positions"

    asset: Mapped[str] = mapped_column(String(50), index=True)
    account: Mapped[str] = mapped_column(String(100), index=True)
    horizon: Mapped[Optional[str]] = mapped_column(String(20), default=None)

    deposit_date: Mapped[datetime]
    deposit_qty: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    deposit_cost: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    deposit_unit_cost: Mapped[Decimal] = mapped_column(Numeric(30, 12), default=Decimal(0))

    withdrawal_date: Mapped[Optional[datetime]] = mapped_column(default=None)
    withdrawal_qty: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    withdrawal_value: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    withdrawal_unit_price: Mapped[Decimal] = mapped_column(Numeric(30, 12), default=Decimal(0))

    pnl: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    pnl_percent: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))

    is_open: Mapped[bool] = mapped_column(default=True, index=True)
    exit_date: Mapped[Optional[datetime]] = mapped_column(default=None)

    # The deposit entry whose exit_date is the closure signal
    origin_tx_id: Mapped[Optional[uuid.UUID]] = mapped_column(default=None)

    is_vault: Mapped[bool] = mapped_column(default=False)
    vault_name: Mapped[Optional[str]] = mapped_column(String(255), default=None, unique=True)
    vault_status: Mapped[Optional[str]] = mapped_column(String(20), default=None)

    @property
    def remaining_qty(self) -> Decimal:
        return self.deposit_qty - self.withdrawal_qty
