import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from ledgerflow.db.session import Base, TimestampMixin, UUIDPrimaryKey
from ledgerflow.domain.enums import LinkType


class ClosureLink(UUIDPrimaryKey, TimestampMixin, Base):
    """Deposit -> withdrawal pairing. One row per withdrawal event."""

    __tablename__ = "closure_links"

    link_type: Mapped[str] = mapped_column(String(30), default=LinkType.STAKE_UNSTAKE.value)
    from_tx: Mapped[uuid.UUID] = mapped_column(ForeignKey("transactions.id", ondelete="CASCADE"), index=True)
    to_tx: Mapped[uuid.UUID] = mapped_column(ForeignKey("transactions.id", ondelete="CASCADE"), index=True)
    position_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("positions.id", ondelete="CASCADE"), default=None)
    exit_date: Mapped[Optional[datetime]] = mapped_column(default=None)

    # Snapshot of the withdrawal and the cost basis in force when it happened
    withdrawal_qty: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    withdrawal_value: Mapped[Decimal] = mapped_column(Numeric(30, 8), default=Decimal(0))
    deposit_unit_cost: Mapped[Decimal] = mapped_column(Numeric(30, 12), default=Decimal(0))
