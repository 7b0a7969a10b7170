"""Position closure state and P&L read models."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Union

from pydantic import BaseModel


class Open(BaseModel):
    """Deposit has no exit date: nothing is realized yet."""

    status: Literal["open"] = "open"


class Closed(BaseModel):
    """Deposit was stamped with an exit date by a close_all withdrawal or an explicit close."""

    status: Literal["closed"] = "closed"
    exit_date: datetime


PositionState = Union[Open, Closed]


def state_from_exit_date(exit_date: Optional[datetime]) -> PositionState:
    if exit_date is None:
        return Open()
    return Closed(exit_date=exit_date)


class LinkedWithdrawal(BaseModel):
    """One closure link joined with the numbers P&L needs."""

    link_id: uuid.UUID
    deposit_tx_id: uuid.UUID
    withdrawal_tx_id: uuid.UUID
    asset: str
    account: str
    withdrawal_date: datetime
    withdrawal_qty: Decimal
    withdrawal_value_usd: Decimal
    deposit_qty: Decimal
    deposit_unit_cost: Decimal
    deposit_date: Optional[datetime] = None
    deposit_exit_date: Optional[datetime] = None


class PositionPnL(BaseModel):
    """P&L view of a single position."""

    position_id: uuid.UUID
    state: PositionState
    realized_pnl: Decimal = Decimal(0)
    estimated_pnl: Decimal = Decimal(0)  # proportional estimate for links not yet closed
    cost_basis_closed: Decimal = Decimal(0)
    roi_percent: Decimal = Decimal(0)
    annualized_roi_percent: Optional[Decimal] = None
    holding_days: Optional[int] = None
