import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class PositionResponse(BaseModel):
    id: uuid.UUID
    asset: str
    account: str
    horizon: Optional[str]
    deposit_date: datetime
    deposit_qty: Decimal
    deposit_cost: Decimal
    deposit_unit_cost: Decimal
    withdrawal_date: Optional[datetime]
    withdrawal_qty: Decimal
    withdrawal_value: Decimal
    withdrawal_unit_price: Decimal
    remaining_qty: Decimal
    pnl: Decimal
    pnl_percent: Decimal
    is_open: bool
    exit_date: Optional[datetime]
    is_vault: bool
    vault_name: Optional[str]
    vault_status: Optional[str]
    origin_tx_id: Optional[uuid.UUID]

    model_config = {"from_attributes": True}


class PositionList(BaseModel):
    positions: list[PositionResponse]
    total: int


class ClosePositionRequest(BaseModel):
    date: datetime
