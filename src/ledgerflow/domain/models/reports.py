"""Report structures returned by ReportingService."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, model_validator


class Period(BaseModel):
    """Inclusive [start_date, end_date] window shared by every period report."""

    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "Period":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    def contains(self, moment: datetime) -> bool:
        return self.start_date <= moment <= self.end_date


class Holding(BaseModel):
    asset: str
    account: str
    quantity: Decimal
    price_usd: Decimal = Decimal(0)
    value_usd: Decimal = Decimal(0)
    value_vnd: Decimal = Decimal(0)
    percentage: Decimal = Decimal(0)
    last_updated: Optional[datetime] = None


class HoldingSummary(BaseModel):
    as_of: datetime
    total_value_usd: Decimal = Decimal(0)
    total_value_vnd: Decimal = Decimal(0)
    holdings: list[Holding] = []


class FlowBreakdown(BaseModel):
    inflow_usd: Decimal = Decimal(0)
    outflow_usd: Decimal = Decimal(0)
    net_usd: Decimal = Decimal(0)
    inflow_vnd: Decimal = Decimal(0)
    outflow_vnd: Decimal = Decimal(0)
    net_vnd: Decimal = Decimal(0)
    count: int = 0


class CashFlowReport(BaseModel):
    period: Period
    fx_usd_vnd: Decimal
    operating: FlowBreakdown = FlowBreakdown()
    financing: FlowBreakdown = FlowBreakdown()
    combined: FlowBreakdown = FlowBreakdown()
    by_type: dict[str, FlowBreakdown] = {}
    by_tag: dict[str, FlowBreakdown] = {}


class AssetPnL(BaseModel):
    asset: str
    realized_pnl_usd: Decimal = Decimal(0)
    realized_pnl_vnd: Decimal = Decimal(0)
    unrealized_pnl_usd: Decimal = Decimal(0)
    unrealized_pnl_vnd: Decimal = Decimal(0)
    total_pnl_usd: Decimal = Decimal(0)
    total_pnl_vnd: Decimal = Decimal(0)
    current_quantity: Decimal = Decimal(0)
    average_cost_usd: Decimal = Decimal(0)
    current_value_usd: Decimal = Decimal(0)


class PnLReport(BaseModel):
    period: Period
    realized_pnl_usd: Decimal = Decimal(0)
    realized_pnl_vnd: Decimal = Decimal(0)
    unrealized_pnl_usd: Decimal = Decimal(0)
    unrealized_pnl_vnd: Decimal = Decimal(0)
    total_pnl_usd: Decimal = Decimal(0)
    total_pnl_vnd: Decimal = Decimal(0)
    cost_basis_usd: Decimal = Decimal(0)
    roi_percent: Decimal = Decimal(0)
    annualized_roi_percent: Optional[Decimal] = None
    by_asset: dict[str, AssetPnL] = {}


class SpendingBucket(BaseModel):
    amount_usd: Decimal = Decimal(0)
    amount_vnd: Decimal = Decimal(0)
    count: int = 0
    percentage: Decimal = Decimal(0)


class TransactionSummary(BaseModel):
    id: uuid.UUID
    date: datetime
    type: str
    asset: str
    account: str
    counterparty: Optional[str] = None
    tag: Optional[str] = None
    amount_usd: Decimal
    amount_vnd: Decimal
    note: Optional[str] = None


class SpendingReport(BaseModel):
    period: Period
    fx_usd_vnd: Decimal
    total_usd: Decimal = Decimal(0)
    total_vnd: Decimal = Decimal(0)
    by_tag: dict[str, SpendingBucket] = {}
    by_counterparty: dict[str, SpendingBucket] = {}
    by_day: dict[str, SpendingBucket] = {}
    top_expenses: list[TransactionSummary] = []


class OutstandingBorrow(BaseModel):
    account: str
    asset: str
    borrowed: Decimal
    repaid: Decimal
    remaining: Decimal


class OutflowProjection(BaseModel):
    """Principal still owed on one borrow plus simple interest to its term end."""

    borrow_id: uuid.UUID
    account: str
    asset: str
    remaining_principal: Decimal
    interest_accrued: Decimal
    total_outflow: Decimal
    as_of: datetime
