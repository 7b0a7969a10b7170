"""Reports API: holdings, cash flow, P&L, spending and borrow exposure."""

from datetime import UTC, datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from ledgerflow.api.deps import ReportingDep
from ledgerflow.domain.models.reports import (
    CashFlowReport,
    Holding,
    HoldingSummary,
    OutflowProjection,
    OutstandingBorrow,
    Period,
    PnLReport,
    SpendingReport,
)

router = APIRouter(prefix="/api/reports", tags=["reports"])


def _now() -> datetime:
    return datetime.now(UTC).replace(tzinfo=None)


def _parse_period(start_date: str, end_date: str) -> Period:
    try:
        start = datetime.fromisoformat(start_date).replace(tzinfo=None)
        end = datetime.fromisoformat(end_date).replace(hour=23, minute=59, second=59, tzinfo=None)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid date format: {e}")
    if end < start:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")
    return Period(start_date=start, end_date=end)


def _parse_as_of(as_of: Optional[str]) -> datetime:
    if as_of is None:
        return _now()
    try:
        return datetime.fromisoformat(as_of).replace(hour=23, minute=59, second=59, tzinfo=None)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid date format: {e}")


@router.get("/holdings", response_model=HoldingSummary)
async def holdings(reporting: ReportingDep, as_of: Optional[str] = Query(None)) -> HoldingSummary:
    return await reporting.get_holdings(_parse_as_of(as_of))


@router.get("/holdings/by-asset", response_model=dict[str, Holding])
async def holdings_by_asset(reporting: ReportingDep, as_of: Optional[str] = Query(None)):
    return await reporting.get_holdings_by_asset(_parse_as_of(as_of))


@router.get("/holdings/by-account", response_model=dict[str, list[Holding]])
async def holdings_by_account(reporting: ReportingDep, as_of: Optional[str] = Query(None)):
    return await reporting.get_holdings_by_account(_parse_as_of(as_of))


@router.get("/cashflow", response_model=CashFlowReport)
async def cash_flow(
    reporting: ReportingDep,
    start_date: str = Query(...),
    end_date: str = Query(...),
) -> CashFlowReport:
    return await reporting.get_cash_flow(_parse_period(start_date, end_date))


@router.get("/pnl", response_model=PnLReport)
async def pnl(
    reporting: ReportingDep,
    start_date: str = Query(...),
    end_date: str = Query(...),
) -> PnLReport:
    return await reporting.get_pnl(_parse_period(start_date, end_date))


@router.get("/spending", response_model=SpendingReport)
async def spending(
    reporting: ReportingDep,
    start_date: str = Query(...),
    end_date: str = Query(...),
) -> SpendingReport:
    return await reporting.get_spending(_parse_period(start_date, end_date))


@router.get("/borrows/outstanding", response_model=list[OutstandingBorrow])
async def outstanding_borrows(reporting: ReportingDep, as_of: Optional[str] = Query(None)):
    return await reporting.get_outstanding_borrows(_parse_as_of(as_of))


@router.get("/borrows/outflows", response_model=list[OutflowProjection])
async def expected_borrow_outflows(reporting: ReportingDep, as_of: Optional[str] = Query(None)):
    """Principal still owed plus interest accrued to each borrow's term end."""
    return await reporting.get_expected_borrow_outflows(_parse_as_of(as_of))
