"""Deferred P&L math: pure functions over closure links and position figures.

Nothing here is realized until the originating deposit carries an exit date.
"""

from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ledgerflow.domain.models.position import LinkedWithdrawal
from ledgerflow.domain.models.reports import Period

ZERO = Decimal(0)
HUNDRED = Decimal(100)
DAYS_PER_YEAR = Decimal(365)


def roi_percent(pnl: Decimal, cost_basis: Decimal) -> Decimal:
    if cost_basis == 0:
        return ZERO
    return pnl / cost_basis * HUNDRED


def annualized_roi_percent(roi: Decimal, holding_days: Optional[int]) -> Optional[Decimal]:
    """Linear annualization. None (not zero) when ROI is zero or the duration is unknown."""
    if roi == 0 or holding_days is None or holding_days <= 0:
        return None
    return roi * DAYS_PER_YEAR / Decimal(holding_days)


def holding_days(start: Optional[datetime], end: Optional[datetime]) -> Optional[int]:
    if start is None or end is None:
        return None
    return (end - start).days


def link_pnl(link: LinkedWithdrawal) -> Decimal:
    """Value received minus the cost basis in force when the withdrawal happened."""
    return link.withdrawal_value_usd - link.withdrawal_qty * link.deposit_unit_cost


def proportional_estimate(link: LinkedWithdrawal) -> Decimal:
    """Fallback for a link whose deposit has no exit date yet (detail views only)."""
    if link.deposit_qty == 0:
        return ZERO
    share = link.withdrawal_qty / link.deposit_qty
    return share * link_pnl(link)


def is_closed_in(link: LinkedWithdrawal, period: Optional[Period]) -> bool:
    if link.deposit_exit_date is None:
        return False
    return period is None or period.contains(link.deposit_exit_date)


def group_by_deposit(links: list[LinkedWithdrawal]) -> dict:
    grouped: dict = defaultdict(list)
    for link in links:
        grouped[link.deposit_tx_id].append(link)
    return grouped


def deposit_realized(links: list[LinkedWithdrawal]) -> tuple[Decimal, Decimal]:
    """(pnl, cost_basis) for every link of one closed deposit.

    Links are summed one by one with their own unit-cost snapshot. When the
    linked quantity exceeds the deposit, the cost is the full deposited cost.
    """
    value = sum((link.withdrawal_value_usd for link in links), ZERO)
    qty = sum((link.withdrawal_qty for link in links), ZERO)
    cost = sum((link.withdrawal_qty * link.deposit_unit_cost for link in links), ZERO)

    deposit_qty = links[0].deposit_qty
    if deposit_qty > 0 and qty > deposit_qty:
        last = max(links, key=lambda link: link.withdrawal_date)
        cost = deposit_qty * last.deposit_unit_cost
    return value - cost, cost


def realized_from_links(
    links: list[LinkedWithdrawal],
    period: Optional[Period] = None,
) -> tuple[Decimal, Decimal]:
    """Realized (pnl, cost_basis) over links whose deposit closed inside the period.

    Links of still-open deposits contribute exactly zero.
    """
    total_pnl = ZERO
    total_cost = ZERO
    for deposit_links in group_by_deposit(links).values():
        if not is_closed_in(deposit_links[0], period):
            continue
        pnl, cost = deposit_realized(deposit_links)
        total_pnl += pnl
        total_cost += cost
    return total_pnl, total_cost


def estimated_from_links(links: list[LinkedWithdrawal]) -> Decimal:
    return sum((proportional_estimate(link) for link in links if link.deposit_exit_date is None), ZERO)


def unrealized(remaining_qty: Decimal, unit_cost: Decimal, current_price: Decimal) -> Decimal:
    if remaining_qty <= 0:
        return ZERO
    return (current_price - unit_cost) * remaining_qty
