"""ReportingService: holdings, cash flow, P&L, spending and borrow reports.

Every report is a read-only scan of non-deleted ledger entries plus position
and closure-link state. Cash-flow style reports convert with one USD/VND rate
taken at the period end, never with the rates stored on the entries, except
for a currency that has no stored rate at all.
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerflow.accounting import pnl
from ledgerflow.accounting.derivation import round_amount
from ledgerflow.db.models.transaction import Transaction
from ledgerflow.db.repos.position_repo import PositionRepo
from ledgerflow.db.repos.transaction_repo import TransactionRepo
from ledgerflow.domain.enums import CashFlowCategory, TxType
from ledgerflow.domain.enums.transaction_type import FINANCING, SPEND_LIKE
from ledgerflow.domain.models.reports import (
    AssetPnL,
    CashFlowReport,
    FlowBreakdown,
    Holding,
    HoldingSummary,
    OutflowProjection,
    OutstandingBorrow,
    Period,
    PnLReport,
    SpendingBucket,
    SpendingReport,
    TransactionSummary,
)
from ledgerflow.domain.models.transaction import TransactionFilter
from ledgerflow.infra.fx.service import FXService
from ledgerflow.infra.price.service import PriceService

logger = logging.getLogger(__name__)

ZERO = Decimal(0)
HUNDRED = Decimal(100)
TOP_EXPENSES = 10
ALL_ACCOUNTS = "All Accounts"

_FINANCING_VALUES = {t.value for t in FINANCING}

Converter = Callable[[str, Decimal], tuple[Decimal, Decimal]]


def _percent(part: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return ZERO
    return part / total * HUNDRED


class _FlowTotals:
    """Local-currency sums for one bucket; converted only when the report is built."""

    def __init__(self) -> None:
        self.inflow: dict[str, Decimal] = defaultdict(Decimal)
        self.outflow: dict[str, Decimal] = defaultdict(Decimal)
        self.count = 0

    def add(self, currency: str, amount: Decimal) -> None:
        if amount > 0:
            self.inflow[currency] += amount
        elif amount < 0:
            self.outflow[currency] += -amount
        self.count += 1

    def merge(self, other: "_FlowTotals") -> None:
        for currency, amount in other.inflow.items():
            self.inflow[currency] += amount
        for currency, amount in other.outflow.items():
            self.outflow[currency] += amount
        self.count += other.count

    def build(self, convert: Converter) -> FlowBreakdown:
        in_usd = in_vnd = out_usd = out_vnd = ZERO
        for currency, amount in self.inflow.items():
            usd, vnd = convert(currency, amount)
            in_usd += usd
            in_vnd += vnd
        for currency, amount in self.outflow.items():
            usd, vnd = convert(currency, amount)
            out_usd += usd
            out_vnd += vnd
        return FlowBreakdown(
            inflow_usd=in_usd,
            outflow_usd=out_usd,
            net_usd=in_usd - out_usd,
            inflow_vnd=in_vnd,
            outflow_vnd=out_vnd,
            net_vnd=in_vnd - out_vnd,
            count=self.count,
        )


def drop_reversed(rows: list[Transaction]) -> list[Transaction]:
    """Remove entry pairs that cancel each other inside the same scan."""
    pairs = {tx.reverses_id for tx in rows if tx.reverses_id is not None}
    ids = {tx.id for tx in rows}
    return [
        tx for tx in rows
        if tx.id not in pairs and not (tx.reverses_id is not None and tx.reverses_id in ids)
    ]


def cash_movement(tx: Transaction) -> Decimal:
    """Signed local cash for reporting. A borrow counts as a financing inflow of its amount."""
    if tx.type == TxType.BORROW.value:
        return tx.amount_local - tx.fee_local
    return tx.cashflow_local


class ReportingService:
    def __init__(self, session: AsyncSession, fx: FXService, prices: PriceService) -> None:
        self._txs = TransactionRepo(session)
        self._positions = PositionRepo(session)
        self._fx = fx
        self._prices = prices

    # -- conversion -----------------------------------------------------------------

    async def _period_converter(self, as_of: datetime, rows: list[Transaction]) -> tuple[Decimal, Converter]:
        """One set of rates fixed at as_of, shared by every flow in the report."""
        usd_vnd = await self._fx.latest_rate("USD", "VND", as_of)
        to_usd: dict[str, Decimal] = {"USD": Decimal(1), "VND": Decimal(1) / usd_vnd}
        for currency in sorted({tx.local_currency for tx in rows} - set(to_usd)):
            to_usd[currency] = await self._currency_to_usd(currency, usd_vnd, as_of, rows)

        def convert(currency: str, amount: Decimal) -> tuple[Decimal, Decimal]:
            if currency == "VND":
                return round_amount(amount / usd_vnd, "USD"), round_amount(amount, "VND")
            usd = amount * to_usd[currency]
            return round_amount(usd, "USD"), round_amount(usd * usd_vnd, "VND")

        return usd_vnd, convert

    async def _currency_to_usd(
        self, currency: str, usd_vnd: Decimal, as_of: datetime, rows: list[Transaction]
    ) -> Decimal:
        """Stored currency/USD, then stored currency/VND over USD/VND, then the latest entry's own rate."""
        direct = await self._fx.quote(currency, "USD", as_of)
        if direct is not None:
            return direct.rate
        via_vnd = await self._fx.quote(currency, "VND", as_of)
        if via_vnd is not None:
            return via_vnd.rate / usd_vnd
        # rows are in ascending date order
        latest = next(tx for tx in reversed(rows) if tx.local_currency == currency)
        logger.warning(
            "No stored %s rate on or before %s, using the rate of entry %s", currency, as_of.date(), latest.id
        )
        return latest.fx_to_usd

    async def _period_rows(self, period: Period, **filters) -> list[Transaction]:
        return await self._txs.list_all(
            TransactionFilter(start_date=period.start_date, end_date=period.end_date, **filters)
        )

    # -- holdings ---------------------------------------------------------------------

    async def _unit_price_usd(self, asset: str, as_of: datetime) -> Decimal:
        upper = asset.upper()
        if upper in {"USD", "VND"}:
            return await self._fx.latest_rate(upper, "USD", as_of)
        price = await self._prices.latest_usd(asset, as_of)
        if price is None:
            logger.warning("No price for %s as of %s, valuing at zero", asset, as_of.date())
            return ZERO
        return price

    async def get_holdings(self, as_of: datetime) -> HoldingSummary:
        """Balances per (asset, account) valued at the latest known price on or before as_of."""
        rows = await self._txs.list_all(TransactionFilter(end_date=as_of))
        balances: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
        updated: dict[tuple[str, str], datetime] = {}
        for tx in rows:
            key = (tx.asset, tx.account)
            balances[key] += tx.delta_qty
            updated[key] = max(updated.get(key, tx.date), tx.date)

        usd_vnd = await self._fx.latest_rate("USD", "VND", as_of)
        prices: dict[str, Decimal] = {}
        holdings: list[Holding] = []
        for (asset, account), quantity in sorted(balances.items()):
            if quantity == 0:
                continue
            if asset not in prices:
                prices[asset] = await self._unit_price_usd(asset, as_of)
            value_usd = round_amount(quantity * prices[asset], "USD")
            holdings.append(Holding(
                asset=asset,
                account=account,
                quantity=quantity,
                price_usd=prices[asset],
                value_usd=value_usd,
                value_vnd=round_amount(value_usd * usd_vnd, "VND"),
                last_updated=updated[(asset, account)],
            ))

        return self._summarize(as_of, holdings)

    def _summarize(self, as_of: datetime, holdings: list[Holding]) -> HoldingSummary:
        total_usd = sum((h.value_usd for h in holdings), ZERO)
        total_vnd = sum((h.value_vnd for h in holdings), ZERO)
        for holding in holdings:
            holding.percentage = _percent(holding.value_usd, total_usd)
        return HoldingSummary(as_of=as_of, total_value_usd=total_usd, total_value_vnd=total_vnd, holdings=holdings)

    async def get_holdings_by_asset(self, as_of: datetime) -> dict[str, Holding]:
        summary = await self.get_holdings(as_of)
        result: dict[str, Holding] = {}
        for holding in summary.holdings:
            existing = result.get(holding.asset)
            if existing is None:
                result[holding.asset] = holding.model_copy(update={"account": ALL_ACCOUNTS})
                continue
            existing.quantity += holding.quantity
            existing.value_usd += holding.value_usd
            existing.value_vnd += holding.value_vnd
            existing.percentage += holding.percentage
            if holding.last_updated and (existing.last_updated is None or holding.last_updated > existing.last_updated):
                existing.last_updated = holding.last_updated
        return result

    async def get_holdings_by_account(self, as_of: datetime) -> dict[str, list[Holding]]:
        summary = await self.get_holdings(as_of)
        result: dict[str, list[Holding]] = defaultdict(list)
        for holding in summary.holdings:
            result[holding.account].append(holding)
        return dict(result)

    # -- cash flow -----------------------------------------------------------------------

    async def get_cash_flow(self, period: Period) -> CashFlowReport:
        rows = [tx for tx in drop_reversed(await self._period_rows(period)) if not tx.internal_flow]
        usd_vnd, convert = await self._period_converter(period.end_date, rows)

        buckets = {CashFlowCategory.OPERATING: _FlowTotals(), CashFlowCategory.FINANCING: _FlowTotals()}
        by_type: dict[str, _FlowTotals] = defaultdict(_FlowTotals)
        by_tag: dict[str, _FlowTotals] = defaultdict(_FlowTotals)
        for tx in rows:
            amount = cash_movement(tx)
            category = (
                CashFlowCategory.FINANCING if tx.type in _FINANCING_VALUES else CashFlowCategory.OPERATING
            )
            buckets[category].add(tx.local_currency, amount)
            by_type[tx.type].add(tx.local_currency, amount)
            by_tag[tx.tag or "Untagged"].add(tx.local_currency, amount)

        combined = _FlowTotals()
        combined.merge(buckets[CashFlowCategory.OPERATING])
        combined.merge(buckets[CashFlowCategory.FINANCING])
        return CashFlowReport(
            period=period,
            fx_usd_vnd=usd_vnd,
            operating=buckets[CashFlowCategory.OPERATING].build(convert),
            financing=buckets[CashFlowCategory.FINANCING].build(convert),
            combined=combined.build(convert),
            by_type={name: totals.build(convert) for name, totals in sorted(by_type.items())},
            by_tag={name: totals.build(convert) for name, totals in sorted(by_tag.items())},
        )

    # -- P&L -------------------------------------------------------------------------------

    async def get_pnl(self, period: Period) -> PnLReport:
        """Realized P&L of deposits closed inside the period plus unrealized P&L of open positions."""
        usd_vnd = await self._fx.latest_rate("USD", "VND", period.end_date)
        links = await self._positions.linked_withdrawals()

        by_asset: dict[str, AssetPnL] = {}
        realized_total = ZERO
        cost_total = ZERO
        links_by_asset: dict[str, list] = defaultdict(list)
        for link in links:
            links_by_asset[link.asset].append(link)
        for asset, asset_links in sorted(links_by_asset.items()):
            realized, cost = pnl.realized_from_links(asset_links, period)
            if realized == 0 and cost == 0:
                continue
            realized_total += realized
            cost_total += cost
            by_asset[asset] = AssetPnL(asset=asset, realized_pnl_usd=realized)

        unrealized_total = ZERO
        for position in await self._positions.list_positions(is_open=True):
            if position.deposit_date > period.end_date or position.remaining_qty <= 0:
                continue
            price = await self._prices.latest_usd(position.asset, period.end_date)
            if price is None:
                price = position.deposit_unit_cost
            gain = pnl.unrealized(position.remaining_qty, position.deposit_unit_cost, price)
            entry = by_asset.setdefault(position.asset, AssetPnL(asset=position.asset))
            entry.unrealized_pnl_usd += gain
            entry.current_value_usd += position.remaining_qty * price
            held_cost = entry.current_quantity * entry.average_cost_usd + position.remaining_qty * position.deposit_unit_cost
            entry.current_quantity += position.remaining_qty
            entry.average_cost_usd = held_cost / entry.current_quantity
            unrealized_total += gain

        for entry in by_asset.values():
            entry.realized_pnl_usd = round_amount(entry.realized_pnl_usd, "USD")
            entry.unrealized_pnl_usd = round_amount(entry.unrealized_pnl_usd, "USD")
            entry.total_pnl_usd = entry.realized_pnl_usd + entry.unrealized_pnl_usd
            entry.realized_pnl_vnd = round_amount(entry.realized_pnl_usd * usd_vnd, "VND")
            entry.unrealized_pnl_vnd = round_amount(entry.unrealized_pnl_usd * usd_vnd, "VND")
            entry.total_pnl_vnd = entry.realized_pnl_vnd + entry.unrealized_pnl_vnd
            entry.current_value_usd = round_amount(entry.current_value_usd, "USD")

        realized_usd = round_amount(realized_total, "USD")
        unrealized_usd = round_amount(unrealized_total, "USD")
        realized_vnd = round_amount(realized_usd * usd_vnd, "VND")
        unrealized_vnd = round_amount(unrealized_usd * usd_vnd, "VND")
        roi = pnl.roi_percent(realized_total, cost_total)
        return PnLReport(
            period=period,
            realized_pnl_usd=realized_usd,
            realized_pnl_vnd=realized_vnd,
            unrealized_pnl_usd=unrealized_usd,
            unrealized_pnl_vnd=unrealized_vnd,
            total_pnl_usd=realized_usd + unrealized_usd,
            total_pnl_vnd=realized_vnd + unrealized_vnd,
            cost_basis_usd=cost_total,
            roi_percent=roi,
            annualized_roi_percent=pnl.annualized_roi_percent(
                roi, (period.end_date - period.start_date).days or None
            ),
            by_asset=by_asset,
        )

    # -- spending ----------------------------------------------------------------------------

    async def get_spending(self, period: Period) -> SpendingReport:
        """Cash actually leaving for spend-like entries; credit-card accruals and transfers are absent."""
        rows = [
            tx for tx in drop_reversed(await self._period_rows(period, types=[t.value for t in SPEND_LIKE]))
            if tx.cashflow_local < 0
        ]
        usd_vnd, convert = await self._period_converter(period.end_date, rows)

        by_tag: dict[str, SpendingBucket] = defaultdict(SpendingBucket)
        by_counterparty: dict[str, SpendingBucket] = defaultdict(SpendingBucket)
        by_day: dict[str, SpendingBucket] = defaultdict(SpendingBucket)
        summaries: list[TransactionSummary] = []
        total_usd = total_vnd = ZERO
        for tx in rows:
            usd, vnd = convert(tx.local_currency, -tx.cashflow_local)
            total_usd += usd
            total_vnd += vnd
            for bucket in (
                by_tag[tx.tag or "Untagged"],
                by_counterparty[tx.counterparty or "Unknown"],
                by_day[tx.date.strftime("%Y-%m-%d")],
            ):
                bucket.amount_usd += usd
                bucket.amount_vnd += vnd
                bucket.count += 1
            summaries.append(TransactionSummary(
                id=tx.id,
                date=tx.date,
                type=tx.type,
                asset=tx.asset,
                account=tx.account,
                counterparty=tx.counterparty,
                tag=tx.tag,
                amount_usd=usd,
                amount_vnd=vnd,
                note=tx.note,
            ))

        for group in (by_tag, by_counterparty, by_day):
            for bucket in group.values():
                bucket.percentage = _percent(bucket.amount_usd, total_usd)

        summaries.sort(key=lambda s: s.amount_usd, reverse=True)
        return SpendingReport(
            period=period,
            fx_usd_vnd=usd_vnd,
            total_usd=total_usd,
            total_vnd=total_vnd,
            by_tag=dict(by_tag),
            by_counterparty=dict(by_counterparty),
            by_day=dict(sorted(by_day.items())),
            top_expenses=summaries[:TOP_EXPENSES],
        )

    # -- borrowing -----------------------------------------------------------------------------

    async def get_outstanding_borrows(self, as_of: datetime) -> list[OutstandingBorrow]:
        rows = await self._txs.list_all(TransactionFilter(
            end_date=as_of, types=[TxType.BORROW.value, TxType.REPAY_BORROW.value]
        ))
        borrowed: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
        repaid: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
        for tx in rows:
            key = (tx.account, tx.asset)
            # delta_qty carries the sign of reversal entries
            if tx.type == TxType.BORROW.value:
                borrowed[key] += tx.delta_qty
            else:
                repaid[key] -= tx.delta_qty

        result = []
        for key in sorted(set(borrowed) | set(repaid)):
            remaining = borrowed[key] - repaid[key]
            if remaining == 0:
                continue
            result.append(OutstandingBorrow(
                account=key[0], asset=key[1], borrowed=borrowed[key], repaid=repaid[key], remaining=remaining,
            ))
        return result

    async def get_expected_borrow_outflows(self, as_of: datetime) -> list[OutflowProjection]:
        """Remaining principal plus simple interest to term end for each active borrow.

        Repayments on an (account, asset) pay down that pair's borrows oldest first.
        """
        rows = await self._txs.list_all(TransactionFilter(
            end_date=as_of, types=[TxType.BORROW.value, TxType.REPAY_BORROW.value]
        ))
        repaid: dict[tuple[str, str], Decimal] = defaultdict(Decimal)
        for tx in rows:
            if tx.type == TxType.REPAY_BORROW.value:
                repaid[(tx.account, tx.asset)] -= tx.delta_qty

        result = []
        for tx in drop_reversed(rows):
            if tx.type != TxType.BORROW.value or tx.reverses_id is not None or tx.borrow_active is False:
                continue
            key = (tx.account, tx.asset)
            applied = min(repaid[key], tx.quantity)
            repaid[key] -= applied
            remaining = tx.quantity - applied

            days_left = 0
            if tx.borrow_term_days:
                end = tx.date + timedelta(days=tx.borrow_term_days)
                if as_of < end:
                    days_left = (end - as_of).days
            interest = ZERO
            if days_left > 0 and tx.borrow_apr and remaining > 0:
                interest = remaining * tx.borrow_apr * days_left / Decimal(365)

            result.append(OutflowProjection(
                borrow_id=tx.id,
                account=tx.account,
                asset=tx.asset,
                remaining_principal=remaining,
                interest_accrued=interest,
                total_outflow=remaining + interest,
                as_of=as_of,
            ))
        return result
