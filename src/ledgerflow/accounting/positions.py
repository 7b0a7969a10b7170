"""Position lifecycle: weighted-average cost basis with deferred P&L.

One lifecycle serves staking positions and named vaults. Every mutation runs
under the position's lock with the row loaded FOR UPDATE; the caller owns the
session transaction, so a deposit, the ledger entry it emits, the exit stamp
and the closure link commit or roll back together.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerflow.accounting import pnl
from ledgerflow.accounting.ledger import LedgerService, usd_entry
from ledgerflow.accounting.locks import position_lock
from ledgerflow.db.models.closure_link import ClosureLink
from ledgerflow.db.models.position import Position
from ledgerflow.db.models.transaction import Transaction
from ledgerflow.db.repos.position_repo import PositionRepo
from ledgerflow.domain.enums import LinkType, TxType, VaultStatus
from ledgerflow.domain.models.position import PositionPnL, state_from_exit_date
from ledgerflow.exceptions import ClosurePolicyError, NotFoundError, ValidationError
from ledgerflow.infra.price.service import PriceService

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


class Deposit(NamedTuple):
    position: Position
    transaction: Transaction


class Withdrawal(NamedTuple):
    position: Position
    transaction: Optional[Transaction]
    link: Optional[ClosureLink]
    quantity: Decimal
    unit_price: Decimal


class PositionLifecycle:
    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerService,
        prices: Optional[PriceService] = None,
    ) -> None:
        self._ledger = ledger
        self._prices = prices
        self._repo = PositionRepo(session)

    @property
    def repo(self) -> PositionRepo:
        return self._repo

    async def _resolve_ref(self, ref: uuid.UUID | str, for_update: bool = False) -> Position:
        """A position ID, or a vault name."""
        if isinstance(ref, uuid.UUID):
            return await self._repo.require(ref, for_update=for_update)
        try:
            position_id = uuid.UUID(str(ref))
        except ValueError:
            position = await self._repo.get_by_name(str(ref), for_update=for_update)
            if position is None:
                raise NotFoundError("position", ref) from None
            return position
        return await self._repo.require(position_id, for_update=for_update)

    # -- deposits ---------------------------------------------------------

    async def deposit(
        self,
        *,
        asset: str,
        account: str,
        quantity: Decimal,
        unit_cost: Decimal,
        date: datetime,
        position_ref: uuid.UUID | str | None = None,
        vault_name: Optional[str] = None,
        horizon: Optional[str] = None,
        tx_type: TxType = TxType.DEPOSIT,
        **entry_fields: Any,
    ) -> Deposit:
        """Add quantity at unit_cost to a position and book the deposit entry.

        A named position must be open (ClosurePolicyError otherwise). With no
        reference, the open position for (asset, account, horizon) is reused,
        or a new one is created.
        """
        if quantity <= 0:
            raise ValidationError("deposit quantity must be greater than zero")
        if unit_cost < 0:
            raise ValidationError("deposit unit cost must not be negative")

        position = await self._locate_for_deposit(asset, account, horizon, position_ref, vault_name, date)
        if position.id is None:
            await self._repo.create(position)

        async with position_lock(position.id):
            position = await self._repo.require(position.id, for_update=True)
            if not position.is_open:
                raise ClosurePolicyError(f"position {position.id} is closed; deposits are not allowed")

            tx = await self._ledger.record(usd_entry(
                date=date,
                tx_type=tx_type,
                asset=position.asset,
                account=position.account,
                quantity=quantity,
                unit_price_usd=unit_cost,
                position_id=position.id,
                horizon=horizon or position.horizon,
                entry_date=date,
                **entry_fields,
            ))

            position.deposit_qty += quantity
            position.deposit_cost += tx.amount_usd
            position.deposit_unit_cost = position.deposit_cost / position.deposit_qty
            if position.origin_tx_id is None:
                position.origin_tx_id = tx.id
                logger.info("Opened position %s: %s %s on %s", position.id, quantity, position.asset, position.account)
            await self._repo.update(position)
        return Deposit(position, tx)

    async def _locate_for_deposit(
        self,
        asset: str,
        account: str,
        horizon: Optional[str],
        position_ref: uuid.UUID | str | None,
        vault_name: Optional[str],
        date: datetime,
    ) -> Position:
        if position_ref is not None:
            position = await self._resolve_ref(position_ref)
            if not position.is_open:
                raise ClosurePolicyError(f"position {position.id} is closed; deposits are not allowed")
            return position

        if vault_name:
            existing = await self._repo.get_by_name(vault_name)
            if existing is not None:
                if not existing.is_open:
                    raise ClosurePolicyError(f"vault {vault_name!r} has ended; deposits are not allowed")
                return existing
            return Position(
                asset=asset,
                account=account,
                horizon=horizon,
                deposit_date=date,
                deposit_qty=ZERO,
                deposit_cost=ZERO,
                deposit_unit_cost=ZERO,
                is_vault=True,
                vault_name=vault_name,
                vault_status=VaultStatus.ACTIVE.value,
            )

        existing = await self._repo.find_open(asset, account, horizon)
        if existing is not None:
            return existing
        return Position(
            asset=asset,
            account=account,
            horizon=horizon,
            deposit_date=date,
            deposit_qty=ZERO,
            deposit_cost=ZERO,
            deposit_unit_cost=ZERO,
        )

    # -- withdrawals ------------------------------------------------------

    async def resolve_exit_price(
        self,
        position: Position,
        date: datetime,
        quantity: Decimal,
        exit_unit_price: Optional[Decimal] = None,
        exit_total_usd: Optional[Decimal] = None,
    ) -> Decimal:
        """Explicit price, then total / quantity, then the day's oracle price, then cost (no gain)."""
        if exit_unit_price is not None and exit_unit_price > 0:
            return exit_unit_price
        if exit_total_usd is not None and exit_total_usd > 0 and quantity > 0:
            return exit_total_usd / quantity
        if self._prices is not None:
            price = await self._prices.get_daily(position.asset, date)
            if price is not None and price > 0:
                return price
        logger.warning(
            "No exit price for %s on %s, using deposit unit cost %s",
            position.asset, date.date(), position.deposit_unit_cost,
        )
        return position.deposit_unit_cost

    async def withdraw(
        self,
        position_ref: uuid.UUID | str,
        *,
        date: datetime,
        quantity: Optional[Decimal] = None,
        close_all: bool = False,
        exit_unit_price: Optional[Decimal] = None,
        exit_total_usd: Optional[Decimal] = None,
        tx_type: TxType = TxType.WITHDRAW,
        **entry_fields: Any,
    ) -> Withdrawal:
        """Withdraw from a position and link the withdrawal to its originating deposit.

        close_all withdraws the whole remaining quantity whatever quantity says,
        then stamps the deposit's exit date. When partial withdrawals already
        took everything, close_all just closes and writes no entry. Withdrawing
        more than remains is allowed.
        """
        target = await self._resolve_ref(position_ref)
        async with position_lock(target.id):
            position = await self._repo.require(target.id, for_update=True)
            if position.origin_tx_id is None:
                raise ClosurePolicyError(f"position {position.id} has no originating deposit")

            if close_all:
                if not position.is_open:
                    raise ClosurePolicyError(f"position {position.id} is already closed")
                qty = position.remaining_qty
                if qty <= 0:
                    await self._close_locked(position, date)
                    await self._repo.update(position)
                    return Withdrawal(position, None, None, ZERO, ZERO)
            else:
                if quantity is None or quantity <= 0:
                    raise ValidationError("withdrawal quantity must be greater than zero")
                qty = quantity

            unit_price = await self.resolve_exit_price(position, date, qty, exit_unit_price, exit_total_usd)
            tx = await self._ledger.record(usd_entry(
                date=date,
                tx_type=tx_type,
                asset=position.asset,
                account=position.account,
                quantity=qty,
                unit_price_usd=unit_price,
                position_id=position.id,
                horizon=position.horizon,
                **entry_fields,
            ))

            position.withdrawal_qty += qty
            position.withdrawal_value += tx.amount_usd
            position.withdrawal_unit_price = position.withdrawal_value / position.withdrawal_qty
            position.withdrawal_date = date

            link = await self._repo.create_link(
                from_tx=position.origin_tx_id,
                to_tx=tx.id,
                link_type=LinkType.STAKE_UNSTAKE,
                position_id=position.id,
                exit_date=date if close_all else None,
                withdrawal_qty=qty,
                withdrawal_value=tx.amount_usd,
                deposit_unit_cost=position.deposit_unit_cost,
            )

            if close_all:
                await self._close_locked(position, date)
            await self._repo.update(position)
        return Withdrawal(position, tx, link, qty, unit_price)

    # -- closing ------------------------------------------------------------

    async def close(self, position_ref: uuid.UUID | str, date: datetime) -> Position:
        """Close without a withdrawal, recognizing whatever the links hold."""
        target = await self._resolve_ref(position_ref)
        async with position_lock(target.id):
            position = await self._repo.require(target.id, for_update=True)
            if not position.is_open:
                raise ClosurePolicyError(f"position {position.id} is already closed")
            await self._close_locked(position, date)
            await self._repo.update(position)
        return position

    async def _close_locked(self, position: Position, date: datetime) -> None:
        if position.origin_tx_id is not None:
            await self._ledger.transactions.set_exit_date(position.origin_tx_id, date)
            for link in await self._repo.list_links_by_deposit(position.origin_tx_id):
                if link.link_type == LinkType.STAKE_UNSTAKE.value:
                    link.exit_date = date

        links = await self._repo.linked_withdrawals(position_id=position.id)
        realized, cost = pnl.realized_from_links(links)
        position.pnl = realized
        position.pnl_percent = pnl.roi_percent(realized, cost)
        position.is_open = False
        position.exit_date = date
        if position.is_vault:
            position.vault_status = VaultStatus.ENDED.value
        logger.info("Closed position %s on %s with P&L %s", position.id, date.date(), realized)

    async def delete_vault(self, position_ref: uuid.UUID | str) -> None:
        """Hard-delete a position with its transactions and links."""
        target = await self._resolve_ref(position_ref)
        async with position_lock(target.id):
            await self._repo.delete(target.id)
        logger.info("Deleted position %s and its ledger entries", target.id)

    # -- reads ----------------------------------------------------------------

    async def get(self, position_ref: uuid.UUID | str) -> Position:
        return await self._resolve_ref(position_ref)

    async def list_positions(self, is_open: Optional[bool] = None, asset: Optional[str] = None) -> list[Position]:
        return await self._repo.list_positions(is_open=is_open, asset=asset)

    async def pnl_detail(self, position_ref: uuid.UUID | str) -> PositionPnL:
        """Per-position P&L. Open positions show the proportional estimate next to a zero realized figure."""
        position = await self._resolve_ref(position_ref)
        links = await self._repo.linked_withdrawals(position_id=position.id)

        deposit_exit: Optional[datetime] = None
        if position.origin_tx_id is not None:
            origin = await self._ledger.transactions.get_by_id(position.origin_tx_id)
            deposit_exit = origin.exit_date if origin is not None else None

        realized, cost = pnl.realized_from_links(links)
        roi = pnl.roi_percent(realized, cost)
        days = pnl.holding_days(position.deposit_date, deposit_exit)
        return PositionPnL(
            position_id=position.id,
            state=state_from_exit_date(deposit_exit),
            realized_pnl=realized,
            estimated_pnl=pnl.estimated_from_links(links),
            cost_basis_closed=cost,
            roi_percent=roi,
            annualized_roi_percent=pnl.annualized_roi_percent(roi, days),
            holding_days=days,
        )
