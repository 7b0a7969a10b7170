"""LedgerService: the only write path into the transactions table.

Resolves FX for a draft, derives it, persists it, and applies the
soft-delete / reversal discipline including the closure bookkeeping a
deleted withdrawal must undo.
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerflow.accounting import pnl
from ledgerflow.accounting.derivation import derive, rederive
from ledgerflow.accounting.locks import position_lock
from ledgerflow.db.models.position import Position
from ledgerflow.db.models.transaction import Transaction
from ledgerflow.db.repos.account_repo import AccountRepo
from ledgerflow.db.repos.position_repo import PositionRepo
from ledgerflow.db.repos.transaction_repo import TransactionRepo
from ledgerflow.domain.enums import LinkType, TxType, VaultStatus
from ledgerflow.domain.enums.transaction_type import POSITION_CLOSING, POSITION_OPENING
from ledgerflow.domain.models.transaction import TransactionDraft, TransactionFilter
from ledgerflow.exceptions import ClosurePolicyError, ValidationError
from ledgerflow.infra.fx.service import FALLBACK, IDENTITY, FXService, Quote

logger = logging.getLogger(__name__)

ZERO = Decimal(0)


class LedgerService:
    def __init__(self, session: AsyncSession, fx: FXService) -> None:
        self._session = session
        self._fx = fx
        self._txs = TransactionRepo(session)
        self._positions = PositionRepo(session)
        self._accounts = AccountRepo(session)

    @property
    def transactions(self) -> TransactionRepo:
        return self._txs

    async def _with_fx(self, draft: TransactionDraft) -> TransactionDraft:
        """Fill missing FX rates from the FX source, recording where the first non-trivial rate came from."""
        currency = (draft.local_currency or "USD").upper()
        updates: dict[str, Any] = {}
        quotes: list[Quote] = []
        if draft.fx_to_usd is None:
            usd = await self._fx.resolve(currency, "USD", draft.date)
            updates["fx_to_usd"] = usd.rate
            quotes.append(usd)
        if draft.fx_to_vnd is None:
            vnd = await self._fx.resolve(currency, "VND", draft.date)
            updates["fx_to_vnd"] = vnd.rate
            quotes.append(vnd)
        if draft.fx_source is None and quotes:
            provenance = next((q for q in quotes if q.source != IDENTITY), quotes[0])
            updates["fx_source"] = provenance.source
            updates["fx_timestamp"] = provenance.timestamp
        if not updates:
            return draft
        return draft.model_copy(update=updates)

    async def record(self, draft: TransactionDraft) -> Transaction:
        """Derive and append one ledger entry. Validation happens before any write."""
        resolved = await self._with_fx(draft)
        kind = await self._accounts.kind_of(resolved.account)
        derived = derive(resolved, kind)
        tx = await self._txs.create(derived)
        logger.debug("Recorded %s %s %s on %s", tx.type, tx.quantity, tx.asset, tx.account)
        return tx

    async def get(self, tx_id: uuid.UUID) -> Transaction:
        return await self._txs.require(tx_id)

    async def list_page(self, flt: Optional[TransactionFilter] = None) -> tuple[list[Transaction], int]:
        return await self._txs.list_page(flt)

    async def amend(self, tx_id: uuid.UUID, changes: dict[str, Any]) -> Transaction:
        """Merge changes onto the stored inputs and re-derive every computed column.

        A position-linked entry keeps its position: its quantity and USD value
        are rebooked onto the position, and type, asset, account and
        position_id cannot change.
        """
        tx = await self._txs.require(tx_id)
        if tx.reverses_id is not None:
            raise ValidationError("reversal entries cannot be amended")
        if tx.position_id is not None:
            moved = [
                field for field in ("type", "asset", "account", "position_id")
                if field in changes and str(changes[field]).lower() != str(getattr(tx, field)).lower()
            ]
            if moved:
                raise ClosurePolicyError(f"position-linked entry {tx.id} cannot change {', '.join(moved)}")

        old_qty, old_usd = tx.quantity, tx.amount_usd
        account = changes.get("account") or tx.account
        kind = await self._accounts.kind_of(account)
        derived = rederive(tx, changes, kind)
        if tx.position_id is not None and (derived.quantity != old_qty or derived.amount_usd != old_usd):
            # Refuse before the row changes
            await self._guard_rebook(tx, await self._positions.require(tx.position_id))
        amended = await self._txs.apply_derived(tx, derived)
        if amended.position_id is not None:
            await self._rebook(amended, amended.quantity - old_qty, amended.amount_usd - old_usd)
        return amended

    async def recalculate_fx(
        self, start_date: Optional[datetime] = None, end_date: Optional[datetime] = None
    ) -> int:
        """Re-price entries booked at the configured fallback rate once a real rate is stored.

        Only entries whose fx_source is the fallback are touched, so explicitly
        supplied rates keep their provenance. Reversed originals and reversal
        entries are skipped to keep each pair cancelling. Returns how many
        entries changed.
        """
        updated = 0
        for tx in await self._txs.list_by_fx_source(FALLBACK, start_date, end_date):
            currency = tx.local_currency.upper()
            usd = await self._fx.resolve(currency, "USD", tx.date)
            vnd = await self._fx.resolve(currency, "VND", tx.date)
            real = next((q for q in (usd, vnd) if q.source not in {IDENTITY, FALLBACK}), None)
            if real is None:
                continue
            changes = {
                "fx_to_usd": usd.rate,
                "fx_to_vnd": vnd.rate,
                "fx_source": real.source,
                "fx_timestamp": real.timestamp,
            }
            try:
                await self.amend(tx.id, changes)
            except ClosurePolicyError as exc:
                logger.warning("Kept fallback FX on %s: %s", tx.id, exc)
                continue
            updated += 1
        logger.info("Recalculated FX on %d entries", updated)
        return updated

    async def delete(self, tx_id: uuid.UUID) -> Transaction:
        """Soft-delete. A deleted withdrawal reopens the deposit it had closed."""
        tx = await self._txs.require(tx_id)
        await self._release(tx)
        deleted = await self._txs.soft_delete(tx_id)
        logger.info("Soft-deleted transaction %s", tx_id)
        return deleted

    async def reverse(self, tx_id: uuid.UUID, date: Optional[datetime] = None) -> Transaction:
        """Append a cancelling entry; the original row stays visible."""
        tx = await self._txs.require(tx_id)
        await self._release(tx)
        reversal = await self._txs.create_reversal(tx_id, date)
        logger.info("Reversed transaction %s with %s", tx_id, reversal.id)
        return reversal

    async def delete_action_group(self, tx_id: uuid.UUID) -> int:
        """Soft-delete every entry emitted by the same action as tx_id."""
        root = tx_id
        for link in await self._positions.list_links_by_withdrawal(tx_id):
            if link.link_type == LinkType.ACTION.value:
                root = link.from_tx
                break

        members = [root]
        for link in await self._positions.list_links_by_deposit(root):
            if link.link_type == LinkType.ACTION.value:
                members.append(link.to_tx)

        # Withdrawal legs before the deposit legs they may have closed
        count = 0
        for member in reversed(members):
            tx = await self._txs.get_by_id(member)
            if tx is None:
                continue
            await self.delete(member)
            count += 1
        return count

    async def link_action(self, entries: list[Transaction]) -> None:
        """Record that entries[1:] were emitted together with entries[0]."""
        if len(entries) < 2:
            return
        root = entries[0]
        for entry in entries[1:]:
            await self._positions.create_link(root.id, entry.id, link_type=LinkType.ACTION)

    async def _release(self, tx: Transaction) -> None:
        if tx.reverses_id is not None:
            await self._restore(tx)
            return

        for link in await self._positions.list_links_by_withdrawal(tx.id):
            if link.link_type == LinkType.STAKE_UNSTAKE.value:
                await self._reopen(link)

        if tx.position_id is not None and tx.type in {t.value for t in POSITION_OPENING}:
            await self._remove_deposit(tx)

    async def _restore(self, reversal: Transaction) -> None:
        """Dropping a reversal puts the cancelled entry's position effect back."""
        original = await self._txs.get_by_id(reversal.reverses_id)
        if original is None or original.position_id is None:
            return
        if original.type in {t.value for t in POSITION_OPENING}:
            await self._rebook(original, original.quantity, original.amount_usd)
        elif original.type in {t.value for t in POSITION_CLOSING}:
            await self._relink(original)
        logger.info("Restored position effect of %s", original.id)

    async def _guard_rebook(self, tx: Transaction, position: Position) -> None:
        """A deposit can only be resized while its position is open and nothing was withdrawn at its cost."""
        if tx.type not in {t.value for t in POSITION_OPENING}:
            return
        if position.exit_date is not None:
            raise ClosurePolicyError(f"position {position.id} is closed")
        if position.origin_tx_id is not None:
            links = await self._positions.list_links_by_deposit(position.origin_tx_id)
            if any(link.link_type == LinkType.STAKE_UNSTAKE.value for link in links):
                raise ClosurePolicyError(f"position {position.id} has withdrawals priced at the old cost")

    async def _rebook(self, tx: Transaction, qty: Decimal, value_usd: Decimal) -> None:
        """Add qty and value_usd of a position entry back onto its position."""
        if qty == 0 and value_usd == 0:
            return
        async with position_lock(tx.position_id):
            position = await self._positions.require(tx.position_id, for_update=True)
            await self._guard_rebook(tx, position)
            if tx.type in {t.value for t in POSITION_OPENING}:
                position.deposit_qty += qty
                position.deposit_cost += value_usd
                position.deposit_unit_cost = (
                    position.deposit_cost / position.deposit_qty if position.deposit_qty > 0 else ZERO
                )
                position.is_open = position.deposit_qty > 0
            elif tx.type in {t.value for t in POSITION_CLOSING}:
                position.withdrawal_qty += qty
                position.withdrawal_value += value_usd
                position.withdrawal_unit_price = (
                    position.withdrawal_value / position.withdrawal_qty if position.withdrawal_qty > 0 else ZERO
                )
                for link in await self._positions.list_links_by_withdrawal(tx.id):
                    if link.link_type == LinkType.STAKE_UNSTAKE.value:
                        link.withdrawal_qty = tx.quantity
                        link.withdrawal_value = tx.amount_usd
                await self._positions.update(position)
                if not position.is_open:
                    realized, cost = pnl.realized_from_links(
                        await self._positions.linked_withdrawals(position_id=position.id)
                    )
                    position.pnl = realized
                    position.pnl_percent = pnl.roi_percent(realized, cost)
            await self._positions.update(position)

    async def _relink(self, withdrawal: Transaction) -> None:
        """Book a withdrawal back onto its open position with a fresh closure link."""
        async with position_lock(withdrawal.position_id):
            position = await self._positions.require(withdrawal.position_id, for_update=True)
            if not position.is_open or position.origin_tx_id is None:
                raise ClosurePolicyError(f"position {position.id} cannot take the withdrawal back")
            position.withdrawal_qty += withdrawal.quantity
            position.withdrawal_value += withdrawal.amount_usd
            position.withdrawal_unit_price = position.withdrawal_value / position.withdrawal_qty
            position.withdrawal_date = withdrawal.date
            await self._positions.create_link(
                from_tx=position.origin_tx_id,
                to_tx=withdrawal.id,
                link_type=LinkType.STAKE_UNSTAKE,
                position_id=position.id,
                withdrawal_qty=withdrawal.quantity,
                withdrawal_value=withdrawal.amount_usd,
                deposit_unit_cost=position.deposit_unit_cost,
            )
            await self._positions.update(position)

    async def _reopen(self, link) -> None:
        deposit = await self._txs.get_by_id(link.from_tx)
        if deposit is not None and deposit.exit_date is not None:
            deposit.exit_date = None
            logger.info("Cleared exit date on deposit %s", deposit.id)

        if link.position_id is not None:
            async with position_lock(link.position_id):
                position = await self._positions.require(link.position_id, for_update=True)
                position.withdrawal_qty -= link.withdrawal_qty
                position.withdrawal_value -= link.withdrawal_value
                position.withdrawal_unit_price = (
                    position.withdrawal_value / position.withdrawal_qty if position.withdrawal_qty > 0 else ZERO
                )
                position.is_open = True
                position.exit_date = None
                position.pnl = ZERO
                position.pnl_percent = ZERO
                if position.is_vault:
                    position.vault_status = VaultStatus.ACTIVE.value
                await self._positions.update(position)

        for sibling in await self._positions.list_links_by_deposit(link.from_tx):
            sibling.exit_date = None
        await self._session.delete(link)
        await self._session.flush()

    async def _remove_deposit(self, tx: Transaction) -> None:
        async with position_lock(tx.position_id):
            position = await self._positions.require(tx.position_id, for_update=True)
            if not position.is_open:
                raise ClosurePolicyError(f"position {position.id} is closed")
            if position.origin_tx_id == tx.id:
                links = await self._positions.list_links_by_deposit(tx.id)
                if any(link.link_type == LinkType.STAKE_UNSTAKE.value for link in links):
                    raise ClosurePolicyError(f"deposit {tx.id} still has linked withdrawals")
            position.deposit_qty -= tx.quantity
            position.deposit_cost -= tx.amount_usd
            position.deposit_unit_cost = (
                position.deposit_cost / position.deposit_qty if position.deposit_qty > 0 else ZERO
            )
            if position.deposit_qty <= 0:
                # Nothing was ever deposited once this entry is gone
                position.is_open = False
            await self._positions.update(position)


def usd_entry(
    *,
    date: datetime,
    tx_type: TxType,
    asset: str,
    account: str,
    quantity: Decimal,
    unit_price_usd: Decimal,
    **fields: Any,
) -> TransactionDraft:
    """Draft for an entry priced per unit in USD."""
    return TransactionDraft(
        date=date,
        type=tx_type.value,
        asset=asset,
        account=account,
        quantity=quantity,
        price_local=unit_price_usd,
        local_currency="USD",
        fx_to_usd=Decimal(1),
        **fields,
    )
