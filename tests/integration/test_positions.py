"""Position lifecycle against a real session: weighted cost, deferred P&L, closure policy."""

from datetime import datetime
from decimal import Decimal

import pytest

from ledgerflow.db.models.asset_price import AssetPrice
from ledgerflow.domain.enums import TxType, VaultStatus
from ledgerflow.domain.models.position import Closed, Open
from ledgerflow.exceptions import ClosurePolicyError, ValidationError

ONE = Decimal("1")


async def _open(positions, qty="1000", unit_cost="1", day=1, **kwargs):
    return await positions.deposit(
        asset="USDT",
        account="Binance Earn",
        quantity=Decimal(qty),
        unit_cost=Decimal(unit_cost),
        date=datetime(2026, 1, day),
        **kwargs,
    )


class TestDeposit:
    async def test_weighted_average_cost(self, positions):
        first = await _open(positions, qty="100", unit_cost="2")
        second = await _open(positions, qty="100", unit_cost="4", day=2)

        assert second.position.id == first.position.id
        assert second.position.deposit_qty == Decimal("200")
        assert second.position.deposit_cost == Decimal("600")
        assert second.position.deposit_unit_cost == Decimal("3")
        assert second.position.origin_tx_id == first.transaction.id

    async def test_deposit_entry(self, positions):
        deposit = await _open(positions, qty="10", unit_cost="2.5")
        tx = deposit.transaction
        assert tx.type == TxType.DEPOSIT.value
        assert tx.position_id == deposit.position.id
        assert tx.entry_date == datetime(2026, 1, 1)
        assert tx.amount_usd == Decimal("25.00")
        assert tx.delta_qty == Decimal("10")

    async def test_horizon_separates_positions(self, positions):
        short = await _open(positions, horizon="short-term")
        long = await _open(positions, horizon="long-term")
        assert short.position.id != long.position.id

    async def test_deposit_into_closed_position_rejected(self, positions):
        deposit = await _open(positions)
        await positions.close(deposit.position.id, datetime(2026, 2, 1))

        with pytest.raises(ClosurePolicyError):
            await _open(positions, position_ref=deposit.position.id)

    async def test_unreferenced_deposit_after_close_opens_new_position(self, positions):
        deposit = await _open(positions)
        await positions.close(deposit.position.id, datetime(2026, 2, 1))

        again = await _open(positions, day=3)
        assert again.position.id != deposit.position.id
        assert again.position.is_open

    async def test_rejects_non_positive_quantity(self, positions):
        with pytest.raises(ValidationError):
            await _open(positions, qty="0")


class TestDeferredPnL:
    async def test_partial_withdrawals_realize_on_close(self, positions):
        deposit = await _open(positions)
        ref = deposit.position.id

        await positions.withdraw(ref, date=datetime(2026, 1, 5), quantity=Decimal("300"), exit_total_usd=Decimal("330"))
        await positions.withdraw(ref, date=datetime(2026, 1, 10), quantity=Decimal("400"), exit_unit_price=Decimal("1.2"))

        detail = await positions.pnl_detail(ref)
        assert isinstance(detail.state, Open)
        assert detail.realized_pnl == 0
        assert detail.estimated_pnl > 0

        last = await positions.withdraw(ref, date=datetime(2026, 1, 20), close_all=True, exit_unit_price=Decimal("0.9"))
        assert last.quantity == Decimal("300")
        assert last.link.exit_date == datetime(2026, 1, 20)

        detail = await positions.pnl_detail(ref)
        assert isinstance(detail.state, Closed)
        assert detail.realized_pnl == Decimal("80")
        assert detail.cost_basis_closed == Decimal("1000")
        assert detail.roi_percent == Decimal("8")
        assert detail.holding_days == 19

        position = last.position
        assert position.is_open is False
        assert position.pnl == Decimal("80")
        assert position.pnl_percent == Decimal("8")
        assert deposit.transaction.exit_date == datetime(2026, 1, 20)

    async def test_close_all_ignores_quantity(self, positions):
        deposit = await _open(positions)
        ref = deposit.position.id
        await positions.withdraw(ref, date=datetime(2026, 1, 5), quantity=Decimal("200"), exit_unit_price=Decimal("1.5"))

        closing = await positions.withdraw(
            ref, date=datetime(2026, 1, 9), quantity=Decimal("5"), close_all=True, exit_unit_price=Decimal("1.125"),
        )
        assert closing.quantity == Decimal("800")
        assert closing.transaction.quantity == Decimal("800")
        assert closing.position.pnl == Decimal("200")
        assert closing.position.remaining_qty == 0

    async def test_loss(self, positions):
        deposit = await _open(positions, qty="500")
        closing = await positions.withdraw(
            deposit.position.id, date=datetime(2026, 1, 9), close_all=True, exit_total_usd=Decimal("275"),
        )
        assert closing.position.pnl == Decimal("-225")
        assert closing.position.pnl_percent == Decimal("-45")

    async def test_empty_withdrawal_leaves_position_open(self, positions):
        deposit = await _open(positions, qty="100")
        withdrawal = await positions.withdraw(
            deposit.position.id, date=datetime(2026, 1, 9), quantity=Decimal("100"), exit_unit_price=Decimal("2"),
        )
        assert withdrawal.position.remaining_qty == 0
        assert withdrawal.position.is_open is True

        detail = await positions.pnl_detail(deposit.position.id)
        assert isinstance(detail.state, Open)
        assert detail.realized_pnl == 0
        assert detail.annualized_roi_percent is None

    async def test_over_withdrawal_uses_total_cost(self, positions):
        deposit = await _open(positions, qty="100")
        ref = deposit.position.id
        await positions.withdraw(ref, date=datetime(2026, 1, 9), quantity=Decimal("150"), exit_unit_price=Decimal("2"))
        position = await positions.close(ref, datetime(2026, 1, 10))
        assert position.pnl == Decimal("200")

    async def test_close_all_with_nothing_left(self, positions):
        deposit = await _open(positions, qty="100")
        ref = deposit.position.id
        await positions.withdraw(ref, date=datetime(2026, 1, 9), quantity=Decimal("100"), exit_unit_price=ONE)
        with pytest.raises(ValidationError):
            await positions.withdraw(ref, date=datetime(2026, 1, 10), close_all=True)

    async def test_close_twice_rejected(self, positions):
        deposit = await _open(positions)
        await positions.close(deposit.position.id, datetime(2026, 1, 10))
        with pytest.raises(ClosurePolicyError):
            await positions.close(deposit.position.id, datetime(2026, 1, 11))


class TestExitPrice:
    async def test_falls_back_to_unit_cost(self, positions):
        deposit = await positions.deposit(
            asset="PENDLE", account="Pendle", quantity=Decimal("10"), unit_cost=Decimal("3"), date=datetime(2026, 1, 1),
        )
        withdrawal = await positions.withdraw(deposit.position.id, date=datetime(2026, 1, 5), quantity=Decimal("4"))
        assert withdrawal.unit_price == Decimal("3")
        assert withdrawal.transaction.amount_usd == Decimal("12.00")

    async def test_uses_daily_price(self, session, positions):
        session.add(AssetPrice(symbol="ETH", currency="USD", date=datetime(2026, 1, 5), price=Decimal("3500")))
        await session.flush()
        deposit = await positions.deposit(
            asset="ETH", account="Lido", quantity=Decimal("2"), unit_cost=Decimal("3000"), date=datetime(2026, 1, 1),
        )
        withdrawal = await positions.withdraw(
            deposit.position.id, date=datetime(2026, 1, 5, 14, 0), quantity=Decimal("1"),
        )
        assert withdrawal.unit_price == Decimal("3500")

    async def test_explicit_price_wins(self, positions):
        deposit = await _open(positions, qty="10")
        position = deposit.position
        price = await positions.resolve_exit_price(
            position, datetime(2026, 1, 5), Decimal("10"), Decimal("1.5"), Decimal("99"),
        )
        assert price == Decimal("1.5")


class TestVaults:
    async def test_vault_lifecycle(self, positions):
        deposit = await _open(positions, vault_name="Alpha Vault")
        assert deposit.position.is_vault
        assert deposit.position.vault_status == VaultStatus.ACTIVE.value

        top_up = await _open(positions, qty="500", unit_cost="1.3", vault_name="Alpha Vault")
        assert top_up.position.id == deposit.position.id
        assert top_up.position.deposit_cost == Decimal("1650")

        closed = await positions.close("Alpha Vault", datetime(2026, 3, 1))
        assert closed.vault_status == VaultStatus.ENDED.value

        with pytest.raises(ClosurePolicyError):
            await _open(positions, vault_name="Alpha Vault")

    async def test_delete_vault_cascades(self, positions, ledger):
        deposit = await _open(positions, vault_name="Beta")
        await positions.withdraw("Beta", date=datetime(2026, 1, 5), quantity=Decimal("100"), exit_unit_price=ONE)

        await positions.delete_vault("Beta")
        assert await positions.repo.get_by_name("Beta") is None
        _, total = await ledger.list_page()
        assert total == 0
        assert deposit.position.id not in {p.id for p in await positions.list_positions()}
