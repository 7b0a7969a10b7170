from datetime import datetime
from decimal import Decimal

import pytest

from ledgerflow.db.repos.account_repo import AccountRepo
from ledgerflow.db.repos.fx_repo import FXRateRepo
from ledgerflow.domain.enums import AccountKind
from ledgerflow.domain.models.transaction import TransactionDraft, TransactionFilter
from ledgerflow.exceptions import ClosurePolicyError, NotFoundError, ValidationError


def _draft(**overrides) -> TransactionDraft:
    data = dict(
        date=datetime(2026, 1, 10),
        type="expense",
        asset="VND",
        account="Vietcombank",
        quantity=Decimal("250000"),
        local_currency="VND",
    )
    data.update(overrides)
    return TransactionDraft(**data)


class TestRecord:
    async def test_resolves_fx_from_store(self, session, ledger):
        await FXRateRepo(session).upsert("USD", "VND", Decimal("25000"), datetime(2026, 1, 1), source="vietcombank")

        tx = await ledger.record(_draft())
        assert tx.fx_to_usd == Decimal("0.00004")
        assert tx.fx_to_vnd == Decimal("1")
        assert tx.amount_usd == Decimal("10.00")
        assert tx.fx_source == "vietcombank"
        assert tx.fx_timestamp == datetime(2026, 1, 1)

    async def test_ignores_rates_after_entry_date(self, session, ledger):
        await FXRateRepo(session).upsert("USD", "VND", Decimal("20000"), datetime(2026, 2, 1))
        tx = await ledger.record(_draft())
        assert tx.fx_source == "fallback"
        assert tx.amount_usd == Decimal("10.00")

    async def test_explicit_rates_win(self, ledger):
        tx = await ledger.record(_draft(fx_to_usd=Decimal("0.00005"), fx_source="manual"))
        assert tx.amount_usd == Decimal("12.50")
        assert tx.fx_source == "manual"

    async def test_registered_credit_card(self, session, ledger):
        await AccountRepo(session).create("Visa Platinum", AccountKind.CREDIT_CARD)
        tx = await ledger.record(_draft(account="Visa Platinum"))
        assert tx.cashflow_vnd == 0
        assert tx.delta_qty == Decimal("-250000")

    async def test_invalid_draft_writes_nothing(self, ledger):
        with pytest.raises(ValidationError):
            await ledger.record(_draft(quantity=Decimal("-5")))
        _, total = await ledger.list_page()
        assert total == 0

    async def test_unknown_currency_pair(self, ledger):
        with pytest.raises(NotFoundError):
            await ledger.record(_draft(asset="EUR", local_currency="EUR"))

    async def test_usd_entry_provenance_from_vnd_leg(self, session, ledger):
        usd_draft = _draft(type="income", asset="USD", account="Bank", quantity=Decimal("10"), local_currency="USD")
        assert (await ledger.record(usd_draft)).fx_source == "fallback"

        await FXRateRepo(session).upsert("USD", "VND", Decimal("25100"), datetime(2026, 1, 2), source="vietcombank")
        tx = await ledger.record(usd_draft)
        assert tx.fx_to_usd == Decimal("1")
        assert tx.fx_to_vnd == Decimal("25100")
        assert tx.fx_source == "vietcombank"
        assert tx.fx_timestamp == datetime(2026, 1, 2)


class TestAmend:
    async def test_rederives(self, ledger):
        tx = await ledger.record(_draft())
        amended = await ledger.amend(tx.id, {"quantity": Decimal("500000"), "tag": "rent"})
        assert amended.id == tx.id
        assert amended.amount_vnd == Decimal("500000")
        assert amended.cashflow_vnd == Decimal("-500000")
        assert amended.tag == "rent"
        assert amended.fx_source == tx.fx_source

    async def test_reversal_entries_are_immutable(self, ledger):
        tx = await ledger.record(_draft())
        reversal = await ledger.reverse(tx.id)
        with pytest.raises(ValidationError):
            await ledger.amend(reversal.id, {"note": "nope"})

    async def test_deposit_amend_rebooks_position(self, positions, ledger):
        deposit = await positions.deposit(
            asset="ETH", account="Lido", quantity=Decimal("10"), unit_cost=Decimal("100"),
            date=datetime(2026, 1, 1),
        )
        await ledger.amend(deposit.transaction.id, {"quantity": Decimal("5")})

        position = await positions.get(deposit.position.id)
        assert position.deposit_qty == Decimal("5")
        assert position.deposit_cost == Decimal("500")
        assert position.deposit_unit_cost == Decimal("100")
        assert position.is_open is True

    async def test_position_entry_cannot_move(self, positions, ledger):
        deposit = await positions.deposit(
            asset="ETH", account="Lido", quantity=Decimal("10"), unit_cost=Decimal("100"),
            date=datetime(2026, 1, 1),
        )
        with pytest.raises(ClosurePolicyError, match="account"):
            await ledger.amend(deposit.transaction.id, {"account": "Binance"})
        # Same value in another case is not a move
        amended = await ledger.amend(deposit.transaction.id, {"asset": "eth", "note": "same"})
        assert amended.note == "same"

    async def test_deposit_with_withdrawals_is_left_untouched(self, positions, ledger):
        deposit = await positions.deposit(
            asset="USDT", account="Binance Earn", quantity=Decimal("100"), unit_cost=Decimal("1"),
            date=datetime(2026, 1, 1),
        )
        await positions.withdraw(deposit.position.id, date=datetime(2026, 1, 5), quantity=Decimal("40"),
                                 exit_unit_price=Decimal("1.1"))

        with pytest.raises(ClosurePolicyError, match="old cost"):
            await ledger.amend(deposit.transaction.id, {"quantity": Decimal("50")})
        assert (await ledger.get(deposit.transaction.id)).quantity == Decimal("100")
        assert (await positions.get(deposit.position.id)).deposit_qty == Decimal("100")

    async def test_withdrawal_amend_updates_position_and_link(self, positions, ledger):
        deposit = await positions.deposit(
            asset="USDT", account="Binance Earn", quantity=Decimal("100"), unit_cost=Decimal("1"),
            date=datetime(2026, 1, 1),
        )
        withdrawal = await positions.withdraw(deposit.position.id, date=datetime(2026, 1, 5),
                                              quantity=Decimal("40"), exit_unit_price=Decimal("1.1"))

        await ledger.amend(withdrawal.transaction.id, {"quantity": Decimal("50")})

        position = await positions.get(deposit.position.id)
        assert position.withdrawal_qty == Decimal("50")
        assert position.withdrawal_value == Decimal("55")
        [link] = await positions.repo.list_links_by_withdrawal(withdrawal.transaction.id)
        assert link.withdrawal_qty == Decimal("50")
        assert link.withdrawal_value == Decimal("55")

    async def test_withdrawal_amend_on_closed_position_recomputes_pnl(self, positions, ledger):
        deposit = await positions.deposit(
            asset="USDT", account="Binance Earn", quantity=Decimal("100"), unit_cost=Decimal("1"),
            date=datetime(2026, 1, 1),
        )
        closing = await positions.withdraw(deposit.position.id, date=datetime(2026, 1, 5), close_all=True,
                                           exit_unit_price=Decimal("1.1"))
        assert closing.position.pnl == Decimal("10")

        await ledger.amend(closing.transaction.id, {"price_local": Decimal("1.2")})
        position = await positions.get(deposit.position.id)
        assert position.pnl == Decimal("20")
        assert position.pnl_percent == Decimal("20")


class TestDeleteAndReverse:
    async def test_soft_delete(self, ledger):
        tx = await ledger.record(_draft())
        await ledger.delete(tx.id)
        with pytest.raises(NotFoundError):
            await ledger.get(tx.id)
        rows, total = await ledger.list_page(TransactionFilter(include_deleted=True))
        assert total == 1
        assert rows[0].deleted_at is not None

    async def test_reverse_keeps_original(self, ledger):
        tx = await ledger.record(_draft())
        reversal = await ledger.reverse(tx.id, datetime(2026, 1, 15))
        assert (await ledger.get(tx.id)).deleted_at is None
        assert reversal.cashflow_vnd == Decimal("250000")

    async def test_deleting_withdrawal_reopens_position(self, positions, ledger):
        deposit = await positions.deposit(
            asset="USDT", account="Binance Earn", quantity=Decimal("100"), unit_cost=Decimal("1"),
            date=datetime(2026, 1, 1),
        )
        closing = await positions.withdraw(
            deposit.position.id, date=datetime(2026, 1, 9), close_all=True, exit_unit_price=Decimal("1.1"),
        )
        assert closing.position.is_open is False

        await ledger.delete(closing.transaction.id)
        position = await positions.get(deposit.position.id)
        assert position.is_open is True
        assert position.withdrawal_qty == 0
        assert position.pnl == 0
        assert deposit.transaction.exit_date is None
        assert await positions.repo.list_links_by_deposit(deposit.transaction.id) == []

    async def test_deposit_of_closed_position_cannot_be_deleted(self, positions, ledger):
        deposit = await positions.deposit(
            asset="USDT", account="Binance Earn", quantity=Decimal("100"), unit_cost=Decimal("1"),
            date=datetime(2026, 1, 1),
        )
        await positions.close(deposit.position.id, datetime(2026, 1, 5))
        with pytest.raises(ClosurePolicyError):
            await ledger.delete(deposit.transaction.id)

    async def test_deleting_top_up_recomputes_cost(self, positions, ledger):
        await positions.deposit(
            asset="USDT", account="Binance Earn", quantity=Decimal("100"), unit_cost=Decimal("1"),
            date=datetime(2026, 1, 1),
        )
        top_up = await positions.deposit(
            asset="USDT", account="Binance Earn", quantity=Decimal("100"), unit_cost=Decimal("3"),
            date=datetime(2026, 1, 2),
        )
        assert top_up.position.deposit_unit_cost == Decimal("2")

        await ledger.delete(top_up.transaction.id)
        assert top_up.position.deposit_qty == Decimal("100")
        assert top_up.position.deposit_unit_cost == Decimal("1")

    async def test_deleting_reversal_restores_deposit(self, positions, ledger):
        deposit = await positions.deposit(
            asset="ETH", account="Lido", quantity=Decimal("10"), unit_cost=Decimal("100"),
            date=datetime(2026, 1, 1),
        )
        top_up = await positions.deposit(
            asset="ETH", account="Lido", quantity=Decimal("10"), unit_cost=Decimal("200"),
            date=datetime(2026, 1, 2),
        )
        reversal = await ledger.reverse(top_up.transaction.id)
        assert (await positions.get(deposit.position.id)).deposit_qty == Decimal("10")

        await ledger.delete(reversal.id)

        position = await positions.get(deposit.position.id)
        assert position.deposit_qty == Decimal("20")
        assert position.deposit_cost == Decimal("3000")
        assert position.deposit_unit_cost == Decimal("150")
        assert position.is_open is True

    async def test_deleting_withdrawal_reversal_relinks(self, positions, ledger):
        deposit = await positions.deposit(
            asset="USDT", account="Binance Earn", quantity=Decimal("100"), unit_cost=Decimal("1"),
            date=datetime(2026, 1, 1),
        )
        withdrawal = await positions.withdraw(deposit.position.id, date=datetime(2026, 1, 5),
                                              quantity=Decimal("40"), exit_unit_price=Decimal("1.1"))
        reversal = await ledger.reverse(withdrawal.transaction.id)
        assert (await positions.get(deposit.position.id)).withdrawal_qty == 0

        await ledger.delete(reversal.id)

        position = await positions.get(deposit.position.id)
        assert position.withdrawal_qty == Decimal("40")
        assert position.withdrawal_value == Decimal("44")
        [link] = await positions.repo.list_links_by_withdrawal(withdrawal.transaction.id)
        assert link.from_tx == deposit.transaction.id
        assert link.deposit_unit_cost == Decimal("1")


class TestRecalculateFX:
    async def test_fallback_entries_repriced(self, fx, ledger):
        tx = await ledger.record(_draft())
        assert tx.fx_source == "fallback"
        assert tx.amount_usd == Decimal("10.00")

        await fx.store("USD", "VND", Decimal("20000"), datetime(2026, 1, 1), source="vietcombank")
        assert await ledger.recalculate_fx() == 1

        repriced = await ledger.get(tx.id)
        assert repriced.fx_to_usd == Decimal("0.00005")
        assert repriced.amount_usd == Decimal("12.50")
        assert repriced.amount_vnd == Decimal("250000")
        assert repriced.fx_source == "vietcombank"
        assert repriced.fx_timestamp == datetime(2026, 1, 1)

        # Nothing left on the fallback
        assert await ledger.recalculate_fx() == 0

    async def test_supplied_rates_keep_provenance(self, fx, ledger):
        manual = await ledger.record(_draft(fx_to_usd=Decimal("0.00005"), fx_source="manual"))
        await fx.store("USD", "VND", Decimal("26000"), datetime(2026, 1, 1))

        assert await ledger.recalculate_fx() == 0
        kept = await ledger.get(manual.id)
        assert kept.fx_to_usd == Decimal("0.00005")
        assert kept.fx_source == "manual"

    async def test_entries_without_a_real_rate_stay(self, fx, ledger):
        early = await ledger.record(_draft(date=datetime(2026, 1, 10)))
        await fx.store("USD", "VND", Decimal("24000"), datetime(2026, 2, 1))

        assert await ledger.recalculate_fx() == 0
        assert (await ledger.get(early.id)).fx_source == "fallback"

    async def test_date_window_and_reversed_pairs(self, fx, ledger):
        inside = await ledger.record(_draft(date=datetime(2026, 1, 10)))
        outside = await ledger.record(_draft(date=datetime(2026, 3, 10)))
        reversed_tx = await ledger.record(_draft(date=datetime(2026, 1, 12)))
        await ledger.reverse(reversed_tx.id)
        await fx.store("USD", "VND", Decimal("24000"), datetime(2026, 1, 1))

        updated = await ledger.recalculate_fx(datetime(2026, 1, 1), datetime(2026, 1, 31))

        assert updated == 1
        assert (await ledger.get(inside.id)).fx_source == "manual"
        assert (await ledger.get(outside.id)).fx_source == "fallback"
        assert (await ledger.get(reversed_tx.id)).fx_source == "fallback"
