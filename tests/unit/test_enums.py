from ledgerflow.domain.enums import AccountKind, CashFlowCategory, Horizon, LinkType, TxType, VaultStatus
from ledgerflow.domain.enums.transaction_type import (
    ASSET_DECREASING,
    ASSET_INCREASING,
    CASH_INFLOW,
    CASH_OUTFLOW,
    FINANCING,
)


class TestEnumsAreStringMixin:
    """All enums use (str, Enum) so they serialize to strings in JSON and DB."""

    def test_tx_type_is_str(self):
        assert isinstance(TxType.BUY, str)
        assert TxType.REPAY_BORROW == "repay_borrow"

    def test_account_kind_is_str(self):
        assert AccountKind.CREDIT_CARD == "credit_card"

    def test_horizon_values(self):
        assert {h.value for h in Horizon} == {"short-term", "long-term"}

    def test_other_enums(self):
        assert LinkType.STAKE_UNSTAKE == "stake_unstake"
        assert VaultStatus.ENDED == "ended"
        assert CashFlowCategory.FINANCING == "financing"


class TestTypeSets:
    def test_direction_sets_disjoint(self):
        assert not ASSET_INCREASING & ASSET_DECREASING

    def test_cash_sets_disjoint(self):
        assert not CASH_INFLOW & CASH_OUTFLOW

    def test_neutral_types(self):
        for tx_type in (TxType.VALUATION, TxType.TRANSFER):
            assert tx_type not in ASSET_INCREASING
            assert tx_type not in ASSET_DECREASING

    def test_financing_types(self):
        assert FINANCING == {TxType.BORROW, TxType.REPAY_BORROW, TxType.INTEREST_EXPENSE}


class TestAccountKindInfer:
    def test_credit_card_spellings(self):
        for name in ("Credit Card", "credit_card", "CREDIT-CARD", "creditcard"):
            assert AccountKind.infer(name) == AccountKind.CREDIT_CARD

    def test_anything_else(self):
        assert AccountKind.infer("Vietcombank") == AccountKind.OTHER
        assert AccountKind.infer("Credit Card Savings") == AccountKind.OTHER
