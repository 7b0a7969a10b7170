from enum import Enum


class TxType(str, Enum):
    """Ledger transaction taxonomy. Direction comes from the type, never from the quantity sign."""

    BUY = "buy"
    SELL = "sell"
    EXPENSE = "expense"
    INCOME = "income"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    STAKE = "stake"
    UNSTAKE = "unstake"
    TRANSFER = "transfer"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    BORROW = "borrow"
    REPAY_BORROW = "repay_borrow"
    INTEREST_EXPENSE = "interest_expense"
    FEE = "fee"
    TAX = "tax"
    REWARD = "reward"
    YIELD = "yield"
    AIRDROP = "airdrop"
    INTEREST = "interest"
    LEND = "lend"
    REPAY = "repay"
    VALUATION = "valuation"
    REFUND = "refund"


# delta_qty = +quantity
ASSET_INCREASING: frozenset[TxType] = frozenset({
    TxType.BUY,
    TxType.DEPOSIT,
    TxType.INCOME,
    TxType.TRANSFER_IN,
    TxType.STAKE,
    TxType.REWARD,
    TxType.YIELD,
    TxType.AIRDROP,
    TxType.INTEREST,
    TxType.REPAY,
    TxType.BORROW,
    TxType.REFUND,
})

# delta_qty = -quantity
ASSET_DECREASING: frozenset[TxType] = frozenset({
    TxType.SELL,
    TxType.WITHDRAW,
    TxType.EXPENSE,
    TxType.TRANSFER_OUT,
    TxType.UNSTAKE,
    TxType.REPAY_BORROW,
    TxType.FEE,
    TxType.TAX,
    TxType.INTEREST_EXPENSE,
    TxType.LEND,
})

# cash flow = -(amount + fee)
CASH_OUTFLOW: frozenset[TxType] = frozenset({
    TxType.BUY,
    TxType.EXPENSE,
    TxType.REPAY_BORROW,
    TxType.FEE,
    TxType.TAX,
    TxType.INTEREST_EXPENSE,
    TxType.LEND,
    TxType.TRANSFER_OUT,
})

# cash flow = +(amount - fee)
CASH_INFLOW: frozenset[TxType] = frozenset({
    TxType.SELL,
    TxType.INCOME,
    TxType.REWARD,
    TxType.YIELD,
    TxType.AIRDROP,
    TxType.INTEREST,
    TxType.REPAY,
    TxType.REFUND,
    TxType.TRANSFER_IN,
})

FINANCING: frozenset[TxType] = frozenset({
    TxType.BORROW,
    TxType.REPAY_BORROW,
    TxType.INTEREST_EXPENSE,
})

SPEND_LIKE: frozenset[TxType] = frozenset({TxType.EXPENSE})

POSITION_OPENING: frozenset[TxType] = frozenset({TxType.DEPOSIT, TxType.STAKE, TxType.BUY})
POSITION_CLOSING: frozenset[TxType] = frozenset({TxType.WITHDRAW, TxType.UNSTAKE, TxType.SELL})
