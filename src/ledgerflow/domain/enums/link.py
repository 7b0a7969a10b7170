from enum import Enum


class LinkType(str, Enum):
    """Pairing recorded between two ledger entries."""

    STAKE_UNSTAKE = "stake_unstake"
    BORROW_REPAY = "borrow_repay"
    ACTION = "action"
