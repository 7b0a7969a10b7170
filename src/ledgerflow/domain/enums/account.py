from enum import Enum


class AccountKind(str, Enum):
    """What kind of container an account is. Only credit-card changes derivation."""

    BANK = "bank"
    CASH = "cash"
    EXCHANGE = "exchange"
    CREDIT_CARD = "credit_card"
    INVESTMENT = "investment"
    LOAN = "loan"
    OTHER = "other"

    @classmethod
    def infer(cls, account_name: str) -> "AccountKind":
        """Guess the kind from a bare account name when no Account row exists."""
        normalized = account_name.replace(" ", "").replace("_", "").replace("-", "").lower()
        if normalized == "creditcard":
            return cls.CREDIT_CARD
        return cls.OTHER
