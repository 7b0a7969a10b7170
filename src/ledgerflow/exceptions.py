"""Exception hierarchy for the ledger core."""


class LedgerError(Exception):
    """Base class for all ledgerflow errors."""


class ValidationError(LedgerError):
    """Input rejected before any write (negative amounts, unknown type, missing params)."""


class NotFoundError(LedgerError):
    """Unknown transaction or position ID."""

    def __init__(self, kind: str, ref: object) -> None:
        super().__init__(f"{kind} not found: {ref}")
        self.kind = kind
        self.ref = ref


class ClosurePolicyError(LedgerError):
    """Mutation not allowed by the position's closure state (e.g. deposit into a closed position)."""


class ExternalServiceError(LedgerError):
    """A price or FX provider failed in a way the caller should see."""
