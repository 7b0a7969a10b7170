from ledgerflow.domain.enums.account import AccountKind
from ledgerflow.domain.enums.cash_flow import CashFlowCategory
from ledgerflow.domain.enums.currency import Currency
from ledgerflow.domain.enums.link import LinkType
from ledgerflow.domain.enums.position import Horizon, VaultStatus
from ledgerflow.domain.enums.transaction_type import TxType

__all__ = [
    "AccountKind",
    "CashFlowCategory",
    "Currency",
    "Horizon",
    "LinkType",
    "TxType",
    "VaultStatus",
]
