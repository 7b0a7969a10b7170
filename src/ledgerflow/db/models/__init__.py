from ledgerflow.db.models.account import Account
from ledgerflow.db.models.asset_price import AssetPrice
from ledgerflow.db.models.closure_link import ClosureLink
from ledgerflow.db.models.fx_rate import FXRate
from ledgerflow.db.models.position import Position
from ledgerflow.db.models.transaction import Transaction

__all__ = [
    "Account",
    "AssetPrice",
    "ClosureLink",
    "FXRate",
    "Position",
    "Transaction",
]
