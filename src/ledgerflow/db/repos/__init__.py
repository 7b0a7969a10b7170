from ledgerflow.db.repos.account_repo import AccountRepo
from ledgerflow.db.repos.fx_repo import FXRateRepo
from ledgerflow.db.repos.position_repo import PositionRepo
from ledgerflow.db.repos.price_repo import AssetPriceRepo
from ledgerflow.db.repos.transaction_repo import TransactionRepo

__all__ = ["AccountRepo", "AssetPriceRepo", "FXRateRepo", "PositionRepo", "TransactionRepo"]
