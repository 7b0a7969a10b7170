"""Daily asset prices cached from the price oracle."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledgerflow.db.session import Base, TimestampMixin


class AssetPrice(TimestampMixin, Base):
    """Price of one unit of symbol in currency. Keyed by (symbol, currency, day)."""

    __tablename__ = "asset_prices"
    __table_args__ = (UniqueConstraint("symbol", "currency", "date", name="uq_asset_prices_symbol_currency_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    symbol: Mapped[str] = mapped_column(String(50), index=True)
    currency: Mapped[str] = mapped_column(String(10), default="USD")
    date: Mapped[datetime] = mapped_column(index=True)  # midnight of the priced day
    price: Mapped[Decimal] = mapped_column(Numeric(30, 12))
    source: Mapped[str] = mapped_column(String(50), default="coingecko")  # coingecko / manual
