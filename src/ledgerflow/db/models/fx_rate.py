"""Historical FX rates, the persisted side of the FX oracle."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledgerflow.db.session import Base, TimestampMixin


class FXRate(TimestampMixin, Base):
    """One rate per (from, to, date)."""

    __tablename__ = "fx_rates"
    __table_args__ = (UniqueConstraint("from_currency", "to_currency", "date", name="uq_fx_rates_pair_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_currency: Mapped[str] = mapped_column(String(10), index=True)
    to_currency: Mapped[str] = mapped_column(String(10), index=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(30, 12))
    date: Mapped[datetime] = mapped_column(index=True)
    source: Mapped[str] = mapped_column(String(50), default="manual")  # manual / exchangerate-api
