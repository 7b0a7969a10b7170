from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerflow.db.models.asset_price import AssetPrice
from ledgerflow.db.models.transaction import Transaction


class AssetPriceRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, symbol: str, currency: str, date: datetime) -> Optional[AssetPrice]:
        result = await self._session.execute(
            select(AssetPrice).where(
                AssetPrice.symbol == symbol.upper(),
                AssetPrice.currency == currency.upper(),
                AssetPrice.date == date,
            )
        )
        return result.scalar_one_or_none()

    async def get_range(self, symbol: str, currency: str, start: datetime, end: datetime) -> list[AssetPrice]:
        result = await self._session.execute(
            select(AssetPrice)
            .where(
                AssetPrice.symbol == symbol.upper(),
                AssetPrice.currency == currency.upper(),
                AssetPrice.date >= start,
                AssetPrice.date <= end,
            )
            .order_by(AssetPrice.date)
        )
        return list(result.scalars().all())

    async def latest(self, symbol: str, currency: str, as_of: datetime) -> Optional[AssetPrice]:
        result = await self._session.execute(
            select(AssetPrice)
            .where(
                AssetPrice.symbol == symbol.upper(),
                AssetPrice.currency == currency.upper(),
                AssetPrice.date <= as_of,
            )
            .order_by(AssetPrice.date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def save(self, symbol: str, currency: str, date: datetime, price: Decimal, source: str) -> AssetPrice:
        row = await self.get(symbol, currency, date)
        if row is None:
            row = AssetPrice(symbol=symbol.upper(), currency=currency.upper(), date=date, price=price, source=source)
            self._session.add(row)
        else:
            row.price = price
            row.source = source
        await self._session.flush()
        return row

    async def latest_transaction_price(self, asset: str, as_of: datetime) -> Optional[Decimal]:
        """USD unit price implied by the newest priced ledger entry for asset on or before as_of."""
        result = await self._session.execute(
            select(Transaction.amount_usd, Transaction.quantity)
            .where(
                Transaction.asset == asset,
                Transaction.date <= as_of,
                Transaction.deleted_at.is_(None),
                Transaction.reverses_id.is_(None),
                Transaction.quantity > 0,
                Transaction.amount_usd > 0,
            )
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        return row[0] / row[1]
