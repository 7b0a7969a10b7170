from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledgerflow.db.models.fx_rate import FXRate


class FXRateRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def latest(self, from_currency: str, to_currency: str, as_of: datetime) -> Optional[FXRate]:
        """Most recent rate dated on or before as_of. Rows after as_of are never seen."""
        result = await self._session.execute(
            select(FXRate)
            .where(
                FXRate.from_currency == from_currency.upper(),
                FXRate.to_currency == to_currency.upper(),
                FXRate.date <= as_of,
            )
            .order_by(FXRate.date.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        from_currency: str,
        to_currency: str,
        rate: Decimal,
        date: datetime,
        source: str = "manual",
    ) -> FXRate:
        result = await self._session.execute(
            select(FXRate).where(
                FXRate.from_currency == from_currency.upper(),
                FXRate.to_currency == to_currency.upper(),
                FXRate.date == date,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = FXRate(
                from_currency=from_currency.upper(),
                to_currency=to_currency.upper(),
                rate=rate,
                date=date,
                source=source,
            )
            self._session.add(row)
        else:
            row.rate = rate
            row.source = source
        await self._session.flush()
        return row

    async def history(
        self,
        from_currency: str,
        to_currency: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[FXRate]:
        query = select(FXRate).where(
            FXRate.from_currency == from_currency.upper(),
            FXRate.to_currency == to_currency.upper(),
        )
        if start is not None:
            query = query.where(FXRate.date >= start)
        if end is not None:
            query = query.where(FXRate.date <= end)
        result = await self._session.execute(query.order_by(FXRate.date))
        return list(result.scalars().all())
