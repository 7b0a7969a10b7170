"""PriceService: daily asset prices with an asset_prices cache in front of CoinGecko.

The cache is also written directly: manual prices (store) and bulk backfills
(populate) for the assets the ledger holds.
"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerflow.db.models.asset_price import AssetPrice
from ledgerflow.db.repos.price_repo import AssetPriceRepo
from ledgerflow.db.repos.transaction_repo import TransactionRepo
from ledgerflow.exceptions import ExternalServiceError, ValidationError
from ledgerflow.infra.price.coingecko import STABLECOINS, SYMBOL_TO_COINGECKO, CoinGeckoProvider

logger = logging.getLogger(__name__)

# Longest backfill a single populate call may request
MAX_POPULATE_DAYS = 366


def day_start(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class PriceService:
    """Price oracle: cache lookup, then provider fetch, then cache store."""

    def __init__(self, session: AsyncSession, coingecko: CoinGeckoProvider | None = None) -> None:
        self._repo = AssetPriceRepo(session)
        self._txs = TransactionRepo(session)
        self._coingecko = coingecko

    async def get_daily(self, symbol: str, day: datetime, currency: str = "USD") -> Decimal | None:
        """Price of one unit of symbol on day, or None when nobody knows it."""
        upper = symbol.upper()
        if upper == currency.upper() or (upper in STABLECOINS and currency.upper() == "USD"):
            return Decimal(1)

        key = day_start(day)
        cached = await self._repo.get(upper, currency, key)
        if cached is not None:
            return cached.price

        if self._coingecko is None:
            logger.warning("No price for %s on %s and no provider configured", upper, key.date())
            return None

        try:
            price = await self._coingecko.get_daily_price(upper, key, currency)
        except ExternalServiceError:
            logger.warning("Price lookup failed for %s on %s", upper, key.date(), exc_info=True)
            return None

        if price is None:
            logger.warning("Price provider has no %s price for %s", currency, upper)
            return None

        await self._repo.save(upper, currency, key, price, source="coingecko")
        return price

    async def get_range(
        self, symbol: str, start: datetime, end: datetime, currency: str = "USD"
    ) -> dict[datetime, Decimal]:
        """Daily prices keyed by day start. Fills the cache from the provider on a miss."""
        upper = symbol.upper()
        cached = await self._repo.get_range(upper, currency, day_start(start), end)
        prices = {row.date: row.price for row in cached}
        if prices or self._coingecko is None:
            return prices

        try:
            points = await self._coingecko.get_price_range(upper, start, end, currency)
        except ExternalServiceError:
            logger.warning("Price range lookup failed for %s", upper, exc_info=True)
            return prices

        # Last point of each day is its close
        for moment, price in points:
            prices[day_start(moment)] = price
        for day, price in prices.items():
            await self._repo.save(upper, currency, day, price, source="coingecko")
        return prices

    async def latest_usd(self, symbol: str, as_of: datetime) -> Decimal | None:
        """Newest known USD price on or before as_of: cached price first, then the ledger."""
        upper = symbol.upper()
        if upper in STABLECOINS:
            return Decimal(1)
        cached = await self._repo.latest(upper, "USD", as_of)
        if cached is not None:
            return cached.price
        return await self._repo.latest_transaction_price(symbol, as_of)

    async def store(
        self, symbol: str, day: datetime, price: Decimal, currency: str = "USD", source: str = "manual"
    ) -> AssetPrice:
        if price <= 0:
            raise ValidationError("price must be greater than zero")
        row = await self._repo.save(symbol.upper(), currency.upper(), day_start(day), price, source=source)
        logger.info("Stored %s price of %s: %s %s (%s)", row.date.date(), row.symbol, price, row.currency, source)
        return row

    async def populate(
        self,
        start: datetime,
        end: datetime,
        symbols: list[str] | None = None,
        currency: str = "USD",
    ) -> dict[str, int]:
        """Fill the cache day by day from start to end inclusive.

        Without symbols, every priced ledger asset is filled: stablecoins and
        assets CoinGecko does not know are skipped. Returns the number of days
        that ended up with a price, per symbol.
        """
        first, last = day_start(start), day_start(end)
        if last < first:
            raise ValidationError("populate end date is before its start date")
        if (last - first).days + 1 > MAX_POPULATE_DAYS:
            raise ValidationError(f"populate covers at most {MAX_POPULATE_DAYS} days")

        if symbols is None:
            symbols = [
                asset for asset in await self._txs.distinct_assets()
                if asset.upper() in SYMBOL_TO_COINGECKO and asset.upper() not in STABLECOINS
            ]

        filled: dict[str, int] = {}
        for symbol in dict.fromkeys(s.upper() for s in symbols):
            count = 0
            day = first
            while day <= last:
                if await self.get_daily(symbol, day, currency) is not None:
                    count += 1
                day += timedelta(days=1)
            filled[symbol] = count
            logger.info("Populated %d of %d days for %s", count, (last - first).days + 1, symbol)
        return filled
