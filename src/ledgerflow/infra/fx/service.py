"""FXService: period-end and per-entry FX rates from fx_rates, with a settings fallback.

Rates get into fx_rates by hand (store) or from the exchange rate API (refresh).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from ledgerflow.db.models.fx_rate import FXRate
from ledgerflow.db.repos.fx_repo import FXRateRepo
from ledgerflow.exceptions import ExternalServiceError, NotFoundError, ValidationError
from ledgerflow.infra.fx.exchangerate import ExchangeRateProvider
from ledgerflow.infra.price.service import day_start

logger = logging.getLogger(__name__)

# Source of the trivial same-currency quote; carries no provenance
IDENTITY = "identity"
FALLBACK = "fallback"
MANUAL = "manual"


@dataclass(frozen=True)
class Quote:
    """A rate plus where it came from, stored on ledger entries as provenance."""

    rate: Decimal
    source: str
    timestamp: datetime | None = None


class FXService:
    def __init__(
        self,
        session: AsyncSession,
        usd_vnd_fallback: Decimal = Decimal(25000),
        provider: ExchangeRateProvider | None = None,
    ) -> None:
        self._repo = FXRateRepo(session)
        self._usd_vnd_fallback = usd_vnd_fallback
        self._provider = provider

    async def quote(self, from_currency: str, to_currency: str, as_of: datetime) -> Quote | None:
        """Latest rate dated on or before as_of; tries the inverse pair before giving up."""
        src, dst = from_currency.upper(), to_currency.upper()
        if src == dst:
            return Quote(rate=Decimal(1), source=IDENTITY)

        row = await self._repo.latest(src, dst, as_of)
        if row is not None:
            return Quote(rate=row.rate, source=row.source, timestamp=row.date)

        inverse = await self._repo.latest(dst, src, as_of)
        if inverse is not None and inverse.rate != 0:
            return Quote(rate=Decimal(1) / inverse.rate, source=inverse.source, timestamp=inverse.date)
        return None

    async def latest_rate(self, from_currency: str, to_currency: str, as_of: datetime) -> Decimal:
        """Like quote() but always answers: USD<->VND falls back to the configured rate."""
        found = await self.quote(from_currency, to_currency, as_of)
        if found is not None:
            return found.rate
        return self._fallback(from_currency, to_currency).rate

    async def resolve(self, from_currency: str, to_currency: str, as_of: datetime) -> Quote:
        found = await self.quote(from_currency, to_currency, as_of)
        if found is not None:
            return found
        return self._fallback(from_currency, to_currency)

    def _fallback(self, from_currency: str, to_currency: str) -> Quote:
        pair = (from_currency.upper(), to_currency.upper())
        if pair == ("USD", "VND"):
            logger.warning("No USD/VND rate stored, using configured fallback %s", self._usd_vnd_fallback)
            return Quote(rate=self._usd_vnd_fallback, source=FALLBACK)
        if pair == ("VND", "USD"):
            logger.warning("No VND/USD rate stored, using configured fallback %s", self._usd_vnd_fallback)
            return Quote(rate=Decimal(1) / self._usd_vnd_fallback, source=FALLBACK)
        raise NotFoundError("fx rate", f"{pair[0]}/{pair[1]}")

    # -- ingestion ------------------------------------------------------------

    async def store(
        self, from_currency: str, to_currency: str, rate: Decimal, date: datetime, source: str = MANUAL
    ) -> FXRate:
        """Upsert one rate for the day containing date."""
        src, dst = from_currency.upper(), to_currency.upper()
        if src == dst:
            raise ValidationError("an FX rate needs two different currencies")
        if rate <= 0:
            raise ValidationError("FX rate must be greater than zero")
        if source in {IDENTITY, FALLBACK}:
            raise ValidationError(f"'{source}' is reserved and cannot be stored")
        row = await self._repo.upsert(src, dst, rate, day_start(date), source=source)
        logger.info("Stored %s/%s = %s for %s (%s)", src, dst, rate, row.date.date(), source)
        return row

    async def history(
        self,
        from_currency: str,
        to_currency: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[FXRate]:
        return await self._repo.history(from_currency, to_currency, start, end)

    async def refresh(self, base: str, targets: list[str], date: datetime) -> list[FXRate]:
        """Fetch today's rates from the exchange rate API and store them dated on date."""
        if self._provider is None:
            raise ExternalServiceError("no exchange rate provider configured")
        wanted = [t.upper() for t in targets if t.upper() != base.upper()]
        if not wanted:
            raise ValidationError("refresh needs at least one target currency other than the base")
        rates = await self._provider.get_latest_rates(base, wanted)
        return [
            await self.store(base, target, rate, date, source=self._provider.source)
            for target, rate in rates.items()
        ]
