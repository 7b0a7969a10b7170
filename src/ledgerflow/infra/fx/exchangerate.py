"""exchangerate-api.com provider: today's rates from one base currency."""

import logging
from decimal import Decimal

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledgerflow.exceptions import ExternalServiceError
from ledgerflow.infra.http.rate_limited_client import RateLimitedClient

logger = logging.getLogger(__name__)

PUBLIC_URL = "https://api.exchangerate-api.com/v4/latest"
KEYED_URL = "https://v6.exchangerate-api.com/v6/{api_key}/latest"


class ExchangeRateProvider:
    """Latest rates only; the API has no free historical endpoint."""

    source = "exchangerate-api"

    def __init__(self, http_client: RateLimitedClient, api_key: str = "") -> None:
        self._http = http_client
        self._base_url = KEYED_URL.format(api_key=api_key) if api_key else PUBLIC_URL

    @retry(
        retry=retry_if_exception_type(ExternalServiceError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call(self, base: str) -> dict:
        try:
            response = await self._http.get(f"{self._base_url}/{base}")
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"exchange rate request failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            logger.info("Exchange rate API returned %d for %s, retrying", response.status_code, base)
            raise ExternalServiceError(f"exchange rate API returned {response.status_code}")
        if response.status_code != 200:
            raise ExternalServiceError(f"exchange rate API returned {response.status_code} for {base}")
        return response.json()

    async def get_latest_rates(self, base: str, targets: list[str]) -> dict[str, Decimal]:
        """Rates from base to each target the API knows. Unknown targets are left out."""
        data = await self._call(base.upper())
        # v4 answers with "rates", v6 with "conversion_rates"
        rates = data.get("conversion_rates") or data.get("rates") or {}
        found: dict[str, Decimal] = {}
        for target in targets:
            rate = rates.get(target.upper())
            if rate is None:
                logger.warning("Exchange rate API has no %s/%s rate", base.upper(), target.upper())
                continue
            found[target.upper()] = Decimal(str(rate))
        return found
