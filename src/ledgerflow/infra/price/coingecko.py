"""CoinGecko price provider: daily USD (or other fiat) closes for an asset symbol."""

import logging
from datetime import UTC, datetime
from decimal import Decimal

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ledgerflow.exceptions import ExternalServiceError
from ledgerflow.infra.http.rate_limited_client import RateLimitedClient

logger = logging.getLogger(__name__)

SYMBOL_TO_COINGECKO: dict[str, str] = {
    "BTC": "bitcoin",
    "WBTC": "bitcoin",
    "ETH": "ethereum",
    "WETH": "ethereum",
    "STETH": "staked-ether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "XRP": "ripple",
    "ADA": "cardano",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "AAVE": "aave",
    "ARB": "arbitrum",
    "OP": "optimism",
    "TON": "the-open-network",
    "TRX": "tron",
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
}

# Always worth one USD
STABLECOINS = {"USD", "USDT", "USDC", "DAI", "BUSD", "TUSD", "FDUSD", "PYUSD", "USDS"}

BASE_URL = "https://api.coingecko.com"


def resolve_coingecko_id(symbol: str) -> str | None:
    coingecko_id = SYMBOL_TO_COINGECKO.get(symbol.upper())
    if coingecko_id is None:
        logger.warning("No CoinGecko ID mapping for symbol: %s", symbol)
    return coingecko_id


class CoinGeckoProvider:
    """Historical daily prices from the public CoinGecko API."""

    def __init__(self, http_client: RateLimitedClient, api_key: str = "") -> None:
        self._http = http_client
        self._api_key = api_key

    @retry(
        retry=retry_if_exception_type(ExternalServiceError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _call(self, path: str, params: dict[str, str]) -> dict:
        if self._api_key:
            params = {**params, "x_cg_demo_api_key": self._api_key}
        try:
            response = await self._http.get(f"{BASE_URL}{path}", params=params)
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"CoinGecko request failed: {exc}") from exc

        if response.status_code == 429 or response.status_code >= 500:
            logger.info("CoinGecko returned %d for %s, retrying", response.status_code, path)
            raise ExternalServiceError(f"CoinGecko returned {response.status_code}")
        if response.status_code != 200:
            logger.warning("CoinGecko returned %d for %s", response.status_code, path)
            return {}
        return response.json()

    async def get_daily_price(self, symbol: str, day: datetime, currency: str = "USD") -> Decimal | None:
        """Close price for the given day, or None when CoinGecko has nothing."""
        upper = symbol.upper()
        if upper in STABLECOINS and currency.upper() == "USD":
            return Decimal("1")

        coingecko_id = resolve_coingecko_id(upper)
        if coingecko_id is None:
            return None

        data = await self._call(
            f"/api/v3/coins/{coingecko_id}/history",
            {"date": day.strftime("%d-%m-%Y"), "localization": "false"},
        )
        price = data.get("market_data", {}).get("current_price", {}).get(currency.lower())
        if price is None:
            return None
        return Decimal(str(price))

    async def get_price_range(
        self, symbol: str, start: datetime, end: datetime, currency: str = "USD"
    ) -> list[tuple[datetime, Decimal]]:
        """Price points between start and end (CoinGecko picks the granularity)."""
        coingecko_id = resolve_coingecko_id(symbol)
        if coingecko_id is None:
            return []

        data = await self._call(
            f"/api/v3/coins/{coingecko_id}/market_chart/range",
            {
                "vs_currency": currency.lower(),
                "from": str(int(start.replace(tzinfo=UTC).timestamp())),
                "to": str(int(end.replace(tzinfo=UTC).timestamp())),
            },
        )
        return [
            (datetime.fromtimestamp(point[0] / 1000, tz=UTC).replace(tzinfo=None), Decimal(str(point[1])))
            for point in data.get("prices", [])
        ]
