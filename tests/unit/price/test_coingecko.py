"""Tests for CoinGeckoProvider with mocked HTTP."""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from tenacity import wait_none

from ledgerflow.exceptions import ExternalServiceError
from ledgerflow.infra.price.coingecko import SYMBOL_TO_COINGECKO, CoinGeckoProvider, resolve_coingecko_id

DAY = datetime(2026, 1, 15)


def _response(status_code: int, payload: dict | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    return response


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(CoinGeckoProvider._call.retry, "wait", wait_none())


class TestCoinGeckoProvider:
    def test_symbol_mapping_coverage(self):
        assert "ETH" in SYMBOL_TO_COINGECKO
        assert "BTC" in SYMBOL_TO_COINGECKO
        assert resolve_coingecko_id("weth") == "ethereum"
        assert resolve_coingecko_id("NOPE") is None

    async def test_stablecoin_returns_one(self):
        provider = CoinGeckoProvider(http_client=MagicMock())
        for symbol in ("USDC", "USDT", "DAI"):
            assert await provider.get_daily_price(symbol, DAY) == Decimal("1")

    async def test_unknown_symbol_returns_none(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock()
        provider = CoinGeckoProvider(http_client=mock_http)

        assert await provider.get_daily_price("UNKNOWN_TOKEN_XYZ", DAY) is None
        mock_http.get.assert_not_called()

    async def test_daily_price_fetch(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock(return_value=_response(200, {
            "market_data": {"current_price": {"usd": 2050.25, "vnd": 51256250}},
        }))
        provider = CoinGeckoProvider(http_client=mock_http, api_key="demo")

        price = await provider.get_daily_price("ETH", DAY)
        assert price == Decimal("2050.25")

        url = mock_http.get.call_args.args[0]
        params = mock_http.get.call_args.kwargs["params"]
        assert url.endswith("/api/v3/coins/ethereum/history")
        assert params["date"] == "15-01-2026"
        assert params["x_cg_demo_api_key"] == "demo"

    async def test_other_currency(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock(return_value=_response(200, {
            "market_data": {"current_price": {"usd": 2050.25, "vnd": 51256250}},
        }))
        provider = CoinGeckoProvider(http_client=mock_http)
        assert await provider.get_daily_price("ETH", DAY, currency="VND") == Decimal("51256250")

    async def test_missing_market_data_returns_none(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock(return_value=_response(200, {"id": "ethereum"}))
        provider = CoinGeckoProvider(http_client=mock_http)
        assert await provider.get_daily_price("ETH", DAY) is None

    async def test_client_error_returns_none(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock(return_value=_response(404))
        provider = CoinGeckoProvider(http_client=mock_http)

        assert await provider.get_daily_price("ETH", DAY) is None
        assert mock_http.get.await_count == 1

    async def test_rate_limit_retries_then_raises(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock(return_value=_response(429))
        provider = CoinGeckoProvider(http_client=mock_http)

        with pytest.raises(ExternalServiceError):
            await provider.get_daily_price("ETH", DAY)
        assert mock_http.get.await_count == 3

    async def test_retry_recovers(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock(side_effect=[
            _response(503),
            _response(200, {"market_data": {"current_price": {"usd": 100}}}),
        ])
        provider = CoinGeckoProvider(http_client=mock_http)

        assert await provider.get_daily_price("SOL", DAY) == Decimal("100")
        assert mock_http.get.await_count == 2

    async def test_transport_error_is_external(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock(side_effect=httpx.ConnectError("boom"))
        provider = CoinGeckoProvider(http_client=mock_http)

        with pytest.raises(ExternalServiceError):
            await provider.get_daily_price("BTC", DAY)

    async def test_price_range(self):
        mock_http = MagicMock()
        mock_http.get = AsyncMock(return_value=_response(200, {
            "prices": [[1767225600000, 95000.5], [1767312000000, 96000]],
        }))
        provider = CoinGeckoProvider(http_client=mock_http)

        points = await provider.get_price_range("BTC", datetime(2026, 1, 1), datetime(2026, 1, 2))
        assert points == [
            (datetime(2026, 1, 1), Decimal("95000.5")),
            (datetime(2026, 1, 2), Decimal("96000")),
        ]
