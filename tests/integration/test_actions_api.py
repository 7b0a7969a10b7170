from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from ledgerflow.api.deps import get_coingecko, get_db, get_exchangerate
from ledgerflow.api.main import app
from ledgerflow.db.session import Base
import ledgerflow.db.models  # noqa: F401


@pytest.fixture()
async def client():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_coingecko] = lambda: None
    app.dependency_overrides[get_exchangerate] = lambda: None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


async def _action(ac, action: str, expected: int = 200, **params):
    res = await ac.post("/api/actions", json={"action": action, "params": params})
    assert res.status_code == expected, res.text
    return res.json()


class TestActionsAPI:
    async def test_list_actions(self, client):
        res = await client.get("/api/actions")
        assert res.status_code == 200
        actions = res.json()["actions"]
        assert "stake" in actions
        assert "credit_spend" in actions
        assert actions == sorted(actions)

    async def test_unknown_action(self, client):
        data = await _action(client, "launder", expected=400)
        assert "unknown action" in data["detail"]

    async def test_missing_params(self, client):
        data = await _action(client, "stake", expected=400, asset="ETH")
        assert "source_account" in data["detail"]

    async def test_stake_then_unstake(self, client):
        staked = await _action(
            client, "stake", date="2026-01-01", source_account="Binance", investment_account="Lido",
            asset="ETH", amount="10", entry_price_usd="100",
        )
        assert [tx["type"] for tx in staked["transactions"]] == ["transfer_out", "stake"]
        position_id = staked["position_id"]

        unstaked = await _action(
            client, "unstake", date="2026-01-31", investment_account="Lido", destination_account="Binance",
            asset="ETH", close_all=True, exit_price_usd="108",
        )
        assert unstaked["position_id"] == position_id

        res = await client.get(f"/api/positions/{position_id}")
        position = res.json()
        assert position["is_open"] is False
        assert Decimal(position["pnl"]) == Decimal("80")

        res = await client.get(f"/api/positions/{position_id}/pnl")
        detail = res.json()
        assert detail["state"]["status"] == "closed"
        assert Decimal(detail["realized_pnl"]) == Decimal("80")
        assert Decimal(detail["roi_percent"]) == Decimal("8")
        assert detail["holding_days"] == 30

    async def test_failed_action_rolls_back(self, client):
        await _action(
            client, "unstake", expected=404, date="2026-01-31", investment_account="Lido",
            destination_account="Binance", asset="ETH", amount="1",
        )
        res = await client.get("/api/transactions")
        assert res.json()["total"] == 0


class TestPositionsAPI:
    async def test_vault_lifecycle(self, client):
        await _action(client, "deposit", date="2026-01-01", account="Hyperliquid", asset="USDC",
                      amount="500", price_usd="1", vault_name="HLP")

        res = await client.get("/api/positions/HLP")
        assert res.status_code == 200
        vault = res.json()
        assert vault["is_vault"] is True
        assert vault["vault_status"] == "active"
        assert Decimal(vault["remaining_qty"]) == Decimal("500")

        res = await client.post("/api/positions/HLP/close", json={"date": "2026-02-01T00:00:00"})
        assert res.status_code == 200
        assert res.json()["vault_status"] == "ended"

        await _action(client, "deposit", expected=409, date="2026-02-02", account="Hyperliquid",
                      asset="USDC", amount="100", price_usd="1", vault_name="HLP")

        res = await client.post("/api/positions/HLP/close", json={"date": "2026-02-03T00:00:00"})
        assert res.status_code == 409

        res = await client.get("/api/positions", params={"is_open": "false"})
        assert res.json()["total"] == 1

    async def test_delete_vault(self, client):
        await _action(client, "deposit", date="2026-01-01", account="Hyperliquid", asset="USDC",
                      amount="500", price_usd="1", vault_name="HLP")

        res = await client.delete("/api/positions/HLP")
        assert res.status_code == 204

        assert (await client.get("/api/positions/HLP")).status_code == 404
        res = await client.get("/api/transactions", params={"include_deleted": "true"})
        assert res.json()["total"] == 0

    async def test_unknown_position(self, client):
        res = await client.get("/api/positions/nowhere")
        assert res.status_code == 404
