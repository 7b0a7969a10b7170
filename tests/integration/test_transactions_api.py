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
        yield ac, factory
    app.dependency_overrides.clear()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


INCOME = {
    "date": "2026-01-05T09:00:00",
    "type": "income",
    "asset": "USD",
    "account": "Bank",
    "quantity": "1000",
    "tag": "salary",
}


async def _create(ac, **overrides) -> dict:
    res = await ac.post("/api/transactions", json={**INCOME, **overrides})
    assert res.status_code == 201, res.text
    return res.json()


class TestTransactionsAPI:
    async def test_health(self, client):
        ac, _ = client
        res = await ac.get("/api/health")
        assert res.status_code == 200
        assert res.json()["status"] == "ok"

    async def test_list_empty(self, client):
        ac, _ = client
        res = await ac.get("/api/transactions")
        assert res.status_code == 200
        data = res.json()
        assert data["transactions"] == []
        assert data["total"] == 0

    async def test_create_derives(self, client):
        ac, _ = client
        tx = await _create(ac)
        assert tx["local_currency"] == "USD"
        assert Decimal(tx["cashflow_usd"]) == Decimal("1000")
        assert Decimal(tx["delta_qty"]) == Decimal("1000")
        assert Decimal(tx["fx_to_vnd"]) == Decimal("25000")
        assert tx["fx_source"] == "fallback"

    async def test_create_validation_error(self, client):
        ac, _ = client
        res = await ac.post("/api/transactions", json={**INCOME, "quantity": "0"})
        assert res.status_code == 400
        res = await ac.post("/api/transactions", json={**INCOME, "type": "teleport"})
        assert res.status_code == 400
        assert "unknown transaction type" in res.json()["detail"]

    async def test_list_with_filters(self, client):
        ac, _ = client
        await _create(ac)
        await _create(ac, type="expense", quantity="40", tag="food", date="2026-01-06T12:00:00")
        await _create(ac, type="expense", quantity="15", tag="food", date="2026-02-01T12:00:00")

        res = await ac.get("/api/transactions", params={"type": "expense"})
        assert res.json()["total"] == 2

        res = await ac.get("/api/transactions", params={"tag": "food", "end_date": "2026-01-31T23:59:59"})
        data = res.json()
        assert data["total"] == 1
        assert Decimal(data["transactions"][0]["quantity"]) == Decimal("40")

        res = await ac.get("/api/transactions", params={"limit": 1})
        data = res.json()
        assert data["total"] == 3
        assert len(data["transactions"]) == 1
        assert data["transactions"][0]["date"].startswith("2026-02-01")

    async def test_get_and_404(self, client):
        ac, _ = client
        tx = await _create(ac)
        res = await ac.get(f"/api/transactions/{tx['id']}")
        assert res.status_code == 200
        assert res.json()["id"] == tx["id"]

        res = await ac.get("/api/transactions/00000000-0000-0000-0000-000000000000")
        assert res.status_code == 404

    async def test_amend(self, client):
        ac, _ = client
        tx = await _create(ac)
        res = await ac.patch(f"/api/transactions/{tx['id']}", json={"quantity": "1500", "note": "bonus"})
        assert res.status_code == 200
        data = res.json()
        assert Decimal(data["amount_usd"]) == Decimal("1500")
        assert data["note"] == "bonus"

    async def test_soft_delete(self, client):
        ac, _ = client
        tx = await _create(ac)
        res = await ac.delete(f"/api/transactions/{tx['id']}")
        assert res.status_code == 200
        assert res.json()["deleted_at"] is not None

        assert (await ac.get(f"/api/transactions/{tx['id']}")).status_code == 404
        res = await ac.get("/api/transactions", params={"include_deleted": "true"})
        assert res.json()["total"] == 1

    async def test_reverse(self, client):
        ac, _ = client
        tx = await _create(ac)
        res = await ac.post(f"/api/transactions/{tx['id']}/reverse", json={"date": "2026-01-07T00:00:00"})
        assert res.status_code == 201
        reversal = res.json()
        assert reversal["reverses_id"] == tx["id"]
        assert Decimal(reversal["cashflow_usd"]) == Decimal("-1000")

        res = await ac.post(f"/api/transactions/{tx['id']}/reverse")
        assert res.status_code == 400
