from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ledgerflow.accounting.actions import ActionService
from ledgerflow.accounting.ledger import LedgerService
from ledgerflow.accounting.positions import PositionLifecycle
from ledgerflow.db.session import Base
from ledgerflow.infra.fx.service import FXService
from ledgerflow.infra.price.service import PriceService
from ledgerflow.report.service import ReportingService
import ledgerflow.db.models  # noqa: F401 — register all models


@pytest.fixture()
async def engine():
    eng = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await eng.dispose()


@pytest.fixture()
async def session(engine) -> AsyncSession:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    async with factory() as sess:
        yield sess


@pytest.fixture()
def fx(session) -> FXService:
    return FXService(session, usd_vnd_fallback=Decimal(25000))


@pytest.fixture()
def prices(session) -> PriceService:
    return PriceService(session, coingecko=None)


@pytest.fixture()
def ledger(session, fx) -> LedgerService:
    return LedgerService(session, fx)


@pytest.fixture()
def positions(session, ledger, prices) -> PositionLifecycle:
    return PositionLifecycle(session, ledger, prices)


@pytest.fixture()
def actions(ledger, positions, prices) -> ActionService:
    return ActionService(ledger, positions, prices)


@pytest.fixture()
def reporting(session, fx, prices) -> ReportingService:
    return ReportingService(session, fx, prices)
