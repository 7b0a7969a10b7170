from decimal import Decimal
from typing import Annotated, AsyncGenerator, Optional

from dependency_injector.wiring import Provide, inject
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledgerflow.accounting.actions import ActionService
from ledgerflow.accounting.ledger import LedgerService
from ledgerflow.accounting.positions import PositionLifecycle
from ledgerflow.config import settings
from ledgerflow.container import Container
from ledgerflow.infra.fx.exchangerate import ExchangeRateProvider
from ledgerflow.infra.fx.service import FXService
from ledgerflow.infra.price.coingecko import CoinGeckoProvider
from ledgerflow.infra.price.service import PriceService
from ledgerflow.report.service import ReportingService


@inject
async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(Provide[Container.session_factory]),
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@inject
async def get_coingecko(
    coingecko: CoinGeckoProvider = Depends(Provide[Container.coingecko]),
) -> Optional[CoinGeckoProvider]:
    return coingecko


@inject
async def get_exchangerate(
    exchangerate: ExchangeRateProvider = Depends(Provide[Container.exchangerate]),
) -> Optional[ExchangeRateProvider]:
    return exchangerate


DbDep = Annotated[AsyncSession, Depends(get_db)]
CoinGeckoDep = Annotated[Optional[CoinGeckoProvider], Depends(get_coingecko)]
ExchangeRateDep = Annotated[Optional[ExchangeRateProvider], Depends(get_exchangerate)]


def get_fx(db: DbDep, exchangerate: ExchangeRateDep) -> FXService:
    return FXService(db, usd_vnd_fallback=Decimal(settings.usd_vnd_rate), provider=exchangerate)


def get_prices(db: DbDep, coingecko: CoinGeckoDep) -> PriceService:
    return PriceService(db, coingecko)


FXDep = Annotated[FXService, Depends(get_fx)]
PricesDep = Annotated[PriceService, Depends(get_prices)]


def get_ledger(db: DbDep, fx: FXDep) -> LedgerService:
    return LedgerService(db, fx)


LedgerDep = Annotated[LedgerService, Depends(get_ledger)]


def get_positions(db: DbDep, ledger: LedgerDep, prices: PricesDep) -> PositionLifecycle:
    return PositionLifecycle(db, ledger, prices)


PositionsDep = Annotated[PositionLifecycle, Depends(get_positions)]


def get_actions(ledger: LedgerDep, positions: PositionsDep, prices: PricesDep) -> ActionService:
    return ActionService(ledger, positions, prices)


def get_reporting(db: DbDep, fx: FXDep, prices: PricesDep) -> ReportingService:
    return ReportingService(db, fx, prices)


ActionsDep = Annotated[ActionService, Depends(get_actions)]
ReportingDep = Annotated[ReportingService, Depends(get_reporting)]
