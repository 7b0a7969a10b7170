from dependency_injector import containers, providers

from ledgerflow.config import Settings
from ledgerflow.db.session import build_engine, build_session_factory
from ledgerflow.infra.fx.exchangerate import ExchangeRateProvider
from ledgerflow.infra.http.rate_limited_client import RateLimitedClient
from ledgerflow.infra.price.coingecko import CoinGeckoProvider


class Container(containers.DeclarativeContainer):
    wiring_config = containers.WiringConfiguration(modules=["ledgerflow.api.deps"])

    settings = providers.Singleton(Settings)

    engine = providers.Singleton(
        build_engine,
        database_url=settings.provided.database_url,
        echo=settings.provided.debug,
    )

    session_factory = providers.Singleton(
        build_session_factory,
        engine=engine,
    )

    http_client = providers.Singleton(
        RateLimitedClient,
        rate_per_second=settings.provided.price_rate_per_second,
        timeout=30.0,
    )

    coingecko = providers.Singleton(
        CoinGeckoProvider,
        http_client=http_client,
        api_key=settings.provided.coingecko_api_key,
    )

    exchangerate = providers.Singleton(
        ExchangeRateProvider,
        http_client=http_client,
        api_key=settings.provided.exchangerate_api_key,
    )
