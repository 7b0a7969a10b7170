from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "ledgerflow"
    coingecko_api_key: str = ""
    exchangerate_api_key: str = ""  # Empty uses the keyless v4 endpoint
    price_rate_per_second: float = 5.0
    default_local_currency: str = "USD"
    debug: bool = True
    usd_vnd_rate: int = 25000  # Fallback USD/VND rate when no FX row is dated on or before the query date

    @property
    def database_url(self) -> str:
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_file = ".env"


settings = Settings()
