"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ExchangeSettings(BaseSettings):
    """Price source connection settings (any ccxt exchange id)."""

    model_config = SettingsConfigDict(env_prefix="EXCHANGE_")

    exchange_id: str = "binance"
    quote_currency: str = "USDT"
    sandbox: bool = False
    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")


class PollerSettings(BaseSettings):
    """Price feed polling parameters."""

    model_config = SettingsConfigDict(env_prefix="POLLER_")

    interval: float = 15.0  # seconds between fetches per asset
    asset_intervals: dict[str, float] = {}  # per-asset override, e.g. {"USDC": 30}
    change_threshold: Decimal = Decimal("0.0001")  # 0.01% relative move
    validate_samples: bool = True

    def interval_for(self, asset: str) -> float:
        """Return the poll interval for an asset, honoring per-asset overrides."""
        return self.asset_intervals.get(asset, self.interval)


class StatisticsSettings(BaseSettings):
    """Rolling price statistics and sample validation."""

    model_config = SettingsConfigDict(env_prefix="STATS_")

    max_history_length: int = 1000
    outlier_sigma: Decimal = Decimal("2.0")
    outlier_min_samples: int = 10  # validate_price skips the z-score below this
    trend_lookback: int = 10
    trend_threshold: Decimal = Decimal("0.01")  # 1%


class EngineSettings(BaseSettings):
    """Rule engine bookkeeping."""

    model_config = SettingsConfigDict(env_prefix="ENGINE_")

    max_execution_history: int = 100


class SchedulerSettings(BaseSettings):
    """Due-task scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    interval: float = 20.0


class StoreSettings(BaseSettings):
    """Scheduled automation store location."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    db_path: str = "data/automations.db"


class PaperSettings(BaseSettings):
    """Paper executor starting balances, keyed by asset code."""

    model_config = SettingsConfigDict(env_prefix="PAPER_")

    initial_balances: dict[str, Decimal] = {}


class ApiSettings(BaseSettings):
    """Control API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    monitored_assets: list[str] = ["XLM", "USDC"]
    native_assets: list[str] = ["XLM"]
    exchange: ExchangeSettings = ExchangeSettings()
    poller: PollerSettings = PollerSettings()
    statistics: StatisticsSettings = StatisticsSettings()
    engine: EngineSettings = EngineSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    store: StoreSettings = StoreSettings()
    paper: PaperSettings = PaperSettings()
    api: ApiSettings = ApiSettings()
