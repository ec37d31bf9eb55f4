"""
Order Profit Engine
Configuration

Every knob comes from the environment (or .env) through pydantic-settings,
grouped per concern: order store, invalidation bus, profit caches, fallback
heuristics and logging.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

ENVIRONMENTS = ("development", "staging", "production", "testing")
LOG_FORMATS = ("json", "text")


class DatabaseSettings(BaseSettings):
    """Where orders, products, leads and cost rows live (POSTGRES_*)"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost")
    port: int = Field(default=5432)
    db: str = Field(default="order_profit")
    user: str = Field(default="profit")
    password: SecretStr = Field(default=SecretStr("secure_password"))
    echo: bool = Field(default=False, description="Log every SQL statement")
    url: Optional[str] = Field(default=None, description="Complete SQLAlchemy URL; wins over host/port/db")

    @property
    def async_url(self) -> str:
        """SQLAlchemy URL with an async driver; plain postgresql:// URLs get asyncpg"""
        if self.url:
            if self.url.startswith("postgresql://"):
                return "postgresql+asyncpg://" + self.url[len("postgresql://"):]
            return self.url
        secret = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{secret}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Invalidation bus shared by engine instances (REDIS_*)"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=False, description="Publish and receive invalidations over Redis")
    host: str = Field(default="localhost")
    port: int = Field(default=6379)
    password: Optional[SecretStr] = Field(default=None)
    db: int = Field(default=0)
    socket_timeout: int = Field(default=5, description="Seconds before a Redis call gives up")
    url: Optional[str] = Field(default=None, description="Complete redis:// URL; wins over host/port/db")
    invalidation_channel: str = Field(default="profit-cache-invalidation")

    def get_url(self) -> str:
        if self.url:
            return self.url
        auth = f":{self.password.get_secret_value()}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"


class CacheSettings(BaseSettings):
    """Per-process TTL caches (PROFIT_CACHE_*)"""

    model_config = SettingsConfigDict(env_prefix="PROFIT_CACHE_")

    order_profit_ttl_seconds: float = Field(default=5 * 60, gt=0)
    report_ttl_seconds: float = Field(default=15 * 60, gt=0)
    default_costs_ttl_seconds: float = Field(default=30 * 60, gt=0)
    max_entries: int = Field(default=1000, ge=1, description="Capacity of each cache")
    eviction_fraction: float = Field(default=0.1, gt=0, le=1, description="Oldest share dropped when a cache is full")
    cleanup_interval_seconds: float = Field(default=5 * 60, gt=0, description="Period of the expired-entry sweep")


class ProfitSettings(BaseSettings):
    """
    Profit calculation heuristics and limits (PROFIT_*).

    The revenue ratios are rules of thumb applied only when real cost data
    cannot be loaded. Breakdowns built from them are flagged as estimates.
    """

    model_config = SettingsConfigDict(env_prefix="PROFIT_")

    # Shares of revenue for a fully estimated breakdown
    product_cost_ratio: float = Field(default=0.60, ge=0, le=1)
    lead_cost_ratio: float = Field(default=0.05, ge=0, le=1)
    packaging_cost_ratio: float = Field(default=0.02, ge=0, le=1)
    printing_cost_ratio: float = Field(default=0.01, ge=0, le=1)
    return_cost_ratio: float = Field(default=0.03, ge=0, le=1)

    # Flat amounts when one cost source is missing
    fallback_lead_cost: float = Field(default=25.00, ge=0)
    fallback_packaging_cost: float = Field(default=5.00, ge=0)
    fallback_printing_cost: float = Field(default=2.50, ge=0)
    fallback_return_cost: float = Field(default=15.00, ge=0)
    consistency_tolerance: float = Field(default=0.01, ge=0, description="Max gap between a stored total and its parts")

    storage_timeout_seconds: float = Field(default=10.0, gt=0, description="Deadline for one storage call")
    batch_concurrency: int = Field(default=10, ge=1, description="Orders calculated at once in batch calls")
    slow_operation_ms: float = Field(default=1000.0, gt=0, description="Operations above this are logged as slow")
    max_metrics: int = Field(default=1000, ge=1, description="Timing samples kept by the monitor")


class MonitoringSettings(BaseSettings):
    """Log level and rendering (LOG_LEVEL, LOG_FORMAT)"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json for machines, text for a terminal")

    @field_validator("log_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v.lower() not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of {LOG_FORMATS}")
        return v.lower()


class Settings(BaseSettings):
    """Root settings object; one instance is shared through get_settings()"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    app_name: str = Field(default="order-profit-engine")
    app_env: str = Field(default="development")
    debug: bool = Field(default=False)
    version: str = Field(default="1.0.0")

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    profit: ProfitSettings = Field(default_factory=ProfitSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        if v.lower() not in ENVIRONMENTS:
            raise ValueError(f"app_env must be one of {ENVIRONMENTS}")
        return v.lower()

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """Settings loaded once per process"""
    return Settings()
