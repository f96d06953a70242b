"""
Settings Configuration
Pydantic-based configuration validation and management
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class MarketplaceSettings(BaseSettings):
    """Etsy Open API v3 configuration"""
    api_key: str = Field(default="", description="Etsy app keystring (x-api-key / OAuth client_id)")
    shared_secret: Optional[str] = Field(default=None, description="Etsy shared secret")
    shop_id: str = Field(default="", description="Shop that owns the listings")
    access_token: Optional[str] = Field(default=None, description="Static fallback token (no refresh)")
    refresh_token: Optional[str] = Field(default=None, description="Static fallback refresh token")
    api_base: str = Field(default="https://openapi.etsy.com/v3", description="REST base URL")
    auth_url: str = Field(default="https://www.etsy.com/oauth/connect", description="OAuth consent URL")
    token_url: str = Field(default="https://api.etsy.com/v3/public/oauth/token", description="OAuth token URL")
    scopes: str = Field(default="listings_w listings_r shops_r transactions_r", description="Requested OAuth scopes")
    listing_url_template: str = Field(default="https://www.etsy.com/listing/{listing_id}", description="Fallback public URL")

    class Config:
        env_prefix = "ETSY_"


class HttpSettings(BaseSettings):
    """Remote call resilience"""
    request_timeout: float = Field(default=30.0, description="Per-request timeout (seconds)")
    download_timeout: float = Field(default=30.0, description="Wall-clock limit for one asset download (seconds)")
    max_attempts: int = Field(default=5, description="Total attempts for 429/5xx responses")
    retry_base_delay: float = Field(default=1.0, description="Backoff base (seconds)")
    retry_max_delay: float = Field(default=60.0, description="Backoff cap (seconds)")
    token_refresh_margin: float = Field(default=300.0, description="Refresh when the token expires within this many seconds")

    class Config:
        env_prefix = "HTTP_"


class PipelineSettings(BaseSettings):
    """Orchestrator and publish defaults"""
    progress_step: int = Field(default=5, description="Persist generation progress every N points")
    stale_run_minutes: int = Field(default=30, description="Running runs older than this are marked failed")
    stale_sweep_interval: float = Field(default=1800.0, description="Stale run sweep interval (seconds)")
    sales_sync_interval: float = Field(default=3600.0, description="Scheduled sales sync interval (seconds)")
    initial_sync_delay: float = Field(default=5.0, description="Delay before the first sales sync (seconds)")
    max_listing_images: int = Field(default=5, description="Rendered listing images per product")
    default_taxonomy_id: int = Field(default=2078, description="Taxonomy used when the product has none")
    listing_quantity: int = Field(default=999, description="Quantity for digital listings")
    max_tags: int = Field(default=13, description="Marketplace tag limit")
    ai_disclosure: str = Field(
        default="Designed with AI assistance. Template structure and formulas created using AI tools.",
        description="Clause appended to listing descriptions",
    )

    class Config:
        env_prefix = "PIPELINE_"


class ReconcileSettings(BaseSettings):
    """Sales reconciliation"""
    page_size: int = Field(default=25, description="Receipts per page")
    overlap_seconds: int = Field(default=60, description="Backward overlap from the latest known sale")
    lookback_days: int = Field(default=90, description="Initial window when no sale exists")

    class Config:
        env_prefix = "RECONCILE_"


class LoggingSettings(BaseSettings):
    """Logging"""
    level: str = Field(default="INFO", description="Log level")
    file: Optional[str] = Field(default=None, description="Log file name under logs/")
    use_rich: bool = Field(default=True, description="Rich console handler")

    class Config:
        env_prefix = "LOG_"


class Settings(BaseSettings):
    """Top-level settings aggregating every group"""

    marketplace: MarketplaceSettings = Field(default_factory=MarketplaceSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    pipeline: PipelineSettings = Field(default_factory=PipelineSettings)
    reconcile: ReconcileSettings = Field(default_factory=ReconcileSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings after exporting an optional .env file into the environment"""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            marketplace=MarketplaceSettings(),
            http=HttpSettings(),
            pipeline=PipelineSettings(),
            reconcile=ReconcileSettings(),
            logging=LoggingSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton"""
    return Settings.load_from_env_file()


def get_marketplace_settings() -> MarketplaceSettings:
    return get_settings().marketplace


def get_http_settings() -> HttpSettings:
    return get_settings().http


def get_pipeline_settings() -> PipelineSettings:
    return get_settings().pipeline


def get_reconcile_settings() -> ReconcileSettings:
    return get_settings().reconcile
