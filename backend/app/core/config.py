"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. This ensures:
1. Type validation at startup
2. Centralized configuration
3. Documentation of available settings
4. Proper defaults
"""

from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - relative path for Docker, override via env for local dev
    database_url: str = "sqlite:///./data/cafe_orders.db"
    sql_echo: bool = False

    # Redis - optional, backs the read cache when reachable
    redis_url: Optional[str] = None

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # ==========================================================================
    # Branches & owners
    # ==========================================================================
    # "id:Display Name" pairs, comma-separated
    branches: str = "pangabugan:Pangabugan Branch,baan:Baan Branch"
    default_branch: str = "pangabugan"
    # Revenue/expense attribution tags; the first one is the fallback owner
    owners: str = "john,elwin"

    # ==========================================================================
    # Business day & reporting
    # ==========================================================================
    # Orders before this UTC hour belong to the previous business day
    business_day_rollover_hour: int = 1
    # Representative instant of a business day (UTC hour)
    business_day_anchor_hour: int = 8
    split_payment_tolerance: float = 0.01
    insights_window_days: int = 90
    daily_sales_page_size: int = 10
    withdrawal_future_tolerance_hours: int = 24

    # Timezone used for hour-of-day / day-of-week histograms
    timezone: str = "Asia/Manila"

    # ==========================================================================
    # Cache TTLs (seconds)
    # ==========================================================================
    cache_ttl_orders: int = 30
    cache_ttl_daily_sales: int = 120
    cache_ttl_insights: int = 300
    cache_ttl_stats: int = 60

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_prefix: str = "/api"

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_read: str = "120/minute"
    rate_limit_write: str = "60/minute"

    @field_validator("business_day_rollover_hour", "business_day_anchor_hour")
    @classmethod
    def validate_hour(cls, v: int) -> int:
        if not 0 <= v <= 23:
            raise ValueError(f"hour must be within 0-23, got {v}")
        return v

    @model_validator(mode="after")
    def validate_branches(self) -> "Settings":
        """The default branch must be one of the configured branches."""
        if self.default_branch not in self.branch_map:
            raise ValueError(
                f"DEFAULT_BRANCH '{self.default_branch}' is not listed in BRANCHES "
                f"({', '.join(self.branch_map)})"
            )
        if len(self.owner_list) < 1:
            raise ValueError("OWNERS must name at least one owner")
        return self

    @property
    def branch_map(self) -> Dict[str, str]:
        """Parse BRANCHES into {branch_id: display name}."""
        result: Dict[str, str] = {}
        for entry in self.branches.split(","):
            entry = entry.strip()
            if not entry:
                continue
            branch_id, _, name = entry.partition(":")
            result[branch_id.strip()] = name.strip() or branch_id.strip()
        return result

    @property
    def owner_list(self) -> List[str]:
        return [o.strip().lower() for o in self.owners.split(",") if o.strip()]

    @property
    def default_owner(self) -> str:
        return self.owner_list[0]

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
