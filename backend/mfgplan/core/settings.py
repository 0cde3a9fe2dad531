# backend/mfgplan/core/settings.py
"""
Manufacturing Planning - Configuration Management with pydantic-settings

- Loads from environment and root .env
- Validates and normalizes values
- Cached singleton via get_settings()
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional, List

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# backend/mfgplan/core/settings.py -> <repo>/.env
_ENV_FILE = Path(__file__).resolve().parent.parent.parent.parent / ".env"


class Settings(BaseSettings):
    """
    Application settings with validation.

    Environment variables take precedence over .env file values.
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Application Settings
    # ===================
    PROJECT_NAME: str = "MfgPlan"
    VERSION: str = "1.0.0"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    ENVIRONMENT: str = Field(default="development", description="Deployment environment")
    AUTO_CREATE_TABLES: bool = Field(
        default=False, description="Create missing tables on startup (dev/test only)"
    )
    SENTRY_DSN: Optional[str] = Field(default=None, description="Sentry DSN; empty disables")

    # ===================
    # Database Settings
    # ===================
    DB_HOST: str = Field(default="localhost", description="PostgreSQL host")
    DB_PORT: int = Field(default=5432, description="PostgreSQL port")
    DB_NAME: str = Field(default="mfgplan", description="Database name")
    DB_USER: str = Field(default="postgres", description="Database user")
    DB_PASSWORD: str = Field(default="postgres", description="Database password")
    DATABASE_URL: Optional[str] = Field(
        default=None, description="Full database URL (overrides DB_* settings)"
    )

    @property
    def database_url(self) -> str:
        """Build PostgreSQL database URL from components or use explicit URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    # ===================
    # CORS Settings
    # ===================
    ALLOWED_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="Allowed CORS origins",
    )

    @field_validator("ALLOWED_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # ===================
    # Logging
    # ===================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "json"  # json or text
    LOG_FILE: Optional[str] = None

    # ===================
    # BOM Explosion
    # ===================
    BOM_EXPLOSION_MAX_DEPTH: int = Field(
        default=10, ge=1, le=100, description="Hard recursion bound for explosions"
    )
    BOM_EXPLOSION_CACHE_TTL_SECONDS: int = Field(
        default=3600, ge=0, description="TTL for cached unit-quantity explosions"
    )
    BOM_STRUCTURE_CACHE_TTL_SECONDS: int = Field(
        default=3600, ge=0, description="TTL for cached single/multi-level facts"
    )
    BOM_QUANTITY_DECIMALS: int = Field(default=4, ge=0, le=10)

    # ===================
    # Capacity Planning
    # ===================
    CAPACITY_SLOT_SEARCH_DAYS: int = Field(
        default=90, ge=1, le=730, description="Days FindNextSlot may scan forward"
    )
    CAPACITY_DEFAULT_SHIFT_START: str = "08:00"
    CAPACITY_DEFAULT_SHIFT_END: str = "17:00"
    CAPACITY_DEFAULT_BREAK_HOURS: float = 1.0
    CAPACITY_WORKING_WEEKDAYS: List[int] = Field(
        default=[0, 1, 2, 3, 4], description="Python weekday numbers (0=Monday)"
    )
    CAPACITY_BOTTLENECK_THRESHOLD: float = 85.0

    @field_validator("CAPACITY_WORKING_WEEKDAYS", mode="before")
    @classmethod
    def parse_weekdays(cls, v):
        if isinstance(v, str):
            return [int(day.strip()) for day in v.split(",") if day.strip()]
        return v

    # ===================
    # MRP Settings (safe defaults)
    # ===================
    MRP_DEFAULT_HORIZON_DAYS: int = Field(default=30, ge=1, le=365)
    MRP_MAX_HORIZON_DAYS: int = 365
    MRP_URGENT_WINDOW_DAYS: int = Field(
        default=3, ge=0, description="Suggested dates this close are high priority"
    )
    MRP_MEDIUM_WINDOW_DAYS: int = Field(default=7, ge=0)
    MRP_PROGRESS_EVERY_N_PRODUCTS: int = Field(default=1, ge=1)
    MRP_WARNING_EXAMPLES: int = Field(
        default=3, ge=0, description="Examples kept per warning type in warnings_summary"
    )
    MRP_DEFAULT_WAREHOUSE_ID: Optional[int] = None
    MRP_WORKING_DAY_LEAD_TIMES: bool = Field(
        default=True, description="Offset lead times over working days instead of calendar days"
    )
    MRP_CHECK_CAPACITY: bool = Field(
        default=True, description="Check suggested work orders against work center calendars"
    )
    MRP_ASYNC_BY_DEFAULT: bool = True
    MRP_RUN_RATE_LIMIT: str = "10/minute"
    RATE_LIMIT_ENABLED: bool = True

    @model_validator(mode="after")
    def check_priority_windows(self):
        """The medium window must not be narrower than the urgent window."""
        if self.MRP_MEDIUM_WINDOW_DAYS < self.MRP_URGENT_WINDOW_DAYS:
            self.MRP_MEDIUM_WINDOW_DAYS = self.MRP_URGENT_WINDOW_DAYS
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Singleton settings loader (cached)."""
    return Settings()


settings = get_settings()
