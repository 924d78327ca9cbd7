"""
Application settings, read from the environment (and .env) with pydantic-settings.

Money values are Decimals so the commission schedule and the membership
price never pass through binary floats.
"""
from decimal import Decimal
from typing import Optional
from urllib.parse import quote_plus

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # PostgreSQL
    DB_USER: str = Field(..., description="PostgreSQL username")
    DB_PASSWORD: str = Field(..., description="PostgreSQL password")
    DB_NAME: str = Field(..., description="PostgreSQL database name")
    DB_HOST: str = Field(default="localhost")
    DB_PORT: int = Field(default=5432)
    DB_POOL_SIZE: int = Field(default=20, description="Connections kept open per process")
    DB_MAX_OVERFLOW: int = Field(default=40, description="Extra connections allowed under load")
    DB_POOL_RECYCLE: int = Field(default=1800, description="Seconds before a pooled connection is replaced")

    # Runtime
    ENVIRONMENT: str = Field(default="production", description="development or production")
    LOG_LEVEL: str = Field(default="INFO")
    ALLOWED_ORIGINS: str = Field(default="", description="Comma-separated CORS origins")

    # Membership
    MEMBERSHIP_PRICE_USD: Decimal = Field(default=Decimal("10"), description="Price of one membership period")
    MEMBERSHIP_DURATION_DAYS: int = Field(default=28, description="Days added to membership per payment")
    ACCEPTED_CURRENCIES: str = Field(default="USDT,USDC,BUSD", description="Comma-separated accepted stablecoins")
    PAYMENT_AUTO_CONFIRM: bool = Field(
        default=True,
        description="Mark payments completed on submission (the transaction hash is trusted)",
    )

    # MLM commission schedule
    MLM_MAX_LEVELS: int = Field(default=5, description="Sponsor levels that receive commissions")
    MLM_LEVEL_1_COMMISSION: Decimal = Field(default=Decimal("3.5"), description="Commission paid to level 1")
    MLM_LEVEL_OTHER_COMMISSION: Decimal = Field(default=Decimal("1.0"), description="Commission paid to levels 2..N")
    MLM_NETWORK_DEPTH: int = Field(default=6, description="Depth of downline reports")

    # Moderation
    VOTING_DURATION_MINUTES: int = Field(default=10, description="Minutes before an open voting fails")
    VOTE_COOLDOWN_MINUTES: int = Field(default=5, description="Minutes between votings started by one user")
    VOTE_COOLDOWN_SCOPE: str = Field(default="global", description="Cooldown scope: global or room")
    MIN_PARTICIPANTS_FOR_VOTING: int = Field(default=2, description="Members required to start a voting")
    VOTING_SWEEP_INTERVAL_SECONDS: int = Field(default=30, description="Expiry sweep period")

    @field_validator("ENVIRONMENT")
    @classmethod
    def check_environment(cls, v: str) -> str:
        v = v.lower()
        if v not in ("development", "production"):
            raise ValueError("ENVIRONMENT must be 'development' or 'production'")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def check_log_level(cls, v: str) -> str:
        if v.upper() not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {LOG_LEVELS}")
        return v.upper()

    @field_validator("VOTE_COOLDOWN_SCOPE")
    @classmethod
    def check_cooldown_scope(cls, v: str) -> str:
        if v not in ("global", "room"):
            raise ValueError("VOTE_COOLDOWN_SCOPE must be 'global' or 'room'")
        return v

    @field_validator("MLM_MAX_LEVELS", "MLM_NETWORK_DEPTH", "MEMBERSHIP_DURATION_DAYS", "VOTING_DURATION_MINUTES")
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be a positive number")
        return v

    def validate_production_settings(self) -> list[str]:
        """Settings that are optional in development but required in production."""
        if not self.is_production:
            return []
        errors = []
        if not self.ALLOWED_ORIGINS:
            errors.append("ALLOWED_ORIGINS is required in production")
        return errors

    @property
    def db_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.DB_USER}:{quote_plus(self.DB_PASSWORD)}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @staticmethod
    def _split(value: str) -> list[str]:
        return [item.strip() for item in value.split(",") if item.strip()]

    @property
    def allowed_origins_list(self) -> list[str]:
        return self._split(self.ALLOWED_ORIGINS)

    @property
    def accepted_currencies_list(self) -> list[str]:
        return [c.upper() for c in self._split(self.ACCEPTED_CURRENCIES)]


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Load settings once per process; raises ValueError listing every missing production setting."""
    global _settings
    if _settings is None:
        settings = Settings()
        errors = settings.validate_production_settings()
        if errors:
            raise ValueError("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))
        _settings = settings
    return _settings
