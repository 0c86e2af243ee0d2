"""Service configuration loaded from environment variables or a .env file"""
import logging
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Earnings service settings"""
    # Exchange gateway
    SIDESHIFT_API_URL: str = Field("https://sideshift.ai/api/v2", description="SideShift API base URL")
    SIDESHIFT_SECRET: Optional[str] = Field(None, description="SideShift account secret")
    SIDESHIFT_AFFILIATE_ID: Optional[str] = Field(None, description="SideShift affiliate id")
    SETTLEMENT_COIN: str = Field("usdc", description="Currency artist balances are held in")
    REFUND_ADDRESS: Optional[str] = Field(None, description="Platform treasury address for refunded shifts")
    EXCHANGE_TIMEOUT_SECONDS: float = Field(10.0, description="Upper bound for a single gateway call")

    # Stream settlement
    REQUIRE_PLAYBACK_SESSION: bool = Field(False, description="Reject stream reports without a session token")
    PLAYBACK_SESSION_TTL_SECONDS: int = Field(6 * 60 * 60, description="Lifetime of a playback session token")

    LOG_LEVEL: str = Field("INFO", description="Root log level")
    SEED_DEMO_DATA: bool = Field(True, description="Load demo artists and tracks into in-memory storage")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()


def configure_logging(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
