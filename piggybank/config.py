"""Settings for the savings client, loaded from ``PIGGYBANK_*`` env vars."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PIGGYBANK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_env: Literal["development", "staging", "production", "test"] = "development"
    log_level: str = "INFO"
    network: str = "mainnet"

    goal_package_id: str = "0xb0cb"
    global_ledger_id: str = "0x91b0"
    clock_object_id: str = "0x6"
    pool_share_type: str = "0x38f6::susdb::SUSDB"

    base_asset_type: str = "0xdba3::usdc::USDC"
    stable_asset_type: str = "0xe14f::usdb::USDB"
    reward_asset_type: str = "0x2::sui::SUI"
    base_asset_decimals: int = Field(default=9, ge=0, le=18)
    stable_asset_decimals: int = Field(default=6, ge=0, le=18)
    reward_asset_decimals: int = Field(default=9, ge=0, le=18)

    # Without a URL the ledger client doubles as the history index.
    history_api_url: Optional[str] = None
    history_timeout_seconds: float = 10.0

    # Without a URL no prices are polled and fiat estimates are null.
    oracle_api_url: Optional[str] = None
    oracle_timeout_seconds: float = 10.0
    oracle_poll_interval_seconds: float = 60.0
    oracle_max_retries: int = 3
    oracle_backoff_base_seconds: float = 1.0
    oracle_backoff_cap_seconds: float = 30.0


@lru_cache
def get_settings() -> Settings:
    return Settings()
