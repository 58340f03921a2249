"""
Configuration management for btcwallet.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class WalletSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    network: Literal["mainnet", "testnet", "signet", "regtest"] = "testnet"

    backend: Literal["blockstream", "blockcypher"] = "blockstream"
    api_url: str | None = None
    blockcypher_token: str = ""
    request_timeout: float = Field(default=30.0, gt=0)

    mnemonic: str = ""
    electrum_password: str = ""

    poll_interval: float = Field(default=300.0, gt=0, description="Seconds between tip polls")
    reorg_safe_depth: int = Field(default=20, ge=0)
    page_size: int = Field(default=50, ge=1)

    fixed_fee: int = Field(default=500, ge=0, description="Flat transaction fee in sats")

    log_level: str = "INFO"


def get_settings(**overrides: object) -> WalletSettings:
    """Load settings; keyword overrides take precedence over environment and .env."""
    return WalletSettings(**overrides)
