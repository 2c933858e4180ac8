"""
Application configuration and settings management.

Settings are read from ``X402_``-prefixed environment variables (or a ``.env``
file) and exposed through a cached :func:`get_settings`.
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# USDC on Base Sepolia
DEFAULT_ASSET_ADDRESS = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"


class Settings(BaseSettings):
    """Service settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="X402_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "x402-settlement"
    environment: str = Field(default="development", description="deployment environment")
    test_mode: bool = Field(default=True, description="sandbox amounts instead of chain lookups")

    # Seller HTTP server
    host: str = "127.0.0.1"
    port: int = 4402

    # Payment requirements
    seller_address: str = Field(default=ZERO_ADDRESS, description="address that receives payments")
    chain: str = "base-sepolia"
    chain_id: int = 84532
    currency: str = "USDC"
    invoice_ttl_seconds: int = 900

    # Chain access
    rpc_url: str = "https://sepolia.base.org"
    rpc_timeout_seconds: float = 10.0
    min_confirmations: int = 1

    # EIP-712 domain of the token used for signed authorizations
    token_name: str = "USDC"
    token_version: str = "2"
    asset_address: str = DEFAULT_ASSET_ADDRESS

    # Webhook delivery
    webhook_timeout_seconds: float = 10.0
    # JSON list in the environment, e.g. X402_WEBHOOK_RETRY_SCHEDULE="[60, 300, 1800]"
    webhook_retry_schedule: list[int] = Field(default_factory=lambda: [60, 300, 1800])
    webhook_failure_threshold: int = 3
    delivery_workers: int = 8

    # Sandbox
    sandbox_delay_seconds: float = 30.0

    # Alerting
    alert_failure_rate_threshold: float = 0.10

    # Logging
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator("seller_address")
    @classmethod
    def check_seller_address(cls, v: str) -> str:
        value = v.strip()
        if not value.startswith("0x") or len(value) != 42:
            raise ValueError("seller_address must be a 0x-prefixed 20-byte hex address")
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def token_domain(self) -> dict:
        """EIP-712 domain used to verify transfer authorizations."""
        return {
            "name": self.token_name,
            "version": self.token_version,
            "chainId": self.chain_id,
            "verifyingContract": self.asset_address,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
