"""Application configuration using pydantic-settings.

The settings object is created once at process start and passed to every
component that needs it. Nothing below opens network connections.
"""

import json
from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

REQUIRED_ENV_VARS = (
    "OP_MAINNET_RPC",
    "STAKING_CONTRACT_ADDRESS",
    "SWAP_ROUTER_ADDRESS",
    "YLS_TOKEN_ADDRESS",
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=3001, description="API server port")
    api_prefix: str = Field(default="/api", description="Prefix for the relay and chain routes")
    allowed_origins: str = Field(
        default="http://localhost:3000", description="Comma-separated CORS origins"
    )

    # ======================
    # Chain
    # ======================
    op_mainnet_rpc: str = Field(default="", description="JSON-RPC endpoint URL")
    chain_id: int = Field(default=10, description="Chain ID used when signing (10 = OP Mainnet)")
    rpc_timeout_seconds: float = Field(default=10.0, description="Timeout for each upstream call")

    # ======================
    # Contracts
    # ======================
    staking_contract_address: str = Field(default="", description="Staking contract")
    swap_router_address: str = Field(default="", description="Uniswap V2 style router")
    yls_token_address: str = Field(default="", description="YLS token")
    weth_address: str = Field(default="", description="Intermediate asset for quote paths")
    trading_strategies_address: Optional[str] = Field(
        default=None, description="Trading strategies contract"
    )

    # ======================
    # Relayer
    # ======================
    signer_backend: str = Field(default="local", description="Credential provider backend")
    relayer_private_key: Optional[str] = Field(
        default=None, description="Relayer hot wallet key (local signer only)"
    )
    stake_function_signature: str = Field(
        default="stakeWithSignature(address,uint256,uint256,uint256,bytes)",
        description="Relayed stake entrypoint on the staking contract",
    )
    relay_gas_limit: int = Field(default=300000, description="Gas limit for relayed stakes")
    relay_max_attempts: int = Field(default=3, description="Attempts for transient failures")
    relay_backoff_base_seconds: float = Field(default=0.5, description="Backoff base delay")
    relayer_min_balance_wei: int = Field(
        default=10**15, description="Warn when the relayer balance drops below this"
    )

    # ======================
    # Gas / quotes
    # ======================
    gas_cache_ttl_seconds: float = Field(default=15.0, description="Gas estimate cache TTL")
    gas_refresh_interval_seconds: float = Field(
        default=0.0, description="Background gas refresh interval (0 = disabled)"
    )
    fallback_swap_rate: Decimal = Field(
        default=Decimal("0.001"), description="Fallback rate when the router call fails"
    )
    fallback_rate_table: str = Field(
        default="{}", description='JSON map of "tokenIn:tokenOut" -> rate overrides'
    )

    # ======================
    # Replay protection
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/stakerelay.db",
        description="Database connection URL for replay records",
    )
    replay_backend: str = Field(default="sql", description="sql or memory")
    replay_retention_seconds: int = Field(
        default=86400, description="Minimum time a consumed digest is kept"
    )
    replay_deadline_margin_seconds: int = Field(
        default=3600, description="Records are kept at least until deadline + margin"
    )
    replay_prune_interval_seconds: int = Field(
        default=600, description="Minimum time between opportunistic prunes"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def expose_error_details(self) -> bool:
        """Error responses carry a details string outside production."""
        return not self.is_production

    @property
    def origins(self) -> list[str]:
        """Parse allowed CORS origins."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    @property
    def rate_table(self) -> dict[tuple[str, str], Decimal]:
        """Parse the fallback rate table into (tokenIn, tokenOut) -> rate."""
        raw = json.loads(self.fallback_rate_table or "{}")
        table = {}
        for pair, rate in raw.items():
            token_in, token_out = pair.split(":", 1)
            table[(token_in.lower(), token_out.lower())] = Decimal(str(rate))
        return table

    def missing_required(self) -> list[str]:
        """Return names of required environment variables that are unset."""
        values = {
            "OP_MAINNET_RPC": self.op_mainnet_rpc,
            "STAKING_CONTRACT_ADDRESS": self.staking_contract_address,
            "SWAP_ROUTER_ADDRESS": self.swap_router_address,
            "YLS_TOKEN_ADDRESS": self.yls_token_address,
        }
        return [name for name in REQUIRED_ENV_VARS if not values[name]]

    def get_contract_addresses(self) -> dict:
        """Configured contract addresses as exposed by the API."""
        return {
            "staking": self.staking_contract_address or None,
            "swapRouter": self.swap_router_address or None,
            "ylsToken": self.yls_token_address or None,
            "tradingStrategies": self.trading_strategies_address,
        }

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_prefix": self.api_prefix,
            "chain_id": self.chain_id,
            "rpc": self._redact_url(self.op_mainnet_rpc) or "(not set)",
            "contracts": self.get_contract_addresses(),
            "signer_backend": self.signer_backend,
            "relayer_key": "***" if self.relayer_private_key else "(not set)",
            "database_url": self._redact_url(self.database_url),
            "replay": {
                "backend": self.replay_backend,
                "retention_seconds": self.replay_retention_seconds,
                "deadline_margin_seconds": self.replay_deadline_margin_seconds,
            },
            "gas_cache_ttl_seconds": self.gas_cache_ttl_seconds,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials embedded in a URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance for the process entry point."""
    return Settings()
