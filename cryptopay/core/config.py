"""
Runtime configuration.

Values come from the environment (``.env`` is loaded in ``cryptopay.main``).
Routes receive a ``Settings`` instance through ``get_settings`` so tests can
swap it with ``app.dependency_overrides``.
"""
import os
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field

from cryptopay.core.plan_limits import DEFAULT_GMV_LIMIT_CENTS, DEFAULT_TRIAL_DAYS


def _env(name: str, default: str = "") -> str:
    return os.getenv(name, default).strip()


def _env_optional_int(name: str) -> Optional[int]:
    raw = _env(name)
    return int(raw) if raw else None


class Settings(BaseModel):
    webhook_secret: str = Field(default_factory=lambda: _env("WEBHOOK_SECRET"))
    cron_secret: str = Field(default_factory=lambda: _env("CRON_SECRET"))

    subscriptions_enabled: bool = Field(default_factory=lambda: _env("SUBSCRIPTIONS_ENABLED") == "1")
    gmv_limit_cents: int = Field(
        default_factory=lambda: int(_env("GMV_LIMIT_CENTS", str(DEFAULT_GMV_LIMIT_CENTS)))
    )
    trial_days: int = Field(default_factory=lambda: int(_env("TRIAL_DAYS", str(DEFAULT_TRIAL_DAYS))))
    billing_portal_url: str = Field(default_factory=lambda: _env("BILLING_PORTAL_URL"))

    # Added on top of the crypto amount the buyer pays; 0 disables the fee.
    processing_fee_percent: Decimal = Field(
        default_factory=lambda: Decimal(_env("PROCESSING_FEE_PERCENT", "0") or "0")
    )
    invoice_ttl_minutes: Optional[int] = Field(default_factory=lambda: _env_optional_int("INVOICE_TTL_MINUTES"))

    evm_rpc_url: str = Field(
        default_factory=lambda: _env("EVM_RPC_URL") or _env("ALCHEMY_HTTP") or _env("QUICKNODE_HTTP")
    )
    ethereum_rpc_url: str = Field(default_factory=lambda: _env("ETHEREUM_RPC_URL"))
    polygon_rpc_url: str = Field(default_factory=lambda: _env("POLYGON_RPC_URL"))
    bsc_rpc_url: str = Field(default_factory=lambda: _env("BSC_RPC_URL"))
    solana_rpc_url: str = Field(
        default_factory=lambda: _env("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
    )
    usdc_mint: str = Field(default_factory=lambda: _env("USDC_MINT"))
    usdt_mint: str = Field(default_factory=lambda: _env("USDT_MINT"))

    coingecko_base_url: str = Field(
        default_factory=lambda: _env("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3").rstrip("/")
    )
    http_timeout_seconds: float = Field(default_factory=lambda: float(_env("HTTP_TIMEOUT_SECONDS", "10")))

    confirmation_batch_size: int = Field(default_factory=lambda: int(_env("CONFIRMATION_BATCH_SIZE", "50")))
    confirmation_sweep_seconds: int = Field(default_factory=lambda: int(_env("CONFIRMATION_SWEEP_SECONDS", "60")))

    stripe_secret_key: str = Field(default_factory=lambda: _env("STRIPE_SECRET_KEY"))
    stripe_webhook_secret: str = Field(default_factory=lambda: _env("STRIPE_WEBHOOK_SECRET"))
    price_basic: str = Field(default_factory=lambda: _env("PRICE_BASIC"))
    price_pro: str = Field(default_factory=lambda: _env("PRICE_PRO"))

    redis_url: str = Field(default_factory=lambda: _env("REDIS_URL", "redis://localhost:6379/0"))
    cors_origins: List[str] = Field(
        default_factory=lambda: [o.strip() for o in _env("CORS_ORIGINS", "*").split(",") if o.strip()]
    )

    def rpc_url_for(self, network: str) -> str:
        """JSON-RPC endpoint for an EVM network, falling back to the shared EVM endpoint."""
        per_network = {
            "ethereum": self.ethereum_rpc_url,
            "polygon": self.polygon_rpc_url,
            "bsc": self.bsc_rpc_url,
        }.get(network, "")
        return per_network or self.evm_rpc_url

    def mint_for(self, symbol: str) -> str:
        return {"USDC": self.usdc_mint, "USDT": self.usdt_mint}.get(symbol, "")


@lru_cache
def get_settings() -> Settings:
    return Settings()
