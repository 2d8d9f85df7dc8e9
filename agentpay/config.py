"""
Application configuration management using Pydantic settings.
Loads configuration from environment variables with validation.

A single Settings instance is built at process start and handed to the
components that need it; business logic never reads the environment directly.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_PAYMENT_ADDRESS = "0x0000000000000000000000000000000000000001"

CHAIN_IDS: dict[str, int] = {
    "base-sepolia": 84532,
    "base": 8453,
}

USDC_ADDRESSES: dict[str, str] = {
    "base-sepolia": "0x036CbD53842c5426634e7929541eC2318f3dCF7e",
    "base": "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913",
}

EXPLORER_URLS: dict[str, str] = {
    "base-sepolia": "https://sepolia.basescan.org",
    "base": "https://basescan.org",
}

BASE_SEPOLIA_RPC_FALLBACKS = (
    "https://sepolia.base.org,"
    "https://base-sepolia.public.blastapi.io,"
    "https://base-sepolia-rpc.publicnode.com,"
    "https://base-sepolia.blockpi.network/v1/rpc/public"
)


@dataclass(frozen=True)
class TokenConfig:
    """On-chain token metadata used for unit conversion and contract calls."""
    symbol: str
    name: str
    address: str
    decimals: int

    @property
    def is_configured(self) -> bool:
        return bool(self.address) and self.address.lower() != ZERO_ADDRESS


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Secrets (execution key) should only ever come from the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "agentpay-relay"
    app_version: str = "1.0.0"
    environment: str = "production"
    debug: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS Configuration
    cors_allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
    cors_allow_credentials: bool = True
    cors_allow_methods: str = "GET,POST,OPTIONS"
    cors_allow_headers: str = "Content-Type,X-PAYMENT,X-Correlation-ID"

    # Storage
    database_url: str = "sqlite+aiosqlite:///./agentpay.db"
    storage_backend: str = "sql"

    # Network / RPC
    network: str = "base-sepolia"
    rpc_url: str = "https://sepolia.base.org"
    rpc_fallback_urls: str = BASE_SEPOLIA_RPC_FALLBACKS
    rpc_timeout_seconds: float = 10.0

    # Execution wallet
    execution_private_key: str | None = None

    # Uniswap V3 deployment
    uniswap_v3_factory: str = "0x4752ba5DBc23f44D87826276BF6Fd6b1C372aD24"
    uniswap_v3_swap_router: str = "0x94cC0AaC535CCDB3C01d6787D6413C739ae12bc4"
    uniswap_v3_quoter: str = "0xC5290058841028F1614F3A6F0F5816cAd0df5E27"
    uniswap_v3_pool_address: str = "0x657E53f847232D4b996890c6Fd11cb7396cBb0b6"
    pool_fee: int = 3000

    # Tokens
    mock_usdc_address: str = "0xB66d47e7D179695DA224D146948B55a8014Bbd6a"
    mock_wbtc_address: str = "0x6FB6190cDa2ffdC1B2310Df62d5a3C0D4E1cFe29"
    weth_address: str = "0x4200000000000000000000000000000000000006"
    supported_symbols: str = "BTC,WBTC"

    # Slippage (0.05 = 5%)
    slippage_tolerance: float = 0.05

    # Fees (USD)
    trade_fee_percentage: float = 0.001
    min_trade_fee: float = 0.001
    max_trade_fee: float = 1.0
    consultancy_fee: float = 0.10

    # x402 payments
    x402_payment_address: str = DEFAULT_PAYMENT_ADDRESS
    x402_max_timeout_seconds: int = 90
    facilitator_url: str = "https://x402.org/facilitator"
    facilitator_timeout_seconds: float = 10.0

    # Rate Limiting Configuration
    rate_limit_enabled: bool = True
    rate_limit_requests_per_minute: int = 120
    rate_limit_requests_per_hour: int = 3000
    rate_limit_burst: int = 30
    payment_rate_limit_per_minute: int = 5

    @field_validator("slippage_tolerance")
    @classmethod
    def validate_slippage(cls, v: float) -> float:
        """Slippage must stay between 0.1% and 50%."""
        if not 0.001 <= v <= 0.50:
            raise ValueError("SLIPPAGE_TOLERANCE must be between 0.001 and 0.50")
        return v

    @field_validator("network")
    @classmethod
    def validate_network(cls, v: str) -> str:
        if v not in CHAIN_IDS:
            raise ValueError(f"NETWORK must be one of: {', '.join(CHAIN_IDS)}")
        return v

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("sql", "memory"):
            raise ValueError("STORAGE_BACKEND must be 'sql' or 'memory'")
        return v

    @field_validator("x402_payment_address")
    @classmethod
    def warn_default_payment_address(cls, v: str) -> str:
        if v == DEFAULT_PAYMENT_ADDRESS:
            logger.warning(
                "X402_PAYMENT_ADDRESS not set. Using default test address; "
                "x402 payments will not reach a real payee."
            )
        return v

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def cors_origins_list(self) -> list[str]:
        """
        Parses comma-separated CORS origins into a list.
        Returns ["*"] if cors_allowed_origins is set to "*".
        """
        if self.cors_allowed_origins.strip() == "*":
            return ["*"]
        return _split_csv(self.cors_allowed_origins)

    @property
    def cors_methods_list(self) -> list[str]:
        return _split_csv(self.cors_allow_methods)

    @property
    def cors_headers_list(self) -> list[str]:
        return _split_csv(self.cors_allow_headers)

    @property
    def async_database_url(self) -> str:
        """
        Ensures the database URL uses the async driver.
        Converts postgresql:// to postgresql+asyncpg:// if needed.
        """
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("sqlite:///"):
            url = url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
        return url

    @property
    def rpc_urls(self) -> list[str]:
        """Primary endpoint first, then fallbacks in order, without duplicates."""
        urls: list[str] = []
        for url in [self.rpc_url, *_split_csv(self.rpc_fallback_urls)]:
            url = url.rstrip("/")
            if url and url not in urls:
                urls.append(url)
        return urls

    @property
    def chain_id(self) -> int:
        return CHAIN_IDS[self.network]

    @property
    def usdc_payment_asset(self) -> str:
        """USDC contract the x402 payment is denominated in."""
        return USDC_ADDRESSES[self.network]

    @property
    def explorer_url(self) -> str:
        return EXPLORER_URLS[self.network]

    @property
    def slippage_bps(self) -> int:
        return int(self.slippage_tolerance * 10000)

    @property
    def supported_symbols_list(self) -> list[str]:
        return [s.upper() for s in _split_csv(self.supported_symbols)]

    @property
    def tokens(self) -> dict[str, TokenConfig]:
        """Token table keyed by upper-case symbol. BTC is an alias of WBTC."""
        return {
            "USDC": TokenConfig("USDC", "USD Coin", self.mock_usdc_address, 6),
            "WBTC": TokenConfig("WBTC", "Wrapped Bitcoin", self.mock_wbtc_address, 8),
            "BTC": TokenConfig("BTC", "Bitcoin (via WBTC)", self.mock_wbtc_address, 8),
            "WETH": TokenConfig("WETH", "Wrapped Ether", self.weth_address, 18),
        }

    def get_token(self, symbol: str) -> TokenConfig | None:
        return self.tokens.get(symbol.upper())

    def transaction_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@lru_cache
def get_settings() -> Settings:
    """
    Returns cached settings instance.
    Uses lru_cache to avoid reading .env file on every call.
    """
    return Settings()
