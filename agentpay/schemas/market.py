"""
Schemas for balances, prices, pool discovery and health.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from agentpay.schemas.common import CAMEL_CONFIG


class BalanceResponse(BaseModel):
    address: str
    symbol: str
    balance: str
    formatted: str
    decimals: int | None = None
    warning: str | None = None

    model_config = CAMEL_CONFIG


class TokenPrice(BaseModel):
    symbol: str
    price: float
    change_24h: float | None = Field(default=None, alias="change24h")

    model_config = CAMEL_CONFIG


class PricesResponse(BaseModel):
    prices: dict[str, TokenPrice]
    source: Literal["coingecko", "fallback"]
    timestamp: datetime

    model_config = CAMEL_CONFIG


class PoolTier(BaseModel):
    fee: int
    fee_percent: str
    pool_address: str

    model_config = CAMEL_CONFIG


class PoolCheckResponse(BaseModel):
    token_a: str
    token_b: str
    pools: list[PoolTier]
    has_pool: bool

    model_config = CAMEL_CONFIG


class NetworkInfo(BaseModel):
    name: str
    chain_id: int

    model_config = CAMEL_CONFIG


class HealthChecks(BaseModel):
    database: bool
    blockchain: bool


class HealthResponse(BaseModel):
    status: Literal["healthy", "degraded", "unhealthy"]
    version: str
    timestamp: datetime
    uptime: float
    network: NetworkInfo
    checks: HealthChecks
