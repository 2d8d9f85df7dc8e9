"""
FastAPI dependency injection functions.
Hands route handlers the services built by the application factory.
"""

from typing import Annotated, TypeAlias

from fastapi import Depends, Request

from agentpay.config import Settings
from agentpay.core.rate_limiter import check_payment_rate_limit
from agentpay.db.repository import TradeRepository
from agentpay.services.lifecycle import TradeLifecycle
from agentpay.services.payment_gate import PaymentGate
from agentpay.services.price_service import PriceService
from agentpay.services.rpc import RpcPool
from agentpay.services.uniswap_v3 import UniswapV3Client


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_repository(request: Request) -> TradeRepository:
    return request.app.state.repository


def get_lifecycle(request: Request) -> TradeLifecycle:
    return request.app.state.lifecycle


def get_payment_gate(request: Request) -> PaymentGate:
    return request.app.state.payment_gate


def get_price_service(request: Request) -> PriceService:
    return request.app.state.price_service


def get_dex(request: Request) -> UniswapV3Client:
    return request.app.state.dex


def get_rpc(request: Request) -> RpcPool:
    return request.app.state.rpc


# Type aliases for dependency injection
AppSettings: TypeAlias = Annotated[Settings, Depends(get_app_settings)]
Repository: TypeAlias = Annotated[TradeRepository, Depends(get_repository)]
Lifecycle: TypeAlias = Annotated[TradeLifecycle, Depends(get_lifecycle)]
Gate: TypeAlias = Annotated[PaymentGate, Depends(get_payment_gate)]
Prices: TypeAlias = Annotated[PriceService, Depends(get_price_service)]
Dex: TypeAlias = Annotated[UniswapV3Client, Depends(get_dex)]
Rpc: TypeAlias = Annotated[RpcPool, Depends(get_rpc)]

# Attach to paid endpoints with `dependencies=[PaymentRateLimit]`
PaymentRateLimit = Depends(check_payment_rate_limit)


__all__ = [
    "get_app_settings",
    "get_repository",
    "get_lifecycle",
    "get_payment_gate",
    "get_price_service",
    "get_dex",
    "get_rpc",
    "AppSettings",
    "Repository",
    "Lifecycle",
    "Gate",
    "Prices",
    "Dex",
    "Rpc",
    "PaymentRateLimit",
]
