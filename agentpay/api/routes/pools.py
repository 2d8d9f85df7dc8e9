"""
Uniswap V3 pool discovery.
"""

from fastapi import APIRouter, Query

from agentpay.api.deps import AppSettings, Dex
from agentpay.config import Settings
from agentpay.core.exceptions import ValidationError
from agentpay.schemas.market import PoolCheckResponse, PoolTier
from agentpay.schemas.trading import ADDRESS_RE
from agentpay.services.uniswap_v3 import FEE_TIERS


router = APIRouter(prefix="/pools", tags=["Pools"])


def _resolve_token(value: str, settings: Settings) -> str:
    """Token symbol or address to an address."""
    if ADDRESS_RE.match(value):
        return value
    token = settings.get_token(value)
    if token is None or not token.is_configured:
        raise ValidationError(f"Unknown token: {value}")
    return token.address


@router.get("/check", response_model=PoolCheckResponse)
async def check_pools(
    settings: AppSettings,
    dex: Dex,
    token_a: str | None = Query(None, alias="tokenA"),
    token_b: str | None = Query(None, alias="tokenB"),
) -> PoolCheckResponse:
    """
    Probes each fee tier through the factory and returns those with a deployed pool.
    """
    if not token_a or not token_b:
        raise ValidationError("Missing required parameters: tokenA and tokenB")

    address_a = _resolve_token(token_a, settings)
    address_b = _resolve_token(token_b, settings)

    pools = []
    for fee in FEE_TIERS:
        pool = await dex.get_pool(address_a, address_b, fee)
        if pool:
            pools.append(PoolTier(fee=fee, fee_percent=f"{fee / 10000:g}%", pool_address=pool))

    return PoolCheckResponse(token_a=token_a, token_b=token_b, pools=pools, has_pool=bool(pools))
