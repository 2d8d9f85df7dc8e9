"""
Market prices for the tracked tokens.
"""

from datetime import datetime, timezone

from fastapi import APIRouter

from agentpay.api.deps import Prices
from agentpay.schemas.market import PricesResponse


router = APIRouter(prefix="/prices", tags=["Prices"])


@router.get("", response_model=PricesResponse)
async def get_prices(price_service: Prices) -> PricesResponse:
    """
    Returns USD prices and 24h change. Falls back to static prices
    when CoinGecko is unreachable.
    """
    prices, source = await price_service.get_market_prices()
    return PricesResponse(prices=prices, source=source, timestamp=datetime.now(timezone.utc))
