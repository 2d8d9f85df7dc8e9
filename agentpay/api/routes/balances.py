"""
Token balance lookup.
"""

import logging

from fastapi import APIRouter

from agentpay.api.deps import AppSettings, Dex
from agentpay.core.exceptions import UnsupportedSymbolError, ValidationError
from agentpay.schemas.market import BalanceResponse
from agentpay.schemas.trading import ADDRESS_RE
from agentpay.services.swap_executor import format_units


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/balances", tags=["Balances"])


@router.get("", response_model=BalanceResponse, response_model_exclude_none=True)
async def get_balance(
    settings: AppSettings,
    dex: Dex,
    address: str | None = None,
    symbol: str | None = None,
) -> BalanceResponse:
    """
    Returns the ERC20 balance of `address` for `symbol`.
    A failed lookup answers with a zero balance and a warning instead of an error.
    """
    if not address:
        raise ValidationError("Missing required parameter: address")
    if not ADDRESS_RE.match(address):
        raise ValidationError("address must be a 0x-prefixed 40 character hex address")
    if not symbol:
        raise ValidationError("Missing required parameter: symbol")

    symbol = symbol.upper()
    token = settings.get_token(symbol)
    if token is None or not token.is_configured:
        raise UnsupportedSymbolError(f"Token {symbol} is not configured")

    try:
        balance = await dex.balance_of(token.address, address)
    except Exception as e:
        logger.warning(f"Balance lookup failed for {symbol} {address}: {type(e).__name__}: {e}")
        return BalanceResponse(
            address=address,
            symbol=symbol,
            balance="0",
            formatted="0",
            decimals=token.decimals,
            warning="Could not fetch balance from the network. Showing 0.",
        )

    return BalanceResponse(
        address=address,
        symbol=symbol,
        balance=str(balance),
        formatted=format_units(balance, token.decimals),
        decimals=token.decimals,
    )
