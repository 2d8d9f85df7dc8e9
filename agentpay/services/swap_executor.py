"""
Swap executor.

Turns a paid trade intent into one Uniswap V3 exactInputSingle swap from
the execution wallet, with the output bounded by a fresh quote minus the
configured slippage tolerance.
"""

import logging
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Awaitable

from agentpay.config import Settings, TokenConfig
from agentpay.core.exceptions import (
    ConfigurationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    QuoteUnavailableError,
    SwapConfirmationError,
    SwapRevertedError,
    TransactionBroadcastError,
    ValidationError,
)
from agentpay.models.enums import TradeSide
from agentpay.schemas.trading import SwapResult
from agentpay.services.price_service import PriceService
from agentpay.services.uniswap_v3 import UniswapV3Client


logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10_000
APPROVAL_MULTIPLIER = 2


def to_base_units(amount: float | str | Decimal, decimals: int) -> int:
    """Decimal amount to integer token units, truncating extra precision."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError(f"Invalid amount: {amount}") from None
    return int((value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN))


def from_base_units(amount: int, decimals: int) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)


def format_units(amount: int, decimals: int) -> str:
    """Like viem's formatUnits: no trailing zeros, no exponent."""
    text = format(from_base_units(amount, decimals), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def minimum_output(quoted_amount_out: int, slippage_bps: int) -> int:
    """quote * (10000 - slippageBps) / 10000, rounded down."""
    return quoted_amount_out * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def amount_out_from_swap(amount0: int, amount1: int) -> int:
    """
    Pool deltas are signed from the pool's side: the token paid out to the
    swapper is the negative one.
    """
    paid_out = min(amount0, amount1)
    return -paid_out if paid_out < 0 else 0


class SwapExecutor:
    """
    Executes spot swaps for trade intents.

    Args:
        settings: Token table, router address, fee tier and slippage
        dex: Uniswap V3 client with a signer attached
        price_service: Market price source used when the swap event
            cannot be decoded
    """

    def __init__(self, settings: Settings, dex: UniswapV3Client, price_service: PriceService):
        self.settings = settings
        self.dex = dex
        self.price_service = price_service

    def _resolve_tokens(self, symbol: str, side: TradeSide) -> tuple[TokenConfig, TokenConfig]:
        token = self.settings.get_token(symbol)
        if token is None or not token.is_configured:
            raise ConfigurationError(
                f"Token {symbol} not configured. Set MOCK_WBTC_ADDRESS or the "
                f"matching token address in the environment."
            )

        usdc = self.settings.get_token("USDC")
        if usdc is None or not usdc.is_configured:
            raise ConfigurationError("USDC not configured. Set MOCK_USDC_ADDRESS in the environment.")

        if side == TradeSide.BUY:
            return usdc, token
        return token, usdc

    async def execute_swap(
        self,
        user_address: str,
        symbol: str,
        side: TradeSide | str,
        size: float | str | Decimal,
    ) -> SwapResult:
        """
        Swap `size` units of the input token and return the tx hash and
        realized price in USDC per unit of `symbol`.

        Buying spends `size` USDC, selling spends `size` of the base token.
        No transaction is sent unless a quote was obtained first.
        Failures before the first write may be retried by the caller; any
        failure from a write or later is raised as non-retryable.
        """
        side = TradeSide(side)
        if self.dex.signer is None:
            raise ConfigurationError("EXECUTION_PRIVATE_KEY not configured")

        token_in, token_out = self._resolve_tokens(symbol, side)
        amount_in = to_base_units(size, token_in.decimals)
        if amount_in <= 0:
            raise ValidationError(
                f"Trade size {size} is below the smallest unit of {token_in.symbol}"
            )

        wallet = self.dex.signer.address
        router = self.dex.router_address
        fee = self.settings.pool_fee

        logger.info(
            f"Swap requested: {side.value} {symbol} amount_in={amount_in} "
            f"({token_in.symbol} -> {token_out.symbol})"
        )

        balance = await self.dex.balance_of(token_in.address, wallet)
        if balance < amount_in:
            raise InsufficientBalanceError(
                f"Insufficient balance. Required: {format_units(amount_in, token_in.decimals)}, "
                f"Available: {format_units(balance, token_in.decimals)} {token_in.symbol}",
                {
                    "token": token_in.symbol,
                    "required": format_units(amount_in, token_in.decimals),
                    "available": format_units(balance, token_in.decimals),
                    "remediation": f"Fund the execution wallet {wallet} with {token_in.symbol}",
                },
            )

        # Quote before any write so a failed quote leaves the chain untouched
        try:
            quoted_out = await self.dex.quote_exact_input_single(
                token_in.address, token_out.address, amount_in, fee
            )
        except Exception as e:
            logger.error(f"Could not get quote, aborting swap: {type(e).__name__}: {e}")
            raise QuoteUnavailableError(
                "Failed to get swap quote. Cannot execute swap without a minimum output "
                "amount. Please try again or check pool liquidity."
            ) from e

        if quoted_out <= 0:
            raise QuoteUnavailableError("Quote returned no output. Check pool liquidity.")

        amount_out_minimum = minimum_output(quoted_out, self.settings.slippage_bps)
        logger.info(
            f"Quote: expected_out={format_units(quoted_out, token_out.decimals)} "
            f"min_out={format_units(amount_out_minimum, token_out.decimals)} "
            f"slippage_bps={self.settings.slippage_bps}"
        )

        allowance = await self.dex.allowance(token_in.address, wallet, router)
        if allowance < amount_in:
            await self._approve(token_in, router, amount_in, wallet)

        tx_hash = await self._broadcast(
            "swap",
            self.dex.exact_input_single(
                token_in.address,
                token_out.address,
                fee,
                user_address,
                amount_in,
                amount_out_minimum,
            ),
        )
        logger.info(f"Swap submitted: {tx_hash}")

        try:
            receipt = await self.dex.wait_for_receipt(tx_hash)
        except Exception as e:
            raise SwapConfirmationError(tx_hash, f"{type(e).__name__}: {e}") from e

        if receipt["status"] != 1:
            raise SwapRevertedError(tx_hash)

        amount_out = 0
        try:
            for amount0, amount1 in self.dex.decode_swap_amounts(receipt):
                amount_out = amount_out_from_swap(amount0, amount1)
                if amount_out > 0:
                    break
        except Exception as e:
            logger.warning(f"Could not decode Swap event for {tx_hash}: {e}")

        if amount_out > 0:
            amount_in_units = from_base_units(amount_in, token_in.decimals)
            amount_out_units = from_base_units(amount_out, token_out.decimals)
            if side == TradeSide.BUY:
                execution_price = amount_in_units / amount_out_units
            else:
                execution_price = amount_out_units / amount_in_units
            price_source = "swap_event"
        else:
            execution_price = Decimal(str(await self.price_service.get_price(symbol)))
            price_source = "market"
            logger.warning(f"No Swap event in receipt {tx_hash}; using market price")

        logger.info(
            f"Swap completed: {tx_hash} amount_out={amount_out} "
            f"execution_price={execution_price} ({price_source})"
        )

        return SwapResult(
            tx_hash=tx_hash,
            execution_price=float(execution_price),
            amount_in=amount_in,
            amount_out=amount_out or None,
            price_source=price_source,
        )

    async def _approve(self, token: TokenConfig, spender: str, amount_in: int, wallet: str) -> None:
        approve_amount = amount_in * APPROVAL_MULTIPLIER
        logger.info(f"Approving router for {format_units(approve_amount, token.decimals)} {token.symbol}")

        approve_hash = await self._broadcast(
            "approval", self.dex.approve(token.address, spender, approve_amount)
        )
        receipt = await self.dex.wait_for_receipt(approve_hash)
        if receipt["status"] != 1:
            raise InsufficientAllowanceError(
                f"Approval transaction reverted. Hash: {approve_hash}",
                {"tx_hash": approve_hash, "token": token.symbol},
            )

        allowance = await self.dex.allowance(token.address, wallet, spender)
        if allowance < amount_in:
            raise InsufficientAllowanceError(
                f"Router allowance for {token.symbol} is still below the swap amount "
                f"after approval {approve_hash}",
                {
                    "tx_hash": approve_hash,
                    "token": token.symbol,
                    "remediation": "Wait for the approval to propagate and retry",
                },
            )
        logger.info(f"Approval confirmed: {approve_hash}")

    async def _broadcast(self, stage: str, send: Awaitable[str]) -> str:
        """
        Await a write. A failure here may still have reached the node, so
        it surfaces as a non-retryable TransactionBroadcastError.
        """
        try:
            return await send
        except TransactionBroadcastError:
            raise
        except Exception as e:
            logger.error(f"{stage.capitalize()} broadcast failed: {type(e).__name__}: {e}")
            raise TransactionBroadcastError(stage, reason=f"{type(e).__name__}: {e}") from e
