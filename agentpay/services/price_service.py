"""
Market price lookup.

Single-token lookups try, in order: a short-lived cache, CoinGecko, the
configured Uniswap pool's slot0, and finally a static table, so a price is
always available for PnL, agent suggestions and the swap executor's
fallback. Portfolio-wide prices come from CoinGecko with a longer cache.
"""

import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable

import httpx

from agentpay.config import Settings
from agentpay.schemas.market import TokenPrice
from agentpay.services.uniswap_v3 import UniswapV3Client


logger = logging.getLogger(__name__)

COINGECKO_API_BASE = "https://api.coingecko.com/api/v3"
COINGECKO_TIMEOUT_SECONDS = 5.0

COINGECKO_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "WBTC": "wrapped-bitcoin",
    "ETH": "ethereum",
    "WETH": "ethereum",
    "USDC": "usd-coin",
    "USDT": "tether",
}

# Last resort when every live source is down
FALLBACK_PRICES: dict[str, float] = {
    "BTC": 97000.0,
    "WBTC": 97000.0,
    "ETH": 3400.0,
    "WETH": 3400.0,
    "USDC": 1.0,
    "USDT": 1.0,
}

PRICE_CACHE_TTL_SECONDS = 30
MARKET_CACHE_TTL_SECONDS = 60
MAX_POOL_PRICE = Decimal(1_000_000)

Q96 = Decimal(2) ** 96


@dataclass
class _CachedPrice:
    price: float
    fetched_at: float


def sqrt_price_to_price(sqrt_price_x96: int, decimals0: int, decimals1: int) -> Decimal:
    """
    Human-unit price of token0 denominated in token1:
    (sqrtPriceX96 / 2^96)^2 * 10^(decimals0 - decimals1)
    """
    ratio = Decimal(sqrt_price_x96) / Q96
    return ratio * ratio * (Decimal(10) ** (decimals0 - decimals1))


def _coin_entry(body: object, coin_id: str) -> dict | None:
    """The `{usd, usd_24h_change}` object for `coin_id`, if the body has one."""
    if not isinstance(body, dict):
        return None
    entry = body.get(coin_id)
    return entry if isinstance(entry, dict) else None


class PriceService:
    """
    USD price source with layered fallbacks.

    Args:
        settings: Application settings (token table)
        dex: Read-only DEX client for the pool price fallback
        client: Shared HTTP client; created lazily when omitted
        clock: Monotonic time source, replaceable in tests
    """

    def __init__(
        self,
        settings: Settings,
        dex: UniswapV3Client | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.dex = dex
        self._client = client
        self._clock = clock
        self._price_cache: dict[str, _CachedPrice] = {}
        self._market_cache: dict[str, TokenPrice] = {}
        self._market_fetched_at = 0.0

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)
        return self._client

    async def get_price(self, symbol: str) -> float:
        """Current USD price of one unit of `symbol`. Never raises."""
        symbol = symbol.upper()
        now = self._clock()

        cached = self._price_cache.get(symbol)
        if cached and now - cached.fetched_at < PRICE_CACHE_TTL_SECONDS:
            return cached.price

        price = await self._coingecko_price(symbol)
        if price is None:
            price = await self._pool_price(symbol)

        if price is None:
            price = FALLBACK_PRICES.get(symbol, FALLBACK_PRICES["BTC"])
            logger.warning(f"Using static fallback price for {symbol}: {price}")
            return price

        self._price_cache[symbol] = _CachedPrice(price, now)
        return price

    async def _coingecko_price(self, symbol: str) -> float | None:
        coin_id = COINGECKO_IDS.get(symbol)
        if not coin_id:
            return None

        try:
            client = await self._get_client()
            response = await client.get(
                f"{COINGECKO_API_BASE}/simple/price",
                params={"ids": coin_id, "vs_currencies": "usd"},
                timeout=COINGECKO_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            entry = _coin_entry(response.json(), coin_id)
            if entry and entry.get("usd"):
                return float(entry["usd"])
        except (httpx.HTTPError, ValueError, TypeError) as e:
            logger.debug(f"CoinGecko price fetch failed for {symbol}, trying pool price: {e}")
        return None

    async def _pool_price(self, symbol: str) -> float | None:
        """USDC per unit of `symbol` from the configured pool, when it trades that token."""
        token = self.settings.get_token(symbol)
        usdc = self.settings.get_token("USDC")
        if self.dex is None or token is None or usdc is None or token.symbol == "USDC":
            return None

        try:
            state = await self.dex.pool_state()
        except Exception as e:
            logger.debug(f"Pool price lookup failed for {symbol}: {e}")
            return None

        token0 = state["token0"].lower()
        token1 = state["token1"].lower()
        pair = {token.address.lower(), usdc.address.lower()}
        if {token0, token1} != pair or not state["sqrt_price_x96"]:
            return None

        try:
            if token0 == usdc.address.lower():
                # token0 priced in token1 is base per USDC; invert
                base_per_quote = sqrt_price_to_price(
                    state["sqrt_price_x96"], usdc.decimals, token.decimals
                )
                price = Decimal(1) / base_per_quote
            else:
                price = sqrt_price_to_price(state["sqrt_price_x96"], token.decimals, usdc.decimals)
        except (InvalidOperation, ZeroDivisionError):
            return None

        if 0 < price < MAX_POOL_PRICE:
            return float(price)
        return None

    async def get_market_prices(self) -> tuple[dict[str, TokenPrice], str]:
        """
        Prices and 24h change for every tracked token.

        Returns:
            (prices keyed by symbol, "coingecko" | "fallback")
        """
        now = self._clock()
        if self._market_cache and now - self._market_fetched_at < MARKET_CACHE_TTL_SECONDS:
            return dict(self._market_cache), "coingecko"

        try:
            client = await self._get_client()
            response = await client.get(
                f"{COINGECKO_API_BASE}/simple/price",
                params={
                    "ids": ",".join(sorted(set(COINGECKO_IDS.values()))),
                    "vs_currencies": "usd",
                    "include_24hr_change": "true",
                },
                timeout=COINGECKO_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"Unexpected CoinGecko response: {type(data).__name__}")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to fetch prices from CoinGecko: {e}")
            if self._market_cache:
                return dict(self._market_cache), "coingecko"
            return {
                symbol: TokenPrice(symbol=symbol, price=price, change_24h=0.0)
                for symbol, price in FALLBACK_PRICES.items()
            }, "fallback"

        prices: dict[str, TokenPrice] = {}
        for symbol, coin_id in COINGECKO_IDS.items():
            entry = _coin_entry(data, coin_id)
            if not entry:
                continue
            try:
                prices[symbol] = TokenPrice(
                    symbol=symbol,
                    price=float(entry.get("usd") or 0),
                    change_24h=float(entry.get("usd_24h_change") or 0),
                )
            except (TypeError, ValueError):
                logger.warning(f"Skipping malformed CoinGecko entry for {coin_id}")

        self._market_cache = prices
        self._market_fetched_at = now
        for symbol, token_price in prices.items():
            if token_price.price > 0:
                self._price_cache[symbol] = _CachedPrice(token_price.price, now)

        logger.info(f"Fetched prices from CoinGecko for {len(prices)} tokens")
        return dict(prices), "coingecko"

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
