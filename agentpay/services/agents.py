"""
Rule-based trading agents.

The agent set is fixed: each AgentStrategy member carries its own
metadata and heuristic. Suggestions are computed from a short price
history simulated around the current market price.
"""

import logging
import random
from enum import Enum
from statistics import fmean

from agentpay.core.exceptions import ValidationError
from agentpay.models.enums import TradeSide
from agentpay.schemas.agents import AgentInfo, TradeSuggestion
from agentpay.services.price_service import PriceService


logger = logging.getLogger(__name__)

HISTORY_POINTS = 20
# +/- 2% around the current price
HISTORY_VARIATION = 0.04

MIN_SUGGESTED_SIZE = 0.01
MAX_SUGGESTED_SIZE = 0.05


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _round_size(size: float) -> float:
    return round(_clamp(size, MIN_SUGGESTED_SIZE, MAX_SUGGESTED_SIZE), 2)


def simulate_history(price: float, points: int = HISTORY_POINTS, rng: random.Random | None = None) -> list[float]:
    """Prices scattered uniformly within +/-2% of `price`, oldest first."""
    rng = rng or random.Random()
    return [price * (1 + (rng.random() - 0.5) * HISTORY_VARIATION) for _ in range(points)]


class AgentStrategy(str, Enum):
    TREND_FOLLOWER = "trend-follower"
    BREAKOUT_SNIPER = "breakout-sniper"
    MEAN_REVERSION = "mean-reversion"

    @property
    def info(self) -> AgentInfo:
        return AGENT_INFO[self]

    @classmethod
    def parse(cls, agent_id: str | None) -> "AgentStrategy":
        try:
            return cls(agent_id)
        except ValueError:
            raise ValidationError(
                f"Unknown agent: {agent_id}",
                {"available": [agent.value for agent in cls]},
            ) from None

    def decide(self, symbol: str, prices: list[float], rng: random.Random | None = None) -> TradeSuggestion:
        """Apply this agent's heuristic to `prices` (oldest first)."""
        if self is AgentStrategy.TREND_FOLLOWER:
            return _trend_follower(symbol, prices)
        if self is AgentStrategy.BREAKOUT_SNIPER:
            return _breakout_sniper(symbol, prices, rng or random.Random())
        return _mean_reversion(symbol, prices)


AGENT_INFO: dict[AgentStrategy, AgentInfo] = {
    AgentStrategy.TREND_FOLLOWER: AgentInfo(
        id=AgentStrategy.TREND_FOLLOWER.value,
        name="Trend Follower",
        description="Follows momentum and trends in the market",
    ),
    AgentStrategy.BREAKOUT_SNIPER: AgentInfo(
        id=AgentStrategy.BREAKOUT_SNIPER.value,
        name="Breakout Sniper",
        description="Captures breakouts from consolidation patterns",
    ),
    AgentStrategy.MEAN_REVERSION: AgentInfo(
        id=AgentStrategy.MEAN_REVERSION.value,
        name="Mean Reversion",
        description="Trades against extremes, betting on price returning to average",
    ),
}


def _trend_follower(symbol: str, prices: list[float]) -> TradeSuggestion:
    window = prices[-10:]
    older = fmean(window[:5])
    recent = fmean(window[-5:])
    strength = (recent - older) / older

    if strength > 0.01:
        side = TradeSide.BUY
        reason = f"Strong uptrend detected ({strength * 100:.2f}% momentum). Following the trend."
    elif strength < -0.01:
        side = TradeSide.SELL
        reason = f"Strong downtrend detected ({strength * 100:.2f}% momentum). Following the trend."
    else:
        side = TradeSide.BUY
        reason = "Neutral trend, defaulting to buy position."

    return TradeSuggestion(
        symbol=symbol,
        side=side,
        size=_round_size(0.01 + abs(strength) * 0.1),
        reason=reason,
    )


def _breakout_sniper(symbol: str, prices: list[float], rng: random.Random) -> TradeSuggestion:
    recent = prices[-10:]
    high, low = max(recent), min(recent)
    price_range = high - low
    average = fmean(recent)
    current = prices[-1]

    # Range under 2% of the average counts as consolidation
    if price_range / average < 0.02:
        position = (current - low) / price_range if price_range else 0.5
        if position > 0.7:
            side = TradeSide.BUY
            reason = "Consolidation pattern detected near upper bound. Expecting bullish breakout."
        elif position < 0.3:
            side = TradeSide.SELL
            reason = "Consolidation pattern detected near lower bound. Expecting bearish breakdown."
        else:
            side = TradeSide.BUY
            reason = "Consolidation detected, defaulting to buy breakout expectation."
    else:
        side = TradeSide.BUY if current > average else TradeSide.SELL
        mood = "Bullish" if side == TradeSide.BUY else "Bearish"
        reason = f"Breakout in progress. {mood} momentum detected."

    return TradeSuggestion(
        symbol=symbol,
        side=side,
        size=_round_size(0.02 + rng.random() * 0.02),
        reason=reason,
    )


def _mean_reversion(symbol: str, prices: list[float]) -> TradeSuggestion:
    window = prices[-15:]
    historical = fmean(window[:10])
    current = window[-1]
    deviation = (current - historical) / historical

    if deviation > 0.03:
        side = TradeSide.SELL
        reason = f"Price {deviation * 100:.2f}% above mean. Expecting reversion to average."
    elif deviation < -0.03:
        side = TradeSide.BUY
        reason = f"Price {abs(deviation) * 100:.2f}% below mean. Expecting reversion to average."
    else:
        side = TradeSide.BUY
        reason = "Price near mean. Defaulting to buy position."

    return TradeSuggestion(
        symbol=symbol,
        side=side,
        size=_round_size(0.015 + abs(deviation) * 0.05),
        reason=reason,
    )


def list_agents() -> list[AgentInfo]:
    return [agent.info for agent in AgentStrategy]


async def suggest(
    agent_id: str | None,
    symbol: str | None,
    price_service: PriceService,
    rng: random.Random | None = None,
) -> TradeSuggestion:
    """
    Ask an agent for a trade suggestion on `symbol`.

    Raises:
        ValidationError: Missing fields or unknown agent id
    """
    if not agent_id or not symbol:
        raise ValidationError("Missing required fields: agentId, symbol")

    agent = AgentStrategy.parse(agent_id)
    symbol = symbol.upper()

    price = await price_service.get_price(symbol)
    history = simulate_history(price, rng=rng)
    suggestion = agent.decide(symbol, history, rng)

    logger.info(
        f"Agent {agent.value} suggests {suggestion.side.value} {suggestion.size} {symbol} "
        f"at ~{price:.2f}"
    )
    return suggestion
