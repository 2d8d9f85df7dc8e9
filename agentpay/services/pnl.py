"""
Profit and loss for executed trades, derived on read.

Trades are walked oldest first. A sell closes the most recent still-open
buy of the same user and symbol whose size is within SIZE_TOLERANCE of
its own, producing realized PnL. Buys left open get unrealized PnL
against the current market price, when one is known.
"""

from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from agentpay.models.enums import TradeSide
from agentpay.schemas.trading import ExecutedTradeRecord, PnL, TradeIntentRecord, TradeWithPnL


SIZE_TOLERANCE = Decimal("0.2")


@dataclass
class _Position:
    trade: ExecutedTradeRecord
    intent: TradeIntentRecord

    @property
    def price(self) -> Decimal:
        return Decimal(str(self.trade.execution_price))

    @property
    def size(self) -> Decimal:
        return Decimal(str(self.intent.size))


def _pnl(entry: Decimal, exit_: Decimal, size: Decimal, kind: str) -> PnL:
    value = (exit_ - entry) * size
    percentage = (exit_ - entry) / entry * 100 if entry else Decimal(0)
    return PnL(
        value=float(value),
        percentage=float(percentage),
        type=kind,
        is_profit=value > 0,
    )


def sizes_match(buy_size: Decimal, sell_size: Decimal) -> bool:
    return abs(buy_size - sell_size) <= buy_size * SIZE_TOLERANCE


def compute_pnl(
    trades: list[ExecutedTradeRecord],
    intents: dict[str, TradeIntentRecord],
    current_prices: dict[str, float] | None = None,
) -> list[TradeWithPnL]:
    """
    Enrich trades with their intent and PnL.

    Args:
        trades: Executed trades in any order
        intents: Intents keyed by id
        current_prices: USD price per symbol for unrealized PnL

    Returns:
        The same trades, in the same order, as TradeWithPnL
    """
    current_prices = current_prices or {}
    results: dict[str, dict] = {t.id: {} for t in trades}
    open_buys: dict[tuple[str, str], list[_Position]] = defaultdict(list)

    for trade in sorted(trades, key=lambda t: (t.timestamp, t.id)):
        intent = intents.get(trade.trade_intent_id)
        if intent is None:
            continue

        key = (intent.user_address.lower(), intent.symbol.upper())
        position = _Position(trade, intent)

        if intent.side == TradeSide.BUY:
            open_buys[key].append(position)
            results[trade.id] = {"is_open": True}
            continue

        match = None
        for candidate in reversed(open_buys[key]):
            if sizes_match(candidate.size, position.size):
                match = candidate
                break

        if match is None:
            results[trade.id] = {"is_open": False}
            continue

        open_buys[key].remove(match)
        results[trade.id] = {
            "is_open": False,
            "matched_trade_id": match.trade.id,
            "pnl": _pnl(match.price, position.price, position.size, "realized"),
        }
        results[match.trade.id] = {
            "is_open": False,
            "matched_trade_id": trade.id,
        }

    for (_, symbol), positions in open_buys.items():
        current = current_prices.get(symbol)
        if not current:
            continue
        for position in positions:
            results[position.trade.id]["pnl"] = _pnl(
                position.price, Decimal(str(current)), position.size, "unrealized"
            )

    return [
        TradeWithPnL(
            **trade.model_dump(),
            trade_intent=intents.get(trade.trade_intent_id),
            **results[trade.id],
        )
        for trade in trades
    ]
