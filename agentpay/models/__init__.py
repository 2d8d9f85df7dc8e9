# Models module
from agentpay.models.enums import PaymentStatus, TradeSide, TradeStatus
from agentpay.models.trade_intent import TradeIntent
from agentpay.models.executed_trade import ExecutedTrade

__all__ = [
    "PaymentStatus",
    "TradeSide",
    "TradeStatus",
    "TradeIntent",
    "ExecutedTrade",
]
