"""
CRUD module exports.
"""

from agentpay.db.crud.trade_intent import TradeIntentCRUD
from agentpay.db.crud.executed_trade import ExecutedTradeCRUD

__all__ = [
    "TradeIntentCRUD",
    "ExecutedTradeCRUD",
]
