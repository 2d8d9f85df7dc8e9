"""
Closed value sets shared by the ORM models, schemas and services.
"""

from enum import Enum


class TradeStatus(str, Enum):
    """
    Trade intent lifecycle. Transitions only move forward:
    pending -> paid -> executed.
    """
    PENDING = "pending"
    PAID = "paid"
    EXECUTED = "executed"


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class PaymentStatus(str, Enum):
    PAID = "paid"
    FAILED = "failed"
