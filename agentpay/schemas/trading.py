"""
Trading schemas for intents, executed trades, payment requests and PnL.
"""

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from agentpay.models.enums import PaymentStatus, TradeSide, TradeStatus
from agentpay.schemas.common import CAMEL_CONFIG


ADDRESS_PATTERN = r"^0x[0-9a-fA-F]{40}$"
ADDRESS_RE = re.compile(ADDRESS_PATTERN)


class CreateIntentRequest(BaseModel):
    """
    Body of POST /trades/create-intent.
    Whether the symbol is tradeable depends on settings and is checked by
    the lifecycle.
    """
    user_address: str = Field(..., pattern=ADDRESS_PATTERN)
    agent_id: str = Field(..., min_length=1)
    symbol: str = Field(..., min_length=1)
    side: str = Field(..., pattern="^(?i:buy|sell)$")
    size: float = Field(..., gt=0, allow_inf_nan=False)

    model_config = {**CAMEL_CONFIG, "str_strip_whitespace": True}


class ExecuteIntentRequest(BaseModel):
    trade_intent_id: str | None = None

    model_config = CAMEL_CONFIG


class TradeIntentRecord(BaseModel):
    id: str
    user_address: str
    agent_id: str
    symbol: str
    side: TradeSide
    size: float
    leverage: int = 1
    expected_payment_amount: str
    status: TradeStatus
    payment_request_id: str | None = None
    created_at: datetime

    model_config = {**CAMEL_CONFIG, "from_attributes": True}


class ExecutedTradeRecord(BaseModel):
    id: str
    trade_intent_id: str
    payment_request_id: str | None = None
    payment_status: PaymentStatus = PaymentStatus.PAID
    swap_tx_hash: str
    execution_price: float
    timestamp: datetime
    status: Literal["executed"] = "executed"

    model_config = {**CAMEL_CONFIG, "from_attributes": True}


class PaymentRequest(BaseModel):
    """Payment request attached to a new intent."""
    payment_request_id: str
    amount: str
    currency: str = "USD"
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = CAMEL_CONFIG


class CreateIntentResponse(BaseModel):
    trade_intent: TradeIntentRecord
    payment_request: PaymentRequest

    model_config = CAMEL_CONFIG


class ExecuteIntentResponse(BaseModel):
    executed_trade: ExecutedTradeRecord
    trade_intent: TradeIntentRecord
    transaction_url: str | None = None

    model_config = CAMEL_CONFIG


class PnL(BaseModel):
    """Profit and loss derived on read; never stored."""
    value: float
    percentage: float
    type: Literal["realized", "unrealized"]
    is_profit: bool

    model_config = CAMEL_CONFIG


class TradeWithPnL(ExecutedTradeRecord):
    """Executed trade as returned by GET /trades."""
    trade_intent: TradeIntentRecord | None = None
    pnl: PnL | None = None
    is_open: bool | None = None
    matched_trade_id: str | None = None


class SwapResult(BaseModel):
    """Outcome of a confirmed swap."""
    tx_hash: str
    execution_price: float
    amount_in: int
    amount_out: int | None = None
    price_source: Literal["swap_event", "market"] = "swap_event"

    model_config = CAMEL_CONFIG
