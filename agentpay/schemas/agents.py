"""
Schemas for the agent catalogue and paid trade suggestions.
"""

from pydantic import BaseModel

from agentpay.models.enums import TradeSide
from agentpay.schemas.common import CAMEL_CONFIG


class AgentInfo(BaseModel):
    id: str
    name: str
    description: str


class SuggestRequest(BaseModel):
    agent_id: str | None = None
    symbol: str | None = None

    model_config = CAMEL_CONFIG


class TradeSuggestion(BaseModel):
    symbol: str
    side: TradeSide
    size: float
    leverage: int = 1
    reason: str
    payment_id: str | None = None

    model_config = CAMEL_CONFIG
