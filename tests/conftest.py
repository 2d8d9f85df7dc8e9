"""
Shared fixtures for the agentpay test suite.
"""

from datetime import datetime, timedelta, timezone

import pytest

from agentpay.config import Settings
from agentpay.models.enums import TradeSide, TradeStatus
from agentpay.schemas.trading import ExecutedTradeRecord, TradeIntentRecord


USER_ADDRESS = "0x1111111111111111111111111111111111111111"
OTHER_USER_ADDRESS = "0x3333333333333333333333333333333333333333"
PAY_TO_ADDRESS = "0x2222222222222222222222222222222222222222"
TX_HASH = "0x" + "ab" * 32

BASE_TIME = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_settings(**overrides) -> Settings:
    """Settings isolated from any local .env file."""
    values = {
        "environment": "development",
        "debug": True,
        "storage_backend": "memory",
        "database_url": "sqlite+aiosqlite:///:memory:",
        "rate_limit_enabled": False,
        "facilitator_url": "",
        "x402_payment_address": PAY_TO_ADDRESS,
        "rpc_url": "https://rpc-primary.example",
        "rpc_fallback_urls": "https://rpc-fallback.example",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_intent(**overrides) -> TradeIntentRecord:
    values = {
        "id": "intent_1",
        "user_address": USER_ADDRESS,
        "agent_id": "trend-follower",
        "symbol": "BTC",
        "side": TradeSide.BUY,
        "size": 0.01,
        "expected_payment_amount": "0.001000",
        "status": TradeStatus.PENDING,
        "payment_request_id": "x402_1_abcd",
        "created_at": BASE_TIME,
    }
    values.update(overrides)
    return TradeIntentRecord(**values)


def make_trade(intent_id: str = "intent_1", minutes: int = 0, **overrides) -> ExecutedTradeRecord:
    values = {
        "id": f"trade_{intent_id}",
        "trade_intent_id": intent_id,
        "payment_request_id": "pay_1",
        "swap_tx_hash": TX_HASH,
        "execution_price": 50000.0,
        "timestamp": BASE_TIME + timedelta(minutes=minutes),
    }
    values.update(overrides)
    return ExecutedTradeRecord(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()
