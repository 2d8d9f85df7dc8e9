"""
Tests for the trade lifecycle: intent creation, paid execution and listing.
Uses the in-memory repository and a mocked swap executor.
"""

import asyncio

import pytest
from pydantic import ValidationError as PydanticValidationError
from unittest.mock import AsyncMock, MagicMock, patch

from agentpay.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PaymentRequiredError,
    QuoteUnavailableError,
    SwapExecutionError,
    TransactionBroadcastError,
    UnsupportedSymbolError,
    ValidationError,
)
from agentpay.db.repository import MemoryTradeRepository
from agentpay.models.enums import TradeSide, TradeStatus
from agentpay.schemas.trading import CreateIntentRequest, SwapResult
from agentpay.services.lifecycle import TradeLifecycle, calculate_fee, generate_id
from agentpay.services.payment_gate import PaymentGate, PaymentInfo
from agentpay.services.swap_executor import SwapExecutor

from conftest import TX_HASH, USER_ADDRESS, make_settings


PRIVATE_KEY = "0x" + "4f" * 32


def swap_result(price: float = 50000.0) -> SwapResult:
    return SwapResult(tx_hash=TX_HASH, execution_price=price, amount_in=1_000_000, amount_out=2_000)


def payment(payment_id: str | None = "pay_1") -> PaymentInfo:
    return PaymentInfo(payment_id=payment_id, payload={}, requirements={})


def make_lifecycle(**settings_overrides) -> TradeLifecycle:
    settings = make_settings(**settings_overrides)
    executor = MagicMock()
    executor.execute_swap = AsyncMock(return_value=swap_result())
    price_service = MagicMock()
    price_service.get_price = AsyncMock(return_value=51000.0)
    return TradeLifecycle(settings, MemoryTradeRepository(), executor, PaymentGate(settings), price_service)


def intent_request(**overrides) -> CreateIntentRequest:
    values = {
        "user_address": USER_ADDRESS,
        "agent_id": "trend-follower",
        "symbol": "BTC",
        "side": "buy",
        "size": 0.01,
    }
    values.update(overrides)
    return CreateIntentRequest(**values)


@pytest.fixture
def lifecycle():
    return make_lifecycle()


@pytest.fixture(autouse=True)
def no_retry_sleep():
    with patch("agentpay.core.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


class TestHelpers:
    """Tests for ids and fees."""

    def test_generate_id_format(self):
        prefix, millis, suffix = generate_id("intent").split("_")
        assert prefix == "intent"
        assert millis.isdigit()
        assert len(suffix) == 8

    def test_generated_ids_are_unique(self):
        assert len({generate_id("trade") for _ in range(100)}) == 100

    @pytest.mark.parametrize(
        "size,expected",
        [(5000, "1.000000"), (0.5, "0.001000"), (100, "0.100000"), (1, "0.001000"), (2.5, "0.002500")],
    )
    def test_fee_is_clamped_to_bounds(self, size, expected):
        assert calculate_fee(size, make_settings()) == expected


class TestCreateIntent:
    """Tests for TradeLifecycle.create_intent."""

    @pytest.mark.asyncio
    async def test_creates_pending_intent_with_payment_request(self, lifecycle):
        response = await lifecycle.create_intent(intent_request())

        intent = response.trade_intent
        assert intent.id.startswith("intent_")
        assert intent.status == TradeStatus.PENDING
        assert intent.side == TradeSide.BUY
        assert intent.leverage == 1
        assert intent.expected_payment_amount == "0.001000"
        assert response.payment_request.payment_request_id.startswith("x402_")
        assert response.payment_request.amount == "0.001000"
        assert response.payment_request.currency == "USD"
        assert response.payment_request.metadata["tradeIntentId"] == intent.id
        assert intent.payment_request_id == response.payment_request.payment_request_id

        stored = await lifecycle.get_intent(intent.id)
        assert stored == intent

    @pytest.mark.asyncio
    async def test_symbol_and_side_are_normalized(self, lifecycle):
        response = await lifecycle.create_intent(intent_request(symbol="wbtc", side="SELL"))
        assert response.trade_intent.symbol == "WBTC"
        assert response.trade_intent.side == TradeSide.SELL

    @pytest.mark.asyncio
    async def test_surrounding_whitespace_is_ignored(self, lifecycle):
        response = await lifecycle.create_intent(intent_request(symbol=" btc ", agent_id=" trend-follower "))
        assert response.trade_intent.symbol == "BTC"
        assert response.trade_intent.agent_id == "trend-follower"

    def test_missing_fields(self):
        with pytest.raises(PydanticValidationError) as exc_info:
            CreateIntentRequest(user_address=USER_ADDRESS, symbol="BTC")
        missing = {error["loc"][0] for error in exc_info.value.errors() if error["type"] == "missing"}
        assert missing == {"agentId", "side", "size"}

    @pytest.mark.parametrize(
        "overrides",
        [
            {"user_address": "0x1234"},
            {"user_address": "1111111111111111111111111111111111111111"},
            {"agent_id": "   "},
            {"symbol": ""},
            {"side": "hold"},
            {"size": 0},
            {"size": -1},
            {"size": float("inf")},
        ],
    )
    def test_invalid_fields(self, overrides):
        with pytest.raises(PydanticValidationError):
            intent_request(**overrides)

    @pytest.mark.asyncio
    async def test_unsupported_symbol(self, lifecycle):
        with pytest.raises(UnsupportedSymbolError) as exc_info:
            await lifecycle.create_intent(intent_request(symbol="ETH"))
        assert exc_info.value.details["supported"] == ["BTC", "WBTC"]

    @pytest.mark.asyncio
    async def test_nothing_stored_on_rejection(self, lifecycle):
        with pytest.raises(UnsupportedSymbolError):
            await lifecycle.create_intent(intent_request(symbol="DOGE"))
        assert await lifecycle.repository.list_trades(None) == []
        assert lifecycle.repository._intents == {}


class TestExecuteIntent:
    """Tests for TradeLifecycle.execute_intent."""

    @pytest.mark.asyncio
    async def test_unknown_intent(self, lifecycle):
        with pytest.raises(NotFoundError):
            await lifecycle.execute_intent("intent_missing", payment())

    @pytest.mark.asyncio
    async def test_missing_id(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.execute_intent("", payment())

    @pytest.mark.asyncio
    async def test_unpaid_request_never_swaps(self, lifecycle):
        created = await lifecycle.create_intent(intent_request())

        with pytest.raises(PaymentRequiredError):
            await lifecycle.execute_intent(created.trade_intent.id, None)

        lifecycle.executor.execute_swap.assert_not_awaited()
        intent = await lifecycle.get_intent(created.trade_intent.id)
        assert intent.status == TradeStatus.PENDING

    @pytest.mark.asyncio
    async def test_paid_execution(self, lifecycle):
        created = await lifecycle.create_intent(intent_request())
        intent_id = created.trade_intent.id

        response = await lifecycle.execute_intent(intent_id, payment("pay_1"))

        lifecycle.executor.execute_swap.assert_awaited_once_with(USER_ADDRESS, "BTC", TradeSide.BUY, 0.01)
        assert response.trade_intent.status == TradeStatus.EXECUTED
        assert response.trade_intent.payment_request_id == "pay_1"
        assert response.executed_trade.id.startswith("trade_")
        assert response.executed_trade.swap_tx_hash == TX_HASH
        assert response.executed_trade.execution_price == 50000.0
        assert response.executed_trade.payment_request_id == "pay_1"
        assert response.transaction_url == f"https://sepolia.basescan.org/tx/{TX_HASH}"

    @pytest.mark.asyncio
    async def test_payment_without_id_keeps_request_id(self, lifecycle):
        created = await lifecycle.create_intent(intent_request())

        response = await lifecycle.execute_intent(created.trade_intent.id, payment(None))

        assert response.executed_trade.payment_request_id == created.payment_request.payment_request_id

    @pytest.mark.asyncio
    async def test_second_execution_is_rejected(self, lifecycle):
        created = await lifecycle.create_intent(intent_request())
        await lifecycle.execute_intent(created.trade_intent.id, payment())

        with pytest.raises(InvalidTransitionError) as exc_info:
            await lifecycle.execute_intent(created.trade_intent.id, payment())

        assert exc_info.value.status_code == 409
        assert lifecycle.executor.execute_swap.await_count == 1
        assert len(await lifecycle.repository.list_trades(None)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_executions_swap_once(self, lifecycle):
        created = await lifecycle.create_intent(intent_request())

        async def slow_swap(*args):
            await asyncio.sleep(0.01)
            return swap_result()

        lifecycle.executor.execute_swap = AsyncMock(side_effect=slow_swap)

        results = await asyncio.gather(
            *(lifecycle.execute_intent(created.trade_intent.id, payment()) for _ in range(5)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, InvalidTransitionError) for f in failures)
        assert lifecycle.executor.execute_swap.await_count == 1
        assert len(await lifecycle.repository.list_trades(None)) == 1

    @pytest.mark.asyncio
    async def test_failed_swap_leaves_intent_paid_and_retryable(self, lifecycle):
        created = await lifecycle.create_intent(intent_request())
        intent_id = created.trade_intent.id
        lifecycle.executor.execute_swap = AsyncMock(
            side_effect=[QuoteUnavailableError(), swap_result()]
        )

        with pytest.raises(QuoteUnavailableError):
            await lifecycle.execute_intent(intent_id, payment())

        intent = await lifecycle.get_intent(intent_id)
        assert intent.status == TradeStatus.PAID
        assert await lifecycle.repository.list_trades(None) == []

        response = await lifecycle.execute_intent(intent_id, payment())
        assert response.trade_intent.status == TradeStatus.EXECUTED
        assert lifecycle.executor.execute_swap.await_count == 2

    @pytest.mark.asyncio
    async def test_transient_swap_error_is_retried(self, lifecycle, no_retry_sleep):
        created = await lifecycle.create_intent(intent_request())
        lifecycle.executor.execute_swap = AsyncMock(
            side_effect=[ConnectionError("network error"), swap_result()]
        )

        response = await lifecycle.execute_intent(created.trade_intent.id, payment())

        assert response.trade_intent.status == TradeStatus.EXECUTED
        assert lifecycle.executor.execute_swap.await_count == 2
        no_retry_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.asyncio
    async def test_swap_broadcast_is_never_resent(self, lifecycle, no_retry_sleep):
        dex = MagicMock()
        dex.signer = MagicMock(address=USER_ADDRESS)
        dex.router_address = "0x94cC0AaC535CCDB3C01d6787D6413C739ae12bc4"
        dex.balance_of = AsyncMock(return_value=10**12)
        dex.allowance = AsyncMock(return_value=10**30)
        dex.quote_exact_input_single = AsyncMock(return_value=100_000)
        dex.exact_input_single = AsyncMock(side_effect=[TimeoutError("request timed out"), TX_HASH])
        dex.wait_for_receipt = AsyncMock(return_value={"status": 1, "logs": []})
        lifecycle.executor = SwapExecutor(lifecycle.settings, dex, lifecycle.price_service)
        created = await lifecycle.create_intent(intent_request())

        with pytest.raises(TransactionBroadcastError):
            await lifecycle.execute_intent(created.trade_intent.id, payment())

        assert dex.exact_input_single.await_count == 1
        no_retry_sleep.assert_not_awaited()
        intent = await lifecycle.get_intent(created.trade_intent.id)
        assert intent.status == TradeStatus.PAID

    @pytest.mark.asyncio
    async def test_read_failure_before_broadcast_is_retried(self, lifecycle, no_retry_sleep):
        dex = MagicMock()
        dex.signer = MagicMock(address=USER_ADDRESS)
        dex.router_address = "0x94cC0AaC535CCDB3C01d6787D6413C739ae12bc4"
        dex.balance_of = AsyncMock(side_effect=[TimeoutError("request timed out"), 10**12])
        dex.allowance = AsyncMock(return_value=10**30)
        dex.quote_exact_input_single = AsyncMock(return_value=100_000)
        dex.exact_input_single = AsyncMock(return_value=TX_HASH)
        dex.wait_for_receipt = AsyncMock(return_value={"status": 1, "logs": []})
        dex.decode_swap_amounts = MagicMock(return_value=[(10_000, -1_000)])
        lifecycle.executor = SwapExecutor(lifecycle.settings, dex, lifecycle.price_service)
        created = await lifecycle.create_intent(intent_request())

        response = await lifecycle.execute_intent(created.trade_intent.id, payment())

        assert response.trade_intent.status == TradeStatus.EXECUTED
        assert dex.balance_of.await_count == 2
        assert dex.exact_input_single.await_count == 1

    @pytest.mark.asyncio
    async def test_unexpected_error_is_wrapped_without_retry(self, lifecycle):
        created = await lifecycle.create_intent(intent_request())
        lifecycle.executor.execute_swap = AsyncMock(side_effect=RuntimeError("boom"))

        with pytest.raises(SwapExecutionError) as exc_info:
            await lifecycle.execute_intent(created.trade_intent.id, payment())

        assert exc_info.value.message == "Swap failed: RuntimeError: boom"
        assert lifecycle.executor.execute_swap.await_count == 1

    @pytest.mark.asyncio
    async def test_wrapped_error_hides_signing_key(self):
        lifecycle = make_lifecycle(execution_private_key=PRIVATE_KEY)
        created = await lifecycle.create_intent(intent_request())
        lifecycle.executor.execute_swap = AsyncMock(
            side_effect=RuntimeError(f"could not sign with {PRIVATE_KEY}")
        )

        with pytest.raises(SwapExecutionError) as exc_info:
            await lifecycle.execute_intent(created.trade_intent.id, payment())

        assert PRIVATE_KEY[2:] not in exc_info.value.message
        assert "***REDACTED***" in exc_info.value.message


class TestListTrades:
    """Tests for TradeLifecycle.list_trades."""

    @pytest.mark.asyncio
    async def test_empty(self, lifecycle):
        assert await lifecycle.list_trades() == []
        lifecycle.price_service.get_price.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_limit(self, lifecycle):
        with pytest.raises(ValidationError):
            await lifecycle.list_trades(0)

    @pytest.mark.asyncio
    async def test_executed_trade_round_trip(self, lifecycle):
        created = await lifecycle.create_intent(intent_request())
        executed = await lifecycle.execute_intent(created.trade_intent.id, payment())

        trades = await lifecycle.list_trades()

        assert len(trades) == 1
        trade = trades[0]
        assert trade.id == executed.executed_trade.id
        assert trade.trade_intent.id == created.trade_intent.id
        assert trade.is_open is True
        assert trade.pnl.type == "unrealized"
        assert trade.pnl.value == pytest.approx(10.0)
        assert trade.pnl.is_profit is True
        lifecycle.price_service.get_price.assert_awaited_once_with("BTC")

    @pytest.mark.asyncio
    async def test_limit_applies_after_matching(self, lifecycle):
        buy = await lifecycle.create_intent(intent_request())
        await lifecycle.execute_intent(buy.trade_intent.id, payment())
        await asyncio.sleep(0.002)

        lifecycle.executor.execute_swap = AsyncMock(return_value=swap_result(52000.0))
        sell = await lifecycle.create_intent(intent_request(side="sell"))
        await lifecycle.execute_intent(sell.trade_intent.id, payment())

        trades = await lifecycle.list_trades(limit=1)

        assert len(trades) == 1
        assert trades[0].trade_intent.side == TradeSide.SELL
        assert trades[0].pnl.type == "realized"
        assert trades[0].pnl.value == pytest.approx(20.0)
