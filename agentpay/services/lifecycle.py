"""
Trade lifecycle orchestrator.

Moves a trade intent through pending -> paid -> executed. The swap only
runs for an intent this service has itself moved to "paid" against a
verified payment, and each status change is a compare-and-swap so that
concurrent requests cannot execute the same intent twice. A failed swap
leaves the intent in "paid", from where execution can be retried.
"""

import asyncio
import logging
import secrets
import time
import weakref
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from agentpay.config import Settings
from agentpay.core.exceptions import (
    AppException,
    InvalidTransitionError,
    NotFoundError,
    PaymentRequiredError,
    SwapExecutionError,
    UnsupportedSymbolError,
    ValidationError,
)
from agentpay.core.logging_service import log_trade_event
from agentpay.core.redaction import redact_error_message
from agentpay.core.retry import TRANSACTION_RETRY, retry_async
from agentpay.db.repository import TradeRepository
from agentpay.models.enums import PaymentStatus, TradeSide, TradeStatus
from agentpay.schemas.trading import (
    CreateIntentRequest,
    CreateIntentResponse,
    ExecutedTradeRecord,
    ExecuteIntentResponse,
    PaymentRequest,
    SwapResult,
    TradeIntentRecord,
    TradeWithPnL,
)
from agentpay.services.payment_gate import PaymentGate, PaymentInfo
from agentpay.services.pnl import compute_pnl
from agentpay.services.price_service import PriceService
from agentpay.services.swap_executor import SwapExecutor


logger = logging.getLogger(__name__)

FEE_QUANTUM = Decimal("0.000001")
DEFAULT_TRADE_LIMIT = 50


def _now_ms() -> int:
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """`<prefix>_<epoch ms>_<8 hex chars>`"""
    return f"{prefix}_{_now_ms()}_{secrets.token_hex(4)}"


def calculate_fee(size: float | Decimal, settings: Settings) -> str:
    """
    Payment due for a trade: size x fee rate, clamped to the configured
    minimum and maximum, as a 6-decimal string.
    """
    fee = Decimal(str(size)) * Decimal(str(settings.trade_fee_percentage))
    fee = max(Decimal(str(settings.min_trade_fee)), min(Decimal(str(settings.max_trade_fee)), fee))
    return str(fee.quantize(FEE_QUANTUM, rounding=ROUND_HALF_UP))


class TradeLifecycle:
    """
    Create, execute and list trades.

    Args:
        settings: Fee parameters, supported symbols, explorer URL
        repository: Intent and trade store
        executor: Swap executor used once an intent is paid
        payment_gate: Source of the payment configuration for new intents
        price_service: Current prices for unrealized PnL
    """

    def __init__(
        self,
        settings: Settings,
        repository: TradeRepository,
        executor: SwapExecutor,
        payment_gate: PaymentGate,
        price_service: PriceService,
    ):
        self.settings = settings
        self.repository = repository
        self.executor = executor
        self.payment_gate = payment_gate
        self.price_service = price_service
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, intent_id: str) -> asyncio.Lock:
        lock = self._locks.get(intent_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[intent_id] = lock
        return lock

    def _resolve_symbol(self, symbol: str) -> str:
        symbol = symbol.upper()
        if symbol not in self.settings.supported_symbols_list:
            raise UnsupportedSymbolError(
                f"Symbol '{symbol}' is not supported. "
                f"Supported symbols: {', '.join(self.settings.supported_symbols_list)}",
                {"supported": self.settings.supported_symbols_list},
            )
        return symbol

    async def create_intent(self, request: CreateIntentRequest) -> CreateIntentResponse:
        """
        Record a new pending intent and the payment request that will
        unlock its execution.

        Raises:
            UnsupportedSymbolError: Symbol is not tradeable
        """
        symbol = self._resolve_symbol(request.symbol)
        side = TradeSide(request.side.lower())
        size = Decimal(str(request.size))

        intent = TradeIntentRecord(
            id=generate_id("intent"),
            user_address=request.user_address,
            agent_id=request.agent_id,
            symbol=symbol,
            side=side,
            size=float(size),
            leverage=1,
            expected_payment_amount=calculate_fee(size, self.settings),
            status=TradeStatus.PENDING,
            created_at=datetime.now(timezone.utc),
        )

        config = self.payment_gate.trade_config(intent)
        payment_request = PaymentRequest(
            payment_request_id=generate_id("x402"),
            amount=intent.expected_payment_amount,
            currency="USD",
            metadata=config.metadata,
        )

        intent = intent.model_copy(update={"payment_request_id": payment_request.payment_request_id})
        intent = await self.repository.create_intent(intent)

        log_trade_event(
            "intent_created",
            intent.id,
            symbol=intent.symbol,
            side=intent.side.value,
            size=intent.size,
            expected_payment_amount=intent.expected_payment_amount,
        )
        return CreateIntentResponse(trade_intent=intent, payment_request=payment_request)

    async def get_intent(self, intent_id: str | None) -> TradeIntentRecord:
        if not intent_id:
            raise ValidationError("Missing required field: tradeIntentId")
        intent = await self.repository.get_intent(intent_id)
        if intent is None:
            raise NotFoundError("Trade intent not found", {"trade_intent_id": intent_id})
        return intent

    async def execute_intent(self, intent_id: str | None, payment: PaymentInfo | None) -> ExecuteIntentResponse:
        """
        Execute a paid intent.

        Args:
            intent_id: Intent to execute
            payment: Verified payment from the payment gate

        Raises:
            PaymentRequiredError: No verified payment
            NotFoundError: Unknown intent
            InvalidTransitionError: Already executed, or another request
                changed its status first
            SwapExecutionError: The swap failed; the intent stays "paid"
        """
        if payment is None:
            raise PaymentRequiredError("Trade execution requires a verified payment")

        await self.get_intent(intent_id)

        async with self._lock_for(intent_id):
            intent = await self.get_intent(intent_id)
            payment_id = payment.payment_id or intent.payment_request_id

            if intent.status == TradeStatus.EXECUTED:
                raise InvalidTransitionError(
                    "Trade intent has already been executed",
                    {"trade_intent_id": intent_id, "status": intent.status.value},
                )

            if intent.status == TradeStatus.PENDING:
                moved = await self.repository.transition(
                    intent_id, TradeStatus.PENDING, TradeStatus.PAID, payment_id
                )
                if not moved:
                    raise InvalidTransitionError(
                        "Trade intent status changed while recording payment",
                        {"trade_intent_id": intent_id},
                    )
                log_trade_event("payment_verified", intent_id, payment_id=payment_id)
            else:
                logger.info(f"Retrying execution of paid intent {intent_id}")

            result = await self._swap(intent)

            trade = ExecutedTradeRecord(
                id=generate_id("trade"),
                trade_intent_id=intent.id,
                payment_request_id=payment_id,
                payment_status=PaymentStatus.PAID,
                swap_tx_hash=result.tx_hash,
                execution_price=result.execution_price,
                timestamp=datetime.now(timezone.utc),
            )

            if not await self.repository.complete_execution(trade):
                logger.error(
                    f"Swap {result.tx_hash} confirmed but intent {intent_id} was no longer paid; "
                    f"trade not recorded"
                )
                raise InvalidTransitionError(
                    "Trade intent status changed during execution",
                    {"trade_intent_id": intent_id, "tx_hash": result.tx_hash},
                )

            intent = await self.get_intent(intent_id)

        log_trade_event(
            "trade_executed",
            intent_id,
            trade_id=trade.id,
            tx_hash=trade.swap_tx_hash,
            execution_price=trade.execution_price,
            price_source=result.price_source,
        )
        return ExecuteIntentResponse(
            executed_trade=trade,
            trade_intent=intent,
            transaction_url=self.settings.transaction_url(trade.swap_tx_hash),
        )

    async def _swap(self, intent: TradeIntentRecord) -> SwapResult:
        log_trade_event("swap_submitted", intent.id, symbol=intent.symbol, side=intent.side.value)
        try:
            return await retry_async(
                lambda: self.executor.execute_swap(
                    intent.user_address, intent.symbol, intent.side, intent.size
                ),
                TRANSACTION_RETRY,
                f"Swap for {intent.id}",
            )
        except AppException as e:
            log_trade_event("swap_failed", intent.id, error=e.message, error_type=type(e).__name__)
            raise
        except Exception as e:
            reason = redact_error_message(str(e), [self.settings.execution_private_key])
            log_trade_event("swap_failed", intent.id, error=reason, error_type=type(e).__name__)
            raise SwapExecutionError(f"Swap failed: {type(e).__name__}: {reason}") from e

    async def list_trades(self, limit: int = DEFAULT_TRADE_LIMIT) -> list[TradeWithPnL]:
        """
        Most recent executed trades, newest first, with their intents and PnL.
        Matching runs over the full history so that a sell on this page
        still finds a buy older than the page.
        """
        if limit < 1:
            raise ValidationError("limit must be a positive integer")

        trades = await self.repository.list_trades(None)
        if not trades:
            return []

        intents = await self.repository.get_intents([t.trade_intent_id for t in trades])

        prices: dict[str, float] = {}
        for symbol in {intent.symbol.upper() for intent in intents.values()}:
            prices[symbol] = await self.price_service.get_price(symbol)

        return compute_pnl(trades, intents, prices)[:limit]
