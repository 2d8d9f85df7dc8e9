"""
Trade intent store.

Two implementations share one contract: `SqlTradeRepository` for the
configured database and `MemoryTradeRepository`, a process-local substitute
used when the database is unavailable. Both hand out pydantic records, never
live ORM objects, so callers cannot mutate stored state by accident.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentpay.db.crud import ExecutedTradeCRUD, TradeIntentCRUD
from agentpay.db.database import session_scope
from agentpay.models.enums import TradeStatus
from agentpay.schemas.trading import ExecutedTradeRecord, TradeIntentRecord


logger = logging.getLogger(__name__)


class TradeRepository(ABC):
    """Persistence contract for intents and executed trades."""

    backend: str = "unknown"

    @abstractmethod
    async def create_intent(self, intent: TradeIntentRecord) -> TradeIntentRecord:
        ...

    @abstractmethod
    async def get_intent(self, intent_id: str) -> TradeIntentRecord | None:
        ...

    @abstractmethod
    async def get_intents(self, intent_ids: list[str]) -> dict[str, TradeIntentRecord]:
        ...

    @abstractmethod
    async def transition(
        self,
        intent_id: str,
        from_status: TradeStatus,
        to_status: TradeStatus,
        payment_request_id: str | None = None,
    ) -> bool:
        """Compare-and-swap on status. Returns whether the intent moved."""

    @abstractmethod
    async def complete_execution(self, trade: ExecutedTradeRecord) -> bool:
        """
        Move the trade's intent paid -> executed and store the trade, as one
        unit. Returns False (and stores nothing) if the intent was not paid.
        """

    @abstractmethod
    async def list_trades(self, limit: int | None = 50) -> list[ExecutedTradeRecord]:
        """Executed trades, newest first. `None` returns all of them."""

    @abstractmethod
    async def ping(self) -> bool:
        ...


def _utc(value: datetime) -> datetime:
    # SQLite drops tzinfo on the way back out
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _intent_record(row) -> TradeIntentRecord:
    record = TradeIntentRecord.model_validate(row)
    return record.model_copy(update={"created_at": _utc(record.created_at)})


def _trade_record(row) -> ExecutedTradeRecord:
    record = ExecutedTradeRecord.model_validate(row)
    return record.model_copy(update={"timestamp": _utc(record.timestamp)})


class SqlTradeRepository(TradeRepository):
    """
    Database-backed store. Every operation runs in its own session and
    commits on success.
    """

    backend = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    def _session(self):
        return session_scope(self.session_factory)

    async def create_intent(self, intent: TradeIntentRecord) -> TradeIntentRecord:
        async with self._session() as db:
            row = await TradeIntentCRUD.create(
                db,
                intent_id=intent.id,
                user_address=intent.user_address,
                agent_id=intent.agent_id,
                symbol=intent.symbol,
                side=intent.side.value,
                size=Decimal(str(intent.size)),
                expected_payment_amount=intent.expected_payment_amount,
                payment_request_id=intent.payment_request_id,
                created_at=intent.created_at,
            )
            return _intent_record(row)

    async def get_intent(self, intent_id: str) -> TradeIntentRecord | None:
        async with self._session() as db:
            row = await TradeIntentCRUD.get_by_id(db, intent_id)
            return _intent_record(row) if row else None

    async def get_intents(self, intent_ids: list[str]) -> dict[str, TradeIntentRecord]:
        async with self._session() as db:
            rows = await TradeIntentCRUD.get_many(db, intent_ids)
            return {row.id: _intent_record(row) for row in rows}

    async def transition(
        self,
        intent_id: str,
        from_status: TradeStatus,
        to_status: TradeStatus,
        payment_request_id: str | None = None,
    ) -> bool:
        async with self._session() as db:
            return await TradeIntentCRUD.transition(
                db, intent_id, from_status, to_status, payment_request_id
            )

    async def complete_execution(self, trade: ExecutedTradeRecord) -> bool:
        async with self._session() as db:
            moved = await TradeIntentCRUD.transition(
                db, trade.trade_intent_id, TradeStatus.PAID, TradeStatus.EXECUTED
            )
            if not moved:
                return False

            await ExecutedTradeCRUD.create(
                db,
                trade_id=trade.id,
                trade_intent_id=trade.trade_intent_id,
                swap_tx_hash=trade.swap_tx_hash,
                execution_price=Decimal(str(trade.execution_price)),
                payment_request_id=trade.payment_request_id,
                payment_status=trade.payment_status,
                timestamp=trade.timestamp,
            )
            return True

    async def list_trades(self, limit: int | None = 50) -> list[ExecutedTradeRecord]:
        async with self._session() as db:
            rows = await ExecutedTradeCRUD.get_recent(db, limit=limit)
            return [_trade_record(row) for row in rows]

    async def ping(self) -> bool:
        try:
            async with self._session() as db:
                await db.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database ping failed: {type(e).__name__}: {e}")
            return False


class MemoryTradeRepository(TradeRepository):
    """
    Process-local store with the same semantics as the SQL one.
    Data is lost on restart.
    """

    backend = "memory"

    def __init__(self):
        self._intents: dict[str, TradeIntentRecord] = {}
        self._trades: dict[str, ExecutedTradeRecord] = {}
        self._lock = asyncio.Lock()

    async def create_intent(self, intent: TradeIntentRecord) -> TradeIntentRecord:
        async with self._lock:
            if intent.id in self._intents:
                raise ValueError(f"Trade intent {intent.id} already exists")
            self._intents[intent.id] = intent.model_copy()
            return intent.model_copy()

    async def get_intent(self, intent_id: str) -> TradeIntentRecord | None:
        async with self._lock:
            intent = self._intents.get(intent_id)
            return intent.model_copy() if intent else None

    async def get_intents(self, intent_ids: list[str]) -> dict[str, TradeIntentRecord]:
        async with self._lock:
            return {
                intent_id: self._intents[intent_id].model_copy()
                for intent_id in intent_ids
                if intent_id in self._intents
            }

    async def transition(
        self,
        intent_id: str,
        from_status: TradeStatus,
        to_status: TradeStatus,
        payment_request_id: str | None = None,
    ) -> bool:
        async with self._lock:
            return self._transition_locked(intent_id, from_status, to_status, payment_request_id)

    def _transition_locked(
        self,
        intent_id: str,
        from_status: TradeStatus,
        to_status: TradeStatus,
        payment_request_id: str | None = None,
    ) -> bool:
        intent = self._intents.get(intent_id)
        if intent is None or intent.status != from_status:
            return False

        update: dict = {"status": to_status}
        if payment_request_id:
            update["payment_request_id"] = payment_request_id
        self._intents[intent_id] = intent.model_copy(update=update)
        return True

    async def complete_execution(self, trade: ExecutedTradeRecord) -> bool:
        async with self._lock:
            moved = self._transition_locked(
                trade.trade_intent_id, TradeStatus.PAID, TradeStatus.EXECUTED
            )
            if moved:
                self._trades[trade.id] = trade.model_copy()
            return moved

    async def list_trades(self, limit: int | None = 50) -> list[ExecutedTradeRecord]:
        async with self._lock:
            trades = sorted(
                self._trades.values(),
                key=lambda t: (t.timestamp, t.id),
                reverse=True,
            )
            if limit is not None:
                trades = trades[:limit]
            return [t.model_copy() for t in trades]

    async def ping(self) -> bool:
        return True
