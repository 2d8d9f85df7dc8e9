"""
CRUD operations for ExecutedTrade model.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from agentpay.models.enums import PaymentStatus
from agentpay.models.executed_trade import ExecutedTrade


class ExecutedTradeCRUD:
    """CRUD operations for ExecutedTrade records."""

    @staticmethod
    async def create(
        db: AsyncSession,
        trade_id: str,
        trade_intent_id: str,
        swap_tx_hash: str,
        execution_price: Decimal,
        payment_request_id: str | None = None,
        payment_status: PaymentStatus = PaymentStatus.PAID,
        timestamp: datetime | None = None,
    ) -> ExecutedTrade:
        trade = ExecutedTrade(
            id=trade_id,
            trade_intent_id=trade_intent_id,
            payment_request_id=payment_request_id,
            payment_status=payment_status.value,
            swap_tx_hash=swap_tx_hash,
            execution_price=execution_price,
            timestamp=timestamp or datetime.now(timezone.utc),
            status="executed",
        )
        db.add(trade)
        await db.flush()
        return trade

    @staticmethod
    async def get_recent(db: AsyncSession, limit: int | None = 50) -> list[ExecutedTrade]:
        """Most recent trades first. `None` means no limit."""
        query = select(ExecutedTrade).order_by(
            desc(ExecutedTrade.timestamp), desc(ExecutedTrade.id)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())
