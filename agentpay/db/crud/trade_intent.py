"""
CRUD operations for TradeIntent model.
Status changes are conditional updates so concurrent requests cannot both
move the same intent.
"""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agentpay.models.enums import TradeStatus
from agentpay.models.trade_intent import TradeIntent


class TradeIntentCRUD:
    """CRUD operations for TradeIntent records."""

    @staticmethod
    async def create(
        db: AsyncSession,
        intent_id: str,
        user_address: str,
        agent_id: str,
        symbol: str,
        side: str,
        size: Decimal,
        expected_payment_amount: str,
        payment_request_id: str | None = None,
        created_at: datetime | None = None,
    ) -> TradeIntent:
        """Create a new intent in the pending state."""
        intent = TradeIntent(
            id=intent_id,
            user_address=user_address,
            agent_id=agent_id,
            symbol=symbol,
            side=side,
            size=size,
            leverage=1,
            expected_payment_amount=expected_payment_amount,
            status=TradeStatus.PENDING.value,
            payment_request_id=payment_request_id,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db.add(intent)
        await db.flush()
        return intent

    @staticmethod
    async def get_by_id(db: AsyncSession, intent_id: str) -> TradeIntent | None:
        result = await db.execute(select(TradeIntent).where(TradeIntent.id == intent_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_many(db: AsyncSession, intent_ids: list[str]) -> list[TradeIntent]:
        if not intent_ids:
            return []
        result = await db.execute(select(TradeIntent).where(TradeIntent.id.in_(intent_ids)))
        return list(result.scalars().all())

    @staticmethod
    async def transition(
        db: AsyncSession,
        intent_id: str,
        from_status: TradeStatus,
        to_status: TradeStatus,
        payment_request_id: str | None = None,
    ) -> bool:
        """
        Move an intent from `from_status` to `to_status` if, and only if,
        it is still in `from_status`.

        Returns:
            True if the row moved, False if another writer got there first
            or the intent does not exist
        """
        values: dict = {"status": to_status.value}
        if payment_request_id:
            values["payment_request_id"] = payment_request_id

        result = await db.execute(
            update(TradeIntent)
            .where(TradeIntent.id == intent_id, TradeIntent.status == from_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
