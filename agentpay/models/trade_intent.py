"""
TradeIntent model: a user's recorded request to trade, before payment
and execution.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agentpay.db.database import Base


class TradeIntent(Base):
    """
    Status is constrained to the three lifecycle values at the database level.
    Rows are never deleted.
    """

    __tablename__ = "trade_intents"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'executed')",
            name="ck_trade_intents_status",
        ),
        CheckConstraint("side IN ('buy', 'sell')", name="ck_trade_intents_side"),
        CheckConstraint("size > 0", name="ck_trade_intents_size_positive"),
        Index("ix_trade_intents_user_address", "user_address"),
        Index("ix_trade_intents_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_address: Mapped[str] = mapped_column(String(42), nullable=False)
    agent_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    side: Mapped[str] = mapped_column(String(4), nullable=False)
    size: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    leverage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    expected_payment_amount: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="pending")
    payment_request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    executed_trade: Mapped["ExecutedTrade | None"] = relationship(
        "ExecutedTrade",
        back_populates="trade_intent",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<TradeIntent(id={self.id}, symbol={self.symbol}, status={self.status})>"
