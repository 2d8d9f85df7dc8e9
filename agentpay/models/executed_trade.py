"""
ExecutedTrade model: the immutable record of a confirmed on-chain swap.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agentpay.db.database import Base


class ExecutedTrade(Base):
    """
    One row per executed intent. Written once in the same transaction that
    moves its intent to "executed", never updated afterwards.
    """

    __tablename__ = "executed_trades"
    __table_args__ = (
        CheckConstraint(
            "payment_status IN ('paid', 'failed')",
            name="ck_executed_trades_payment_status",
        ),
        CheckConstraint("status = 'executed'", name="ck_executed_trades_status"),
        Index("ix_executed_trades_timestamp", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    trade_intent_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("trade_intents.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    payment_request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(10), nullable=False, default="paid")
    swap_tx_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    execution_price: Mapped[Decimal] = mapped_column(Numeric(36, 18), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="executed")

    trade_intent: Mapped["TradeIntent"] = relationship(
        "TradeIntent",
        back_populates="executed_trade",
    )

    def __repr__(self) -> str:
        return f"<ExecutedTrade(id={self.id}, intent={self.trade_intent_id}, tx={self.swap_tx_hash})>"
