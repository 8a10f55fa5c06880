from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text, UniqueConstraint

from adslot.db.base import Base


class CashHistory(Base):
    """Append-only. free_amount + paid_amount == amount, signed like the balance delta."""

    __tablename__ = "user_cash_history"
    __table_args__ = (
        UniqueConstraint("user_id", "transaction_type", "reference_id", name="uq_cash_history_reference"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    transaction_type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)
    free_amount = Column(Integer, nullable=False, default=0)
    paid_amount = Column(Integer, nullable=False, default=0)
    balance_type = Column(String, nullable=False)  # free, paid, mixed
    description = Column(Text, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    expired_at = Column(DateTime, nullable=True)  # free bonus expiry
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
