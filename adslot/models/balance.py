from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from adslot.db.base import Base


class UserBalance(Base):
    """One row per user. Free balance is spent before paid."""

    __tablename__ = "user_balances"
    __table_args__ = (
        CheckConstraint("free_balance >= 0", name="ck_balance_free_non_negative"),
        CheckConstraint("paid_balance >= 0", name="ck_balance_paid_non_negative"),
    )

    user_id = Column(String, primary_key=True)
    free_balance = Column(Integer, nullable=False, default=0)
    paid_balance = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    @property
    def total_balance(self) -> int:
        return (self.free_balance or 0) + (self.paid_balance or 0)
