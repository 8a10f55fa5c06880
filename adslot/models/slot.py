from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from adslot.db.base import Base, JSONType
from adslot.models.statuses import PendingBalanceStatus, SlotStatus


class Slot(Base):
    __tablename__ = "slots"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    campaign_id = Column(Integer, nullable=True, index=True)
    distributor_id = Column(String, nullable=True, index=True)
    keyword_id = Column(Integer, nullable=True)
    batch_id = Column(String, nullable=True, index=True)  # purchase request key
    status = Column(String, nullable=False, default=SlotStatus.PENDING.value, index=True)
    input_data = Column(JSONType, nullable=False, default=dict)
    is_auto_refund_candidate = Column(Boolean, nullable=False, default=False)
    is_auto_continue = Column(Boolean, nullable=False, default=False)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    processed_by = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class SlotHistoryLog(Base):
    __tablename__ = "slot_history_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    slot_id = Column(String, ForeignKey("slots.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False)
    old_status = Column(String, nullable=True)
    new_status = Column(String, nullable=False)
    action = Column(String, nullable=False)
    details = Column(JSONType, nullable=False, default=dict)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class SlotPendingBalance(Base):
    """Funds earmarked for a slot until it is settled, returned or refunded."""

    __tablename__ = "slot_pending_balances"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    slot_id = Column(String, ForeignKey("slots.id", ondelete="CASCADE"), nullable=False, unique=True)
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    free_amount = Column(Integer, nullable=False, default=0)
    paid_amount = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=PendingBalanceStatus.PENDING.value)
    notes = Column(Text, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
