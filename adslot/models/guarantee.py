from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from adslot.db.base import Base, JSONType
from adslot.models.statuses import GuaranteeRequestStatus, GuaranteeSlotStatus, HoldingStatus


class GuaranteeSlotRequest(Base):
    __tablename__ = "guarantee_slot_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    campaign_id = Column(Integer, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    distributor_id = Column(String, nullable=False, index=True)
    keyword_id = Column(Integer, nullable=True)
    target_rank = Column(Integer, nullable=False)
    guarantee_count = Column(Integer, nullable=False)
    initial_budget = Column(Integer, nullable=True)
    final_daily_amount = Column(Integer, nullable=True)
    final_total_amount = Column(Integer, nullable=True)  # daily * count + VAT
    quantity = Column(Integer, nullable=False, default=1)
    status = Column(String, nullable=False, default=GuaranteeRequestStatus.REQUESTED.value, index=True)
    input_data = Column(JSONType, nullable=False, default=dict)
    user_reason = Column(Text, nullable=True)
    additional_requirements = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class GuaranteeSlotNegotiation(Base):
    __tablename__ = "guarantee_slot_negotiations"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    request_id = Column(String, ForeignKey("guarantee_slot_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String, nullable=False)
    sender_type = Column(String, nullable=False)  # user, distributor
    message_type = Column(String, nullable=False)
    message = Column(Text, nullable=False, default="")
    proposed_daily_amount = Column(Integer, nullable=True)
    proposed_guarantee_count = Column(Integer, nullable=True)
    attachments = Column(JSONType, nullable=False, default=list)
    is_read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


class GuaranteeSlot(Base):
    __tablename__ = "guarantee_slots"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    request_id = Column(String, ForeignKey("guarantee_slot_requests.id"), nullable=False, unique=True)
    user_id = Column(String, nullable=False, index=True)
    distributor_id = Column(String, nullable=False, index=True)
    campaign_id = Column(Integer, nullable=False)
    target_rank = Column(Integer, nullable=False)
    guarantee_count = Column(Integer, nullable=False)
    completed_count = Column(Integer, nullable=False, default=0)
    daily_guarantee_amount = Column(Integer, nullable=False)
    total_amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=GuaranteeSlotStatus.PENDING.value, index=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejected_by = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    start_date = Column(DateTime, nullable=True)
    end_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class GuaranteeSlotHolding(Base):
    """Escrow for a guarantee slot: user holding shrinks as daily settlements move to the distributor."""

    __tablename__ = "guarantee_slot_holdings"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    guarantee_slot_id = Column(String, ForeignKey("guarantee_slots.id", ondelete="CASCADE"), nullable=False, unique=True)
    user_id = Column(String, nullable=False)
    total_amount = Column(Integer, nullable=False)
    free_amount = Column(Integer, nullable=False, default=0)
    paid_amount = Column(Integer, nullable=False, default=0)
    user_holding_amount = Column(Integer, nullable=False)
    distributor_holding_amount = Column(Integer, nullable=False, default=0)
    distributor_released_amount = Column(Integer, nullable=False, default=0)
    status = Column(String, nullable=False, default=HoldingStatus.HOLDING.value)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class GuaranteeSlotSettlement(Base):
    __tablename__ = "guarantee_slot_settlements"
    __table_args__ = (
        UniqueConstraint("guarantee_slot_id", "confirmed_date", name="uq_settlement_slot_day"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    guarantee_slot_id = Column(String, ForeignKey("guarantee_slots.id", ondelete="CASCADE"), nullable=False, index=True)
    confirmed_by = Column(String, nullable=False)
    confirmed_date = Column(Date, nullable=False)
    target_rank = Column(Integer, nullable=False)
    achieved_rank = Column(Integer, nullable=False)
    is_guaranteed = Column(Boolean, nullable=False)
    amount = Column(Integer, nullable=False, default=0)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
