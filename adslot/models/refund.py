from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, Text

from adslot.db.base import Base
from adslot.models.statuses import RefundStatus


class SlotRefundApproval(Base):
    """Refund request for a regular slot or a guarantee slot (exactly one target is set)."""

    __tablename__ = "slot_refund_approvals"
    __table_args__ = (
        CheckConstraint("refund_amount > 0", name="ck_refund_amount_positive"),
        CheckConstraint(
            "approved_amount IS NULL OR approved_amount <= refund_amount",
            name="ck_refund_approved_le_requested",
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    slot_id = Column(String, nullable=True, index=True)
    guarantee_slot_id = Column(String, nullable=True, index=True)
    requester_id = Column(String, nullable=False, index=True)
    refund_amount = Column(Integer, nullable=False)
    approved_amount = Column(Integer, nullable=True)
    refund_reason = Column(Text, nullable=True)
    status = Column(String, nullable=False, default=RefundStatus.PENDING.value, index=True)
    request_date = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    approval_date = Column(DateTime, nullable=True)
    approver_id = Column(String, nullable=True)
    approval_notes = Column(Text, nullable=True)
    # When payout becomes due; computed from the campaign refund policy at approval
    scheduled_at = Column(DateTime, nullable=True)
    processed_at = Column(DateTime, nullable=True)

    @property
    def target_type(self) -> str:
        return "guarantee_slot" if self.guarantee_slot_id else "slot"

    @property
    def target_id(self) -> str:
        return self.guarantee_slot_id or self.slot_id
