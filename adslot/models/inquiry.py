from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from adslot.db.base import Base, JSONType
from adslot.models.statuses import InquiryPriority, InquiryStatus


class Inquiry(Base):
    __tablename__ = "inquiries"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    slot_id = Column(String, nullable=True, index=True)
    guarantee_slot_id = Column(String, nullable=True, index=True)
    campaign_id = Column(Integer, nullable=True)
    distributor_id = Column(String, nullable=True, index=True)
    title = Column(String, nullable=False)
    category = Column(String, nullable=True)
    priority = Column(String, nullable=False, default=InquiryPriority.NORMAL.value)
    status = Column(String, nullable=False, default=InquiryStatus.OPEN.value, index=True)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class InquiryMessage(Base):
    """Append-only; created_at is assigned by the server and strictly increases per inquiry."""

    __tablename__ = "inquiry_messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    inquiry_id = Column(String, ForeignKey("inquiries.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String, nullable=False)
    sender_role = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    attachments = Column(JSONType, nullable=False, default=list)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, index=True)
