from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from adslot.models.statuses import InquiryPriority, InquiryStatus


class InquiryIn(BaseModel):
    title: str = Field(min_length=1)
    slot_id: str | None = None
    guarantee_slot_id: str | None = None
    category: str | None = None
    priority: InquiryPriority = InquiryPriority.NORMAL
    content: str | None = None


class InquiryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    slot_id: str | None
    guarantee_slot_id: str | None
    campaign_id: int | None
    distributor_id: str | None
    title: str
    category: str | None
    priority: str
    status: str
    resolved_at: datetime | None
    created_at: datetime
    updated_at: datetime


class MessageIn(BaseModel):
    content: str = ""
    attachments: list[dict[str, Any]] = Field(default_factory=list)


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    inquiry_id: str
    sender_id: str
    sender_role: str
    content: str
    attachments: list[dict[str, Any]]
    is_read: bool
    read_at: datetime | None
    created_at: datetime


class MarkReadIn(BaseModel):
    message_ids: list[str] = Field(default_factory=list)


class StatusIn(BaseModel):
    status: InquiryStatus
