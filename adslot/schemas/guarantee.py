from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from adslot.models.statuses import NegotiationMessageType


class GuaranteeRequestIn(BaseModel):
    campaign_id: int
    target_rank: int = Field(gt=0)
    guarantee_count: int = Field(gt=0)
    initial_budget: int | None = Field(default=None, gt=0)
    keyword_id: int | None = None
    quantity: int = Field(default=1, gt=0)
    input_data: dict[str, Any] = Field(default_factory=dict)
    user_reason: str | None = None
    additional_requirements: str | None = None
    message: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class GuaranteeRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    campaign_id: int
    user_id: str
    distributor_id: str
    keyword_id: int | None
    target_rank: int
    guarantee_count: int
    initial_budget: int | None
    final_daily_amount: int | None
    final_total_amount: int | None
    status: str
    input_data: dict[str, Any]
    rejection_reason: str | None
    start_date: datetime | None
    end_date: datetime | None
    created_at: datetime


class NegotiationIn(BaseModel):
    message_type: NegotiationMessageType = NegotiationMessageType.MESSAGE
    message: str = ""
    proposed_daily_amount: int | None = Field(default=None, gt=0)
    proposed_guarantee_count: int | None = Field(default=None, gt=0)
    attachments: list[dict[str, Any]] = Field(default_factory=list)


class NegotiationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    request_id: str
    sender_id: str
    sender_type: str
    message_type: str
    message: str
    proposed_daily_amount: int | None
    proposed_guarantee_count: int | None
    attachments: list[dict[str, Any]]
    is_read: bool
    created_at: datetime


class AcceptIn(BaseModel):
    final_daily_amount: int | None = Field(default=None, gt=0)


class GuaranteeSlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    request_id: str
    user_id: str
    distributor_id: str
    campaign_id: int
    target_rank: int
    guarantee_count: int
    completed_count: int
    daily_guarantee_amount: int
    total_amount: int
    status: str
    approved_at: datetime | None
    rejected_at: datetime | None
    rejection_reason: str | None
    start_date: datetime | None
    end_date: datetime | None


class RankConfirmIn(BaseModel):
    achieved_rank: int = Field(gt=0)
    confirmed_date: date | None = None
    notes: str | None = None


class SettlementOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    confirmed_date: date
    target_rank: int
    achieved_rank: int
    is_guaranteed: bool
    amount: int
