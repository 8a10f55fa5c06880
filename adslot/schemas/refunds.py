from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RefundRequestIn(BaseModel):
    slot_id: str | None = None
    guarantee_slot_id: str | None = None
    reason: str = Field(min_length=1)
    amount: int | None = Field(default=None, gt=0)

    @model_validator(mode="after")
    def one_target(self) -> "RefundRequestIn":
        if bool(self.slot_id) == bool(self.guarantee_slot_id):
            raise ValueError("Give exactly one of slot_id or guarantee_slot_id")
        return self


class RefundDecisionIn(BaseModel):
    approve: bool
    approved_amount: int | None = Field(default=None, gt=0)
    notes: str | None = None
    slot_id: str | None = None


class RefundOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slot_id: str | None
    guarantee_slot_id: str | None
    requester_id: str
    refund_amount: int
    approved_amount: int | None
    refund_reason: str | None
    status: str
    request_date: datetime
    approval_date: datetime | None
    approval_notes: str | None
    scheduled_at: datetime | None
    processed_at: datetime | None
