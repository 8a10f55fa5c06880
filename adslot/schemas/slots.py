from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PurchaseIn(BaseModel):
    keyword_ids: list[int] = Field(min_length=1)
    per_keyword_amount: int = Field(gt=0)
    campaign_id: int | None = None
    is_auto_refund_candidate: bool = False
    is_auto_continue: bool = False

    @field_validator("keyword_ids")
    @classmethod
    def unique_ids(cls, v: list[int]) -> list[int]:
        if len(set(v)) != len(v):
            raise ValueError("keyword_ids must be unique")
        return v


class PurchaseOut(BaseModel):
    batch_id: str
    slot_ids: list[str]
    total_amount: int
    free_used: int
    paid_used: int
    replayed: bool


class SlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    campaign_id: int | None
    distributor_id: str | None
    keyword_id: int | None
    status: str
    input_data: dict[str, Any]
    is_auto_refund_candidate: bool
    is_auto_continue: bool
    start_date: datetime | None
    end_date: datetime | None
    created_at: datetime


class SlotHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    old_status: str | None
    new_status: str
    action: str
    note: str | None
    created_at: datetime


class ReasonIn(BaseModel):
    reason: str = Field(min_length=1)
