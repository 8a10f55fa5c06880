from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class BalanceOut(BaseModel):
    free_balance: int
    paid_balance: int
    total_balance: int


class CashHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    transaction_type: str
    amount: int
    free_amount: int
    paid_amount: int
    balance_type: str
    description: str | None
    reference_id: str | None
    expired_at: datetime | None
    created_at: datetime


class ChargeRequestIn(BaseModel):
    amount: int = Field(gt=0)
    depositor_name: str | None = None


class ChargeRequestOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    amount: int
    status: str
    free_cash_percentage: int
    depositor_name: str | None
    rejection_reason: str | None
    requested_at: datetime
    processed_at: datetime | None


class RejectIn(BaseModel):
    reason: str = Field(min_length=1)


class CashSettingsIn(BaseModel):
    min_request_amount: int | None = Field(default=None, ge=0)
    free_cash_percentage: int | None = Field(default=None, ge=0, le=100)
    expiry_months: int | None = Field(default=None, ge=0)
    min_usage_amount: int | None = Field(default=None, ge=0)
    min_usage_percentage: int | None = Field(default=None, ge=0, le=100)
    bank_name: str | None = None
    account_number: str | None = None
    account_holder: str | None = None


class CashUserSettingsIn(BaseModel):
    is_active: bool = True
    min_request_amount: int | None = Field(default=None, ge=0)
    free_cash_percentage: int | None = Field(default=None, ge=0, le=100)
    expiry_months: int | None = Field(default=None, ge=0)
