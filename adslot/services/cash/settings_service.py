"""Cash top-up settings: bank account info, bonus percentage, bonus expiry."""
from typing import Any

from sqlalchemy.orm import Session

from adslot.core.errors import ValidationError
from adslot.models.cash_settings import CashGlobalSettings, CashUserSettings

EDITABLE_GLOBAL_FIELDS = (
    "min_request_amount",
    "free_cash_percentage",
    "expiry_months",
    "min_usage_amount",
    "min_usage_percentage",
    "bank_name",
    "account_number",
    "account_holder",
)
EDITABLE_USER_FIELDS = ("is_active", "min_request_amount", "free_cash_percentage", "expiry_months")
PERCENT_FIELDS = ("free_cash_percentage", "min_usage_percentage")


def _validate(data: dict[str, Any]) -> None:
    for key in PERCENT_FIELDS:
        value = data.get(key)
        if value is not None and not 0 <= int(value) <= 100:
            raise ValidationError(f"{key} must be between 0 and 100", field=key)
    for key in ("min_request_amount", "expiry_months", "min_usage_amount"):
        value = data.get(key)
        if value is not None and int(value) < 0:
            raise ValidationError(f"{key} must be >= 0", field=key)


class CashSettingsService:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self) -> CashGlobalSettings | None:
        return self.db.query(CashGlobalSettings).filter(CashGlobalSettings.id == 1).first()

    def get_or_create(self) -> CashGlobalSettings:
        row = self.get()
        if row:
            return row
        row = CashGlobalSettings(id=1)
        self.db.add(row)
        self.db.flush()
        return row

    def as_dict(self) -> dict[str, Any]:
        row = self.get_or_create()
        return {field: getattr(row, field) for field in EDITABLE_GLOBAL_FIELDS}

    def update(self, data: dict[str, Any]) -> dict[str, Any]:
        _validate(data)
        row = self.get_or_create()
        for key in EDITABLE_GLOBAL_FIELDS:
            if key in data and data[key] is not None:
                setattr(row, key, data[key])
        self.db.add(row)
        self.db.flush()
        return self.as_dict()

    # ------------------------------------------------------------------
    # Per-user overrides
    # ------------------------------------------------------------------

    def get_user_settings(self, user_id: str) -> CashUserSettings | None:
        return self.db.query(CashUserSettings).filter(CashUserSettings.user_id == user_id).one_or_none()

    def update_user_settings(self, user_id: str, data: dict[str, Any]) -> CashUserSettings:
        _validate(data)
        row = self.get_user_settings(user_id)
        if row is None:
            row = CashUserSettings(user_id=user_id)
        for key in EDITABLE_USER_FIELDS:
            if key in data:
                setattr(row, key, data[key])
        self.db.add(row)
        self.db.flush()
        return row

    def effective_for(self, user_id: str) -> dict[str, int]:
        """Active per-user values win over the global row field by field."""
        glob = self.get_or_create()
        effective = {
            "min_request_amount": glob.min_request_amount,
            "free_cash_percentage": glob.free_cash_percentage,
            "expiry_months": glob.expiry_months,
        }
        user_row = self.get_user_settings(user_id)
        if user_row and user_row.is_active:
            for key in effective:
                value = getattr(user_row, key)
                if value is not None:
                    effective[key] = value
        return effective
