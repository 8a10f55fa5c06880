"""Cash top-up settings: global row (id=1) and optional per-user overrides."""
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String

from adslot.db.base import Base


class CashGlobalSettings(Base):
    """Single row (id=1). Edited from the admin settings page."""

    __tablename__ = "cash_global_settings"

    id = Column(Integer, primary_key=True, default=1)
    min_request_amount = Column(Integer, nullable=False, default=10000)
    free_cash_percentage = Column(Integer, nullable=False, default=0)
    expiry_months = Column(Integer, nullable=False, default=1)
    min_usage_amount = Column(Integer, nullable=False, default=0)
    min_usage_percentage = Column(Integer, nullable=False, default=0)

    # Bank account shown on the top-up page
    bank_name = Column(String, nullable=False, default="")
    account_number = Column(String, nullable=False, default="")
    account_holder = Column(String, nullable=False, default="")

    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class CashUserSettings(Base):
    __tablename__ = "cash_user_settings"

    user_id = Column(String, primary_key=True)
    is_active = Column(Boolean, nullable=False, default=True)
    min_request_amount = Column(Integer, nullable=True)
    free_cash_percentage = Column(Integer, nullable=True)
    expiry_months = Column(Integer, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))
