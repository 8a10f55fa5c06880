from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, Text

from adslot.db.base import Base
from adslot.models.statuses import ChargeRequestStatus


class CashChargeRequest(Base):
    __tablename__ = "cash_charge_requests"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=ChargeRequestStatus.PENDING.value)
    # Bonus percentage frozen at request time; 0 when amount was below the minimum
    free_cash_percentage = Column(Integer, nullable=False, default=0)
    depositor_name = Column(String, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    processed_by = Column(String, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    requested_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
