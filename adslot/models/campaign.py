from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from adslot.db.base import Base, JSONType


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, autoincrement=True)
    campaign_name = Column(String, nullable=False)
    service_type = Column(String, nullable=False)
    # Distributor ("mat") that fulfils slots of this campaign
    distributor_id = Column(String, nullable=False, index=True)
    slot_type = Column(String, nullable=False, default="standard")  # standard, guarantee
    unit_price = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    # {"enabled", "type": immediate|delayed|cutoff_based, "delay_days", "cutoff_time",
    #  "refund_rules": {"min_usage_days", "max_refund_days", "partial_refund"}}
    refund_settings = Column(JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))
