from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from adslot.db.base import Base


class SearchLimitsConfig(Base):
    """Per-role search quotas. NULL limit = unlimited."""

    __tablename__ = "search_limits_config"
    __table_args__ = (UniqueConstraint("user_role", "search_type", name="uq_search_limits_role_type"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_role = Column(String, nullable=False)
    search_type = Column(String, nullable=False, default="shop")
    daily_limit = Column(Integer, nullable=True)
    monthly_limit = Column(Integer, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))


class SearchLog(Base):
    __tablename__ = "search_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    search_type = Column(String, nullable=False)
    keyword = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc), index=True)
