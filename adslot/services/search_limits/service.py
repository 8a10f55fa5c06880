"""Per-role daily and monthly search quotas."""
import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from adslot.core.errors import LimitExceeded, ValidationError
from adslot.models.search_limits import SearchLimitsConfig, SearchLog
from adslot.models.statuses import SearchType, UserRole
from adslot.models.user import User
from adslot.utils.time import utcnow

logger = logging.getLogger(__name__)


def _period_starts(now: datetime) -> tuple[datetime, datetime]:
    day = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    month = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    return day, month


class SearchLimitService:
    def __init__(self, db: Session):
        self.db = db

    def list_configs(self) -> list[SearchLimitsConfig]:
        return self.db.query(SearchLimitsConfig).order_by(SearchLimitsConfig.user_role, SearchLimitsConfig.search_type).all()

    def get_config(self, role: str, search_type: SearchType) -> SearchLimitsConfig | None:
        return (
            self.db.query(SearchLimitsConfig)
            .filter(SearchLimitsConfig.user_role == role, SearchLimitsConfig.search_type == search_type.value)
            .one_or_none()
        )

    def upsert_config(self, role: UserRole, search_type: SearchType, daily_limit: int | None, monthly_limit: int | None) -> SearchLimitsConfig:
        for name, value in (("daily_limit", daily_limit), ("monthly_limit", monthly_limit)):
            if value is not None and value < 0:
                raise ValidationError(f"{name} must be >= 0", field=name)
        row = self.get_config(role.value, search_type)
        if row is None:
            row = SearchLimitsConfig(user_role=role.value, search_type=search_type.value)
            self.db.add(row)
        row.daily_limit = daily_limit
        row.monthly_limit = monthly_limit
        self.db.flush()
        return row

    def usage(self, user: User, search_type: SearchType, now: datetime | None = None) -> dict:
        now = now or utcnow()
        day_start, month_start = _period_starts(now)
        base = self.db.query(SearchLog).filter(SearchLog.user_id == user.id, SearchLog.search_type == search_type.value)
        daily_used = base.filter(SearchLog.created_at >= day_start).count()
        monthly_used = base.filter(SearchLog.created_at >= month_start).count()
        config = self.get_config(user.role, search_type)
        daily_limit = config.daily_limit if config else None
        monthly_limit = config.monthly_limit if config else None
        allowed = (daily_limit is None or daily_used < daily_limit) and (monthly_limit is None or monthly_used < monthly_limit)
        return {
            "allowed": allowed,
            "daily_used": daily_used,
            "daily_limit": daily_limit,
            "monthly_used": monthly_used,
            "monthly_limit": monthly_limit,
        }

    def record_search(self, user: User, search_type: SearchType, keyword: str, now: datetime | None = None) -> SearchLog:
        if not (keyword or "").strip():
            raise ValidationError("Search keyword is required", field="keyword")
        now = now or utcnow()
        usage = self.usage(user, search_type, now)
        if not usage["allowed"]:
            logger.info("search_limit_exceeded", extra={"user_id": user.id})
            raise LimitExceeded("Search limit reached", **{k: v for k, v in usage.items() if k != "allowed"})
        entry = SearchLog(user_id=user.id, search_type=search_type.value, keyword=keyword.strip(), created_at=now)
        self.db.add(entry)
        self.db.flush()
        return entry
