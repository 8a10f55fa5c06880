"""Tests for SearchLimitService: per-role daily and monthly quotas."""
from datetime import datetime, timedelta, timezone

import pytest


class TestSearchLimits:
    def test_unlimited_without_config(self, db, make_user):
        from adslot.models.statuses import SearchType
        from adslot.services.search_limits.service import SearchLimitService

        usage = SearchLimitService(db).usage(make_user(), SearchType.SHOP)
        assert usage["allowed"] is True
        assert usage["daily_limit"] is None

    def test_daily_limit_enforced(self, db, make_user):
        from adslot.core.errors import LimitExceeded
        from adslot.models.statuses import SearchType, UserRole
        from adslot.services.search_limits.service import SearchLimitService

        user = make_user()
        svc = SearchLimitService(db)
        svc.upsert_config(UserRole.ADVERTISER, SearchType.SHOP, daily_limit=2, monthly_limit=None)
        now = datetime(2026, 5, 20, 9, 0, tzinfo=timezone.utc)
        svc.record_search(user, SearchType.SHOP, "shoes", now=now)
        svc.record_search(user, SearchType.SHOP, "bags", now=now)
        with pytest.raises(LimitExceeded) as exc:
            svc.record_search(user, SearchType.SHOP, "hats", now=now)
        assert exc.value.status_code == 429

        tomorrow = now + timedelta(days=1)
        svc.record_search(user, SearchType.SHOP, "hats", now=tomorrow)
        assert svc.usage(user, SearchType.SHOP, now=tomorrow)["monthly_used"] == 3

    def test_types_counted_separately(self, db, make_user):
        from adslot.models.statuses import SearchType, UserRole
        from adslot.services.search_limits.service import SearchLimitService

        user = make_user()
        svc = SearchLimitService(db)
        svc.upsert_config(UserRole.ADVERTISER, SearchType.SHOP, daily_limit=1, monthly_limit=None)
        svc.record_search(user, SearchType.SHOP, "shoes")
        svc.record_search(user, SearchType.PLACE, "cafe")
        assert svc.usage(user, SearchType.PLACE)["daily_used"] == 1

    def test_negative_limit_rejected(self, db):
        from adslot.core.errors import ValidationError
        from adslot.models.statuses import SearchType, UserRole
        from adslot.services.search_limits.service import SearchLimitService

        with pytest.raises(ValidationError):
            SearchLimitService(db).upsert_config(UserRole.AGENCY, SearchType.SHOP, -1, None)
