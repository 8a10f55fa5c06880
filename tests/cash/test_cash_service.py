"""Tests for CashService and CashSettingsService: bank transfer top-ups with a free bonus."""
from datetime import timedelta

import pytest


class TestBonusAmount:
    @pytest.mark.parametrize("amount, pct, expected", [(100000, 10, 10000), (15555, 10, 1555), (5000, 0, 0)])
    def test_floor(self, amount, pct, expected):
        from adslot.services.cash.service import bonus_amount

        assert bonus_amount(amount, pct) == expected


class TestSettings:
    def test_defaults_created_on_read(self, db):
        from adslot.services.cash.settings_service import CashSettingsService

        data = CashSettingsService(db).as_dict()
        assert data["min_request_amount"] == 10000
        assert data["free_cash_percentage"] == 0

    def test_percentage_bounds(self, db):
        from adslot.core.errors import ValidationError
        from adslot.services.cash.settings_service import CashSettingsService

        with pytest.raises(ValidationError):
            CashSettingsService(db).update({"free_cash_percentage": 101})

    def test_user_override_wins_only_when_active(self, db, make_user):
        from adslot.services.cash.settings_service import CashSettingsService

        user = make_user()
        svc = CashSettingsService(db)
        svc.update({"free_cash_percentage": 5, "expiry_months": 2})
        svc.update_user_settings(user.id, {"free_cash_percentage": 20})
        assert svc.effective_for(user.id) == {"min_request_amount": 10000, "free_cash_percentage": 20, "expiry_months": 2}

        svc.update_user_settings(user.id, {"is_active": False})
        assert svc.effective_for(user.id)["free_cash_percentage"] == 5


class TestChargeRequests:
    def test_approve_credits_paid_and_bonus(self, db, make_user):
        from adslot.models.cash_history import CashHistory
        from adslot.services.cash.service import CashService
        from adslot.services.cash.settings_service import CashSettingsService
        from adslot.services.ledger.service import LedgerService
        from adslot.utils.time import as_utc

        user, admin = make_user(), make_user()
        CashSettingsService(db).update({"free_cash_percentage": 10, "expiry_months": 3})
        svc = CashService(db)
        request = svc.create_charge_request(user.id, 50000, depositor_name="Kim")
        result = svc.approve(request.id, admin)
        db.commit()

        assert result["bonus"] == 5000
        assert LedgerService(db).get_balance(user.id) == {"free_balance": 5000, "paid_balance": 50000, "total_balance": 55000}
        bonus = db.query(CashHistory).filter(CashHistory.transaction_type == "bonus").one()
        charge = db.query(CashHistory).filter(CashHistory.transaction_type == "charge").one()
        assert as_utc(bonus.expired_at) - as_utc(charge.created_at) >= timedelta(days=89)
        assert request.status == "approved"

    def test_below_minimum_gets_no_bonus(self, db, make_user):
        from adslot.services.cash.service import CashService
        from adslot.services.cash.settings_service import CashSettingsService

        CashSettingsService(db).update({"free_cash_percentage": 10})
        request = CashService(db).create_charge_request(make_user().id, 9999)
        assert request.free_cash_percentage == 0

    def test_cannot_process_twice(self, db, make_user):
        from adslot.core.errors import InvalidTransition
        from adslot.services.cash.service import CashService

        user, admin = make_user(), make_user()
        svc = CashService(db)
        request = svc.create_charge_request(user.id, 20000)
        svc.reject(request.id, admin, "transfer not received")
        with pytest.raises(InvalidTransition):
            svc.approve(request.id, admin)

    def test_list_filters(self, db, make_user):
        from adslot.services.cash.service import CashService

        a, b = make_user(), make_user()
        svc = CashService(db)
        svc.create_charge_request(a.id, 20000)
        svc.create_charge_request(b.id, 30000)
        items, total = svc.list_requests(user_id=a.id)
        assert total == 1 and items[0].amount == 20000
        assert svc.list_requests(status="pending")[1] == 2
