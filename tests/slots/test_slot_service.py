"""Tests for SlotService: lifecycle transitions, history, and what happens to the earmarked funds."""
from unittest.mock import MagicMock

import pytest


def _make_slot(**kwargs):
    slot = MagicMock()
    slot.id = kwargs.get("id", "slot-1")
    slot.status = kwargs.get("status", "pending")
    return slot


class TestTransitionTable:
    @pytest.mark.parametrize("current, target", [
        ("draft", "pending"),
        ("pending", "active"),
        ("active", "refund_pending"),
        ("refund_pending", "refund_approved"),
        ("refund_pending", "active"),
        ("refund_approved", "refunded"),
        ("paused", "active"),
    ])
    def test_allowed(self, current, target):
        from adslot.models.statuses import can_transition

        assert can_transition(current, target)

    @pytest.mark.parametrize("current, target", [
        ("refunded", "active"),
        ("completed", "active"),
        ("pending", "refunded"),
        ("active", "pending"),
        ("active", "cancelled"),
        ("paused", "cancelled"),
    ])
    def test_forbidden(self, current, target):
        from adslot.models.statuses import can_transition

        assert not can_transition(current, target)

    def test_record_transition_rejects_illegal_move(self):
        from adslot.core.errors import InvalidTransition
        from adslot.models.statuses import SlotStatus
        from adslot.services.slots.service import record_transition

        db = MagicMock()
        slot = _make_slot(status="refunded")
        with pytest.raises(InvalidTransition):
            record_transition(db, slot, SlotStatus.ACTIVE, "u1", "resume")
        db.add.assert_not_called()
        assert slot.status == "refunded"


class TestSlotLifecycle:
    def _buy(self, db, make_user, make_campaign, make_keywords, fund, free=0, paid=10000):
        from adslot.models.statuses import UserRole
        from adslot.services.purchase.service import SlotPurchaseService

        user = make_user()
        distributor = make_user(UserRole.DISTRIBUTOR)
        campaign = make_campaign(distributor)
        (keyword,) = make_keywords(user, "shoes")
        fund(user, free=free, paid=paid)
        result = SlotPurchaseService(db).purchase(user.id, [keyword.id], 4000, campaign_id=campaign.id)
        db.commit()
        return user, distributor, result.slot_ids[0]

    def test_distributor_approves(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.services.slots.service import SlotService

        user, distributor, slot_id = self._buy(db, make_user, make_campaign, make_keywords, fund)
        svc = SlotService(db)
        slot = svc.approve(slot_id, distributor)
        assert slot.status == "active"
        assert slot.start_date is not None
        actions = [h.action for h in svc.history(slot_id, user)]
        assert actions == ["create", "approve"]

    def test_advertiser_cannot_approve(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.core.errors import NotFoundOrForbidden
        from adslot.services.slots.service import SlotService

        user, _, slot_id = self._buy(db, make_user, make_campaign, make_keywords, fund)
        with pytest.raises(NotFoundOrForbidden):
            SlotService(db).approve(slot_id, user)

    def test_reject_returns_funds_to_original_pools(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.models.slot import SlotPendingBalance
        from adslot.services.ledger.service import LedgerService
        from adslot.services.slots.service import SlotService

        user, distributor, slot_id = self._buy(db, make_user, make_campaign, make_keywords, fund, free=1000, paid=9000)
        SlotService(db).reject(slot_id, distributor, "keyword not allowed")
        db.commit()

        assert LedgerService(db).get_balance(user.id) == {"free_balance": 1000, "paid_balance": 9000, "total_balance": 10000}
        pending = db.query(SlotPendingBalance).filter(SlotPendingBalance.slot_id == slot_id).one()
        assert pending.status == "returned"
        assert LedgerService(db).reconcile(user.id)["consistent"] is True

    def test_reject_requires_reason(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.core.errors import ValidationError
        from adslot.services.slots.service import SlotService

        _, distributor, slot_id = self._buy(db, make_user, make_campaign, make_keywords, fund)
        with pytest.raises(ValidationError):
            SlotService(db).reject(slot_id, distributor, "  ")

    def test_owner_cancels_pending(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.services.ledger.service import LedgerService
        from adslot.services.slots.service import SlotService

        user, _, slot_id = self._buy(db, make_user, make_campaign, make_keywords, fund)
        slot = SlotService(db).cancel(slot_id, user)
        assert slot.status == "cancelled"
        assert LedgerService(db).get_balance(user.id)["total_balance"] == 10000

    def test_cannot_cancel_active(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.core.errors import InvalidTransition
        from adslot.services.slots.service import SlotService

        user, distributor, slot_id = self._buy(db, make_user, make_campaign, make_keywords, fund)
        svc = SlotService(db)
        svc.approve(slot_id, distributor)
        with pytest.raises(InvalidTransition):
            svc.cancel(slot_id, user)

    def test_pause_resume_complete_settles_to_distributor(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.services.ledger.service import LedgerService
        from adslot.services.slots.service import SlotService

        user, distributor, slot_id = self._buy(db, make_user, make_campaign, make_keywords, fund)
        svc = SlotService(db)
        svc.approve(slot_id, distributor)
        assert svc.pause(slot_id, user).status == "paused"
        assert svc.resume(slot_id, distributor).status == "active"
        slot = svc.complete(slot_id, distributor)
        db.commit()

        assert slot.status == "completed"
        assert LedgerService(db).get_balance(distributor.id)["paid_balance"] == 4000
        assert LedgerService(db).get_balance(user.id)["total_balance"] == 6000

    def test_list_scoped_by_role(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.models.statuses import SlotStatus, UserRole
        from adslot.services.slots.service import SlotService

        user, distributor, slot_id = self._buy(db, make_user, make_campaign, make_keywords, fund)
        stranger = make_user()
        admin = make_user(UserRole.OPERATOR)
        svc = SlotService(db)

        assert svc.list_for(user)[1] == 1
        assert svc.list_for(distributor)[1] == 1
        assert svc.list_for(stranger)[1] == 0
        assert svc.list_for(admin, status=SlotStatus.PENDING)[1] == 1
        assert svc.list_for(admin, status=SlotStatus.ACTIVE)[1] == 0
