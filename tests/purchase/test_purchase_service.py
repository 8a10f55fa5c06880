"""Tests for SlotPurchaseService: batch purchase, free-first allocation, replay, atomicity."""
from unittest.mock import patch

import pytest


class TestAllocateFree:
    def test_free_fills_slots_in_order(self):
        from adslot.services.purchase.service import allocate_free

        assert allocate_free(5000, 3, 4000) == [(4000, 0), (1000, 3000), (0, 4000)]

    def test_no_free(self):
        from adslot.services.purchase.service import allocate_free

        assert allocate_free(0, 2, 100) == [(0, 100), (0, 100)]


class TestPurchase:
    def test_three_keywords_free_then_paid(self, db, make_user, make_campaign, make_keywords, fund):
        from adslot.models.cash_history import CashHistory
        from adslot.models.slot import Slot, SlotHistoryLog, SlotPendingBalance
        from adslot.models.statuses import UserRole
        from adslot.services.ledger.service import LedgerService
        from adslot.services.purchase.service import SlotPurchaseService

        user = make_user()
        distributor = make_user(UserRole.DISTRIBUTOR)
        campaign = make_campaign(distributor)
        keywords = make_keywords(user, "shoes", "bags", "hats")
        fund(user, free=5000, paid=20000)

        result = SlotPurchaseService(db).purchase(user.id, [k.id for k in keywords], 4000, campaign_id=campaign.id)
        db.commit()

        assert (result.total_amount, result.free_used, result.paid_used) == (12000, 5000, 7000)
        assert LedgerService(db).get_balance(user.id) == {"free_balance": 0, "paid_balance": 13000, "total_balance": 13000}
        slots = db.query(Slot).filter(Slot.batch_id == result.batch_id).all()
        assert len(slots) == 3
        assert {s.status for s in slots} == {"pending"}
        assert {s.distributor_id for s in slots} == {distributor.id}
        assert {s.input_data["main_keyword"] for s in slots} == {"shoes", "bags", "hats"}
        assert all(s.input_data["price"] == 4000 for s in slots)
        assert db.query(SlotHistoryLog).filter(SlotHistoryLog.slot_id.in_(result.slot_ids)).count() == 3
        pendings = db.query(SlotPendingBalance).filter(SlotPendingBalance.slot_id.in_(result.slot_ids)).all()
        assert sum(p.free_amount for p in pendings) == 5000
        assert sum(p.paid_amount for p in pendings) == 7000
        purchases = db.query(CashHistory).filter(CashHistory.reference_id == result.batch_id).all()
        assert len(purchases) == 1
        assert purchases[0].amount == -12000

    def test_insufficient_balance_creates_nothing(self, db, make_user, make_keywords, fund):
        from adslot.core.errors import InsufficientFunds
        from adslot.models.slot import Slot
        from adslot.services.purchase.service import SlotPurchaseService

        user = make_user()
        keywords = make_keywords(user, "shoes", "bags")
        fund(user, paid=5000)
        with pytest.raises(InsufficientFunds) as exc:
            SlotPurchaseService(db).purchase(user.id, [k.id for k in keywords], 3000)
        assert exc.value.shortfall == 1000
        assert db.query(Slot).count() == 0

    def test_foreign_keyword_rejected(self, db, make_user, make_keywords, fund):
        from adslot.core.errors import NotFoundOrForbidden
        from adslot.services.purchase.service import SlotPurchaseService

        owner, other = make_user(), make_user()
        (keyword,) = make_keywords(owner, "shoes")
        fund(other, paid=10000)
        with pytest.raises(NotFoundOrForbidden):
            SlotPurchaseService(db).purchase(other.id, [keyword.id], 1000)

    @pytest.mark.parametrize("ids, amount", [([], 1000), ([1, 1], 1000), ([1], 0)])
    def test_invalid_input(self, db, make_user, ids, amount):
        from adslot.core.errors import ValidationError
        from adslot.services.purchase.service import SlotPurchaseService

        with pytest.raises(ValidationError):
            SlotPurchaseService(db).purchase(make_user().id, ids, amount)

    def test_same_request_key_replays_without_charging(self, db, make_user, make_keywords, fund):
        from adslot.services.ledger.service import LedgerService
        from adslot.services.purchase.service import SlotPurchaseService

        user = make_user()
        keywords = make_keywords(user, "shoes")
        fund(user, paid=10000)
        svc = SlotPurchaseService(db)
        first = svc.purchase(user.id, [keywords[0].id], 4000, request_key="req-1")
        db.commit()
        second = svc.purchase(user.id, [keywords[0].id], 4000, request_key="req-1")

        assert second.replayed is True
        assert second.slot_ids == first.slot_ids
        assert second.total_amount == 4000
        assert LedgerService(db).get_balance(user.id)["total_balance"] == 6000

    def test_failure_mid_batch_rolls_back_everything(self, db, make_user, make_keywords, fund):
        from adslot.core.errors import TransactionFailure
        from adslot.models.slot import Slot
        from adslot.services.ledger.service import LedgerService
        from adslot.services.purchase.service import SlotPurchaseService

        user = make_user()
        keywords = make_keywords(user, "shoes", "bags")
        fund(user, paid=10000)
        svc = SlotPurchaseService(db)
        with patch.object(svc.ledger, "debit", side_effect=TransactionFailure("boom")):
            with pytest.raises(TransactionFailure):
                svc.purchase(user.id, [k.id for k in keywords], 1000)

        assert db.query(Slot).count() == 0
        assert LedgerService(db).get_balance(user.id)["total_balance"] == 10000
