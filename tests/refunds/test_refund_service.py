"""Tests for RefundService: request, approval, delayed payout, simulation and the scheduled sweep."""
from datetime import date, datetime, timedelta, timezone

import pytest


def _after_delay(days=3):
    return datetime.now(timezone.utc) + timedelta(days=days, minutes=1)


def _request_and_approve(db, advertiser, distributor, slot, approved_amount=None):
    from adslot.services.refunds.service import RefundService

    svc = RefundService(db)
    refund = svc.request_refund(advertiser, "campaign paused", slot_id=slot.id)
    svc.confirm_refund(refund.id, distributor, True, approved_amount=approved_amount)
    db.commit()
    return refund


class TestRequest:
    def test_request_moves_slot_to_refund_pending(self, db, active_slot):
        from adslot.services.refunds.service import RefundService

        advertiser, _, slot = active_slot()
        refund = RefundService(db).request_refund(advertiser, "not needed", slot_id=slot.id)
        assert refund.status == "pending"
        assert refund.refund_amount == 10000
        assert slot.status == "refund_pending"

    def test_only_active_slots(self, db, make_user, make_keywords, fund):
        from adslot.core.errors import InvalidTransition
        from adslot.services.purchase.service import SlotPurchaseService
        from adslot.services.refunds.service import RefundService

        user = make_user()
        (keyword,) = make_keywords(user, "shoes")
        fund(user, paid=1000)
        result = SlotPurchaseService(db).purchase(user.id, [keyword.id], 1000)
        with pytest.raises(InvalidTransition):
            RefundService(db).request_refund(user, "why", slot_id=result.slot_ids[0])

    def test_other_users_slot_hidden(self, db, active_slot, make_user):
        from adslot.core.errors import NotFoundOrForbidden
        from adslot.services.refunds.service import RefundService

        _, _, slot = active_slot()
        with pytest.raises(NotFoundOrForbidden):
            RefundService(db).request_refund(make_user(), "mine now", slot_id=slot.id)

    def test_reason_required(self, db, active_slot):
        from adslot.core.errors import ValidationError
        from adslot.services.refunds.service import RefundService

        advertiser, _, slot = active_slot()
        with pytest.raises(ValidationError):
            RefundService(db).request_refund(advertiser, " ", slot_id=slot.id)

    def test_amount_above_refundable(self, db, active_slot):
        from adslot.core.errors import ValidationError
        from adslot.services.refunds.service import RefundService

        advertiser, _, slot = active_slot()
        with pytest.raises(ValidationError):
            RefundService(db).request_refund(advertiser, "too much", slot_id=slot.id, amount=10001)


class TestConfirm:
    def test_approve_schedules_payout(self, db, active_slot):
        from adslot.models.audit_log import AuditLog
        from adslot.utils.time import as_utc

        advertiser, distributor, slot = active_slot()
        refund = _request_and_approve(db, advertiser, distributor, slot, approved_amount=6000)

        assert refund.status == "approved"
        assert refund.approved_amount == 6000
        delay = as_utc(refund.scheduled_at) - as_utc(refund.approval_date)
        assert delay == timedelta(days=3)
        assert slot.status == "refund_approved"
        entry = db.query(AuditLog).filter(AuditLog.entity_id == refund.id).one()
        assert (entry.actor_type, entry.action) == ("distributor", "refund_approved")

    def test_approved_amount_cannot_exceed_request(self, db, active_slot):
        from adslot.core.errors import ValidationError
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        svc = RefundService(db)
        refund = svc.request_refund(advertiser, "x", slot_id=slot.id)
        with pytest.raises(ValidationError):
            svc.confirm_refund(refund.id, distributor, True, approved_amount=10001)

    def test_advertiser_cannot_approve_own_refund(self, db, active_slot):
        from adslot.core.errors import NotFoundOrForbidden
        from adslot.services.refunds.service import RefundService

        advertiser, _, slot = active_slot()
        svc = RefundService(db)
        refund = svc.request_refund(advertiser, "x", slot_id=slot.id)
        with pytest.raises(NotFoundOrForbidden):
            svc.confirm_refund(refund.id, advertiser, True)

    def test_reject_reactivates_and_request_can_be_reopened(self, db, active_slot):
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        svc = RefundService(db)
        refund = svc.request_refund(advertiser, "x", slot_id=slot.id)
        svc.confirm_refund(refund.id, distributor, False, notes="work already delivered")
        assert slot.status == "active"
        assert refund.status == "rejected"

        again = svc.request_refund(advertiser, "please reconsider", slot_id=slot.id)
        assert again.id == refund.id
        assert again.status == "pending"
        assert again.approval_notes is None

    def test_second_open_request_conflicts(self, db, active_slot):
        from adslot.core.errors import InvalidTransition
        from adslot.services.refunds.service import RefundService

        advertiser, _, slot = active_slot()
        svc = RefundService(db)
        svc.request_refund(advertiser, "x", slot_id=slot.id)
        with pytest.raises(InvalidTransition):
            svc.request_refund(advertiser, "again", slot_id=slot.id)

    def test_decided_refund_cannot_be_decided_again(self, db, active_slot):
        from adslot.core.errors import InvalidTransition
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        refund = _request_and_approve(db, advertiser, distributor, slot)
        with pytest.raises(InvalidTransition):
            RefundService(db).confirm_refund(refund.id, distributor, False)


class TestPayout:
    def test_partial_refund_paid_after_delay(self, db, active_slot):
        from adslot.models.cash_history import CashHistory
        from adslot.models.slot import SlotPendingBalance
        from adslot.services.ledger.service import LedgerService
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        refund = _request_and_approve(db, advertiser, distributor, slot, approved_amount=6000)
        svc = RefundService(db)

        early = svc.process_scheduled_refunds(now=datetime.now(timezone.utc) + timedelta(days=1))
        assert early["processed_count"] == 0

        result = svc.process_scheduled_refunds(now=_after_delay())
        db.commit()

        assert result == {"processed_count": 1, "success_count": 1, "failed_count": 0, "total_amount": 10000}
        ledger = LedgerService(db)
        assert ledger.get_balance(advertiser.id)["paid_balance"] == 6000
        assert ledger.get_balance(distributor.id)["paid_balance"] == 4000
        assert slot.status == "refunded"
        assert refund.processed_at is not None
        pending = db.query(SlotPendingBalance).filter(SlotPendingBalance.slot_id == slot.id).one()
        assert pending.status == "refunded"
        difference = db.query(CashHistory).filter(
            CashHistory.user_id == distributor.id, CashHistory.reference_id == refund.id,
        ).one()
        assert difference.transaction_type == "refund_difference"
        assert ledger.reconcile(advertiser.id)["consistent"] is True
        assert ledger.reconcile(distributor.id)["consistent"] is True

    def test_reduced_amount_refund_settles_used_part(self, db, active_slot):
        from adslot.models.cash_history import CashHistory
        from adslot.services.ledger.service import LedgerService
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        svc = RefundService(db)
        refund = svc.request_refund(advertiser, "only need part back", slot_id=slot.id, amount=3000)
        svc.confirm_refund(refund.id, distributor, True)
        db.commit()

        result = svc.process_scheduled_refunds(now=_after_delay())
        db.commit()

        ledger = LedgerService(db)
        requester = ledger.get_balance(advertiser.id)["paid_balance"]
        earned = ledger.get_balance(distributor.id)["paid_balance"]
        assert (requester, earned) == (3000, 7000)
        assert requester + earned == 10000
        assert result["total_amount"] == 10000
        settlement = db.query(CashHistory).filter(
            CashHistory.user_id == distributor.id, CashHistory.reference_id == refund.id,
        ).one()
        assert settlement.transaction_type == "settlement"
        assert ledger.reconcile(distributor.id)["consistent"] is True

    def test_prorated_policy_refund_conserves_price(self, db, active_slot):
        from adslot.services.ledger.service import LedgerService
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot(refund_settings={"refund_rules": {"partial_refund": True}})
        now = datetime.now(timezone.utc)
        slot.start_date = now - timedelta(days=4)
        slot.end_date = now + timedelta(days=5)
        db.commit()

        svc = RefundService(db)
        refund = svc.request_refund(advertiser, "stopping early", slot_id=slot.id)
        assert refund.refund_amount == 5000
        svc.confirm_refund(refund.id, distributor, True, approved_amount=4000)
        db.commit()

        plan = svc.simulate_single_refund(refund.id, now=_after_delay())
        assert (plan["requester_credit"], plan["distributor_credit"], plan["distributor_settlement"]) == (4000, 1000, 5000)

        svc.process_scheduled_refunds(now=_after_delay())
        db.commit()
        ledger = LedgerService(db)
        requester = ledger.get_balance(advertiser.id)["paid_balance"]
        earned = ledger.get_balance(distributor.id)["paid_balance"]
        assert (requester, earned) == (4000, 6000)
        assert requester + earned == 10000

    def test_processed_refund_not_picked_again(self, db, active_slot):
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        _request_and_approve(db, advertiser, distributor, slot)
        svc = RefundService(db)
        svc.process_scheduled_refunds(now=_after_delay())
        db.commit()
        assert svc.process_scheduled_refunds(now=_after_delay(4))["processed_count"] == 0

    def test_simulation_writes_nothing_and_matches_processing(self, db, active_slot):
        from adslot.services.ledger.service import LedgerService
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        refund = _request_and_approve(db, advertiser, distributor, slot, approved_amount=6000)
        svc = RefundService(db)
        now = _after_delay()

        simulated = svc.simulate_refund_process(now=now)
        assert simulated["success_count"] == 1
        assert LedgerService(db).get_balance(advertiser.id)["paid_balance"] == 0
        assert slot.status == "refund_approved"

        processed = svc.process_single_refund(refund.id, now=now)
        assert processed["items"] == simulated["refunds"][0]["items"]
        assert processed["total_amount"] == simulated["total_amount"]

    def test_simulation_plans_every_due_refund(self, db, active_slot):
        from adslot.services.refunds.service import RefundService

        first = active_slot()
        second = active_slot()
        _request_and_approve(db, *first)
        refund_b = _request_and_approve(db, second[0], second[1], second[2])

        result = RefundService(db).simulate_refund_process(now=_after_delay())
        assert result["success_count"] == 2
        assert result["total_amount"] == 20000
        plan_b = next(p for p in result["refunds"] if p["refund_id"] == refund_b.id)
        balance_item = plan_b["items"][0]
        assert balance_item["table_name"] == "user_balances"
        assert balance_item["changes"]["paid_balance"] == {"from": 0, "to": 10000}

    def test_not_due_single_refund_needs_override(self, db, active_slot):
        from adslot.core.errors import ValidationError
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        refund = _request_and_approve(db, advertiser, distributor, slot)
        svc = RefundService(db)
        with pytest.raises(ValidationError):
            svc.simulate_single_refund(refund.id)
        plan = svc.process_single_refund(refund.id, ignore_schedule=True)
        assert plan["requester_credit"] == 10000

    def test_one_failure_does_not_block_the_batch(self, db, active_slot):
        from adslot.models.slot import Slot
        from adslot.services.ledger.service import LedgerService
        from adslot.services.refunds.service import RefundService

        good = active_slot()
        bad = active_slot()
        _request_and_approve(db, *good)
        _request_and_approve(db, *bad)
        # Drifted out of band: the plan for this slot must fail
        db.query(Slot).filter(Slot.id == bad[2].id).update({Slot.status: "paused"})
        db.commit()

        result = RefundService(db).process_scheduled_refunds(now=_after_delay())
        db.commit()

        assert (result["processed_count"], result["success_count"], result["failed_count"]) == (2, 1, 1)
        assert LedgerService(db).get_balance(good[0].id)["paid_balance"] == 10000
        assert LedgerService(db).get_balance(bad[0].id)["paid_balance"] == 0

    def test_apply_aborts_on_balance_drift(self, db, active_slot, fund):
        from adslot.core.errors import TransactionFailure
        from adslot.services.refunds.changeset import apply_plan
        from adslot.services.refunds.service import RefundService

        advertiser, distributor, slot = active_slot()
        refund = _request_and_approve(db, advertiser, distributor, slot)
        svc = RefundService(db)
        plan = svc.plan_refund(refund, _after_delay())
        fund(advertiser, paid=500)
        with pytest.raises(TransactionFailure):
            with db.begin_nested():
                apply_plan(db, plan)
        assert slot.status == "refund_approved"


class TestGuaranteeRefund:
    def _active_guarantee(self, db, make_user, make_campaign, fund):
        from adslot.models.statuses import NegotiationMessageType, UserRole
        from adslot.services.guarantee.service import GuaranteeService

        user = make_user()
        distributor = make_user(UserRole.DISTRIBUTOR)
        campaign = make_campaign(distributor, slot_type="guarantee")
        fund(user, paid=33000)
        svc = GuaranteeService(db)
        request = svc.create_request(user, {"campaign_id": campaign.id, "target_rank": 5, "guarantee_count": 3})
        svc.send_negotiation(request.id, distributor, NegotiationMessageType.PRICE_PROPOSAL, proposed_daily_amount=10000)
        svc.accept(request.id, user)
        slot = svc.purchase(request.id, user)
        svc.approve_slot(slot.id, distributor)
        svc.confirm_rank_achievement(slot.id, distributor, 2, on_date=date(2026, 1, 10))
        db.commit()
        return user, distributor, slot

    def test_refund_remaining_holding(self, db, make_user, make_campaign, fund):
        from adslot.services.ledger.service import LedgerService
        from adslot.services.refunds.service import RefundService

        user, distributor, slot = self._active_guarantee(db, make_user, make_campaign, fund)
        svc = RefundService(db)
        refund = svc.request_refund(user, "rank never held", guarantee_slot_id=slot.id)
        assert refund.refund_amount == 22000
        svc.confirm_refund(refund.id, distributor, True)
        db.commit()

        result = svc.process_scheduled_refunds(now=_after_delay())
        db.commit()

        assert result["success_count"] == 1
        assert result["total_amount"] == 33000
        ledger = LedgerService(db)
        assert ledger.get_balance(user.id)["paid_balance"] == 22000
        assert ledger.get_balance(distributor.id)["paid_balance"] == 11000
        assert slot.status == "cancelled"
        assert slot.cancellation_reason == "refunded"

    def test_guarantee_refund_must_cover_whole_holding(self, db, make_user, make_campaign, fund):
        from adslot.core.errors import ValidationError
        from adslot.services.refunds.service import RefundService

        user, _, slot = self._active_guarantee(db, make_user, make_campaign, fund)
        with pytest.raises(ValidationError):
            RefundService(db).request_refund(user, "half please", guarantee_slot_id=slot.id, amount=1000)

    def test_settlement_blocked_while_refund_open(self, db, make_user, make_campaign, fund):
        from adslot.core.errors import Conflict
        from adslot.services.guarantee.service import GuaranteeService
        from adslot.services.refunds.service import RefundService

        user, distributor, slot = self._active_guarantee(db, make_user, make_campaign, fund)
        RefundService(db).request_refund(user, "stop", guarantee_slot_id=slot.id)
        with pytest.raises(Conflict):
            GuaranteeService(db).confirm_rank_achievement(slot.id, distributor, 1, on_date=date(2026, 1, 11))
