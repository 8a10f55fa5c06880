"""
RefundService: refund requests, approval, and delayed payout.

Payout is always "plan, then apply": process_* applies the same RefundPlan that simulate_*
returns. The scheduled sweep runs each refund in its own savepoint so one failure never
blocks the rest.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from adslot.core.errors import (
    Conflict,
    DomainError,
    InvalidTransition,
    NotFoundOrForbidden,
    ValidationError,
)
from adslot.models.balance import UserBalance
from adslot.models.campaign import Campaign
from adslot.models.guarantee import GuaranteeSlot, GuaranteeSlotHolding
from adslot.models.refund import SlotRefundApproval
from adslot.models.slot import Slot, SlotPendingBalance
from adslot.models.statuses import GuaranteeSlotStatus, RefundStatus, SlotStatus
from adslot.models.user import User
from adslot.services.audit.service import AuditService
from adslot.services.refunds.changeset import (
    BalanceSnapshot,
    RefundPlan,
    apply_plan,
    plan_guarantee_refund,
    plan_slot_refund,
)
from adslot.services.refunds.policy import RefundPolicy, estimate_refund, payout_due_at
from adslot.services.slots.service import record_transition
from adslot.utils.metrics import refund_sweep_duration_seconds, refunds_processed_total
from adslot.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

OPEN_STATUSES = (RefundStatus.PENDING.value, RefundStatus.APPROVED.value)


class RefundService:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _policy(self, campaign_id: int | None) -> RefundPolicy:
        if campaign_id is None:
            return RefundPolicy.from_campaign(None)
        campaign = self.db.query(Campaign).filter(Campaign.id == campaign_id).one_or_none()
        return RefundPolicy.from_campaign(campaign.refund_settings if campaign else None)

    def _open_request_exists(self, slot_id: str | None = None, guarantee_slot_id: str | None = None) -> bool:
        q = self.db.query(SlotRefundApproval.id).filter(
            SlotRefundApproval.status.in_(OPEN_STATUSES),
            SlotRefundApproval.processed_at.is_(None),
        )
        if slot_id:
            q = q.filter(SlotRefundApproval.slot_id == slot_id)
        else:
            q = q.filter(SlotRefundApproval.guarantee_slot_id == guarantee_slot_id)
        return q.first() is not None

    def _lock_refund(self, request_id: str) -> SlotRefundApproval:
        refund = (
            self.db.query(SlotRefundApproval)
            .filter(SlotRefundApproval.id == request_id)
            .with_for_update()
            .one_or_none()
        )
        if refund is None:
            raise NotFoundOrForbidden("Refund request not found")
        return refund

    def _target_distributor(self, refund: SlotRefundApproval) -> str | None:
        if refund.guarantee_slot_id:
            slot = self.db.query(GuaranteeSlot).filter(GuaranteeSlot.id == refund.guarantee_slot_id).one_or_none()
        else:
            slot = self.db.query(Slot).filter(Slot.id == refund.slot_id).one_or_none()
        return slot.distributor_id if slot else None

    def get_for(self, request_id: str, actor: User) -> SlotRefundApproval:
        refund = self.db.query(SlotRefundApproval).filter(SlotRefundApproval.id == request_id).one_or_none()
        if refund is None:
            raise NotFoundOrForbidden("Refund request not found")
        if not (actor.is_admin or actor.id in (refund.requester_id, self._target_distributor(refund))):
            raise NotFoundOrForbidden("Refund request not found")
        return refund

    def list_for(self, actor: User, status: RefundStatus | None = None) -> list[SlotRefundApproval]:
        q = self.db.query(SlotRefundApproval)
        if actor.is_distributor:
            slot_ids = self.db.query(Slot.id).filter(Slot.distributor_id == actor.id)
            gslot_ids = self.db.query(GuaranteeSlot.id).filter(GuaranteeSlot.distributor_id == actor.id)
            q = q.filter(or_(
                SlotRefundApproval.slot_id.in_(slot_ids),
                SlotRefundApproval.guarantee_slot_id.in_(gslot_ids),
            ))
        elif not actor.is_admin:
            q = q.filter(SlotRefundApproval.requester_id == actor.id)
        if status is not None:
            q = q.filter(SlotRefundApproval.status == status.value)
        return q.order_by(SlotRefundApproval.request_date.desc()).all()

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def request_refund(
        self,
        actor: User,
        reason: str,
        slot_id: str | None = None,
        guarantee_slot_id: str | None = None,
        amount: int | None = None,
    ) -> SlotRefundApproval:
        if bool(slot_id) == bool(guarantee_slot_id):
            raise ValidationError("Give exactly one of slot_id or guarantee_slot_id")
        if not (reason or "").strip():
            raise ValidationError("Refund reason is required", field="reason")
        if amount is not None and amount <= 0:
            raise ValidationError("Refund amount must be positive", field="amount")

        if slot_id:
            refund_amount = self._prepare_slot_refund(actor, slot_id, amount)
        else:
            refund_amount = self._prepare_guarantee_refund(actor, guarantee_slot_id, amount)

        previous = (
            self.db.query(SlotRefundApproval)
            .filter(
                SlotRefundApproval.requester_id == actor.id,
                SlotRefundApproval.status == RefundStatus.REJECTED.value,
                SlotRefundApproval.slot_id == slot_id if slot_id else SlotRefundApproval.guarantee_slot_id == guarantee_slot_id,
            )
            .order_by(SlotRefundApproval.request_date.desc())
            .first()
        )
        refund = previous or SlotRefundApproval(
            slot_id=slot_id,
            guarantee_slot_id=guarantee_slot_id,
            requester_id=actor.id,
        )
        refund.refund_amount = refund_amount
        refund.refund_reason = reason.strip()
        refund.status = RefundStatus.PENDING.value
        refund.request_date = utcnow()
        refund.approved_amount = None
        refund.approval_date = None
        refund.approver_id = None
        refund.approval_notes = None
        refund.scheduled_at = None
        self.db.add(refund)
        self.db.flush()
        logger.info("refund_requested", extra={"refund_id": refund.id, "user_id": actor.id, "amount": refund_amount})
        return refund

    def _prepare_slot_refund(self, actor: User, slot_id: str, amount: int | None) -> int:
        slot = self.db.query(Slot).filter(Slot.id == slot_id).with_for_update().one_or_none()
        if slot is None or slot.user_id != actor.id:
            raise NotFoundOrForbidden("Slot not found")
        if slot.status != SlotStatus.ACTIVE.value:
            raise InvalidTransition("slot", slot.status, SlotStatus.REFUND_PENDING.value)
        if self._open_request_exists(slot_id=slot.id):
            raise Conflict("A refund request for this slot is already open", slot_id=slot.id)

        pending = self.db.query(SlotPendingBalance).filter(SlotPendingBalance.slot_id == slot.id).one_or_none()
        price = pending.amount if pending else int((slot.input_data or {}).get("price") or 0)
        estimate = estimate_refund(self._policy(slot.campaign_id), price, slot.start_date, slot.end_date, utcnow())
        if not estimate.refundable:
            raise ValidationError(estimate.message or "Slot is not refundable", slot_id=slot.id)
        if amount is not None and amount > estimate.amount:
            raise ValidationError("Refund amount exceeds the refundable amount", refundable=estimate.amount)

        record_transition(self.db, slot, SlotStatus.REFUND_PENDING, actor.id, "refund_request")
        return amount if amount is not None else estimate.amount

    def _prepare_guarantee_refund(self, actor: User, guarantee_slot_id: str, amount: int | None) -> int:
        slot = (
            self.db.query(GuaranteeSlot)
            .filter(GuaranteeSlot.id == guarantee_slot_id)
            .with_for_update()
            .one_or_none()
        )
        if slot is None or slot.user_id != actor.id:
            raise NotFoundOrForbidden("Guarantee slot not found")
        if slot.status != GuaranteeSlotStatus.ACTIVE.value:
            raise InvalidTransition("guarantee_slot", slot.status, "refund")
        if self._open_request_exists(guarantee_slot_id=slot.id):
            raise Conflict("A refund request for this slot is already open", guarantee_slot_id=slot.id)
        holding = (
            self.db.query(GuaranteeSlotHolding)
            .filter(GuaranteeSlotHolding.guarantee_slot_id == slot.id)
            .one()
        )
        # The whole unearned holding is refunded; days already settled stay with the distributor
        if holding.user_holding_amount <= 0:
            raise ValidationError("Nothing left to refund", guarantee_slot_id=slot.id)
        if amount is not None and amount != holding.user_holding_amount:
            raise ValidationError("Guarantee refunds cover the whole remaining holding",
                                  refundable=holding.user_holding_amount)
        return holding.user_holding_amount

    # ------------------------------------------------------------------
    # Approval
    # ------------------------------------------------------------------

    def confirm_refund(
        self,
        request_id: str,
        approver: User,
        approve: bool,
        approved_amount: int | None = None,
        notes: str | None = None,
        slot_id: str | None = None,
    ) -> SlotRefundApproval:
        refund = self._lock_refund(request_id)
        if slot_id is not None and slot_id not in (refund.slot_id, refund.guarantee_slot_id):
            raise NotFoundOrForbidden("Refund request not found")
        if not (approver.is_admin or approver.id == self._target_distributor(refund)):
            raise NotFoundOrForbidden("Refund request not found")
        if refund.status != RefundStatus.PENDING.value:
            target = RefundStatus.APPROVED.value if approve else RefundStatus.REJECTED.value
            raise InvalidTransition("refund", refund.status, target)

        if approve:
            amount = refund.refund_amount if approved_amount is None else approved_amount
            if amount <= 0:
                raise ValidationError("Approved amount must be positive", field="approved_amount")
            if amount > refund.refund_amount:
                raise ValidationError(
                    "Approved amount cannot exceed the requested amount",
                    field="approved_amount",
                    refund_amount=refund.refund_amount,
                )
            if amount < refund.refund_amount and not self._target_distributor(refund):
                raise ValidationError("Partial approval needs a distributor to receive the difference")
            self._approve(refund, approver, amount, notes)
        else:
            self._reject(refund, approver, notes)

        self.audit.record(
            approver,
            f"refund_{refund.status}", "slot_refund_approval", refund.id,
            {"approved_amount": refund.approved_amount, "refund_amount": refund.refund_amount},
        )
        return refund

    def _approve(self, refund: SlotRefundApproval, approver: User, amount: int, notes: str | None) -> None:
        now = utcnow()
        campaign_id = None
        if refund.slot_id:
            slot = self.db.query(Slot).filter(Slot.id == refund.slot_id).with_for_update().one()
            record_transition(self.db, slot, SlotStatus.REFUND_APPROVED, approver.id, "refund_approve", note=notes)
            campaign_id = slot.campaign_id
        else:
            gslot = self.db.query(GuaranteeSlot).filter(GuaranteeSlot.id == refund.guarantee_slot_id).one()
            campaign_id = gslot.campaign_id
        refund.status = RefundStatus.APPROVED.value
        refund.approved_amount = amount
        refund.approval_date = now
        refund.approver_id = approver.id
        refund.approval_notes = notes
        refund.scheduled_at = payout_due_at(self._policy(campaign_id), now)
        self.db.flush()
        logger.info("refund_approved", extra={"refund_id": refund.id, "amount": amount})

    def _reject(self, refund: SlotRefundApproval, approver: User, notes: str | None) -> None:
        if refund.slot_id:
            slot = self.db.query(Slot).filter(Slot.id == refund.slot_id).with_for_update().one()
            record_transition(self.db, slot, SlotStatus.ACTIVE, approver.id, "refund_reject", note=notes)
        refund.status = RefundStatus.REJECTED.value
        refund.approval_date = utcnow()
        refund.approver_id = approver.id
        refund.approval_notes = notes
        self.db.flush()
        logger.info("refund_rejected", extra={"refund_id": refund.id})

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _snapshot(self, user_id: str, overlay: dict[str, BalanceSnapshot], lock: bool) -> None:
        if user_id is None or user_id in overlay:
            return
        q = self.db.query(UserBalance).filter(UserBalance.user_id == user_id)
        if lock:
            q = q.with_for_update()
        row = q.one_or_none()
        overlay[user_id] = BalanceSnapshot(
            user_id=user_id,
            free_balance=row.free_balance if row else 0,
            paid_balance=row.paid_balance if row else 0,
        )

    def plan_refund(
        self,
        refund: SlotRefundApproval,
        now: datetime,
        overlay: dict[str, BalanceSnapshot] | None = None,
        lock: bool = False,
    ) -> RefundPlan:
        """Read the rows a payout touches and compute its changeset. Never writes."""
        overlay = {} if overlay is None else overlay
        self._snapshot(refund.requester_id, overlay, lock)
        if refund.guarantee_slot_id:
            q = self.db.query(GuaranteeSlot).filter(GuaranteeSlot.id == refund.guarantee_slot_id)
            slot = (q.with_for_update() if lock else q).one()
            hq = self.db.query(GuaranteeSlotHolding).filter(GuaranteeSlotHolding.guarantee_slot_id == slot.id)
            holding = (hq.with_for_update() if lock else hq).one()
            self._snapshot(slot.distributor_id, overlay, lock)
            return plan_guarantee_refund(refund, slot, holding, overlay, now)

        q = self.db.query(Slot).filter(Slot.id == refund.slot_id)
        slot = (q.with_for_update() if lock else q).one()
        pq = self.db.query(SlotPendingBalance).filter(SlotPendingBalance.slot_id == slot.id)
        pending = (pq.with_for_update() if lock else pq).one_or_none()
        self._snapshot(slot.distributor_id, overlay, lock)
        return plan_slot_refund(refund, slot, pending, overlay, now)

    def _is_due(self, refund: SlotRefundApproval, now: datetime) -> bool:
        return refund.scheduled_at is not None and as_utc(refund.scheduled_at) <= as_utc(now)

    def due_refunds(self, now: datetime) -> list[SlotRefundApproval]:
        """Approved, unprocessed refunds whose payout time has passed and whose slot is not refunded yet."""
        return (
            self.db.query(SlotRefundApproval)
            .outerjoin(Slot, Slot.id == SlotRefundApproval.slot_id)
            .filter(
                SlotRefundApproval.status == RefundStatus.APPROVED.value,
                SlotRefundApproval.processed_at.is_(None),
                SlotRefundApproval.scheduled_at.isnot(None),
                SlotRefundApproval.scheduled_at <= now,
                or_(SlotRefundApproval.slot_id.is_(None), Slot.status != SlotStatus.REFUNDED.value),
            )
            .order_by(SlotRefundApproval.scheduled_at.asc(), SlotRefundApproval.id.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def simulate_single_refund(self, request_id: str, now: datetime | None = None, ignore_schedule: bool = False) -> dict:
        now = now or utcnow()
        refund = self.db.query(SlotRefundApproval).filter(SlotRefundApproval.id == request_id).one_or_none()
        if refund is None:
            raise NotFoundOrForbidden("Refund request not found")
        if not ignore_schedule and not self._is_due(refund, now):
            raise ValidationError("Refund is not due yet", scheduled_at=refund.scheduled_at)
        return self.plan_refund(refund, now).to_dict()

    def simulate_refund_process(self, now: datetime | None = None) -> dict:
        """Plans for every due refund, chained over running balances exactly as the sweep would apply them."""
        now = now or utcnow()
        overlay: dict[str, BalanceSnapshot] = {}
        plans, failures = [], []
        for refund in self.due_refunds(now):
            scratch = {k: BalanceSnapshot(**vars(v)) for k, v in overlay.items()}
            try:
                plan = self.plan_refund(refund, now, overlay=scratch)
            except DomainError as exc:
                failures.append({"refund_id": refund.id, "error": exc.message})
                continue
            except SQLAlchemyError as exc:
                failures.append({"refund_id": refund.id, "error": str(exc)})
                continue
            overlay = scratch
            plans.append(plan.to_dict())
        return {
            "processed_count": len(plans) + len(failures),
            "success_count": len(plans),
            "failed_count": len(failures),
            "total_amount": sum(p["total_amount"] for p in plans),
            "refunds": plans,
            "failures": failures,
        }

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    def _process_locked(self, refund_id: str, now: datetime, ignore_schedule: bool) -> RefundPlan:
        refund = self._lock_refund(refund_id)
        if not ignore_schedule and not self._is_due(refund, now):
            raise ValidationError("Refund is not due yet", refund_id=refund.id)
        plan = self.plan_refund(refund, now, lock=True)
        apply_plan(self.db, plan)
        self.audit.record(None, "refund_paid", "slot_refund_approval", refund.id, {"total_amount": plan.total_amount})
        return plan

    def process_single_refund(self, request_id: str, now: datetime | None = None, ignore_schedule: bool = False) -> dict:
        now = now or utcnow()
        with self.db.begin_nested():
            plan = self._process_locked(request_id, now, ignore_schedule)
        refunds_processed_total.labels(result="success").inc()
        logger.info("refund_processed", extra={"refund_id": plan.refund_id, "amount": plan.total_amount})
        return plan.to_dict()

    def process_scheduled_refunds(self, now: datetime | None = None) -> dict:
        now = now or utcnow()
        started = time.monotonic()
        success_count = failed_count = total_amount = 0
        due_ids = [r.id for r in self.due_refunds(now)]
        for refund_id in due_ids:
            try:
                with self.db.begin_nested():
                    plan = self._process_locked(refund_id, now, ignore_schedule=False)
            except (DomainError, SQLAlchemyError):
                failed_count += 1
                refunds_processed_total.labels(result="failed").inc()
                logger.exception("refund_process_failed", extra={"refund_id": refund_id})
                continue
            success_count += 1
            total_amount += plan.total_amount
            refunds_processed_total.labels(result="success").inc()
            logger.info("refund_processed", extra={"refund_id": refund_id, "amount": plan.total_amount})

        refund_sweep_duration_seconds.observe(time.monotonic() - started)
        result = {
            "processed_count": len(due_ids),
            "success_count": success_count,
            "failed_count": failed_count,
            "total_amount": total_amount,
        }
        logger.info("refund_sweep_done", extra=result)
        return result
