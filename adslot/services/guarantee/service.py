"""
GuaranteeService: negotiated guarantee campaigns.

Request: requested -> negotiating <-> offers -> accepted | rejected | expired, accepted -> purchased.
Slot:    pending -> active | rejected, active -> completed | cancelled.

Purchased money sits in a holding. Each confirmed day moves one share from the user side to the
distributor side; completion releases the distributor side to the distributor's balance.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from adslot.core.config import settings
from adslot.core.errors import (
    AlreadyPurchased,
    Conflict,
    InvalidTransition,
    NotFoundOrForbidden,
    TransactionFailure,
    ValidationError,
)
from adslot.models.campaign import Campaign
from adslot.models.refund import SlotRefundApproval
from adslot.models.guarantee import (
    GuaranteeSlot,
    GuaranteeSlotHolding,
    GuaranteeSlotNegotiation,
    GuaranteeSlotRequest,
    GuaranteeSlotSettlement,
)
from adslot.models.statuses import (
    BalanceType,
    GuaranteeRequestStatus,
    GuaranteeSlotStatus,
    HoldingStatus,
    NegotiationMessageType,
    RefundStatus,
    TransactionType,
)
from adslot.models.user import User
from adslot.services.audit.service import AuditService
from adslot.services.guarantee.transitions import (
    OPEN_REQUEST_STATUSES,
    check_request,
    check_slot,
    daily_settlement_amount,
    total_with_vat,
)
from adslot.services.keywords.service import KeywordService
from adslot.services.ledger.service import LedgerService
from adslot.utils.metrics import guarantee_transitions_total
from adslot.utils.time import utcnow

logger = logging.getLogger(__name__)

OFFER_TYPES = (NegotiationMessageType.PRICE_PROPOSAL, NegotiationMessageType.COUNTER_OFFER)


def _split_by_source(holding: GuaranteeSlotHolding) -> tuple[int, int]:
    """Free/paid shares of the unearned holding, in the proportion it was funded. Rounding favours paid."""
    if holding.total_amount <= 0:
        return 0, holding.user_holding_amount
    free_back = holding.user_holding_amount * holding.free_amount // holding.total_amount
    return free_back, holding.user_holding_amount - free_back


class GuaranteeService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)
        self.audit = AuditService(db)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_request(self, request_id: str) -> GuaranteeSlotRequest:
        request = (
            self.db.query(GuaranteeSlotRequest)
            .filter(GuaranteeSlotRequest.id == request_id)
            .with_for_update()
            .one_or_none()
        )
        if request is None:
            raise NotFoundOrForbidden("Guarantee request not found")
        return request

    def _lock_slot(self, slot_id: str) -> GuaranteeSlot:
        slot = (
            self.db.query(GuaranteeSlot)
            .filter(GuaranteeSlot.id == slot_id)
            .with_for_update()
            .one_or_none()
        )
        if slot is None:
            raise NotFoundOrForbidden("Guarantee slot not found")
        return slot

    def _lock_holding(self, slot_id: str) -> GuaranteeSlotHolding:
        return (
            self.db.query(GuaranteeSlotHolding)
            .filter(GuaranteeSlotHolding.guarantee_slot_id == slot_id)
            .with_for_update()
            .one()
        )

    @staticmethod
    def _side(request: GuaranteeSlotRequest, actor: User) -> str:
        """'user' or 'distributor'; admins act on the distributor side."""
        if actor.id == request.user_id:
            return "user"
        if actor.id == request.distributor_id or actor.is_admin:
            return "distributor"
        raise NotFoundOrForbidden("Guarantee request not found")

    @staticmethod
    def _require_slot_operator(slot: GuaranteeSlot, actor: User) -> None:
        if not (actor.is_admin or actor.id == slot.distributor_id):
            raise NotFoundOrForbidden("Guarantee slot not found")

    def _require_no_open_refund(self, slot_id: str) -> None:
        open_refund = (
            self.db.query(SlotRefundApproval.id)
            .filter(
                SlotRefundApproval.guarantee_slot_id == slot_id,
                SlotRefundApproval.status.in_([RefundStatus.PENDING.value, RefundStatus.APPROVED.value]),
                SlotRefundApproval.processed_at.is_(None),
            )
            .first()
        )
        if open_refund:
            raise Conflict("A refund for this guarantee slot is in progress", guarantee_slot_id=slot_id)

    def _set_request_status(self, request: GuaranteeSlotRequest, target: GuaranteeRequestStatus) -> None:
        check_request(request.status, target)
        old_status = request.status
        request.status = target.value
        request.updated_at = utcnow()
        guarantee_transitions_total.labels(entity="request", new_status=target.value).inc()
        logger.info(
            "guarantee_request_status",
            extra={"guarantee_request_id": request.id, "old_status": old_status, "new_status": target.value},
        )

    def _set_slot_status(self, slot: GuaranteeSlot, target: GuaranteeSlotStatus) -> None:
        check_slot(slot.status, target)
        old_status = slot.status
        slot.status = target.value
        guarantee_transitions_total.labels(entity="slot", new_status=target.value).inc()
        logger.info(
            "guarantee_slot_status",
            extra={"guarantee_slot_id": slot.id, "old_status": old_status, "new_status": target.value},
        )

    def _latest_offer(self, request_id: str) -> GuaranteeSlotNegotiation | None:
        return (
            self.db.query(GuaranteeSlotNegotiation)
            .filter(
                GuaranteeSlotNegotiation.request_id == request_id,
                GuaranteeSlotNegotiation.message_type.in_([t.value for t in OFFER_TYPES]),
            )
            .order_by(GuaranteeSlotNegotiation.created_at.desc(), GuaranteeSlotNegotiation.id.desc())
            .first()
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def create_request(self, user: User, data: dict[str, Any]) -> GuaranteeSlotRequest:
        target_rank = data.get("target_rank")
        guarantee_count = data.get("guarantee_count")
        if not target_rank or target_rank <= 0:
            raise ValidationError("target_rank must be positive", field="target_rank")
        if not guarantee_count or guarantee_count <= 0:
            raise ValidationError("guarantee_count must be positive", field="guarantee_count")
        initial_budget = data.get("initial_budget")
        if initial_budget is not None and initial_budget <= 0:
            raise ValidationError("initial_budget must be positive", field="initial_budget")

        campaign = (
            self.db.query(Campaign)
            .filter(Campaign.id == data.get("campaign_id"), Campaign.is_active.is_(True))
            .one_or_none()
        )
        if campaign is None:
            raise NotFoundOrForbidden("Campaign not found")

        input_data = dict(data.get("input_data") or {})
        keyword_id = data.get("keyword_id")
        if keyword_id is not None:
            keyword = KeywordService(self.db).get_keyword(user.id, keyword_id)
            input_data.setdefault("main_keyword", keyword.main_keyword)
            input_data.setdefault("mid", keyword.mid)
            input_data.setdefault("url", keyword.url)

        request = GuaranteeSlotRequest(
            campaign_id=campaign.id,
            user_id=user.id,
            distributor_id=campaign.distributor_id,
            keyword_id=keyword_id,
            target_rank=target_rank,
            guarantee_count=guarantee_count,
            initial_budget=initial_budget,
            quantity=data.get("quantity") or 1,
            input_data=input_data,
            user_reason=data.get("user_reason"),
            additional_requirements=data.get("additional_requirements"),
            start_date=data.get("start_date"),
            end_date=data.get("end_date"),
            status=GuaranteeRequestStatus.REQUESTED.value,
        )
        self.db.add(request)
        self.db.flush()

        message = (data.get("message") or "").strip()
        if message:
            self.db.add(GuaranteeSlotNegotiation(
                request_id=request.id,
                sender_id=user.id,
                sender_type="user",
                message_type=NegotiationMessageType.MESSAGE.value,
                message=message,
                proposed_daily_amount=initial_budget,
            ))
            self.db.flush()
        logger.info("guarantee_request_created", extra={"guarantee_request_id": request.id, "user_id": user.id})
        return request

    def get_request_for(self, request_id: str, actor: User) -> GuaranteeSlotRequest:
        request = self.db.query(GuaranteeSlotRequest).filter(GuaranteeSlotRequest.id == request_id).one_or_none()
        if request is None:
            raise NotFoundOrForbidden("Guarantee request not found")
        self._side(request, actor)
        return request

    def list_requests(self, actor: User, status: GuaranteeRequestStatus | None = None) -> list[GuaranteeSlotRequest]:
        q = self.db.query(GuaranteeSlotRequest)
        if actor.is_distributor:
            q = q.filter(GuaranteeSlotRequest.distributor_id == actor.id)
        elif not actor.is_admin:
            q = q.filter(GuaranteeSlotRequest.user_id == actor.id)
        if status is not None:
            q = q.filter(GuaranteeSlotRequest.status == status.value)
        return q.order_by(GuaranteeSlotRequest.created_at.desc()).all()

    # ------------------------------------------------------------------
    # Negotiation
    # ------------------------------------------------------------------

    def send_negotiation(
        self,
        request_id: str,
        actor: User,
        message_type: NegotiationMessageType,
        message: str = "",
        proposed_daily_amount: int | None = None,
        proposed_guarantee_count: int | None = None,
        attachments: list | None = None,
    ) -> GuaranteeSlotNegotiation:
        request = self._lock_request(request_id)
        side = self._side(request, actor)

        if message_type == NegotiationMessageType.ACCEPTANCE:
            self.accept(request_id, actor, final_daily_amount=proposed_daily_amount)
        elif message_type in OFFER_TYPES:
            if request.status == GuaranteeRequestStatus.ACCEPTED.value:
                raise InvalidTransition("guarantee_request", request.status, "offer")
            if not proposed_daily_amount or proposed_daily_amount <= 0:
                raise ValidationError("An offer needs a positive daily amount", field="proposed_daily_amount")
            if proposed_guarantee_count is not None and proposed_guarantee_count <= 0:
                raise ValidationError("guarantee_count must be positive", field="proposed_guarantee_count")
            self._set_request_status(request, GuaranteeRequestStatus.NEGOTIATING)
        elif message_type == NegotiationMessageType.RENEGOTIATION_REQUEST:
            if request.status != GuaranteeRequestStatus.ACCEPTED.value:
                raise InvalidTransition("guarantee_request", request.status, GuaranteeRequestStatus.NEGOTIATING.value)
            self._set_request_status(request, GuaranteeRequestStatus.NEGOTIATING)
            request.final_daily_amount = None
            request.final_total_amount = None
        elif request.status not in (*OPEN_REQUEST_STATUSES, GuaranteeRequestStatus.ACCEPTED.value):
            raise InvalidTransition("guarantee_request", request.status, "message")

        entry = GuaranteeSlotNegotiation(
            request_id=request.id,
            sender_id=actor.id,
            sender_type=side,
            message_type=message_type.value,
            message=message or "",
            proposed_daily_amount=proposed_daily_amount,
            proposed_guarantee_count=proposed_guarantee_count,
            attachments=attachments or [],
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def list_negotiations(self, request_id: str, actor: User) -> list[GuaranteeSlotNegotiation]:
        request = self.get_request_for(request_id, actor)
        return (
            self.db.query(GuaranteeSlotNegotiation)
            .filter(GuaranteeSlotNegotiation.request_id == request.id)
            .order_by(GuaranteeSlotNegotiation.created_at.asc(), GuaranteeSlotNegotiation.id.asc())
            .all()
        )

    def mark_negotiations_read(self, request_id: str, actor: User) -> int:
        request = self.get_request_for(request_id, actor)
        side = self._side(request, actor)
        updated = (
            self.db.query(GuaranteeSlotNegotiation)
            .filter(
                GuaranteeSlotNegotiation.request_id == request.id,
                GuaranteeSlotNegotiation.sender_type != side,
                GuaranteeSlotNegotiation.is_read.is_(False),
            )
            .update({GuaranteeSlotNegotiation.is_read: True}, synchronize_session="fetch")
        )
        self.db.flush()
        return updated

    def accept(self, request_id: str, actor: User, final_daily_amount: int | None = None) -> GuaranteeSlotRequest:
        request = self._lock_request(request_id)
        side = self._side(request, actor)
        check_request(request.status, GuaranteeRequestStatus.ACCEPTED)

        guarantee_count = request.guarantee_count
        offer = self._latest_offer(request.id)
        if offer is not None:
            if offer.sender_type == side:
                raise ValidationError("An offer must be accepted by the other party")
            agreed = offer.proposed_daily_amount
            guarantee_count = offer.proposed_guarantee_count or guarantee_count
        elif side == "distributor" and request.initial_budget:
            # The user's opening budget stands until someone names another price
            agreed = request.initial_budget
        else:
            raise ValidationError("Nothing to accept: no price has been proposed", field="final_daily_amount")
        if final_daily_amount is not None and final_daily_amount != agreed:
            raise ValidationError("Accepted price must match the standing offer",
                                  field="final_daily_amount", offered=agreed)
        final_daily_amount = agreed

        request.guarantee_count = guarantee_count
        request.final_daily_amount = final_daily_amount
        request.final_total_amount = total_with_vat(final_daily_amount, guarantee_count, settings.guarantee_vat_percent)
        self._set_request_status(request, GuaranteeRequestStatus.ACCEPTED)
        self.db.flush()
        return request

    def reject(self, request_id: str, actor: User, reason: str | None = None) -> GuaranteeSlotRequest:
        request = self._lock_request(request_id)
        self._side(request, actor)
        self._set_request_status(request, GuaranteeRequestStatus.REJECTED)
        request.rejection_reason = reason
        self.db.flush()
        return request

    def expire_stale(self, now: datetime | None = None) -> int:
        """Expire open requests with no activity for guarantee_request_ttl_days."""
        now = now or utcnow()
        cutoff = now - timedelta(days=settings.guarantee_request_ttl_days)
        stale = (
            self.db.query(GuaranteeSlotRequest)
            .filter(
                GuaranteeSlotRequest.status.in_(OPEN_REQUEST_STATUSES),
                GuaranteeSlotRequest.updated_at < cutoff,
            )
            .with_for_update()
            .all()
        )
        for request in stale:
            self._set_request_status(request, GuaranteeRequestStatus.EXPIRED)
        self.db.flush()
        return len(stale)

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    def purchase(self, request_id: str, user: User) -> GuaranteeSlot:
        request = self._lock_request(request_id)
        if request.user_id != user.id:
            raise NotFoundOrForbidden("Guarantee request not found")
        if request.status == GuaranteeRequestStatus.PURCHASED.value:
            raise AlreadyPurchased("This guarantee request has already been purchased", request_id=request.id)
        check_request(request.status, GuaranteeRequestStatus.PURCHASED)
        if not request.final_daily_amount or not request.final_total_amount:
            raise ValidationError("The final price has not been agreed")

        amount = request.final_total_amount
        try:
            with self.db.begin_nested():
                debit = self.ledger.debit(
                    user.id,
                    amount,
                    TransactionType.PURCHASE,
                    description="Guarantee slot purchase",
                    reference_id=request.id,
                )
                slot = GuaranteeSlot(
                    request_id=request.id,
                    user_id=request.user_id,
                    distributor_id=request.distributor_id,
                    campaign_id=request.campaign_id,
                    target_rank=request.target_rank,
                    guarantee_count=request.guarantee_count,
                    daily_guarantee_amount=request.final_daily_amount,
                    total_amount=amount,
                    status=GuaranteeSlotStatus.PENDING.value,
                    start_date=request.start_date,
                    end_date=request.end_date,
                )
                self.db.add(slot)
                self.db.flush()
                self.db.add(GuaranteeSlotHolding(
                    guarantee_slot_id=slot.id,
                    user_id=user.id,
                    total_amount=amount,
                    free_amount=debit.free_used,
                    paid_amount=debit.paid_used,
                    user_holding_amount=amount,
                    status=HoldingStatus.HOLDING.value,
                ))
                self._set_request_status(request, GuaranteeRequestStatus.PURCHASED)
                self.db.flush()
        except IntegrityError as exc:
            logger.exception("guarantee_purchase_failed", extra={"guarantee_request_id": request_id})
            raise TransactionFailure("Purchase could not be completed, nothing was charged") from exc

        self.audit.record(user, "guarantee_purchased", "guarantee_slot", slot.id, {"amount": amount})
        return slot

    # ------------------------------------------------------------------
    # Slots
    # ------------------------------------------------------------------

    def get_slot_for(self, slot_id: str, actor: User) -> GuaranteeSlot:
        slot = self.db.query(GuaranteeSlot).filter(GuaranteeSlot.id == slot_id).one_or_none()
        if slot is None or not (actor.is_admin or actor.id in (slot.user_id, slot.distributor_id)):
            raise NotFoundOrForbidden("Guarantee slot not found")
        return slot

    def list_slots(self, actor: User, status: GuaranteeSlotStatus | None = None) -> list[GuaranteeSlot]:
        q = self.db.query(GuaranteeSlot)
        if actor.is_distributor:
            q = q.filter(GuaranteeSlot.distributor_id == actor.id)
        elif not actor.is_admin:
            q = q.filter(GuaranteeSlot.user_id == actor.id)
        if status is not None:
            q = q.filter(GuaranteeSlot.status == status.value)
        return q.order_by(GuaranteeSlot.created_at.desc()).all()

    def get_holding(self, slot_id: str) -> GuaranteeSlotHolding | None:
        return (
            self.db.query(GuaranteeSlotHolding)
            .filter(GuaranteeSlotHolding.guarantee_slot_id == slot_id)
            .one_or_none()
        )

    def list_settlements(self, slot_id: str, actor: User) -> list[GuaranteeSlotSettlement]:
        slot = self.get_slot_for(slot_id, actor)
        return (
            self.db.query(GuaranteeSlotSettlement)
            .filter(GuaranteeSlotSettlement.guarantee_slot_id == slot.id)
            .order_by(GuaranteeSlotSettlement.confirmed_date.asc())
            .all()
        )

    def approve_slot(self, slot_id: str, actor: User) -> GuaranteeSlot:
        slot = self._lock_slot(slot_id)
        self._require_slot_operator(slot, actor)
        self._set_slot_status(slot, GuaranteeSlotStatus.ACTIVE)
        now = utcnow()
        slot.approved_at = now
        slot.approved_by = actor.id
        slot.start_date = slot.start_date or now
        slot.end_date = slot.end_date or now + timedelta(days=slot.guarantee_count)
        self.db.flush()
        return slot

    def reject_slot(self, slot_id: str, actor: User, reason: str) -> GuaranteeSlot:
        if not (reason or "").strip():
            raise ValidationError("Rejection reason is required", field="reason")
        slot = self._lock_slot(slot_id)
        self._require_slot_operator(slot, actor)
        self._set_slot_status(slot, GuaranteeSlotStatus.REJECTED)
        slot.rejected_at = utcnow()
        slot.rejected_by = actor.id
        slot.rejection_reason = reason

        holding = self._lock_holding(slot.id)
        self.ledger.return_split(
            slot.user_id,
            holding.free_amount,
            holding.paid_amount,
            TransactionType.REFUND,
            description="Guarantee slot rejected",
            reference_id=slot.id,
        )
        holding.user_holding_amount = 0
        holding.status = HoldingStatus.REFUNDED.value
        self.db.flush()
        return slot

    def confirm_rank_achievement(
        self,
        slot_id: str,
        actor: User,
        achieved_rank: int,
        on_date: date | None = None,
        notes: str | None = None,
    ) -> GuaranteeSlotSettlement:
        """Record one day's rank check. At most one per slot per day."""
        if achieved_rank is None or achieved_rank <= 0:
            raise ValidationError("achieved_rank must be positive", field="achieved_rank")
        slot = self._lock_slot(slot_id)
        self._require_slot_operator(slot, actor)
        if slot.status != GuaranteeSlotStatus.ACTIVE.value:
            raise InvalidTransition("guarantee_slot", slot.status, "settlement")
        self._require_no_open_refund(slot.id)
        on_date = on_date or utcnow().date()
        already = (
            self.db.query(GuaranteeSlotSettlement.id)
            .filter(
                GuaranteeSlotSettlement.guarantee_slot_id == slot.id,
                GuaranteeSlotSettlement.confirmed_date == on_date,
            )
            .first()
        )
        if already:
            raise Conflict("Rank already confirmed for this day", confirmed_date=on_date.isoformat())

        holding = self._lock_holding(slot.id)
        is_guaranteed = achieved_rank <= slot.target_rank
        amount = 0
        if is_guaranteed:
            amount = daily_settlement_amount(
                slot.total_amount, slot.guarantee_count, slot.completed_count, holding.user_holding_amount,
            )
            holding.user_holding_amount -= amount
            holding.distributor_holding_amount += amount
            holding.status = HoldingStatus.PARTIAL_RELEASED.value
            slot.completed_count += 1

        settlement = GuaranteeSlotSettlement(
            guarantee_slot_id=slot.id,
            confirmed_by=actor.id,
            confirmed_date=on_date,
            target_rank=slot.target_rank,
            achieved_rank=achieved_rank,
            is_guaranteed=is_guaranteed,
            amount=amount,
            notes=notes,
        )
        self.db.add(settlement)
        self.db.flush()

        if slot.completed_count >= slot.guarantee_count:
            self._finish(slot, holding, GuaranteeSlotStatus.COMPLETED, actor)
        return settlement

    def complete_slot(self, slot_id: str, actor: User) -> GuaranteeSlot:
        slot = self._lock_slot(slot_id)
        self._require_slot_operator(slot, actor)
        self._finish(slot, self._lock_holding(slot.id), GuaranteeSlotStatus.COMPLETED, actor)
        return slot

    def cancel_slot(self, slot_id: str, actor: User, reason: str | None = None) -> GuaranteeSlot:
        slot = self._lock_slot(slot_id)
        # Owners get unused money back through a refund request
        self._require_slot_operator(slot, actor)
        slot.cancellation_reason = reason
        self._finish(slot, self._lock_holding(slot.id), GuaranteeSlotStatus.CANCELLED, actor)
        return slot

    def _finish(self, slot: GuaranteeSlot, holding: GuaranteeSlotHolding, target: GuaranteeSlotStatus, actor: User) -> None:
        """Release what the distributor earned and hand the unearned rest back to the user."""
        self._require_no_open_refund(slot.id)
        self._set_slot_status(slot, target)
        if holding.distributor_holding_amount > 0:
            self.ledger.credit(
                slot.distributor_id,
                holding.distributor_holding_amount,
                BalanceType.PAID,
                TransactionType.SETTLEMENT,
                description="Guarantee slot settlement",
                reference_id=slot.id,
            )
            holding.distributor_released_amount += holding.distributor_holding_amount
            holding.distributor_holding_amount = 0
        if holding.user_holding_amount > 0:
            free_back, paid_back = _split_by_source(holding)
            self.ledger.return_split(
                slot.user_id,
                free_back,
                paid_back,
                TransactionType.REFUND,
                description="Unused guarantee holding returned",
                reference_id=slot.id,
            )
            holding.user_holding_amount = 0
        holding.status = HoldingStatus.COMPLETED.value
        slot.end_date = utcnow()
        self.db.flush()
        self.audit.record(actor, f"guarantee_slot_{target.value}", "guarantee_slot", slot.id,
                       {"released": holding.distributor_released_amount})
