"""
SlotService: status changes of purchased keyword slots.
Each change is validated against SLOT_TRANSITIONS and leaves one slot_history_logs row.
"""
import logging

from sqlalchemy.orm import Session

from adslot.core.errors import InvalidTransition, NotFoundOrForbidden, ValidationError
from adslot.models.slot import Slot, SlotHistoryLog, SlotPendingBalance
from adslot.models.statuses import (
    BalanceType,
    PendingBalanceStatus,
    SlotStatus,
    TransactionType,
    can_transition,
)
from adslot.models.user import User
from adslot.services.ledger.service import LedgerService
from adslot.utils.time import utcnow

logger = logging.getLogger(__name__)


def record_transition(db: Session, slot: Slot, new_status: SlotStatus, actor_id: str, action: str,
                      note: str | None = None, details: dict | None = None) -> None:
    """Move a slot to new_status and append its history row. Caller holds the row lock."""
    if not can_transition(slot.status, new_status.value):
        raise InvalidTransition("slot", slot.status, new_status.value)
    old_status = slot.status
    slot.status = new_status.value
    db.add(SlotHistoryLog(
        slot_id=slot.id,
        user_id=actor_id,
        old_status=old_status,
        new_status=new_status.value,
        action=action,
        details=details or {},
        note=note,
    ))
    db.flush()
    logger.info(
        "slot_status_changed",
        extra={"slot_id": slot.id, "old_status": old_status, "new_status": new_status.value},
    )


class SlotService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    def _lock(self, slot_id: str) -> Slot:
        slot = self.db.query(Slot).filter(Slot.id == slot_id).with_for_update().one_or_none()
        if slot is None:
            raise NotFoundOrForbidden("Slot not found")
        return slot

    def _pending_balance(self, slot_id: str) -> SlotPendingBalance | None:
        return (
            self.db.query(SlotPendingBalance)
            .filter(SlotPendingBalance.slot_id == slot_id)
            .with_for_update()
            .one_or_none()
        )

    def _require_operator(self, slot: Slot, actor: User) -> None:
        if not (actor.is_admin or (slot.distributor_id and slot.distributor_id == actor.id)):
            raise NotFoundOrForbidden("Slot not found")

    def _require_party(self, slot: Slot, actor: User) -> None:
        if not (actor.is_admin or actor.id in (slot.user_id, slot.distributor_id)):
            raise NotFoundOrForbidden("Slot not found")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_for(self, slot_id: str, actor: User) -> Slot:
        slot = self.db.query(Slot).filter(Slot.id == slot_id).one_or_none()
        if slot is None:
            raise NotFoundOrForbidden("Slot not found")
        self._require_party(slot, actor)
        return slot

    def list_for(self, actor: User, status: SlotStatus | None = None, page: int = 1, limit: int = 20) -> tuple[list[Slot], int]:
        q = self.db.query(Slot)
        if actor.is_distributor:
            q = q.filter(Slot.distributor_id == actor.id)
        elif not actor.is_admin:
            q = q.filter(Slot.user_id == actor.id)
        if status is not None:
            q = q.filter(Slot.status == status.value)
        total = q.count()
        items = q.order_by(Slot.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return items, total

    def history(self, slot_id: str, actor: User) -> list[SlotHistoryLog]:
        slot = self.get_for(slot_id, actor)
        return (
            self.db.query(SlotHistoryLog)
            .filter(SlotHistoryLog.slot_id == slot.id)
            .order_by(SlotHistoryLog.created_at.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def approve(self, slot_id: str, actor: User) -> Slot:
        slot = self._lock(slot_id)
        self._require_operator(slot, actor)
        now = utcnow()
        record_transition(self.db, slot, SlotStatus.ACTIVE, actor.id, "approve")
        slot.processed_by = actor.id
        slot.processed_at = now
        slot.start_date = slot.start_date or now
        self.db.flush()
        return slot

    def _return_pending(self, slot: Slot, reason: str) -> int:
        pending = self._pending_balance(slot.id)
        if pending is None or pending.status != PendingBalanceStatus.PENDING.value:
            return 0
        self.ledger.return_split(
            slot.user_id,
            pending.free_amount,
            pending.paid_amount,
            TransactionType.RELEASE,
            description=reason,
            reference_id=slot.id,
        )
        pending.status = PendingBalanceStatus.RETURNED.value
        pending.processed_at = utcnow()
        self.db.flush()
        return pending.amount

    def reject(self, slot_id: str, actor: User, reason: str) -> Slot:
        if not (reason or "").strip():
            raise ValidationError("Rejection reason is required", field="reason")
        slot = self._lock(slot_id)
        self._require_operator(slot, actor)
        record_transition(self.db, slot, SlotStatus.REJECTED, actor.id, "reject", note=reason)
        slot.rejection_reason = reason
        slot.processed_by = actor.id
        slot.processed_at = utcnow()
        self._return_pending(slot, "Slot rejected")
        return slot

    def cancel(self, slot_id: str, actor: User) -> Slot:
        """Owner (or admin) withdraws a slot nobody has started working on yet."""
        slot = self._lock(slot_id)
        if not (actor.is_admin or slot.user_id == actor.id):
            raise NotFoundOrForbidden("Slot not found")
        if slot.status not in (SlotStatus.DRAFT.value, SlotStatus.PENDING.value):
            raise InvalidTransition("slot", slot.status, SlotStatus.CANCELLED.value)
        record_transition(self.db, slot, SlotStatus.CANCELLED, actor.id, "cancel")
        self._return_pending(slot, "Slot cancelled")
        return slot

    def pause(self, slot_id: str, actor: User) -> Slot:
        slot = self._lock(slot_id)
        self._require_party(slot, actor)
        record_transition(self.db, slot, SlotStatus.PAUSED, actor.id, "pause")
        return slot

    def resume(self, slot_id: str, actor: User) -> Slot:
        slot = self._lock(slot_id)
        self._require_party(slot, actor)
        record_transition(self.db, slot, SlotStatus.ACTIVE, actor.id, "resume")
        return slot

    def complete(self, slot_id: str, actor: User) -> Slot:
        """Finish the work and pay the earmarked funds out to the distributor."""
        slot = self._lock(slot_id)
        self._require_operator(slot, actor)
        record_transition(self.db, slot, SlotStatus.COMPLETED, actor.id, "complete")
        slot.end_date = utcnow()
        pending = self._pending_balance(slot.id)
        if pending is not None and pending.status == PendingBalanceStatus.PENDING.value:
            if slot.distributor_id:
                self.ledger.credit(
                    slot.distributor_id,
                    pending.amount,
                    BalanceType.PAID,
                    TransactionType.SETTLEMENT,
                    description="Slot completed",
                    reference_id=slot.id,
                )
            pending.status = PendingBalanceStatus.SETTLED.value
            pending.processed_at = utcnow()
        self.db.flush()
        return slot
