from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from adslot.api.deps import get_current_user, get_idempotency_store, page_of
from adslot.core.errors import Conflict
from adslot.db.session import get_db
from adslot.models.statuses import SlotStatus
from adslot.models.user import User
from adslot.schemas.slots import PurchaseIn, PurchaseOut, ReasonIn, SlotHistoryOut, SlotOut
from adslot.services.idempotency import IdempotencyStore, purchase_key
from adslot.services.purchase.service import SlotPurchaseService
from adslot.services.slots.service import SlotService


router = APIRouter(prefix="/slots", tags=["slots"])


@router.post("/purchase", response_model=PurchaseOut, status_code=201)
def purchase_slots(
    payload: PurchaseIn,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    store: IdempotencyStore = Depends(get_idempotency_store),
):
    """
    Buy one slot per keyword. A repeated Idempotency-Key returns the first result without charging again;
    while the first call is still running the repeat gets 409.
    """
    service = SlotPurchaseService(db)
    guard_key = purchase_key(user.id, idempotency_key) if idempotency_key else None
    if guard_key and not store.check_and_set(guard_key):
        previous = service.find_batch(user.id, idempotency_key)
        if previous is None:
            raise Conflict("A purchase with this key is in progress", idempotency_key=idempotency_key)
        return PurchaseOut(**{k: getattr(previous, k) for k in PurchaseOut.model_fields})
    try:
        result = service.purchase(
            user.id,
            payload.keyword_ids,
            payload.per_keyword_amount,
            campaign_id=payload.campaign_id,
            request_key=idempotency_key,
            is_auto_refund_candidate=payload.is_auto_refund_candidate,
            is_auto_continue=payload.is_auto_continue,
        )
        db.commit()
    except Exception:
        db.rollback()
        if guard_key:
            store.release(guard_key)
        raise
    return PurchaseOut(**{k: getattr(result, k) for k in PurchaseOut.model_fields})


@router.get("")
def list_slots(
    status: SlotStatus | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = SlotService(db).list_for(user, status=status, page=page, limit=limit)
    return page_of([SlotOut.model_validate(s) for s in items], total, page, limit)


@router.get("/{slot_id}", response_model=SlotOut)
def get_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return SlotService(db).get_for(slot_id, user)


@router.get("/{slot_id}/history", response_model=list[SlotHistoryOut])
def get_slot_history(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return SlotService(db).history(slot_id, user)


def _transition(db: Session, slot) -> SlotOut:
    db.commit()
    db.refresh(slot)
    return SlotOut.model_validate(slot)


@router.post("/{slot_id}/approve", response_model=SlotOut)
def approve_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _transition(db, SlotService(db).approve(slot_id, user))


@router.post("/{slot_id}/reject", response_model=SlotOut)
def reject_slot(
    slot_id: str,
    payload: ReasonIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _transition(db, SlotService(db).reject(slot_id, user, payload.reason))


@router.post("/{slot_id}/cancel", response_model=SlotOut)
def cancel_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _transition(db, SlotService(db).cancel(slot_id, user))


@router.post("/{slot_id}/pause", response_model=SlotOut)
def pause_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _transition(db, SlotService(db).pause(slot_id, user))


@router.post("/{slot_id}/resume", response_model=SlotOut)
def resume_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _transition(db, SlotService(db).resume(slot_id, user))


@router.post("/{slot_id}/complete", response_model=SlotOut)
def complete_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _transition(db, SlotService(db).complete(slot_id, user))
