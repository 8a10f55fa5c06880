"""
Guarantee slots: request, negotiate a price, buy, then daily rank settlements.
Paths: /guarantee/requests/... and /guarantee/slots/...
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from adslot.api.deps import get_current_user
from adslot.db.session import get_db
from adslot.models.statuses import GuaranteeRequestStatus, GuaranteeSlotStatus
from adslot.models.user import User
from adslot.schemas.guarantee import (
    AcceptIn,
    GuaranteeRequestIn,
    GuaranteeRequestOut,
    GuaranteeSlotOut,
    NegotiationIn,
    NegotiationOut,
    RankConfirmIn,
    SettlementOut,
)
from adslot.schemas.slots import ReasonIn
from adslot.services.guarantee.service import GuaranteeService


router = APIRouter(prefix="/guarantee", tags=["guarantee"])


# ---------- Requests ----------
@router.post("/requests", response_model=GuaranteeRequestOut, status_code=201)
def create_request(payload: GuaranteeRequestIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    request = GuaranteeService(db).create_request(user, payload.model_dump())
    db.commit()
    db.refresh(request)
    return request


@router.get("/requests", response_model=list[GuaranteeRequestOut])
def list_requests(
    status: GuaranteeRequestStatus | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return GuaranteeService(db).list_requests(user, status=status)


@router.get("/requests/{request_id}", response_model=GuaranteeRequestOut)
def get_request(request_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return GuaranteeService(db).get_request_for(request_id, user)


@router.get("/requests/{request_id}/negotiations", response_model=list[NegotiationOut])
def list_negotiations(request_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return GuaranteeService(db).list_negotiations(request_id, user)


@router.post("/requests/{request_id}/negotiations", response_model=NegotiationOut, status_code=201)
def send_negotiation(
    request_id: str,
    payload: NegotiationIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entry = GuaranteeService(db).send_negotiation(
        request_id,
        user,
        payload.message_type,
        message=payload.message,
        proposed_daily_amount=payload.proposed_daily_amount,
        proposed_guarantee_count=payload.proposed_guarantee_count,
        attachments=payload.attachments,
    )
    db.commit()
    db.refresh(entry)
    return entry


@router.post("/requests/{request_id}/negotiations/read")
def mark_negotiations_read(request_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    updated = GuaranteeService(db).mark_negotiations_read(request_id, user)
    db.commit()
    return {"updated": updated}


@router.post("/requests/{request_id}/accept", response_model=GuaranteeRequestOut)
def accept_request(
    request_id: str,
    payload: AcceptIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    request = GuaranteeService(db).accept(request_id, user, final_daily_amount=payload.final_daily_amount)
    db.commit()
    db.refresh(request)
    return request


@router.post("/requests/{request_id}/reject", response_model=GuaranteeRequestOut)
def reject_request(
    request_id: str,
    payload: ReasonIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    request = GuaranteeService(db).reject(request_id, user, reason=payload.reason)
    db.commit()
    db.refresh(request)
    return request


@router.post("/requests/{request_id}/purchase", response_model=GuaranteeSlotOut, status_code=201)
def purchase_request(request_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    slot = GuaranteeService(db).purchase(request_id, user)
    db.commit()
    db.refresh(slot)
    return slot


# ---------- Slots ----------
@router.get("/slots", response_model=list[GuaranteeSlotOut])
def list_slots(
    status: GuaranteeSlotStatus | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return GuaranteeService(db).list_slots(user, status=status)


@router.get("/slots/{slot_id}")
def get_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    svc = GuaranteeService(db)
    slot = svc.get_slot_for(slot_id, user)
    holding = svc.get_holding(slot.id)
    return {
        **GuaranteeSlotOut.model_validate(slot).model_dump(),
        "holding": None if holding is None else {
            "total_amount": holding.total_amount,
            "user_holding_amount": holding.user_holding_amount,
            "distributor_holding_amount": holding.distributor_holding_amount,
            "distributor_released_amount": holding.distributor_released_amount,
            "status": holding.status,
        },
    }


@router.get("/slots/{slot_id}/settlements", response_model=list[SettlementOut])
def list_settlements(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return GuaranteeService(db).list_settlements(slot_id, user)


@router.post("/slots/{slot_id}/settlements", response_model=SettlementOut, status_code=201)
def confirm_rank(
    slot_id: str,
    payload: RankConfirmIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    settlement = GuaranteeService(db).confirm_rank_achievement(
        slot_id, user, payload.achieved_rank, on_date=payload.confirmed_date, notes=payload.notes,
    )
    db.commit()
    db.refresh(settlement)
    return settlement


def _slot_out(db: Session, slot) -> GuaranteeSlotOut:
    db.commit()
    db.refresh(slot)
    return GuaranteeSlotOut.model_validate(slot)


@router.post("/slots/{slot_id}/approve", response_model=GuaranteeSlotOut)
def approve_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _slot_out(db, GuaranteeService(db).approve_slot(slot_id, user))


@router.post("/slots/{slot_id}/reject", response_model=GuaranteeSlotOut)
def reject_slot(
    slot_id: str,
    payload: ReasonIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _slot_out(db, GuaranteeService(db).reject_slot(slot_id, user, payload.reason))


@router.post("/slots/{slot_id}/complete", response_model=GuaranteeSlotOut)
def complete_slot(slot_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _slot_out(db, GuaranteeService(db).complete_slot(slot_id, user))


@router.post("/slots/{slot_id}/cancel", response_model=GuaranteeSlotOut)
def cancel_slot(
    slot_id: str,
    payload: ReasonIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _slot_out(db, GuaranteeService(db).cancel_slot(slot_id, user, reason=payload.reason))
