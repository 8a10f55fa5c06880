from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from adslot.api.deps import get_current_user
from adslot.db.session import get_db
from adslot.models.statuses import RefundStatus
from adslot.models.user import User
from adslot.schemas.refunds import RefundDecisionIn, RefundOut, RefundRequestIn
from adslot.services.refunds.service import RefundService


router = APIRouter(prefix="/refunds", tags=["refunds"])


@router.post("", response_model=RefundOut, status_code=201)
def request_refund(payload: RefundRequestIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    refund = RefundService(db).request_refund(
        user,
        payload.reason,
        slot_id=payload.slot_id,
        guarantee_slot_id=payload.guarantee_slot_id,
        amount=payload.amount,
    )
    db.commit()
    db.refresh(refund)
    return refund


@router.get("", response_model=list[RefundOut])
def list_refunds(
    status: RefundStatus | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return RefundService(db).list_for(user, status=status)


@router.get("/{refund_id}", response_model=RefundOut)
def get_refund(refund_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return RefundService(db).get_for(refund_id, user)


@router.post("/{refund_id}/confirm", response_model=RefundOut)
def confirm_refund(
    refund_id: str,
    payload: RefundDecisionIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Approve or reject. Approved refunds are paid out by the scheduled sweep, not here."""
    refund = RefundService(db).confirm_refund(
        refund_id,
        user,
        payload.approve,
        approved_amount=payload.approved_amount,
        notes=payload.notes,
        slot_id=payload.slot_id,
    )
    db.commit()
    db.refresh(refund)
    return refund
