from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from adslot.api.deps import get_current_user, page_of
from adslot.db.session import get_db
from adslot.models.user import User
from adslot.schemas.cash import BalanceOut, CashHistoryOut, ChargeRequestIn, ChargeRequestOut
from adslot.services.cash.service import CashService
from adslot.services.cash.settings_service import CashSettingsService
from adslot.services.ledger.service import LedgerService


router = APIRouter(prefix="/cash", tags=["cash"])


@router.get("/balance", response_model=BalanceOut)
def get_balance(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return LedgerService(db).get_balance(user.id)


@router.get("/history")
def get_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = LedgerService(db).history(user.id, page=page, limit=limit)
    return page_of([CashHistoryOut.model_validate(i) for i in items], total, page, limit)


@router.get("/settings")
def get_charge_settings(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Bank account to transfer to, plus the bonus terms that apply to this user."""
    svc = CashSettingsService(db)
    glob = svc.as_dict()
    result = {
        "bank_name": glob["bank_name"],
        "account_number": glob["account_number"],
        "account_holder": glob["account_holder"],
        **svc.effective_for(user.id),
    }
    db.commit()
    return result


@router.post("/charge-requests", response_model=ChargeRequestOut, status_code=201)
def create_charge_request(
    payload: ChargeRequestIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    request = CashService(db).create_charge_request(user.id, payload.amount, payload.depositor_name)
    db.commit()
    db.refresh(request)
    return request


@router.get("/charge-requests")
def list_my_charge_requests(
    status: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = CashService(db).list_requests(status=status, user_id=user.id, page=page, limit=limit)
    return page_of([ChargeRequestOut.model_validate(i) for i in items], total, page, limit)
