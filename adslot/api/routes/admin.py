"""
Admin API for operators and developers: cash settings and charge requests, refund sweep
(run or dry-run), search quotas, ledger reconciliation, audit trail.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from adslot.api.deps import page_of, require_admin
from adslot.db.session import get_db
from adslot.models.statuses import SearchType, UserRole
from adslot.models.user import User
from adslot.schemas.cash import CashSettingsIn, CashUserSettingsIn, ChargeRequestOut, RejectIn
from adslot.services.audit.service import AuditService
from adslot.services.cash.service import CashService
from adslot.services.cash.settings_service import CashSettingsService
from adslot.services.ledger.service import LedgerService
from adslot.services.refunds.service import RefundService
from adslot.services.search_limits.service import SearchLimitService

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


class RefundRunIn(BaseModel):
    now: datetime | None = None
    ignore_schedule: bool = False


class SearchLimitIn(BaseModel):
    user_role: UserRole
    search_type: SearchType = SearchType.SHOP
    daily_limit: int | None = Field(default=None, ge=0)
    monthly_limit: int | None = Field(default=None, ge=0)


# ---------- Cash settings ----------
@router.get("/cash/settings")
def cash_get_settings(db: Session = Depends(get_db)):
    result = CashSettingsService(db).as_dict()
    db.commit()
    return result


@router.put("/cash/settings")
def cash_update_settings(payload: CashSettingsIn, db: Session = Depends(get_db)):
    result = CashSettingsService(db).update(payload.model_dump(exclude_unset=True))
    db.commit()
    return result


@router.get("/cash/users/{user_id}/settings")
def cash_get_user_settings(user_id: str, db: Session = Depends(get_db)):
    svc = CashSettingsService(db)
    row = svc.get_user_settings(user_id)
    result = {
        "override": None if row is None else {
            "is_active": row.is_active,
            "min_request_amount": row.min_request_amount,
            "free_cash_percentage": row.free_cash_percentage,
            "expiry_months": row.expiry_months,
        },
        "effective": svc.effective_for(user_id),
    }
    db.commit()
    return result


@router.put("/cash/users/{user_id}/settings")
def cash_update_user_settings(user_id: str, payload: CashUserSettingsIn, db: Session = Depends(get_db)):
    svc = CashSettingsService(db)
    svc.update_user_settings(user_id, payload.model_dump(exclude_unset=True))
    result = svc.effective_for(user_id)
    db.commit()
    return result


# ---------- Charge requests ----------
@router.get("/cash/charge-requests")
def cash_list_charge_requests(
    status: str | None = None,
    user_id: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    items, total = CashService(db).list_requests(status=status, user_id=user_id, page=page, limit=limit)
    return page_of([ChargeRequestOut.model_validate(i) for i in items], total, page, limit)


@router.post("/cash/charge-requests/{request_id}/approve")
def cash_approve_charge(request_id: str, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    result = CashService(db).approve(request_id, admin)
    db.commit()
    return result


@router.post("/cash/charge-requests/{request_id}/reject", response_model=ChargeRequestOut)
def cash_reject_charge(
    request_id: str,
    payload: RejectIn,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    request = CashService(db).reject(request_id, admin, payload.reason)
    db.commit()
    db.refresh(request)
    return request


# ---------- Ledger ----------
@router.get("/ledger/{user_id}/reconcile")
def ledger_reconcile(user_id: str, db: Session = Depends(get_db)):
    return LedgerService(db).reconcile(user_id)


# ---------- Refunds ----------
@router.post("/refunds/process-scheduled")
def refunds_process_scheduled(payload: RefundRunIn, db: Session = Depends(get_db)):
    result = RefundService(db).process_scheduled_refunds(now=payload.now)
    db.commit()
    return result


@router.post("/refunds/simulate")
def refunds_simulate(payload: RefundRunIn, db: Session = Depends(get_db)):
    """Dry run of the sweep: the changes it would make, nothing written."""
    result = RefundService(db).simulate_refund_process(now=payload.now)
    db.rollback()
    return result


@router.post("/refunds/{refund_id}/process")
def refunds_process_single(refund_id: str, payload: RefundRunIn, db: Session = Depends(get_db)):
    result = RefundService(db).process_single_refund(refund_id, now=payload.now, ignore_schedule=payload.ignore_schedule)
    db.commit()
    return result


@router.post("/refunds/{refund_id}/simulate")
def refunds_simulate_single(refund_id: str, payload: RefundRunIn, db: Session = Depends(get_db)):
    result = RefundService(db).simulate_single_refund(refund_id, now=payload.now, ignore_schedule=payload.ignore_schedule)
    db.rollback()
    return result


# ---------- Search limits ----------
@router.get("/search-limits")
def search_limits_list(db: Session = Depends(get_db)):
    return [
        {
            "user_role": c.user_role,
            "search_type": c.search_type,
            "daily_limit": c.daily_limit,
            "monthly_limit": c.monthly_limit,
        }
        for c in SearchLimitService(db).list_configs()
    ]


@router.put("/search-limits")
def search_limits_upsert(payload: SearchLimitIn, db: Session = Depends(get_db)):
    row = SearchLimitService(db).upsert_config(
        payload.user_role, payload.search_type, payload.daily_limit, payload.monthly_limit,
    )
    db.commit()
    return {
        "user_role": row.user_role,
        "search_type": row.search_type,
        "daily_limit": row.daily_limit,
        "monthly_limit": row.monthly_limit,
    }


# ---------- Audit ----------
@router.get("/audit/{entity_type}/{entity_id}")
def audit_for_entity(entity_type: str, entity_id: str, db: Session = Depends(get_db)):
    return [
        {
            "id": a.id,
            "actor_type": a.actor_type,
            "actor_id": a.actor_id,
            "action": a.action,
            "payload": a.payload,
            "created_at": a.created_at,
        }
        for a in AuditService(db).list_for_entity(entity_type, entity_id)
    ]
