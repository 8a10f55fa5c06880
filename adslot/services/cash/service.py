"""
Cash top-ups: a user files a charge request, an admin approves it after the bank transfer
arrives. Approval credits the paid balance and, above the minimum amount, a free bonus.
"""
import logging
from datetime import timedelta

from sqlalchemy.orm import Session

from adslot.core.errors import InvalidTransition, NotFoundOrForbidden, ValidationError
from adslot.models.charge_request import CashChargeRequest
from adslot.models.statuses import BalanceType, ChargeRequestStatus, TransactionType
from adslot.models.user import User
from adslot.services.audit.service import AuditService
from adslot.services.cash.settings_service import CashSettingsService
from adslot.services.ledger.service import LedgerService
from adslot.utils.time import utcnow

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30


def bonus_amount(amount: int, percentage: int) -> int:
    return amount * percentage // 100


class CashService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)
        self.settings = CashSettingsService(db)

    def create_charge_request(self, user_id: str, amount: int, depositor_name: str | None = None) -> CashChargeRequest:
        if amount <= 0:
            raise ValidationError("Charge amount must be positive", amount=amount)
        effective = self.settings.effective_for(user_id)
        percentage = effective["free_cash_percentage"] if amount >= effective["min_request_amount"] else 0
        request = CashChargeRequest(
            user_id=user_id,
            amount=amount,
            free_cash_percentage=percentage,
            depositor_name=depositor_name,
        )
        self.db.add(request)
        self.db.flush()
        logger.info("charge_request_created", extra={"user_id": user_id, "amount": amount})
        return request

    def _lock_request(self, request_id: str) -> CashChargeRequest:
        request = (
            self.db.query(CashChargeRequest)
            .filter(CashChargeRequest.id == request_id)
            .with_for_update()
            .one_or_none()
        )
        if request is None:
            raise NotFoundOrForbidden("Charge request not found")
        if request.status != ChargeRequestStatus.PENDING.value:
            raise InvalidTransition("charge_request", request.status, "processed")
        return request

    def approve(self, request_id: str, admin: User) -> dict:
        request = self._lock_request(request_id)
        now = utcnow()
        self.ledger.credit(
            request.user_id,
            request.amount,
            BalanceType.PAID,
            TransactionType.CHARGE,
            description="Cash charge",
            reference_id=request.id,
        )
        bonus = bonus_amount(request.amount, request.free_cash_percentage)
        if bonus > 0:
            expiry_months = self.settings.effective_for(request.user_id)["expiry_months"]
            self.ledger.credit(
                request.user_id,
                bonus,
                BalanceType.FREE,
                TransactionType.BONUS,
                description=f"Charge bonus {request.free_cash_percentage}%",
                reference_id=request.id,
                expired_at=now + timedelta(days=DAYS_PER_MONTH * expiry_months),
            )
        request.status = ChargeRequestStatus.APPROVED.value
        request.processed_by = admin.id
        request.processed_at = now
        self.db.flush()
        AuditService(self.db).record(
            admin, "charge_approved", "cash_charge_request", request.id,
            {"amount": request.amount, "bonus": bonus},
        )
        logger.info("charge_request_approved", extra={"user_id": request.user_id, "amount": request.amount})
        return {"request_id": request.id, "amount": request.amount, "bonus": bonus}

    def reject(self, request_id: str, admin: User, reason: str) -> CashChargeRequest:
        if not (reason or "").strip():
            raise ValidationError("Rejection reason is required")
        request = self._lock_request(request_id)
        request.status = ChargeRequestStatus.REJECTED.value
        request.rejection_reason = reason.strip()
        request.processed_by = admin.id
        request.processed_at = utcnow()
        self.db.flush()
        AuditService(self.db).record(
            admin, "charge_rejected", "cash_charge_request", request.id, {"reason": reason},
        )
        return request

    def list_requests(
        self,
        status: str | None = None,
        user_id: str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[CashChargeRequest], int]:
        q = self.db.query(CashChargeRequest)
        if status:
            q = q.filter(CashChargeRequest.status == ChargeRequestStatus(status).value)
        if user_id:
            q = q.filter(CashChargeRequest.user_id == user_id)
        total = q.count()
        items = q.order_by(CashChargeRequest.requested_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return items, total
