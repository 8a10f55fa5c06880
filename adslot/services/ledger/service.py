"""
LedgerService: two-pool user balance (free first, then paid) with an append-only cash history.

Every balance write is a row lock followed by a conditional UPDATE that re-checks the values
that were read, so a concurrent writer can never be overwritten silently. Callers own the
transaction: services flush, routes and tasks commit.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from adslot.core.errors import InsufficientFunds, TransactionFailure, ValidationError
from adslot.models.balance import UserBalance
from adslot.models.cash_history import CashHistory
from adslot.models.statuses import BalanceType, TransactionType
from adslot.utils.metrics import ledger_operations_total, insufficient_funds_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DebitResult:
    free_used: int
    paid_used: int
    history_id: str

    @property
    def total(self) -> int:
        return self.free_used + self.paid_used


def split_debit(free_balance: int, paid_balance: int, amount: int) -> tuple[int, int]:
    """Free balance is exhausted before paid: (min(F, A), A - min(F, A))."""
    if free_balance + paid_balance < amount:
        raise InsufficientFunds(required=amount, available=free_balance + paid_balance)
    free_used = min(free_balance, amount)
    return free_used, amount - free_used


def balance_type_for(free_amount: int, paid_amount: int) -> BalanceType:
    if free_amount and paid_amount:
        return BalanceType.MIXED
    if free_amount:
        return BalanceType.FREE
    return BalanceType.PAID


class LedgerService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_balance(self, user_id: str) -> dict:
        row = self.db.query(UserBalance).filter(UserBalance.user_id == user_id).one_or_none()
        free = row.free_balance if row else 0
        paid = row.paid_balance if row else 0
        return {"free_balance": free, "paid_balance": paid, "total_balance": free + paid}

    def history(self, user_id: str, page: int = 1, limit: int = 20) -> tuple[list[CashHistory], int]:
        q = self.db.query(CashHistory).filter(CashHistory.user_id == user_id)
        total = q.count()
        items = (
            q.order_by(CashHistory.created_at.desc(), CashHistory.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    def find_entry(self, user_id: str, transaction_type: TransactionType, reference_id: str) -> CashHistory | None:
        return (
            self.db.query(CashHistory)
            .filter(
                CashHistory.user_id == user_id,
                CashHistory.transaction_type == transaction_type.value,
                CashHistory.reference_id == reference_id,
            )
            .one_or_none()
        )

    def reconcile(self, user_id: str) -> dict:
        """Compare current balances with the sum of history splits."""
        free_sum, paid_sum = (
            self.db.query(
                func.coalesce(func.sum(CashHistory.free_amount), 0),
                func.coalesce(func.sum(CashHistory.paid_amount), 0),
            )
            .filter(CashHistory.user_id == user_id)
            .one()
        )
        balance = self.get_balance(user_id)
        consistent = balance["free_balance"] == free_sum and balance["paid_balance"] == paid_sum
        if not consistent:
            logger.warning(
                "ledger_reconcile_mismatch",
                extra={"user_id": user_id, "amount": balance["total_balance"] - (free_sum + paid_sum)},
            )
        return {
            **balance,
            "history_free": int(free_sum),
            "history_paid": int(paid_sum),
            "consistent": consistent,
        }

    # ------------------------------------------------------------------
    # Low-level primitives (also used by refund changeset application)
    # ------------------------------------------------------------------

    def _lock(self, user_id: str) -> UserBalance:
        row = (
            self.db.query(UserBalance)
            .filter(UserBalance.user_id == user_id)
            .with_for_update()
            .one_or_none()
        )
        if row is None:
            row = UserBalance(user_id=user_id, free_balance=0, paid_balance=0)
            self.db.add(row)
            self.db.flush()
        return row

    def adjust_balance(self, user_id: str, free_delta: int, paid_delta: int) -> UserBalance:
        """Apply signed deltas atomically. Fails without writing if either pool would go negative."""
        row = self._lock(user_id)
        seen_free, seen_paid = row.free_balance, row.paid_balance
        if seen_free + free_delta < 0 or seen_paid + paid_delta < 0:
            required = -(min(free_delta, 0) + min(paid_delta, 0))
            raise InsufficientFunds(required=required, available=seen_free + seen_paid)

        result = self.db.execute(
            update(UserBalance)
            .where(
                UserBalance.user_id == user_id,
                UserBalance.free_balance == seen_free,
                UserBalance.paid_balance == seen_paid,
            )
            .values(
                free_balance=UserBalance.free_balance + free_delta,
                paid_balance=UserBalance.paid_balance + paid_delta,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning("ledger_conflicting_write", extra={"user_id": user_id})
            raise TransactionFailure("Balance changed concurrently, please retry", user_id=user_id)
        self.db.refresh(row)
        return row

    def record_history(
        self,
        user_id: str,
        transaction_type: TransactionType,
        free_amount: int,
        paid_amount: int,
        description: str | None = None,
        reference_id: str | None = None,
        expired_at: datetime | None = None,
    ) -> CashHistory:
        entry = CashHistory(
            user_id=user_id,
            transaction_type=transaction_type.value,
            amount=free_amount + paid_amount,
            free_amount=free_amount,
            paid_amount=paid_amount,
            balance_type=balance_type_for(free_amount, paid_amount).value,
            description=description,
            reference_id=reference_id,
            expired_at=expired_at,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    # ------------------------------------------------------------------
    # Debit / credit
    # ------------------------------------------------------------------

    def debit(
        self,
        user_id: str,
        amount: int,
        transaction_type: TransactionType = TransactionType.PURCHASE,
        description: str | None = None,
        reference_id: str | None = None,
    ) -> DebitResult:
        """Deduct free first, then paid. All-or-nothing; one history entry."""
        if amount <= 0:
            raise ValidationError("Debit amount must be positive", amount=amount)
        row = self._lock(user_id)
        try:
            free_used, paid_used = split_debit(row.free_balance, row.paid_balance, amount)
        except InsufficientFunds:
            insufficient_funds_total.inc()
            raise
        self.adjust_balance(user_id, -free_used, -paid_used)
        entry = self.record_history(
            user_id,
            transaction_type,
            free_amount=-free_used,
            paid_amount=-paid_used,
            description=description,
            reference_id=reference_id,
        )
        ledger_operations_total.labels(operation="debit", transaction_type=transaction_type.value).inc()
        logger.info(
            "ledger_debit",
            extra={
                "user_id": user_id,
                "amount": amount,
                "free_used": free_used,
                "paid_used": paid_used,
                "transaction_type": transaction_type.value,
            },
        )
        return DebitResult(free_used=free_used, paid_used=paid_used, history_id=entry.id)

    def credit(
        self,
        user_id: str,
        amount: int,
        balance_type: BalanceType,
        transaction_type: TransactionType,
        description: str | None = None,
        reference_id: str | None = None,
        expired_at: datetime | None = None,
    ) -> CashHistory:
        if amount <= 0:
            raise ValidationError("Credit amount must be positive", amount=amount)
        if balance_type == BalanceType.MIXED:
            raise ValidationError("Credit must target the free or the paid balance")
        free_delta = amount if balance_type == BalanceType.FREE else 0
        paid_delta = amount - free_delta
        self.adjust_balance(user_id, free_delta, paid_delta)
        entry = self.record_history(
            user_id,
            transaction_type,
            free_amount=free_delta,
            paid_amount=paid_delta,
            description=description,
            reference_id=reference_id,
            expired_at=expired_at,
        )
        ledger_operations_total.labels(operation="credit", transaction_type=transaction_type.value).inc()
        logger.info(
            "ledger_credit",
            extra={"user_id": user_id, "amount": amount, "transaction_type": transaction_type.value},
        )
        return entry

    def return_split(
        self,
        user_id: str,
        free_amount: int,
        paid_amount: int,
        transaction_type: TransactionType,
        description: str | None = None,
        reference_id: str | None = None,
    ) -> CashHistory:
        """Give back money to the pools it was originally taken from."""
        if free_amount < 0 or paid_amount < 0 or free_amount + paid_amount == 0:
            raise ValidationError("Returned amounts must be non-negative and not both zero")
        self.adjust_balance(user_id, free_amount, paid_amount)
        return self.record_history(
            user_id,
            transaction_type,
            free_amount=free_amount,
            paid_amount=paid_amount,
            description=description,
            reference_id=reference_id,
        )
