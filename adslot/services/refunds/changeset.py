"""
Refund payouts as data.

plan_slot_refund / plan_guarantee_refund compute the full list of writes a payout needs
without touching the session; apply_plan executes exactly that list. Simulation returns the
plan, processing applies it, so the two can never disagree.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from adslot.core.errors import TransactionFailure, ValidationError
from adslot.models.balance import UserBalance
from adslot.models.cash_history import CashHistory
from adslot.models.guarantee import GuaranteeSlot, GuaranteeSlotHolding
from adslot.models.refund import SlotRefundApproval
from adslot.models.slot import Slot, SlotHistoryLog, SlotPendingBalance
from adslot.models.statuses import (
    GuaranteeSlotStatus,
    HoldingStatus,
    PendingBalanceStatus,
    RefundStatus,
    SlotStatus,
    TransactionType,
)
from adslot.services.ledger.service import LedgerService, balance_type_for

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
NEW_RECORD = "NEW"

MODELS = {
    "user_cash_history": CashHistory,
    "slots": Slot,
    "slot_history_logs": SlotHistoryLog,
    "slot_pending_balances": SlotPendingBalance,
    "slot_refund_approvals": SlotRefundApproval,
    "guarantee_slots": GuaranteeSlot,
    "guarantee_slot_holdings": GuaranteeSlotHolding,
}


@dataclass(frozen=True)
class ChangeItem:
    table_name: str
    action: str  # INSERT, UPDATE
    record_id: str  # "NEW" for inserts
    changes: dict[str, Any]
    description: str


@dataclass
class BalanceSnapshot:
    user_id: str
    free_balance: int
    paid_balance: int


@dataclass
class RefundPlan:
    refund_id: str
    target_type: str
    target_id: str
    requester_id: str
    requester_credit: int
    distributor_id: str | None
    distributor_credit: int
    distributor_settlement: int = 0
    items: list[ChangeItem] = field(default_factory=list)

    @property
    def total_amount(self) -> int:
        return self.requester_credit + self.distributor_credit + self.distributor_settlement

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["total_amount"] = self.total_amount
        return data


def _transition(old: Any, new: Any) -> dict[str, Any]:
    return {"from": old, "to": new}


class _PlanBuilder:
    def __init__(self, refund: SlotRefundApproval, balances: dict[str, BalanceSnapshot], now: datetime):
        self.refund = refund
        self.balances = balances
        self.now = now
        self.items: list[ChangeItem] = []

    def credit_paid(self, user_id: str, amount: int, transaction_type: TransactionType, description: str) -> None:
        snap = self.balances[user_id]
        self.items.append(ChangeItem(
            "user_balances", UPDATE, user_id,
            {"paid_balance": _transition(snap.paid_balance, snap.paid_balance + amount)},
            f"{description}: +{amount} paid balance",
        ))
        snap.paid_balance += amount
        self.items.append(ChangeItem(
            "user_cash_history", INSERT, NEW_RECORD,
            {
                "user_id": user_id,
                "transaction_type": transaction_type.value,
                "amount": amount,
                "free_amount": 0,
                "paid_amount": amount,
                "balance_type": balance_type_for(0, amount).value,
                "description": description,
                "reference_id": self.refund.id,
            },
            f"{transaction_type.value} history entry",
        ))

    def update(self, table_name: str, record_id: str, changes: dict[str, Any], description: str) -> None:
        self.items.append(ChangeItem(table_name, UPDATE, record_id, changes, description))

    def insert(self, table_name: str, changes: dict[str, Any], description: str) -> None:
        self.items.append(ChangeItem(table_name, INSERT, NEW_RECORD, changes, description))

    def mark_processed(self) -> None:
        self.update(
            "slot_refund_approvals", self.refund.id,
            {"processed_at": _transition(None, self.now)},
            "Refund request marked processed",
        )


def _split_amounts(refund: SlotRefundApproval, distributor_id: str | None) -> tuple[int, int]:
    approved = refund.approved_amount if refund.approved_amount is not None else refund.refund_amount
    if approved > refund.refund_amount:
        raise ValidationError("Approved amount exceeds requested amount", refund_id=refund.id)
    difference = refund.refund_amount - approved
    if difference and not distributor_id:
        raise ValidationError("Partial refund needs a distributor to receive the difference", refund_id=refund.id)
    return approved, difference


def _check_approved(refund: SlotRefundApproval) -> None:
    if refund.status != RefundStatus.APPROVED.value or refund.processed_at is not None:
        raise ValidationError("Refund is not awaiting payout", refund_id=refund.id, status=refund.status)


def plan_slot_refund(
    refund: SlotRefundApproval,
    slot: Slot,
    pending: SlotPendingBalance | None,
    balances: dict[str, BalanceSnapshot],
    now: datetime,
) -> RefundPlan:
    _check_approved(refund)
    if slot.status != SlotStatus.REFUND_APPROVED.value:
        raise ValidationError("Slot is not awaiting a refund", slot_id=slot.id, status=slot.status)
    approved, difference = _split_amounts(refund, slot.distributor_id)
    # Part of the earmark the refund does not cover was used up and belongs to the distributor
    consumed = 0
    if pending is not None and pending.status == PendingBalanceStatus.PENDING.value:
        consumed = max(pending.amount - refund.refund_amount, 0)
    if consumed and not slot.distributor_id:
        raise ValidationError("Partial refund needs a distributor to receive the used amount", refund_id=refund.id)

    b = _PlanBuilder(refund, balances, now)
    b.credit_paid(refund.requester_id, approved, TransactionType.REFUND, "Slot refund")
    b.update("slots", slot.id, {"status": _transition(slot.status, SlotStatus.REFUNDED.value)}, "Slot marked refunded")
    b.insert("slot_history_logs", {
        "slot_id": slot.id,
        "user_id": refund.approver_id or refund.requester_id,
        "old_status": slot.status,
        "new_status": SlotStatus.REFUNDED.value,
        "action": "refund",
        "details": {"refund_id": refund.id, "approved_amount": approved, "difference": difference, "settled": consumed},
        "note": "refund paid out",
    }, "Slot history entry")
    if pending is not None and pending.status == PendingBalanceStatus.PENDING.value:
        b.update("slot_pending_balances", pending.id, {
            "status": _transition(pending.status, PendingBalanceStatus.REFUNDED.value),
            "processed_at": _transition(pending.processed_at, now),
        }, "Pending balance released as refund")
    if difference:
        b.credit_paid(slot.distributor_id, difference, TransactionType.REFUND_DIFFERENCE, "Refund difference")
    if consumed:
        b.credit_paid(slot.distributor_id, consumed, TransactionType.SETTLEMENT, "Used part of refunded slot")
    b.mark_processed()

    return RefundPlan(
        refund_id=refund.id,
        target_type="slot",
        target_id=slot.id,
        requester_id=refund.requester_id,
        requester_credit=approved,
        distributor_id=slot.distributor_id,
        distributor_credit=difference,
        distributor_settlement=consumed,
        items=b.items,
    )


def plan_guarantee_refund(
    refund: SlotRefundApproval,
    slot: GuaranteeSlot,
    holding: GuaranteeSlotHolding,
    balances: dict[str, BalanceSnapshot],
    now: datetime,
) -> RefundPlan:
    _check_approved(refund)
    if slot.status != GuaranteeSlotStatus.ACTIVE.value:
        raise ValidationError("Guarantee slot is not active", guarantee_slot_id=slot.id, status=slot.status)
    if holding.user_holding_amount < refund.refund_amount:
        raise ValidationError("Holding no longer covers the refund", guarantee_slot_id=slot.id)
    approved, difference = _split_amounts(refund, slot.distributor_id)

    b = _PlanBuilder(refund, balances, now)
    b.credit_paid(refund.requester_id, approved, TransactionType.REFUND, "Guarantee slot refund")
    if difference:
        b.credit_paid(slot.distributor_id, difference, TransactionType.REFUND_DIFFERENCE, "Refund difference")
    earned = holding.distributor_holding_amount
    if earned:
        b.credit_paid(slot.distributor_id, earned, TransactionType.SETTLEMENT, "Guarantee settlement on refund")
    b.update("guarantee_slot_holdings", holding.id, {
        "user_holding_amount": _transition(holding.user_holding_amount, holding.user_holding_amount - refund.refund_amount),
        "distributor_holding_amount": _transition(earned, 0),
        "distributor_released_amount": _transition(
            holding.distributor_released_amount, holding.distributor_released_amount + earned,
        ),
        "status": _transition(holding.status, HoldingStatus.REFUNDED.value),
    }, "Holding refunded")
    b.update("guarantee_slots", slot.id, {
        "status": _transition(slot.status, GuaranteeSlotStatus.CANCELLED.value),
        "cancellation_reason": _transition(slot.cancellation_reason, "refunded"),
    }, "Guarantee slot cancelled by refund")
    b.mark_processed()

    return RefundPlan(
        refund_id=refund.id,
        target_type="guarantee_slot",
        target_id=slot.id,
        requester_id=refund.requester_id,
        requester_credit=approved,
        distributor_id=slot.distributor_id,
        distributor_credit=difference,
        distributor_settlement=earned,
        items=b.items,
    )


def apply_plan(db: Session, plan: RefundPlan) -> None:
    """Execute every item of the plan. Any drift from the planned 'from' values aborts."""
    ledger = LedgerService(db)
    for item in plan.items:
        if item.table_name == "user_balances":
            _apply_balance(db, ledger, item)
        elif item.action == INSERT:
            db.add(MODELS[item.table_name](**item.changes))
        else:
            _apply_update(db, item)
    db.flush()
    logger.info(
        "refund_changeset_applied",
        extra={"refund_id": plan.refund_id, "amount": plan.total_amount},
    )


def _apply_balance(db: Session, ledger: LedgerService, item: ChangeItem) -> None:
    row = db.query(UserBalance).filter(UserBalance.user_id == item.record_id).with_for_update().one_or_none()
    current = {
        "free_balance": row.free_balance if row else 0,
        "paid_balance": row.paid_balance if row else 0,
    }
    deltas = {"free_balance": 0, "paid_balance": 0}
    for column, change in item.changes.items():
        if current[column] != change["from"]:
            raise TransactionFailure("Balance changed since the refund was planned", user_id=item.record_id)
        deltas[column] = change["to"] - change["from"]
    ledger.adjust_balance(item.record_id, deltas["free_balance"], deltas["paid_balance"])


def _apply_update(db: Session, item: ChangeItem) -> None:
    model = MODELS[item.table_name]
    row = db.query(model).filter(model.id == item.record_id).with_for_update().one_or_none()
    if row is None:
        raise TransactionFailure(f"{item.table_name} row disappeared", record_id=item.record_id)
    for column, change in item.changes.items():
        current = getattr(row, column)
        if not isinstance(change["from"], datetime) and current != change["from"]:
            raise TransactionFailure(
                f"{item.table_name}.{column} changed since the refund was planned", record_id=item.record_id,
            )
        setattr(row, column, change["to"])
