"""
Keyword slot purchase: one pending slot + history log + pending balance per keyword,
paid for by a single ledger debit, all inside one savepoint.
"""
import logging
from dataclasses import dataclass, field
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from adslot.core.config import settings
from adslot.core.errors import InsufficientFunds, NotFoundOrForbidden, TransactionFailure, ValidationError
from adslot.models.campaign import Campaign
from adslot.models.keyword import Keyword
from adslot.models.slot import Slot, SlotHistoryLog, SlotPendingBalance
from adslot.models.statuses import PendingBalanceStatus, SlotStatus, TransactionType
from adslot.services.keywords.service import KeywordService
from adslot.services.ledger.service import LedgerService
from adslot.utils.metrics import insufficient_funds_total, slots_purchased_total

logger = logging.getLogger(__name__)

SLOT_CREATED_NOTE = "slot created"


@dataclass
class PurchaseResult:
    batch_id: str
    slot_ids: list[str]
    total_amount: int
    free_used: int
    paid_used: int
    replayed: bool = False
    per_slot: list[dict] = field(default_factory=list)


def snapshot_keyword(keyword: Keyword, price: int, campaign: Campaign | None) -> dict:
    """Freeze the keyword and campaign parameters the slot was bought with."""
    return {
        "keyword_id": keyword.id,
        "main_keyword": keyword.main_keyword,
        "mid": keyword.mid,
        "url": keyword.url,
        "keyword1": keyword.keyword1,
        "keyword2": keyword.keyword2,
        "keyword3": keyword.keyword3,
        "keywords": [keyword.main_keyword, *keyword.sub_keywords],
        "description": keyword.description,
        "work_count": settings.slot_default_work_count,
        "due_days": settings.slot_default_due_days,
        "price": price,
        "campaign_name": campaign.campaign_name if campaign else None,
        "service_type": campaign.service_type if campaign else None,
    }


def allocate_free(free_used: int, count: int, price: int) -> list[tuple[int, int]]:
    """Attribute the batch's free portion to slots in order: earlier slots soak up free funds first."""
    parts = []
    remaining = free_used
    for _ in range(count):
        slot_free = min(remaining, price)
        remaining -= slot_free
        parts.append((slot_free, price - slot_free))
    return parts


class SlotPurchaseService:
    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)
        self.keywords = KeywordService(db)

    def _validate(self, keyword_ids: list[int], per_keyword_amount: int) -> None:
        if not keyword_ids:
            raise ValidationError("Select at least one keyword", field="keyword_ids")
        if len(set(keyword_ids)) != len(keyword_ids):
            raise ValidationError("Duplicate keyword ids", field="keyword_ids")
        if per_keyword_amount is None or per_keyword_amount <= 0:
            raise ValidationError("Amount per keyword must be positive", field="per_keyword_amount")

    def _campaign(self, campaign_id: int | None) -> Campaign | None:
        if campaign_id is None:
            return None
        campaign = (
            self.db.query(Campaign)
            .filter(Campaign.id == campaign_id, Campaign.is_active.is_(True))
            .one_or_none()
        )
        if campaign is None:
            raise NotFoundOrForbidden("Campaign not found")
        return campaign

    def find_batch(self, user_id: str, batch_id: str) -> PurchaseResult | None:
        entry = self.ledger.find_entry(user_id, TransactionType.PURCHASE, batch_id)
        if entry is None:
            return None
        slots = (
            self.db.query(Slot)
            .filter(Slot.user_id == user_id, Slot.batch_id == batch_id)
            .order_by(Slot.created_at.asc(), Slot.id.asc())
            .all()
        )
        return PurchaseResult(
            batch_id=batch_id,
            slot_ids=[s.id for s in slots],
            total_amount=-entry.amount,
            free_used=-entry.free_amount,
            paid_used=-entry.paid_amount,
            replayed=True,
        )

    def purchase(
        self,
        user_id: str,
        keyword_ids: list[int],
        per_keyword_amount: int,
        campaign_id: int | None = None,
        request_key: str | None = None,
        is_auto_refund_candidate: bool = False,
        is_auto_continue: bool = False,
    ) -> PurchaseResult:
        self._validate(keyword_ids, per_keyword_amount)

        if request_key:
            previous = self.find_batch(user_id, request_key)
            if previous is not None:
                logger.info("slot_purchase_replayed", extra={"user_id": user_id, "request_id": request_key})
                return previous

        keywords = self.keywords.owned_keywords(user_id, keyword_ids)
        campaign = self._campaign(campaign_id)

        total_amount = per_keyword_amount * len(keywords)
        available = self.ledger.get_balance(user_id)["total_balance"]
        if available < total_amount:
            insufficient_funds_total.inc()
            raise InsufficientFunds(required=total_amount, available=available)

        batch_id = request_key or str(uuid4())
        try:
            with self.db.begin_nested():
                slots, pendings = self._stage_slots(user_id, keywords, per_keyword_amount, campaign, batch_id,
                                                    is_auto_refund_candidate, is_auto_continue)
                debit = self.ledger.debit(
                    user_id,
                    total_amount,
                    TransactionType.PURCHASE,
                    description=f"Keyword slot purchase ({len(slots)} slots)",
                    reference_id=batch_id,
                )
                for pending, (free_part, paid_part) in zip(
                    pendings, allocate_free(debit.free_used, len(pendings), per_keyword_amount)
                ):
                    pending.free_amount = free_part
                    pending.paid_amount = paid_part
                self.db.flush()
        except IntegrityError as exc:
            logger.exception("slot_purchase_failed", extra={"user_id": user_id, "request_id": batch_id})
            raise TransactionFailure("Purchase could not be completed, nothing was charged") from exc

        slots_purchased_total.inc(len(slots))
        logger.info(
            "slot_purchase_done",
            extra={
                "user_id": user_id,
                "keyword_count": len(slots),
                "amount": total_amount,
                "free_used": debit.free_used,
                "paid_used": debit.paid_used,
            },
        )
        return PurchaseResult(
            batch_id=batch_id,
            slot_ids=[s.id for s in slots],
            total_amount=total_amount,
            free_used=debit.free_used,
            paid_used=debit.paid_used,
            per_slot=[
                {"slot_id": p.slot_id, "free_amount": p.free_amount, "paid_amount": p.paid_amount}
                for p in pendings
            ],
        )

    def _stage_slots(
        self,
        user_id: str,
        keywords: list[Keyword],
        price: int,
        campaign: Campaign | None,
        batch_id: str,
        is_auto_refund_candidate: bool,
        is_auto_continue: bool,
    ) -> tuple[list[Slot], list[SlotPendingBalance]]:
        slots, pendings = [], []
        for keyword in keywords:
            slot = Slot(
                id=str(uuid4()),
                user_id=user_id,
                campaign_id=campaign.id if campaign else None,
                distributor_id=campaign.distributor_id if campaign else None,
                keyword_id=keyword.id,
                batch_id=batch_id,
                status=SlotStatus.PENDING.value,
                input_data=snapshot_keyword(keyword, price, campaign),
                is_auto_refund_candidate=is_auto_refund_candidate,
                is_auto_continue=is_auto_continue,
            )
            self.db.add(slot)
            self.db.add(SlotHistoryLog(
                slot_id=slot.id,
                user_id=user_id,
                old_status=None,
                new_status=SlotStatus.PENDING.value,
                action="create",
                details={"price": price, "batch_id": batch_id},
                note=SLOT_CREATED_NOTE,
            ))
            pending = SlotPendingBalance(
                slot_id=slot.id,
                user_id=user_id,
                amount=price,
                status=PendingBalanceStatus.PENDING.value,
            )
            self.db.add(pending)
            slots.append(slot)
            pendings.append(pending)
        self.db.flush()
        return slots, pendings
