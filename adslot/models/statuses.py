"""
Closed status enums for every stateful entity, plus allowed slot transitions.
Any status not listed here is a modeling gap, not a value to accept silently.
"""
from enum import Enum


class UserRole(str, Enum):
    ADVERTISER = "advertiser"
    AGENCY = "agency"
    DISTRIBUTOR = "distributor"
    OPERATOR = "operator"
    DEVELOPER = "developer"

    @property
    def is_admin(self) -> bool:
        return self in (UserRole.OPERATOR, UserRole.DEVELOPER)


class TransactionType(str, Enum):
    CHARGE = "charge"
    BONUS = "bonus"
    PURCHASE = "purchase"
    REFUND = "refund"
    REFUND_DIFFERENCE = "refund_difference"
    SETTLEMENT = "settlement"
    RELEASE = "release"
    ADJUSTMENT = "adjustment"


class BalanceType(str, Enum):
    FREE = "free"
    PAID = "paid"
    MIXED = "mixed"


class ChargeRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SlotStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUND_PENDING = "refund_pending"
    REFUND_APPROVED = "refund_approved"
    REFUNDED = "refunded"


SLOT_TRANSITIONS: dict[SlotStatus, frozenset[SlotStatus]] = {
    SlotStatus.DRAFT: frozenset({SlotStatus.PENDING, SlotStatus.CANCELLED}),
    SlotStatus.PENDING: frozenset({SlotStatus.ACTIVE, SlotStatus.REJECTED, SlotStatus.CANCELLED}),
    SlotStatus.ACTIVE: frozenset({SlotStatus.PAUSED, SlotStatus.COMPLETED, SlotStatus.REFUND_PENDING}),
    SlotStatus.PAUSED: frozenset({SlotStatus.ACTIVE}),
    SlotStatus.REFUND_PENDING: frozenset({SlotStatus.REFUND_APPROVED, SlotStatus.ACTIVE}),
    SlotStatus.REFUND_APPROVED: frozenset({SlotStatus.REFUNDED}),
    SlotStatus.COMPLETED: frozenset(),
    SlotStatus.REJECTED: frozenset(),
    SlotStatus.CANCELLED: frozenset(),
    SlotStatus.REFUNDED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return SlotStatus(target) in SLOT_TRANSITIONS[SlotStatus(current)]


class PendingBalanceStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"
    RETURNED = "returned"
    REFUNDED = "refunded"


class GuaranteeRequestStatus(str, Enum):
    REQUESTED = "requested"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    PURCHASED = "purchased"


class NegotiationMessageType(str, Enum):
    MESSAGE = "message"
    PRICE_PROPOSAL = "price_proposal"
    COUNTER_OFFER = "counter_offer"
    ACCEPTANCE = "acceptance"
    RENEGOTIATION_REQUEST = "renegotiation_request"


class GuaranteeSlotStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"


class HoldingStatus(str, Enum):
    HOLDING = "holding"
    PARTIAL_RELEASED = "partial_released"
    COMPLETED = "completed"
    REFUNDED = "refunded"


class RefundStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_USER_CONFIRMATION = "pending_user_confirmation"


class RefundTiming(str, Enum):
    IMMEDIATE = "immediate"
    DELAYED = "delayed"
    CUTOFF_BASED = "cutoff_based"


class InquiryStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class InquiryPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class SenderRole(str, Enum):
    USER = "user"
    DISTRIBUTOR = "distributor"
    ADMIN = "admin"


class SearchType(str, Enum):
    SHOP = "shop"
    PLACE = "place"
