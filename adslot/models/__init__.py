"""Import every model so Base.metadata is complete (create_all, Alembic autogenerate)."""
from adslot.models.audit_log import AuditLog
from adslot.models.balance import UserBalance
from adslot.models.campaign import Campaign
from adslot.models.cash_history import CashHistory
from adslot.models.cash_settings import CashGlobalSettings, CashUserSettings
from adslot.models.charge_request import CashChargeRequest
from adslot.models.guarantee import (
    GuaranteeSlot,
    GuaranteeSlotHolding,
    GuaranteeSlotNegotiation,
    GuaranteeSlotRequest,
    GuaranteeSlotSettlement,
)
from adslot.models.inquiry import Inquiry, InquiryMessage
from adslot.models.keyword import Keyword, KeywordGroup
from adslot.models.refund import SlotRefundApproval
from adslot.models.search_limits import SearchLimitsConfig, SearchLog
from adslot.models.slot import Slot, SlotHistoryLog, SlotPendingBalance
from adslot.models.user import User

__all__ = [
    "AuditLog",
    "CashChargeRequest",
    "CashGlobalSettings",
    "CashHistory",
    "CashUserSettings",
    "Campaign",
    "GuaranteeSlot",
    "GuaranteeSlotHolding",
    "GuaranteeSlotNegotiation",
    "GuaranteeSlotRequest",
    "GuaranteeSlotSettlement",
    "Inquiry",
    "InquiryMessage",
    "Keyword",
    "KeywordGroup",
    "SearchLimitsConfig",
    "SearchLog",
    "Slot",
    "SlotHistoryLog",
    "SlotPendingBalance",
    "SlotRefundApproval",
    "User",
    "UserBalance",
]
