"""
Campaign refund policy: whether a slot is refundable, how much, and when the payout is due.
Pure functions; no database access.
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any

from adslot.core.config import settings
from adslot.core.errors import ValidationError
from adslot.models.statuses import RefundTiming
from adslot.utils.time import as_utc


@dataclass(frozen=True)
class RefundPolicy:
    enabled: bool = True
    timing: RefundTiming = RefundTiming.DELAYED
    delay_days: int = 3
    cutoff_time: time | None = None
    min_usage_days: int = 0
    max_refund_days: int = 365
    partial_refund: bool = False
    requires_approval: bool = True

    @classmethod
    def from_campaign(cls, raw: dict[str, Any] | None) -> "RefundPolicy":
        """Build from campaigns.refund_settings; missing keys fall back to platform defaults."""
        raw = raw or {}
        rules = raw.get("refund_rules") or {}
        try:
            timing = RefundTiming(raw.get("type") or RefundTiming.DELAYED.value)
        except ValueError as exc:
            raise ValidationError("Unknown refund timing", value=raw.get("type")) from exc
        cutoff = None
        if raw.get("cutoff_time"):
            hours, minutes = (int(p) for p in str(raw["cutoff_time"]).split(":")[:2])
            cutoff = time(hours, minutes)
        delay_days = raw.get("delay_days")
        return cls(
            enabled=bool(raw.get("enabled", True)),
            timing=timing,
            delay_days=settings.refund_delay_days if delay_days is None else int(delay_days),
            cutoff_time=cutoff,
            min_usage_days=int(rules.get("min_usage_days", 0)),
            max_refund_days=int(rules.get("max_refund_days", 365)),
            partial_refund=bool(rules.get("partial_refund", False)),
            requires_approval=bool(raw.get("requires_approval", True)),
        )


@dataclass(frozen=True)
class RefundEstimate:
    refundable: bool
    amount: int
    original_amount: int
    used_days: int
    remaining_days: int
    message: str | None = None


def _day(value: datetime) -> date:
    return as_utc(value).date()


def estimate_refund(
    policy: RefundPolicy,
    original_amount: int,
    start: datetime | None,
    end: datetime | None,
    now: datetime,
) -> RefundEstimate:
    """How much of original_amount comes back if the refund is requested at `now`."""
    if not policy.enabled:
        return RefundEstimate(False, 0, original_amount, 0, 0, "Refunds are disabled for this campaign")
    if start is None or end is None:
        # Work period not scheduled yet: nothing has been used
        return RefundEstimate(True, original_amount, original_amount, 0, 0)

    start_day, end_day, today = _day(start), _day(end), _day(now)
    total_days = (end_day - start_day).days + 1
    if today < start_day:
        used_days, remaining_days = 0, total_days
    elif today > end_day:
        used_days, remaining_days = total_days, 0
    else:
        used_days = (today - start_day).days + 1
        remaining_days = (end_day - today).days

    if used_days < policy.min_usage_days:
        return RefundEstimate(False, 0, original_amount, used_days, remaining_days,
                              f"Refund available after {policy.min_usage_days} days of use")
    if used_days > policy.max_refund_days:
        return RefundEstimate(False, 0, original_amount, used_days, remaining_days,
                              f"Refund only available within {policy.max_refund_days} days of use")

    amount = original_amount
    if policy.partial_refund and total_days > 0:
        amount = math.ceil(original_amount * remaining_days / total_days)
    return RefundEstimate(amount > 0, amount, original_amount, used_days, remaining_days,
                          None if amount > 0 else "Nothing left to refund")


def payout_due_at(policy: RefundPolicy, approved_at: datetime) -> datetime:
    """When an approved refund may be paid out. Cutoff times are UTC."""
    approved_at = as_utc(approved_at)
    if policy.timing == RefundTiming.IMMEDIATE:
        return approved_at
    if policy.timing == RefundTiming.CUTOFF_BASED and policy.cutoff_time is not None:
        cutoff_today = datetime.combine(approved_at.date(), policy.cutoff_time, tzinfo=timezone.utc)
        if approved_at > cutoff_today:
            return cutoff_today + timedelta(days=1)
        return cutoff_today
    return approved_at + timedelta(days=policy.delay_days)
