"""Tests for RefundPolicy: campaign settings parsing, refundable amount, payout timing."""
from datetime import datetime, time, timedelta, timezone

import pytest

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestFromCampaign:
    def test_defaults(self):
        from adslot.models.statuses import RefundTiming
        from adslot.services.refunds.policy import RefundPolicy

        policy = RefundPolicy.from_campaign(None)
        assert policy.enabled is True
        assert policy.timing == RefundTiming.DELAYED
        assert policy.delay_days == 3
        assert policy.partial_refund is False

    def test_parses_rules_and_cutoff(self):
        from adslot.models.statuses import RefundTiming
        from adslot.services.refunds.policy import RefundPolicy

        policy = RefundPolicy.from_campaign({
            "type": "cutoff_based",
            "cutoff_time": "18:30",
            "refund_rules": {"min_usage_days": 2, "max_refund_days": 20, "partial_refund": True},
        })
        assert policy.timing == RefundTiming.CUTOFF_BASED
        assert policy.cutoff_time == time(18, 30)
        assert (policy.min_usage_days, policy.max_refund_days, policy.partial_refund) == (2, 20, True)

    def test_unknown_timing(self):
        from adslot.core.errors import ValidationError
        from adslot.services.refunds.policy import RefundPolicy

        with pytest.raises(ValidationError):
            RefundPolicy.from_campaign({"type": "someday"})


class TestEstimate:
    def test_no_dates_full_amount(self):
        from adslot.services.refunds.policy import RefundPolicy, estimate_refund

        estimate = estimate_refund(RefundPolicy(), 10000, None, None, NOW)
        assert estimate.refundable and estimate.amount == 10000

    def test_disabled(self):
        from adslot.services.refunds.policy import RefundPolicy, estimate_refund

        assert estimate_refund(RefundPolicy(enabled=False), 10000, None, None, NOW).refundable is False

    def test_partial_rounds_up(self):
        from adslot.services.refunds.policy import RefundPolicy, estimate_refund

        start = NOW - timedelta(days=2)
        end = NOW + timedelta(days=7)
        estimate = estimate_refund(RefundPolicy(partial_refund=True), 10000, start, end, NOW)
        assert (estimate.used_days, estimate.remaining_days) == (3, 7)
        assert estimate.amount == 7000

    def test_min_usage_not_reached(self):
        from adslot.services.refunds.policy import RefundPolicy, estimate_refund

        estimate = estimate_refund(RefundPolicy(min_usage_days=5), 10000, NOW, NOW + timedelta(days=9), NOW)
        assert estimate.refundable is False
        assert "5 days" in estimate.message

    def test_past_max_refund_days(self):
        from adslot.services.refunds.policy import RefundPolicy, estimate_refund

        start = NOW - timedelta(days=10)
        estimate = estimate_refund(RefundPolicy(max_refund_days=5), 10000, start, NOW + timedelta(days=1), NOW)
        assert estimate.refundable is False


class TestPayoutDueAt:
    def test_immediate(self):
        from adslot.models.statuses import RefundTiming
        from adslot.services.refunds.policy import RefundPolicy, payout_due_at

        assert payout_due_at(RefundPolicy(timing=RefundTiming.IMMEDIATE), NOW) == NOW

    def test_delayed(self):
        from adslot.services.refunds.policy import RefundPolicy, payout_due_at

        assert payout_due_at(RefundPolicy(delay_days=3), NOW) == NOW + timedelta(days=3)

    def test_cutoff_before_and_after(self):
        from adslot.models.statuses import RefundTiming
        from adslot.services.refunds.policy import RefundPolicy, payout_due_at

        policy = RefundPolicy(timing=RefundTiming.CUTOFF_BASED, cutoff_time=time(15, 0))
        assert payout_due_at(policy, NOW) == NOW.replace(hour=15)
        late = NOW.replace(hour=16)
        assert payout_due_at(policy, late) == (NOW + timedelta(days=1)).replace(hour=15)
