"""Tests for InquiryService: participants, message ordering, read tracking."""
from datetime import datetime, timedelta, timezone

import pytest


@pytest.fixture
def slot_inquiry(db, active_slot):
    from adslot.services.inquiries.service import InquiryService

    advertiser, distributor, slot = active_slot()
    inquiry = InquiryService(db).create_inquiry(advertiser, "Ranking dropped", slot_id=slot.id, content="Please check")
    db.commit()
    return advertiser, distributor, inquiry


class TestNextTimestamp:
    def test_clock_ahead_is_used(self):
        from adslot.services.inquiries.service import next_timestamp

        last = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        now = last + timedelta(seconds=1)
        assert next_timestamp(now, last) == now

    def test_same_instant_is_bumped(self):
        from adslot.services.inquiries.service import TIE_BREAK, next_timestamp

        last = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert next_timestamp(last, last) == last + TIE_BREAK
        assert next_timestamp(last - timedelta(seconds=5), last.replace(tzinfo=None)) == last + TIE_BREAK


class TestInquiries:
    def test_distributor_taken_from_slot(self, slot_inquiry):
        advertiser, distributor, inquiry = slot_inquiry
        assert inquiry.distributor_id == distributor.id
        assert inquiry.status == "open"

    def test_foreign_slot_hidden(self, db, active_slot, make_user):
        from adslot.core.errors import NotFoundOrForbidden
        from adslot.services.inquiries.service import InquiryService

        _, _, slot = active_slot()
        with pytest.raises(NotFoundOrForbidden):
            InquiryService(db).create_inquiry(make_user(), "Not mine", slot_id=slot.id)

    def test_outsider_cannot_read(self, db, slot_inquiry, make_user):
        from adslot.core.errors import NotFoundOrForbidden
        from adslot.services.inquiries.service import InquiryService

        _, _, inquiry = slot_inquiry
        with pytest.raises(NotFoundOrForbidden):
            InquiryService(db).list_messages(inquiry.id, make_user())

    def test_admin_joins_any_thread(self, db, slot_inquiry, make_user):
        from adslot.models.statuses import UserRole
        from adslot.services.inquiries.service import InquiryService

        _, _, inquiry = slot_inquiry
        message = InquiryService(db).send_message(inquiry.id, make_user(UserRole.OPERATOR), "Looking into it")
        assert message.sender_role == "admin"

    def test_list_scoped_by_role(self, db, slot_inquiry, make_user):
        from adslot.models.statuses import UserRole
        from adslot.services.inquiries.service import InquiryService

        advertiser, distributor, inquiry = slot_inquiry
        svc = InquiryService(db)
        assert [i.id for i in svc.list_inquiries(distributor)] == [inquiry.id]
        assert svc.list_inquiries(make_user(UserRole.DISTRIBUTOR)) == []
        assert len(svc.list_inquiries(make_user(UserRole.DEVELOPER))) == 1


class TestMessages:
    def test_timestamps_strictly_increase(self, db, slot_inquiry):
        from adslot.services.inquiries.service import InquiryService
        from adslot.utils.time import as_utc

        advertiser, distributor, inquiry = slot_inquiry
        svc = InquiryService(db)
        for i in range(5):
            svc.send_message(inquiry.id, distributor if i % 2 else advertiser, f"msg {i}")
        stamps = [as_utc(m.created_at) for m in svc.list_messages(inquiry.id, advertiser)]
        assert len(stamps) == 6
        assert all(a < b for a, b in zip(stamps, stamps[1:]))

    def test_since_returns_only_newer(self, db, slot_inquiry):
        from adslot.services.inquiries.service import InquiryService

        advertiser, distributor, inquiry = slot_inquiry
        svc = InquiryService(db)
        first = svc.list_messages(inquiry.id, distributor)[0]
        reply = svc.send_message(inquiry.id, distributor, "On it")
        newer = svc.list_messages(inquiry.id, advertiser, since=first.created_at)
        assert [m.id for m in newer] == [reply.id]

    def test_distributor_reply_moves_to_in_progress(self, db, slot_inquiry):
        from adslot.services.inquiries.service import InquiryService

        _, distributor, inquiry = slot_inquiry
        InquiryService(db).send_message(inquiry.id, distributor, "Checking")
        assert inquiry.status == "in_progress"

    def test_closed_inquiry_rejects_messages(self, db, slot_inquiry):
        from adslot.core.errors import InvalidTransition
        from adslot.models.statuses import InquiryStatus
        from adslot.services.inquiries.service import InquiryService

        advertiser, _, inquiry = slot_inquiry
        svc = InquiryService(db)
        svc.update_status(inquiry.id, advertiser, InquiryStatus.CLOSED)
        with pytest.raises(InvalidTransition):
            svc.send_message(inquiry.id, advertiser, "hello?")

    def test_user_cannot_resolve(self, db, slot_inquiry):
        from adslot.core.errors import NotFoundOrForbidden
        from adslot.models.statuses import InquiryStatus
        from adslot.services.inquiries.service import InquiryService

        advertiser, distributor, inquiry = slot_inquiry
        svc = InquiryService(db)
        with pytest.raises(NotFoundOrForbidden):
            svc.update_status(inquiry.id, advertiser, InquiryStatus.RESOLVED)
        svc.update_status(inquiry.id, distributor, InquiryStatus.RESOLVED)
        assert inquiry.resolved_by == distributor.id

    def test_role_mismatch_rejected(self, db, slot_inquiry):
        from adslot.core.errors import ValidationError
        from adslot.models.statuses import SenderRole
        from adslot.services.inquiries.service import InquiryService

        advertiser, _, inquiry = slot_inquiry
        with pytest.raises(ValidationError):
            InquiryService(db).send_message(inquiry.id, advertiser, "hi", role=SenderRole.ADMIN)

    def test_empty_message_rejected(self, db, slot_inquiry):
        from adslot.core.errors import ValidationError
        from adslot.services.inquiries.service import InquiryService

        advertiser, _, inquiry = slot_inquiry
        with pytest.raises(ValidationError):
            InquiryService(db).send_message(inquiry.id, advertiser, "   ")

    def test_mark_read_counts_only_other_senders(self, db, slot_inquiry):
        from adslot.services.inquiries.service import InquiryService

        advertiser, distributor, inquiry = slot_inquiry
        svc = InquiryService(db)
        svc.send_message(inquiry.id, distributor, "reply 1")
        svc.send_message(inquiry.id, distributor, "reply 2")
        assert svc.unread_count(inquiry.id, advertiser) == 2
        assert svc.unread_count(inquiry.id, distributor) == 1

        assert svc.mark_read(inquiry.id, advertiser) == 2
        assert svc.unread_count(inquiry.id, advertiser) == 0
        assert svc.mark_read(inquiry.id, advertiser) == 0
