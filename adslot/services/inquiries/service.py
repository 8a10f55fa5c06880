"""
InquiryService: 1:1 support threads between an advertiser and the distributor of a slot,
with admins able to join any thread.

Message timestamps are assigned here, under the inquiry row lock, and strictly increase within
a thread so that clients polling with created_at > last_seen never miss or reorder a message.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from adslot.core.errors import InvalidTransition, NotFoundOrForbidden, ValidationError
from adslot.models.guarantee import GuaranteeSlot
from adslot.models.inquiry import Inquiry, InquiryMessage
from adslot.models.slot import Slot
from adslot.models.statuses import InquiryPriority, InquiryStatus, SenderRole
from adslot.models.user import User
from adslot.utils.metrics import inquiry_messages_total
from adslot.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

TIE_BREAK = timedelta(microseconds=1)


def next_timestamp(now: datetime, last: datetime | None) -> datetime:
    """Server clock, bumped past the thread's latest message when the clock has not moved."""
    now = as_utc(now)
    last = as_utc(last)
    if last is not None and now <= last:
        return last + TIE_BREAK
    return now


class InquiryService:
    def __init__(self, db: Session):
        self.db = db

    def _role_in(self, inquiry: Inquiry, actor: User) -> SenderRole:
        if actor.id == inquiry.user_id:
            return SenderRole.USER
        if inquiry.distributor_id and actor.id == inquiry.distributor_id:
            return SenderRole.DISTRIBUTOR
        if actor.is_admin:
            return SenderRole.ADMIN
        raise NotFoundOrForbidden("Inquiry not found")

    def _lock(self, inquiry_id: str) -> Inquiry:
        inquiry = self.db.query(Inquiry).filter(Inquiry.id == inquiry_id).with_for_update().one_or_none()
        if inquiry is None:
            raise NotFoundOrForbidden("Inquiry not found")
        return inquiry

    def get_for(self, inquiry_id: str, actor: User) -> Inquiry:
        inquiry = self.db.query(Inquiry).filter(Inquiry.id == inquiry_id).one_or_none()
        if inquiry is None:
            raise NotFoundOrForbidden("Inquiry not found")
        self._role_in(inquiry, actor)
        return inquiry

    # ------------------------------------------------------------------
    # Inquiries
    # ------------------------------------------------------------------

    def create_inquiry(
        self,
        user: User,
        title: str,
        slot_id: str | None = None,
        guarantee_slot_id: str | None = None,
        category: str | None = None,
        priority: InquiryPriority = InquiryPriority.NORMAL,
        content: str | None = None,
        attachments: list[dict] | None = None,
    ) -> Inquiry:
        if not (title or "").strip():
            raise ValidationError("Title is required", field="title")
        if slot_id and guarantee_slot_id:
            raise ValidationError("An inquiry is about one slot at most")

        distributor_id = campaign_id = None
        if slot_id:
            slot = self.db.query(Slot).filter(Slot.id == slot_id, Slot.user_id == user.id).one_or_none()
            if slot is None:
                raise NotFoundOrForbidden("Slot not found")
            distributor_id, campaign_id = slot.distributor_id, slot.campaign_id
        elif guarantee_slot_id:
            gslot = (
                self.db.query(GuaranteeSlot)
                .filter(GuaranteeSlot.id == guarantee_slot_id, GuaranteeSlot.user_id == user.id)
                .one_or_none()
            )
            if gslot is None:
                raise NotFoundOrForbidden("Guarantee slot not found")
            distributor_id, campaign_id = gslot.distributor_id, gslot.campaign_id

        inquiry = Inquiry(
            user_id=user.id,
            slot_id=slot_id,
            guarantee_slot_id=guarantee_slot_id,
            campaign_id=campaign_id,
            distributor_id=distributor_id,
            title=title.strip(),
            category=category,
            priority=priority.value,
            status=InquiryStatus.OPEN.value,
        )
        self.db.add(inquiry)
        self.db.flush()
        logger.info("inquiry_created", extra={"inquiry_id": inquiry.id, "user_id": user.id})

        if (content or "").strip() or attachments:
            self.send_message(inquiry.id, user, content or "", attachments)
        return inquiry

    def list_inquiries(self, actor: User, status: InquiryStatus | None = None) -> list[Inquiry]:
        q = self.db.query(Inquiry)
        if actor.is_distributor:
            q = q.filter(Inquiry.distributor_id == actor.id)
        elif not actor.is_admin:
            q = q.filter(Inquiry.user_id == actor.id)
        if status is not None:
            q = q.filter(Inquiry.status == status.value)
        return q.order_by(Inquiry.updated_at.desc()).all()

    def update_status(self, inquiry_id: str, actor: User, status: InquiryStatus) -> Inquiry:
        inquiry = self._lock(inquiry_id)
        role = self._role_in(inquiry, actor)
        if inquiry.status == InquiryStatus.CLOSED.value:
            raise InvalidTransition("inquiry", inquiry.status, status.value)
        if role == SenderRole.USER and status not in (InquiryStatus.CLOSED, InquiryStatus.OPEN):
            raise NotFoundOrForbidden("Inquiry not found")
        inquiry.status = status.value
        if status == InquiryStatus.RESOLVED:
            inquiry.resolved_at = utcnow()
            inquiry.resolved_by = actor.id
        self.db.flush()
        logger.info("inquiry_status_changed", extra={"inquiry_id": inquiry.id, "new_status": status.value})
        return inquiry

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def send_message(
        self,
        inquiry_id: str,
        sender: User,
        content: str,
        attachments: list[dict] | None = None,
        role: SenderRole | None = None,
    ) -> InquiryMessage:
        inquiry = self._lock(inquiry_id)
        actual_role = self._role_in(inquiry, sender)
        if role is not None and role != actual_role:
            raise ValidationError("Sender role does not match the sender", role=role.value)
        if inquiry.status == InquiryStatus.CLOSED.value:
            raise InvalidTransition("inquiry", inquiry.status, "message")
        content = (content or "").strip()
        if not content and not attachments:
            raise ValidationError("Message is empty", field="content")

        last = (
            self.db.query(func.max(InquiryMessage.created_at))
            .filter(InquiryMessage.inquiry_id == inquiry.id)
            .scalar()
        )
        message = InquiryMessage(
            inquiry_id=inquiry.id,
            sender_id=sender.id,
            sender_role=actual_role.value,
            content=content,
            attachments=attachments or [],
            created_at=next_timestamp(utcnow(), last),
        )
        self.db.add(message)
        if inquiry.status == InquiryStatus.OPEN.value and actual_role != SenderRole.USER:
            inquiry.status = InquiryStatus.IN_PROGRESS.value
        inquiry.updated_at = message.created_at
        self.db.flush()
        inquiry_messages_total.labels(sender_role=actual_role.value).inc()
        logger.info("inquiry_message_sent", extra={"inquiry_id": inquiry.id, "message_id": message.id})
        return message

    def list_messages(self, inquiry_id: str, viewer: User, since: datetime | None = None) -> list[InquiryMessage]:
        inquiry = self.get_for(inquiry_id, viewer)
        q = self.db.query(InquiryMessage).filter(InquiryMessage.inquiry_id == inquiry.id)
        if since is not None:
            q = q.filter(InquiryMessage.created_at > as_utc(since))
        return q.order_by(InquiryMessage.created_at.asc(), InquiryMessage.id.asc()).all()

    def mark_read(self, inquiry_id: str, viewer: User, message_ids: list[str] | None = None) -> int:
        """Mark messages written by anyone but the viewer as read."""
        inquiry = self.get_for(inquiry_id, viewer)
        q = self.db.query(InquiryMessage).filter(
            InquiryMessage.inquiry_id == inquiry.id,
            InquiryMessage.sender_id != viewer.id,
            InquiryMessage.is_read.is_(False),
        )
        if message_ids:
            q = q.filter(InquiryMessage.id.in_(message_ids))
        updated = q.update(
            {InquiryMessage.is_read: True, InquiryMessage.read_at: utcnow()},
            synchronize_session="fetch",
        )
        self.db.flush()
        return updated

    def unread_count(self, inquiry_id: str, viewer: User) -> int:
        inquiry = self.get_for(inquiry_id, viewer)
        return (
            self.db.query(InquiryMessage)
            .filter(
                InquiryMessage.inquiry_id == inquiry.id,
                InquiryMessage.sender_id != viewer.id,
                InquiryMessage.is_read.is_(False),
            )
            .count()
        )
