"""
Inquiry threads. Clients poll GET /inquiries/{id}/messages?since=<last created_at> every couple of seconds.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from adslot.api.deps import get_current_user, get_storage
from adslot.db.session import get_db
from adslot.models.statuses import InquiryStatus
from adslot.models.user import User
from adslot.schemas.inquiries import InquiryIn, InquiryOut, MarkReadIn, MessageIn, MessageOut, StatusIn
from adslot.services.inquiries.service import InquiryService
from adslot.storage.base import Storage


router = APIRouter(prefix="/inquiries", tags=["inquiries"])


@router.post("", response_model=InquiryOut, status_code=201)
def create_inquiry(payload: InquiryIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    inquiry = InquiryService(db).create_inquiry(
        user,
        payload.title,
        slot_id=payload.slot_id,
        guarantee_slot_id=payload.guarantee_slot_id,
        category=payload.category,
        priority=payload.priority,
        content=payload.content,
    )
    db.commit()
    db.refresh(inquiry)
    return inquiry


@router.get("", response_model=list[InquiryOut])
def list_inquiries(
    status: InquiryStatus | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return InquiryService(db).list_inquiries(user, status=status)


@router.get("/{inquiry_id}", response_model=InquiryOut)
def get_inquiry(inquiry_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return InquiryService(db).get_for(inquiry_id, user)


@router.patch("/{inquiry_id}/status", response_model=InquiryOut)
def update_status(
    inquiry_id: str,
    payload: StatusIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    inquiry = InquiryService(db).update_status(inquiry_id, user, payload.status)
    db.commit()
    db.refresh(inquiry)
    return inquiry


@router.get("/{inquiry_id}/messages")
def list_messages(
    inquiry_id: str,
    since: datetime | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    messages = InquiryService(db).list_messages(inquiry_id, user, since=since)
    return {"items": [MessageOut.model_validate(m) for m in messages]}


@router.post("/{inquiry_id}/messages", response_model=MessageOut, status_code=201)
def send_message(
    inquiry_id: str,
    payload: MessageIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    message = InquiryService(db).send_message(inquiry_id, user, payload.content, payload.attachments)
    db.commit()
    db.refresh(message)
    return message


@router.post("/{inquiry_id}/read")
def mark_read(
    inquiry_id: str,
    payload: MarkReadIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updated = InquiryService(db).mark_read(inquiry_id, user, payload.message_ids or None)
    db.commit()
    return {"updated": updated}


@router.get("/{inquiry_id}/unread")
def unread_count(inquiry_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"unread": InquiryService(db).unread_count(inquiry_id, user)}


@router.post("/{inquiry_id}/attachments", status_code=201)
async def upload_attachment(
    inquiry_id: str,
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Storage = Depends(get_storage),
):
    """Store a file; the returned descriptor goes into a message's attachments."""
    InquiryService(db).get_for(inquiry_id, user)
    content = await file.read()
    return storage.save_attachment(inquiry_id, file.filename or "file", content, file.content_type or "")


@router.get("/{inquiry_id}/attachments/{stored_name}")
def download_attachment(
    inquiry_id: str,
    stored_name: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: Storage = Depends(get_storage),
):
    InquiryService(db).get_for(inquiry_id, user)
    return Response(content=storage.open_attachment(inquiry_id, stored_name), media_type="application/octet-stream")
