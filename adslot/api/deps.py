"""
Request dependencies. Authentication happens at the gateway, which forwards the caller's
user id in settings.auth_user_header; here we only resolve it to an active user.
"""
from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from adslot.core.config import settings
from adslot.db.session import get_db
from adslot.models.user import User
from adslot.services.idempotency import IdempotencyStore
from adslot.storage.base import Storage
from adslot.storage.local import LocalStorage


def get_current_user(
    x_user_id: str | None = Header(default=None, alias=settings.auth_user_header),
    db: Session = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = db.query(User).filter(User.id == x_user_id, User.is_active.is_(True)).one_or_none()
    if user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def get_idempotency_store() -> IdempotencyStore:
    return IdempotencyStore()


def get_storage() -> Storage:
    return LocalStorage()


def page_of(items: list, total: int, page: int, limit: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "pages": (total + limit - 1) // limit if limit else 0,
    }
