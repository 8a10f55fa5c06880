from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from adslot.api.deps import get_current_user, page_of
from adslot.db.session import get_db
from adslot.models.user import User
from adslot.schemas.keywords import (
    KeywordGroupIn,
    KeywordGroupOut,
    KeywordGroupUpdate,
    KeywordIn,
    KeywordOut,
    KeywordUpdate,
)
from adslot.services.keywords.service import KeywordService


router = APIRouter(prefix="/keywords", tags=["keywords"])


# ---------- Groups ----------
@router.get("/groups", response_model=list[KeywordGroupOut])
def list_groups(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return KeywordService(db).list_groups(user.id)


@router.post("/groups", response_model=KeywordGroupOut, status_code=201)
def create_group(payload: KeywordGroupIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    group = KeywordService(db).create_group(user.id, payload.model_dump())
    db.commit()
    db.refresh(group)
    return group


@router.patch("/groups/{group_id}", response_model=KeywordGroupOut)
def update_group(
    group_id: int,
    payload: KeywordGroupUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    group = KeywordService(db).update_group(user.id, group_id, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(group)
    return group


@router.delete("/groups/{group_id}", status_code=204)
def delete_group(group_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    KeywordService(db).delete_group(user.id, group_id)
    db.commit()


# ---------- Keywords ----------
@router.get("")
def list_keywords(
    group_id: int | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items, total = KeywordService(db).list_keywords(user.id, group_id=group_id, search=search, page=page, limit=limit)
    return page_of([KeywordOut.model_validate(k) for k in items], total, page, limit)


@router.post("/groups/{group_id}/keywords", response_model=KeywordOut, status_code=201)
def create_keyword(
    group_id: int,
    payload: KeywordIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    keyword = KeywordService(db).create_keyword(user.id, group_id, payload.model_dump())
    db.commit()
    db.refresh(keyword)
    return keyword


@router.post("/groups/{group_id}/keywords/bulk", response_model=list[KeywordOut], status_code=201)
def bulk_create_keywords(
    group_id: int,
    payload: list[KeywordIn],
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    created = KeywordService(db).bulk_create(user.id, group_id, [p.model_dump() for p in payload])
    db.commit()
    for keyword in created:
        db.refresh(keyword)
    return created


@router.patch("/{keyword_id}", response_model=KeywordOut)
def update_keyword(
    keyword_id: int,
    payload: KeywordUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    keyword = KeywordService(db).update_keyword(user.id, keyword_id, payload.model_dump(exclude_unset=True))
    db.commit()
    db.refresh(keyword)
    return keyword


@router.delete("/{keyword_id}", status_code=204)
def delete_keyword(keyword_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    KeywordService(db).delete_keyword(user.id, keyword_id)
    db.commit()
