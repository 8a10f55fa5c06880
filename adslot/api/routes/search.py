from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from adslot.api.deps import get_current_user
from adslot.db.session import get_db
from adslot.models.statuses import SearchType
from adslot.models.user import User
from adslot.services.search_limits.service import SearchLimitService


router = APIRouter(prefix="/search", tags=["search"])


class SearchIn(BaseModel):
    keyword: str = Field(min_length=1)
    search_type: SearchType = SearchType.SHOP


@router.get("/usage")
def search_usage(
    search_type: SearchType = SearchType.SHOP,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return SearchLimitService(db).usage(user, search_type)


@router.post("", status_code=201)
def record_search(payload: SearchIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Count one rank search against the caller's quota; 429 once the quota is used up."""
    svc = SearchLimitService(db)
    entry = svc.record_search(user, payload.search_type, payload.keyword)
    db.commit()
    return {"id": entry.id, **svc.usage(user, payload.search_type)}
