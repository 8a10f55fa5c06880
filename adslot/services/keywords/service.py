"""Keyword groups and keywords. Every read and write is scoped to the owning user."""
import logging
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from adslot.core.errors import NotFoundOrForbidden, ValidationError
from adslot.models.keyword import Keyword, KeywordGroup

logger = logging.getLogger(__name__)

KEYWORD_FIELDS = ("main_keyword", "mid", "url", "keyword1", "keyword2", "keyword3", "description", "is_active")
GROUP_FIELDS = ("name", "campaign_name", "campaign_type", "is_default")


class KeywordService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def list_groups(self, user_id: str) -> list[KeywordGroup]:
        return (
            self.db.query(KeywordGroup)
            .filter(KeywordGroup.user_id == user_id)
            .order_by(KeywordGroup.is_default.desc(), KeywordGroup.created_at.asc())
            .all()
        )

    def get_group(self, user_id: str, group_id: int) -> KeywordGroup:
        group = (
            self.db.query(KeywordGroup)
            .filter(KeywordGroup.id == group_id, KeywordGroup.user_id == user_id)
            .one_or_none()
        )
        if group is None:
            raise NotFoundOrForbidden("Keyword group not found")
        return group

    def _clear_default(self, user_id: str, keep_id: int | None = None) -> None:
        q = self.db.query(KeywordGroup).filter(KeywordGroup.user_id == user_id, KeywordGroup.is_default.is_(True))
        if keep_id is not None:
            q = q.filter(KeywordGroup.id != keep_id)
        q.update({KeywordGroup.is_default: False}, synchronize_session="fetch")

    def create_group(self, user_id: str, data: dict[str, Any]) -> KeywordGroup:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("Group name is required", field="name")
        if data.get("is_default"):
            self._clear_default(user_id)
        group = KeywordGroup(
            user_id=user_id,
            name=name,
            campaign_name=data.get("campaign_name"),
            campaign_type=data.get("campaign_type"),
            is_default=bool(data.get("is_default")),
        )
        self.db.add(group)
        self.db.flush()
        return group

    def update_group(self, user_id: str, group_id: int, data: dict[str, Any]) -> KeywordGroup:
        group = self.get_group(user_id, group_id)
        if "name" in data and not (data["name"] or "").strip():
            raise ValidationError("Group name is required", field="name")
        if data.get("is_default"):
            self._clear_default(user_id, keep_id=group.id)
        for key in GROUP_FIELDS:
            if key in data:
                setattr(group, key, data[key])
        self.db.flush()
        return group

    def delete_group(self, user_id: str, group_id: int) -> None:
        group = self.get_group(user_id, group_id)
        self.db.query(Keyword).filter(Keyword.group_id == group.id).delete(synchronize_session=False)
        self.db.delete(group)
        self.db.flush()
        logger.info("keyword_group_deleted", extra={"user_id": user_id})

    # ------------------------------------------------------------------
    # Keywords
    # ------------------------------------------------------------------

    def _owned_query(self, user_id: str):
        return (
            self.db.query(Keyword)
            .join(KeywordGroup, KeywordGroup.id == Keyword.group_id)
            .filter(KeywordGroup.user_id == user_id)
        )

    def get_keyword(self, user_id: str, keyword_id: int) -> Keyword:
        keyword = self._owned_query(user_id).filter(Keyword.id == keyword_id).one_or_none()
        if keyword is None:
            raise NotFoundOrForbidden("Keyword not found")
        return keyword

    def owned_keywords(self, user_id: str, keyword_ids: list[int]) -> list[Keyword]:
        """Keywords in the order requested. Any missing or foreign id fails the whole lookup."""
        rows = self._owned_query(user_id).filter(Keyword.id.in_(keyword_ids)).all()
        by_id = {k.id: k for k in rows}
        if len(by_id) != len(set(keyword_ids)):
            raise NotFoundOrForbidden("Some keywords were not found or are not accessible")
        return [by_id[kid] for kid in keyword_ids]

    def list_keywords(
        self,
        user_id: str,
        group_id: int | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[Keyword], int]:
        q = self._owned_query(user_id)
        if group_id is not None:
            q = q.filter(Keyword.group_id == group_id)
        if search:
            like = f"%{search}%"
            q = q.filter(or_(Keyword.main_keyword.ilike(like), Keyword.url.ilike(like), Keyword.mid.ilike(like)))
        total = q.count()
        items = q.order_by(Keyword.id.asc()).offset((page - 1) * limit).limit(limit).all()
        return items, total

    def create_keyword(self, user_id: str, group_id: int, data: dict[str, Any]) -> Keyword:
        group = self.get_group(user_id, group_id)
        main_keyword = (data.get("main_keyword") or "").strip()
        if not main_keyword:
            raise ValidationError("main_keyword is required", field="main_keyword")
        keyword = Keyword(group_id=group.id, main_keyword=main_keyword)
        for key in KEYWORD_FIELDS:
            if key != "main_keyword" and key in data:
                setattr(keyword, key, data[key])
        self.db.add(keyword)
        self.db.flush()
        return keyword

    def bulk_create(self, user_id: str, group_id: int, items: list[dict[str, Any]]) -> list[Keyword]:
        if not items:
            raise ValidationError("No keywords to create")
        with self.db.begin_nested():
            created = [self.create_keyword(user_id, group_id, item) for item in items]
        return created

    def update_keyword(self, user_id: str, keyword_id: int, data: dict[str, Any]) -> Keyword:
        keyword = self.get_keyword(user_id, keyword_id)
        if "main_keyword" in data and not (data["main_keyword"] or "").strip():
            raise ValidationError("main_keyword is required", field="main_keyword")
        if "group_id" in data and data["group_id"] != keyword.group_id:
            keyword.group_id = self.get_group(user_id, data["group_id"]).id
        for key in KEYWORD_FIELDS:
            if key in data:
                setattr(keyword, key, data[key])
        self.db.flush()
        return keyword

    def delete_keyword(self, user_id: str, keyword_id: int) -> None:
        keyword = self.get_keyword(user_id, keyword_id)
        self.db.delete(keyword)
        self.db.flush()
