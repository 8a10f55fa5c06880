"""Tests for KeywordService: groups, keywords, ownership scoping."""
import pytest


class TestGroups:
    def test_single_default_group(self, db, make_user):
        from adslot.services.keywords.service import KeywordService

        user = make_user()
        svc = KeywordService(db)
        first = svc.create_group(user.id, {"name": "Main", "is_default": True})
        second = svc.create_group(user.id, {"name": "Summer", "is_default": True})
        db.refresh(first)
        assert first.is_default is False
        assert second.is_default is True
        assert [g.name for g in svc.list_groups(user.id)] == ["Summer", "Main"]

    def test_name_required(self, db, make_user):
        from adslot.core.errors import ValidationError
        from adslot.services.keywords.service import KeywordService

        with pytest.raises(ValidationError):
            KeywordService(db).create_group(make_user().id, {"name": "  "})

    def test_delete_group_removes_keywords(self, db, make_user):
        from adslot.models.keyword import Keyword
        from adslot.services.keywords.service import KeywordService

        user = make_user()
        svc = KeywordService(db)
        group = svc.create_group(user.id, {"name": "Main"})
        svc.create_keyword(user.id, group.id, {"main_keyword": "shoes"})
        svc.delete_group(user.id, group.id)
        assert db.query(Keyword).count() == 0


class TestKeywords:
    def test_other_users_group_hidden(self, db, make_user):
        from adslot.core.errors import NotFoundOrForbidden
        from adslot.services.keywords.service import KeywordService

        owner, other = make_user(), make_user()
        svc = KeywordService(db)
        group = svc.create_group(owner.id, {"name": "Main"})
        with pytest.raises(NotFoundOrForbidden):
            svc.create_keyword(other.id, group.id, {"main_keyword": "shoes"})

    def test_search_and_paging(self, db, make_user):
        from adslot.services.keywords.service import KeywordService

        user = make_user()
        svc = KeywordService(db)
        group = svc.create_group(user.id, {"name": "Main"})
        svc.bulk_create(user.id, group.id, [
            {"main_keyword": "running shoes"},
            {"main_keyword": "trail shoes"},
            {"main_keyword": "hats"},
        ])
        items, total = svc.list_keywords(user.id, search="shoes", limit=1)
        assert total == 2
        assert len(items) == 1

    def test_bulk_create_all_or_nothing(self, db, make_user):
        from adslot.core.errors import ValidationError
        from adslot.models.keyword import Keyword
        from adslot.services.keywords.service import KeywordService

        user = make_user()
        svc = KeywordService(db)
        group = svc.create_group(user.id, {"name": "Main"})
        with pytest.raises(ValidationError):
            svc.bulk_create(user.id, group.id, [{"main_keyword": "ok"}, {"main_keyword": ""}])
        assert db.query(Keyword).count() == 0

    def test_update_moves_between_own_groups(self, db, make_user):
        from adslot.services.keywords.service import KeywordService

        user = make_user()
        svc = KeywordService(db)
        a = svc.create_group(user.id, {"name": "A"})
        b = svc.create_group(user.id, {"name": "B"})
        keyword = svc.create_keyword(user.id, a.id, {"main_keyword": "shoes"})
        updated = svc.update_keyword(user.id, keyword.id, {"group_id": b.id, "url": "https://x.example"})
        assert updated.group_id == b.id
        assert updated.url == "https://x.example"

    def test_owned_keywords_keeps_order(self, db, make_user, make_keywords):
        from adslot.services.keywords.service import KeywordService

        user = make_user()
        first, second = make_keywords(user, "one", "two")
        result = KeywordService(db).owned_keywords(user.id, [second.id, first.id])
        assert [k.main_keyword for k in result] == ["two", "one"]
