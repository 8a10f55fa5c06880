"""Pytest configuration and fixtures: in-memory SQLite with working SAVEPOINTs, API client, factories."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")

from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import adslot.models  # noqa: F401  registers every table on Base.metadata
from adslot.db.base import Base


def _sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN itself
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


@pytest.fixture(scope="function")
def db() -> Session:
    engine = _sqlite_engine()
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSession()
    try:
        yield session
        session.rollback()
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


class FakeIdempotencyStore:
    """In-process stand-in for the Redis-backed IdempotencyStore."""

    def __init__(self):
        self.keys: set[str] = set()

    def check_and_set(self, key: str, ttl_seconds: int | None = None) -> bool:
        if key in self.keys:
            return False
        self.keys.add(key)
        return True

    def release(self, key: str) -> None:
        self.keys.discard(key)


@pytest.fixture
def idempotency_store():
    return FakeIdempotencyStore()


@pytest.fixture
def client(db, idempotency_store, tmp_path):
    from adslot.api.deps import get_idempotency_store, get_storage
    from adslot.db.session import get_db
    from adslot.main import app
    from adslot.storage.local import LocalStorage

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_idempotency_store] = lambda: idempotency_store
    app.dependency_overrides[get_storage] = lambda: LocalStorage(root=str(tmp_path))
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ---------- Factories ----------
@pytest.fixture
def make_user(db):
    from adslot.models.statuses import UserRole
    from adslot.models.user import User

    def _make(role: UserRole = UserRole.ADVERTISER, **kwargs):
        user = User(
            id=kwargs.pop("id", str(uuid4())),
            email=kwargs.pop("email", f"{uuid4().hex[:10]}@example.com"),
            role=role.value,
            **kwargs,
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def fund(db):
    """Top up a user through the ledger so balances and history stay reconciled."""
    from adslot.models.statuses import BalanceType, TransactionType
    from adslot.services.ledger.service import LedgerService

    def _fund(user, free: int = 0, paid: int = 0):
        ledger = LedgerService(db)
        if free:
            ledger.credit(user.id, free, BalanceType.FREE, TransactionType.BONUS, description="test bonus")
        if paid:
            ledger.credit(user.id, paid, BalanceType.PAID, TransactionType.CHARGE, description="test charge")
        db.commit()

    return _fund


@pytest.fixture
def make_campaign(db):
    from adslot.models.campaign import Campaign

    def _make(distributor, **kwargs):
        campaign = Campaign(
            campaign_name=kwargs.pop("campaign_name", "Shopping traffic"),
            service_type=kwargs.pop("service_type", "shop_traffic"),
            distributor_id=distributor.id,
            unit_price=kwargs.pop("unit_price", 10000),
            **kwargs,
        )
        db.add(campaign)
        db.commit()
        return campaign

    return _make


@pytest.fixture
def make_keywords(db):
    from adslot.models.keyword import Keyword, KeywordGroup

    def _make(user, *names: str):
        group = KeywordGroup(user_id=user.id, name="default", is_default=True)
        db.add(group)
        db.flush()
        keywords = [
            Keyword(group_id=group.id, main_keyword=name, mid=f"mid-{i}", url=f"https://shop.example.com/{i}")
            for i, name in enumerate(names)
        ]
        db.add_all(keywords)
        db.commit()
        return keywords

    return _make


@pytest.fixture
def active_slot(db, make_user, make_campaign, make_keywords, fund):
    """An advertiser with one active 10000 slot bought with paid balance, plus its distributor."""
    from adslot.services.purchase.service import SlotPurchaseService
    from adslot.services.slots.service import SlotService

    def _make(price: int = 10000, refund_settings: dict | None = None, free: int = 0, paid: int | None = None):
        from adslot.models.statuses import UserRole

        advertiser = make_user()
        distributor = make_user(UserRole.DISTRIBUTOR)
        campaign = make_campaign(distributor, refund_settings=refund_settings)
        (keyword,) = make_keywords(advertiser, "running shoes")
        fund(advertiser, free=free, paid=price if paid is None else paid)
        result = SlotPurchaseService(db).purchase(advertiser.id, [keyword.id], price, campaign_id=campaign.id)
        slot = SlotService(db).approve(result.slot_ids[0], distributor)
        db.commit()
        return advertiser, distributor, slot

    return _make
