from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from core.db import Base, build_engine, get_db
from models.store import Store
from models.subscription import Subscription
from models.subscription_plan import SubscriptionPlan


@pytest.fixture()
def db_session_override():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()

    def _get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _get_db
    try:
        yield db
    finally:
        db.close()
        app.dependency_overrides.clear()


@pytest.fixture()
def db(db_session_override):
    return db_session_override


@pytest.fixture()
def client(db_session_override):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def file_sessions(tmp_path):
    """Session factory on a file-backed SQLite database, one connection per thread."""
    engine = build_engine(f"sqlite:///{tmp_path / 'ledger.sqlite3'}")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def now():
    return datetime(2026, 10, 18, 12, 0, 0)


def _make_plan(db, slug="starter", whatsapp=None, website=None, billing_cycle="monthly"):
    plan = SubscriptionPlan(
        name=slug.title(),
        slug=slug,
        whatsapp_orders_limit=whatsapp,
        website_orders_limit=website,
        billing_cycle=billing_cycle,
    )
    db.add(plan)
    db.commit()
    db.refresh(plan)
    return plan


def _make_store(db, slug="acme", subdomain=None, custom_domain=None, is_active=True, name=None):
    store = Store(
        name=name or slug.title(),
        slug=slug,
        subdomain=subdomain,
        custom_domain=custom_domain,
        is_active=is_active,
    )
    db.add(store)
    db.commit()
    db.refresh(store)
    return store


def _make_subscription(db, store, plan, status="active", period_end=None, trial_ends_at=None,
                       whatsapp_used=0, website_used=0, updated_at=None, billing_cycle="monthly"):
    subscription = Subscription(
        store_id=store.id,
        plan_id=plan.id,
        status=status,
        billing_cycle=billing_cycle,
        current_period_start=datetime.utcnow() - timedelta(days=1),
        current_period_end=period_end,
        trial_ends_at=trial_ends_at,
        whatsapp_orders_used=whatsapp_used,
        website_orders_used=website_used,
    )
    if updated_at is not None:
        subscription.updated_at = updated_at
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


@pytest.fixture()
def make_plan(db):
    return lambda **kwargs: _make_plan(db, **kwargs)


@pytest.fixture()
def make_store(db):
    return lambda **kwargs: _make_store(db, **kwargs)


@pytest.fixture()
def make_subscription(db):
    return lambda store, plan, **kwargs: _make_subscription(db, store, plan, **kwargs)


@pytest.fixture()
def acme(db):
    """Store "acme": active plan, WhatsApp capped at 3 with 2 used, website ordering disabled."""
    plan = _make_plan(db, slug="acme-plan", whatsapp=3, website=None)
    store = _make_store(db, slug="acme", subdomain="acme", custom_domain="shop.acme.com")
    subscription = _make_subscription(
        db, store, plan,
        status="active",
        period_end=datetime.utcnow() + timedelta(days=30),
        whatsapp_used=2,
    )
    return store, plan, subscription
