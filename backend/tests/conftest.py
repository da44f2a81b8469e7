"""
Shared pytest fixtures: in-memory database, notifier double, entity factories
and an API client wired to both.
"""

import os

# Must be set before the package reads its settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["MAIL_TO"] = "inbox@marketminds.test"

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketminds.core.database import Base, get_db
from marketminds.core.security import create_access_token, hash_password
from marketminds.models import Report, Subscription, User
from marketminds.services.notification_service import get_notifier

NOW = datetime(2024, 3, 1, 12, 0, 0)
PASSWORD = "secret123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
def engine():
    """Single-connection in-memory SQLite with working SAVEPOINTs."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def foreign_keys(engine):
    """Enforce foreign keys on the shared connection, as PostgreSQL does."""
    raw = engine.raw_connection()
    try:
        raw.cursor().execute("PRAGMA foreign_keys=ON")
    finally:
        raw.close()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.emit.return_value = True
    return notifier


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(email=None, is_admin=False, first_name="Test", last_name="User"):
        counter["n"] += 1
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email or f"user{counter['n']}@example.com",
            hashed_password=PASSWORD_HASH,
            is_admin=is_admin,
        )
        db.add(user)
        db.commit()
        return user

    return _make_user


@pytest.fixture
def make_report(db):
    def _make_report(report_type="premium", title="Sector Outlook", sector="Banking", data=b"%PDF-1.4 test"):
        from marketminds.services.report_service import ReportService

        return ReportService(db).upload(
            title=title,
            description=f"{title} description",
            sector=sector,
            report_type=report_type,
            file_name=f"{title.lower().replace(' ', '-')}.pdf",
            content_type="application/pdf",
            data=data,
            upload_date=NOW,
        )

    return _make_report


@pytest.fixture
def make_subscription(db):
    def _make_subscription(
        user,
        premium_quota=2,
        bluechip_quota=1,
        premium_used=0,
        bluechip_used=0,
        expiry_date=None,
        is_active=True,
        purchase_date=None,
    ):
        subscription = Subscription(
            plan_id="quarterly",
            plan_name="Quarterly Plan",
            price=1500.0,
            duration_months=3,
            purchase_date=purchase_date or NOW - timedelta(days=20),
            expiry_date=expiry_date or NOW + timedelta(days=10),
            is_active=is_active,
            reports_included=premium_quota + bluechip_quota,
            reports_used=premium_used + bluechip_used,
            premium_quota=premium_quota,
            premium_used=premium_used,
            bluechip_quota=bluechip_quota,
            bluechip_used=bluechip_used,
        )
        user.subscriptions.append(subscription)
        db.commit()
        return subscription

    return _make_subscription


@pytest.fixture
def auth_headers():
    def _auth_headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _auth_headers


@pytest.fixture
def client(db, notifier):
    from fastapi.testclient import TestClient
    from marketminds.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    yield TestClient(app)
    app.dependency_overrides.clear()
