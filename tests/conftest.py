import os
import tempfile
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

os.environ["ENVIRONMENT"] = "development"
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_storefront.db")
os.environ.setdefault("IDENTITY_JWT_KEY", "test-identity-signing-key-with-32-chars")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ["ADMIN_EMAILS"] = "owner@babycare.test"
os.environ["TAX_RATE"] = "0.08"
os.environ["FIREBASE_PROJECT_ID"] = ""

import app.db.base  # noqa: F401
from app.api.deps import get_notification_dispatcher
from app.core.celery_app import celery_app
from app.db.base_class import Base
from app.db.session import get_db
from app.main import app
from app.services.notification_service import NotificationDispatcher
from app.tasks import notification_tasks
from tests.helpers import FakePushGateway, auth_headers

celery_app.conf.task_always_eager = True


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    db_file = tempfile.NamedTemporaryFile(suffix=".db", delete=False)
    db_file.close()

    engine = create_engine(
        f"sqlite:///{db_file.name}",
        connect_args={"check_same_thread": False},
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    Base.metadata.create_all(bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
        os.unlink(db_file.name)


@pytest.fixture()
def db_session(session_factory: sessionmaker) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def push_gateway() -> FakePushGateway:
    return FakePushGateway()


@pytest.fixture()
def client(
    db_session: Session,
    session_factory: sessionmaker,
    push_gateway: FakePushGateway,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notification_dispatcher] = lambda: NotificationDispatcher(push_gateway)
    # Eager Celery tasks open their own sessions; point them at the test database.
    monkeypatch.setattr(notification_tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(notification_tasks, "get_notification_dispatcher", lambda: NotificationDispatcher(push_gateway))
    app.state.limiter.reset()
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def admin_headers() -> dict:
    return auth_headers("admin_1", "owner@babycare.test", first_name="Store", last_name="Owner")


@pytest.fixture()
def customer_headers() -> dict:
    return auth_headers("user_123", "parent@example.com", first_name="Asha", last_name="Mehta")
