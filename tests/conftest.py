"""
Pytest configuration and shared fixtures.

Test environment variables are set here, before any sms_confirm import, and
the settings cache is cleared so they take effect.
"""

import os

os.environ["DATABASE_URL"] = "sqlite:///./test_sms_confirm.db"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["API_TOKEN"] = "test-token"
os.environ["JUSTCALL_API_KEY"] = "test-key"
os.environ["JUSTCALL_API_SECRET"] = "test-secret"
os.environ["WEBHOOK_SECRET"] = ""
os.environ["DEFAULT_SENDER_NUMBER"] = ""

from sms_confirm.config import get_settings  # noqa: E402
get_settings.cache_clear()

from datetime import timedelta  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from sms_confirm import models  # noqa: E402,F401
from sms_confirm.main import app, get_provider_client  # noqa: E402
from sms_confirm.provider import JustCallClient  # noqa: E402
from sms_confirm.storage import SessionLocal, Base, engine, create_outbound_message  # noqa: E402
from sms_confirm.utils import utcnow  # noqa: E402


AUTH_HEADERS = {"Authorization": "Bearer test-token"}
SENDER = "+4722222222"
CUSTOMER = "+4799999999"


class FakeJustCall:
    """Records requests sent to JustCall and answers with a configurable response."""

    def __init__(self):
        self.requests = []
        self.status_code = 200
        self.payload = {"id": 1001, "delivery_status": "sent"}
        self.timeout = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(self.status_code, json=self.payload)

    def client(self) -> JustCallClient:
        return JustCallClient(
            api_url="https://api.justcall.test/v2.1",
            api_key="test-key",
            api_secret="test-secret",
            timeout=1.0,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def justcall() -> FakeJustCall:
    return FakeJustCall()


@pytest.fixture(scope="function")
def tables():
    """Fresh tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(tables):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(tables, justcall):
    """Test client whose JustCall calls go to the FakeJustCall transport."""
    app.dependency_overrides[get_provider_client] = justcall.client
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_outbound(db):
    """Insert an outbound message sent to `recipient` at `sent_at` (default: now)."""
    counter = {"n": 0}

    def _make(recipient: str = CUSTOMER, sent_at=None, ago: timedelta = None, body: str = "Hi Ola"):
        counter["n"] += 1
        if sent_at is None:
            sent_at = utcnow() - (ago or timedelta(0))
        return create_outbound_message(
            db,
            provider_message_id=f"jc-{counter['n']}",
            recipient_address=recipient,
            sender_address=SENDER,
            rendered_body=body,
            template_body=body,
            sent_at=sent_at,
        )

    return _make
