"""
Pytest fixtures shared across all test modules.
Uses an in-memory SQLite database with StaticPool so all connections
share a single in-memory DB, and httpx.MockTransport in place of real
push services.
"""

import asyncio
import base64
import os

# Set env vars BEFORE any weatherpush module is imported
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["VAPID_PRIVATE_KEY"] = ""  # tests wire their own signer/coordinator
os.environ["VAPID_PUBLIC_KEY"] = ""
os.environ["PUSH_SEND_WELCOME"] = "false"
os.environ["SUMMARY_ENABLED"] = "false"

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Import weatherpush modules AFTER env vars are set
from weatherpush.api.deps import get_coordinator, get_signer, get_store  # noqa: E402
from weatherpush.database import Base, get_db  # noqa: E402
from weatherpush.main import app  # noqa: E402
from weatherpush.models import notification_log, push_subscription  # noqa: E402,F401
from weatherpush.push.coordinator import DeliveryCoordinator  # noqa: E402
from weatherpush.push.dispatcher import Dispatcher  # noqa: E402
from weatherpush.push.records import Subscription  # noqa: E402
from weatherpush.push.store import SubscriptionStore  # noqa: E402
from weatherpush.push.vapid import VapidKeys, VapidSigner, generate_vapid_keys  # noqa: E402

engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

FAILURE_CEILING = 3


@pytest.fixture(autouse=True)
def setup_db():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture(scope="session")
def vapid_keys() -> VapidKeys:
    generated = generate_vapid_keys()
    return VapidKeys.from_config(generated["private_key"], generated["public_key"])


@pytest.fixture()
def signer(vapid_keys) -> VapidSigner:
    return VapidSigner(vapid_keys, "mailto:alerts@example.com")


@pytest.fixture()
def store() -> SubscriptionStore:
    return SubscriptionStore(TestingSessionLocal, failure_ceiling=FAILURE_CEILING)


# ---------------------------------------------------------------------------
# Fake push service
# ---------------------------------------------------------------------------


class FakePushService:
    """Answers every push with a configurable status, per endpoint.

    ``statuses`` maps endpoint -> status code (default ``default_status``);
    ``errors`` maps endpoint -> exception to raise instead; ``delays`` maps
    endpoint -> seconds to wait before answering.
    """

    def __init__(self, default_status: int = 201):
        self.default_status = default_status
        self.statuses: dict[str, int] = {}
        self.errors: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self.requests: list[httpx.Request] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(request)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if url in self.delays:
                await asyncio.sleep(self.delays[url])
            if url in self.errors:
                raise self.errors[url]
            return httpx.Response(self.statuses.get(url, self.default_status), text="")
        finally:
            self.in_flight -= 1

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def sent_to(self, endpoint: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == endpoint]


@pytest.fixture()
def push_service() -> FakePushService:
    return FakePushService()


@pytest.fixture()
def coordinator(store, signer, push_service) -> DeliveryCoordinator:
    dispatcher = Dispatcher(push_service.client(), ttl=60, urgency="normal", timeout=2.0)
    return DeliveryCoordinator(store, signer, dispatcher, max_concurrency=4, deadline=5.0)


# ---------------------------------------------------------------------------
# Browser-side key material
# ---------------------------------------------------------------------------


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


class Browser:
    """A subscriber's key pair and auth secret, as a browser would generate them."""

    def __init__(self):
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.auth_secret = os.urandom(16)
        raw_public = self.private_key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )
        self.p256dh = _b64url(raw_public)
        self.auth = _b64url(self.auth_secret)


@pytest.fixture()
def make_browser():
    return Browser


@pytest.fixture()
def make_subscription(make_browser):
    """Factory: a Subscription record for *endpoint* with fresh valid keys."""

    def _make(endpoint: str) -> Subscription:
        browser = make_browser()
        return Subscription(endpoint=endpoint, p256dh=browser.p256dh, auth=browser.auth)

    return _make


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture()
def client(db, store, signer, coordinator):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_signer] = lambda: signer
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
