"""
Pytest fixtures for all tests.

Provides:
- In-memory SQLite database per test, plans seeded
- In-memory identity provider standing in for Keycloak
- A notification sender that records messages
- HTTP client over the ASGI app with dependencies overridden
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("IDENTITY_PROVIDER", "memory")
os.environ.setdefault("ADMIN_API_TOKEN", "test-admin-token")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SENTRY_ENABLED", "false")

from dataclasses import dataclass
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tenancy.core.context import RequestContext
from tenancy.core.database import Base, get_db
from tenancy.core.security import tenant_verifiers
from tenancy.features.identity.memory import InMemoryIdentityProvider
from tenancy.features.identity.registry import get_identity_gateway
from tenancy.features.notifications.router import get_notification_service
from tenancy.features.notifications.sender import NotificationDeliveryError
from tenancy.features.notifications.service import NotificationService
from tenancy.features.subscriptions.lifecycle import SubscriptionLifecycleManager
from tenancy.features.subscriptions.plans import PlanCatalog
from tenancy.features.subscriptions.router import get_lifecycle_manager
from tenancy.features.tenants.router import get_signup_saga
from tenancy.features.tenants.saga import TenantProvisioningSaga
from tenancy.main import create_application
from tenancy.schemas.tenant import SignupResult
from tests.factories import signup_request

ADMIN_TOKEN = "test-admin-token"


@dataclass
class SentMessage:
    recipient: str
    subject: str
    body: str


class RecordingSender:
    """
    Notification sender that keeps messages in memory and can be told to fail.

    fail raises the sender's own delivery error; error raises any exception,
    as a misbehaving third-party sender would.
    """

    def __init__(self) -> None:
        self.messages: list[SentMessage] = []
        self.fail = False
        self.error: Exception | None = None

    async def send(self, recipient: str, subject: str, body: str) -> None:
        if self.error is not None:
            raise self.error
        if self.fail:
            raise NotificationDeliveryError("SMTP server unavailable")
        self.messages.append(SentMessage(recipient, subject, body))


@pytest_asyncio.fixture
async def test_db_engine():
    """
    In-memory SQLite engine.

    StaticPool keeps one connection so every session sees the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Session for a test, with the default plan catalog already seeded."""
    async with session_factory() as session:
        await PlanCatalog.seed_plans(session)
        yield session


@pytest.fixture(autouse=True)
def clear_verifier_cache():
    tenant_verifiers.clear()
    yield
    tenant_verifiers.clear()


@pytest.fixture
def identity_provider() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider(base_url="http://identity.test")


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def notifications(sender: RecordingSender) -> NotificationService:
    return NotificationService(sender=sender)


@pytest.fixture
def lifecycle(notifications: NotificationService) -> SubscriptionLifecycleManager:
    return SubscriptionLifecycleManager(notifications=notifications)


@pytest.fixture
def saga(identity_provider, notifications) -> TenantProvisioningSaga:
    return TenantProvisioningSaga(identity_provider, notifications=notifications)


@pytest.fixture
def request_context() -> RequestContext:
    return RequestContext(request_id="test-request")


@pytest_asyncio.fixture
async def active_tenant(
    db_session: AsyncSession,
    saga: TenantProvisioningSaga,
    request_context: RequestContext,
) -> SignupResult:
    """A tenant provisioned end to end through the saga (FREE plan)."""
    return await saga.signup(db_session, signup_request(), request_context)


@pytest_asyncio.fixture
async def app(
    db_session: AsyncSession,
    session_factory,
    identity_provider,
    notifications,
    lifecycle,
    saga,
):
    """
    FastAPI test application.

    Every request gets its own session on the test database, as it would
    in production.
    """
    application = create_application()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_identity_gateway] = lambda: identity_provider
    application.dependency_overrides[get_notification_service] = lambda: notifications
    application.dependency_overrides[get_lifecycle_manager] = lambda: lifecycle
    application.dependency_overrides[get_signup_saga] = lambda: saga

    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """
    Async HTTP client for API tests.

    Usage:
        async def test_endpoint(client):
            response = await client.get("/api/v1/subscriptions/plans")
            assert response.status_code == 200
    """
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def tenant_headers(identity_provider: InMemoryIdentityProvider):
    """Build bearer headers for a token issued by a tenant's realm."""
    def build(tenant_id: str, subject: str = "admin-user") -> dict[str, str]:
        token = identity_provider.issue_token(tenant_id, subject)
        return {"Authorization": f"Bearer {token}"}

    return build
