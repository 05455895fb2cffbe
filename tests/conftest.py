"""Root conftest — test infrastructure for all reconciler tests.

Provides:
- In-memory reconciler wired to fake operations and a fake provider
- Mocked AsyncSession for unit tests
- API client with dependency overrides
- Autouse mock for the Stripe SDK so no test can reach the real API
- Transaction-rollback db_session for integration tests (opt-in)
"""

from __future__ import annotations

import os
from unittest.mock import MagicMock, patch

import pytest
import stripe
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from reconciler.services.reconciliation import SubscriptionReconciler

from tests.helpers.fakes import (
    FakeStripeService,
    InMemoryCancellationOps,
    InMemoryCorrelationOps,
    InMemoryEventOps,
    InMemorySubscriptionOps,
)
from tests.helpers.mock_factories import NOW, make_mock_db

# ─────────────────────────────────────────────────────────────────────────────
# Reconciler on in-memory collaborators
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def db() -> MagicMock:
    """Mocked AsyncSession (add/flush/commit/rollback are no-ops)."""
    return make_mock_db()


@pytest.fixture
def provider() -> FakeStripeService:
    return FakeStripeService()


@pytest.fixture
def engine(provider: FakeStripeService) -> SubscriptionReconciler:
    """Reconciler with a fixed clock and no retry backoff."""
    reconciler = SubscriptionReconciler(
        subscriptions=InMemorySubscriptionOps(),
        events=InMemoryEventOps(),
        correlations=InMemoryCorrelationOps(),
        cancellations=InMemoryCancellationOps(),
        provider=provider,
        clock=lambda: NOW,
    )
    reconciler.saga.retry_delays = []
    return reconciler


# ─────────────────────────────────────────────────────────────────────────────
# API client
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
async def api_client(db: MagicMock, engine: SubscriptionReconciler):
    """HTTP client using the mocked session and the in-memory reconciler.

    Overrides: get_db, get_reconciler
    """
    from reconciler.api.deps import get_reconciler
    from reconciler.core.database import get_db
    from reconciler.main import app

    async def override_db():
        yield db

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_reconciler] = lambda: engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ─────────────────────────────────────────────────────────────────────────────
# External Service Mocks
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def mock_external_services():
    """SAFETY: Always mock the Stripe SDK.

    Exception classes stay real so the service's except clauses still work.
    """
    with patch("reconciler.services.stripe_service.stripe") as mock_stripe:
        mock_stripe.SignatureVerificationError = stripe.SignatureVerificationError
        mock_stripe.InvalidRequestError = stripe.InvalidRequestError
        yield {"stripe": mock_stripe}


# ─────────────────────────────────────────────────────────────────────────────
# Transaction-Rollback Fixture (integration tests only)
# ─────────────────────────────────────────────────────────────────────────────

TEST_DATABASE_URL = os.getenv("RECONCILER_TESTS_DATABASE_URL", "")


@pytest.fixture
async def db_session():
    """Database session wrapped in a transaction that is ALWAYS rolled back.

    Application code may call commit() and rollback() freely: the session
    joins the outer transaction through SAVEPOINTs.

    Requires RECONCILER_TESTS_DATABASE_URL (a direct asyncpg URL).
    """
    if not TEST_DATABASE_URL:
        pytest.skip("RECONCILER_TESTS_DATABASE_URL not set")

    from sqlmodel import SQLModel

    import reconciler.models  # noqa: F401

    test_engine = create_async_engine(TEST_DATABASE_URL, echo=False)
    async with test_engine.connect() as conn:
        trans = await conn.begin()
        await conn.run_sync(SQLModel.metadata.create_all)
        session = AsyncSession(
            bind=conn,
            expire_on_commit=False,
            join_transaction_mode="create_savepoint",
        )
        try:
            yield session
        finally:
            await session.close()
            await trans.rollback()
    await test_engine.dispose()
