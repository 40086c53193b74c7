"""
Test fixtures for RiskGov tests.

Provides:
- Async DB engine/session fixtures (file-backed SQLite per test, so that
  separate sessions can run concurrently)
- Organization, appetite category, KRI and tolerance metric factories
- A recording channel router so escalations can be asserted without I/O
- JWT tokens and an authenticated FastAPI test client
"""

import uuid
from datetime import datetime
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from riskgov.appetite.breaches import BreachLifecycleManager
from riskgov.appetite.escalation import EscalationNotifier
from riskgov.appetite.service import GovernanceService
from riskgov.auth.jwt import create_access_token
from riskgov.db.engine import Base
from riskgov.db.models import (  # noqa: F401
    AppetiteCategory,
    BoardException,
    Breach,
    BreachEvent,
    Control,
    KRIDefinition,
    KRIObservation,
    Organization,
    Risk,
    RiskControl,
    ToleranceCoverage,
    ToleranceMetric,
)


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Test database engine with all tables."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session per test; uncommitted work is rolled back."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ── Organization Fixtures ────────────────────────────────────────────────


async def _create_org(session_factory, name: str) -> Organization:
    async with session_factory() as session:
        org = Organization(id=uuid.uuid4(), name=name, slug=f"{name.lower()}-{uuid.uuid4().hex[:8]}")
        session.add(org)
        await session.commit()
        return org


@pytest_asyncio.fixture
async def org_a(session_factory) -> Organization:
    return await _create_org(session_factory, "Alpha")


@pytest_asyncio.fixture
async def org_b(session_factory) -> Organization:
    return await _create_org(session_factory, "Beta")


@pytest_asyncio.fixture
async def category_a(session_factory, org_a) -> AppetiteCategory:
    async with session_factory() as session:
        category = AppetiteCategory(
            id=uuid.uuid4(),
            organization_id=org_a.id,
            risk_category="Operational",
            appetite_level="LOW",
        )
        session.add(category)
        await session.commit()
        return category


@pytest_asyncio.fixture
async def category_b(session_factory, org_b) -> AppetiteCategory:
    async with session_factory() as session:
        category = AppetiteCategory(
            id=uuid.uuid4(),
            organization_id=org_b.id,
            risk_category="Operational",
            appetite_level="MODERATE",
        )
        session.add(category)
        await session.commit()
        return category


# ── Indicator & Metric Factories ─────────────────────────────────────────


@pytest.fixture
def create_kri(session_factory):
    """Factory: create_kri(org, code="KRI-1", **thresholds) → committed KRIDefinition."""

    async def _create(org: Organization, code: str = "KRI-1", **thresholds) -> KRIDefinition:
        async with session_factory() as session:
            kri = KRIDefinition(
                id=uuid.uuid4(),
                organization_id=org.id,
                code=code,
                name=f"Indicator {code}",
                **thresholds,
            )
            session.add(kri)
            await session.commit()
            return kri

    return _create


@pytest_asyncio.fixture
async def kri_a(create_kri, org_a) -> KRIDefinition:
    return await create_kri(org_a)


@pytest.fixture
def create_metric(session_factory):
    """
    Factory: create_metric(org, category, kri=None, **fields) → committed ToleranceMetric.

    Defaults to a MAXIMUM metric with GREEN ≤ 5 and AMBER ≤ 10, evaluated
    point-in-time. Passing a KRI links it as the live feed.
    """

    async def _create(org, category, kri=None, **fields) -> ToleranceMetric:
        values = {
            "name": "Failed payments",
            "metric_type": "MAXIMUM",
            "green_max": 5.0,
            "amber_max": 10.0,
            "breach_rule": "POINT_IN_TIME",
            "escalation_rules": {},
            "owner_email": "owner@alpha.test",
            "is_active": True,
        }
        values.update(fields)
        async with session_factory() as session:
            metric = ToleranceMetric(
                id=uuid.uuid4(),
                organization_id=org.id,
                category_id=category.id,
                kri_id=kri.id if kri else None,
                linked_at=datetime.utcnow() if kri else None,
                **values,
            )
            session.add(metric)
            await session.commit()
            return metric

    return _create


@pytest_asyncio.fixture
async def metric_a(create_metric, org_a, category_a, kri_a) -> ToleranceMetric:
    return await create_metric(org_a, category_a, kri_a)


# ── Escalation Fixtures ──────────────────────────────────────────────────


class RecordingRouter:
    """ChannelRouter stand-in that records every dispatch."""

    def __init__(self):
        self.calls: list[tuple] = []

    async def dispatch(self, notification, channel_configs):
        self.calls.append((notification, channel_configs))
        return {channel.value: {"success": True, "detail": "recorded"} for channel in channel_configs}


@pytest.fixture
def recording_router() -> RecordingRouter:
    return RecordingRouter()


@pytest.fixture
def breach_manager(recording_router) -> BreachLifecycleManager:
    return BreachLifecycleManager(EscalationNotifier(router=recording_router, timeout_seconds=2.0))


@pytest.fixture
def service(breach_manager) -> GovernanceService:
    return GovernanceService(breaches=breach_manager)


# ── JWT & Client Fixtures ────────────────────────────────────────────────


def _make_token(org: Organization, email: str) -> str:
    return create_access_token(
        user_id=str(uuid.uuid4()),
        organization_id=str(org.id),
        email=email,
        role="risk_manager",
    )


@pytest.fixture
def token_a(org_a) -> str:
    return _make_token(org_a, "manager@alpha.test")


@pytest.fixture
def token_b(org_b) -> str:
    return _make_token(org_b, "manager@beta.test")


@pytest_asyncio.fixture
async def client(session_factory, service, token_a):
    """Authenticated async test client for org_a with DB dependency override."""
    from riskgov.api.deps import get_db, get_governance_service
    from riskgov.main import app

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_governance_service] = lambda: service
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {token_a}"},
    ) as c:
        yield c
    app.dependency_overrides.clear()
