"""Pytest configuration and fixtures for rx-caller tests."""

from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment
os.environ["RXC_ENV"] = "test"
os.environ["RXC_SCHEDULER__ENABLED"] = "false"
os.environ["RXC_VOICE__PROVIDER"] = "mock"


WEBHOOK_SECRET = "test-webhook-secret"

# Monday, 10:00 UTC
FIXED_NOW = datetime(2026, 3, 2, 10, 0, 0)


class FakeClock:
    """Settable naive UTC clock."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to FIXED_NOW."""
    return FakeClock()


# ============================================================================
# Async Database Fixtures
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine(tmp_path):
    """Create a test database engine backed by a file in tmp_path.

    Creates a fresh database for each test function.
    """
    from rx_caller.db.session import create_test_engine

    engine = await create_test_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")

    yield engine

    # Cleanup
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    """Session factory bound to the test engine."""
    from rx_caller.db.session import get_test_session_factory

    return get_test_session_factory(db_engine)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator:
    """Create test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def call_repository(db_session):
    """Create CallRepository instance for testing."""
    from rx_caller.db.repositories.calls import CallRepository

    return CallRepository(db_session)


@pytest_asyncio.fixture
async def patient_repository(db_session):
    """Create PatientRepository instance for testing."""
    from rx_caller.db.repositories.patients import PatientRepository

    return PatientRepository(db_session)


@pytest_asyncio.fixture
async def schedule_repository(db_session):
    """Create ScheduledCallRepository instance for testing."""
    from rx_caller.db.repositories.schedules import ScheduledCallRepository

    return ScheduledCallRepository(db_session)


async def _create_patient(session_factory, **fields):
    from rx_caller.db.models.core import PatientModel
    from rx_caller.db.repositories.patients import PatientRepository

    values = {
        "name": "Erika Musterfrau",
        "phone": "+4915112345678",
        "address": "Hauptstrasse 1, Berlin",
        "medication_context": {"medications": ["Ramipril 5mg"]},
        "call_preferences": {},
    }
    values.update(fields)

    async with session_factory() as session:
        patient = await PatientRepository(session).create(PatientModel(**values))
        await session.commit()
        return patient


@pytest_asyncio.fixture
async def sample_patient(session_factory):
    """A committed patient without contact-hour restrictions."""
    return await _create_patient(session_factory)


@pytest_asyncio.fixture
async def office_hours_patient(session_factory):
    """A committed patient reachable 09:00-18:00 only."""
    return await _create_patient(
        session_factory,
        name="Max Mustermann",
        phone="+4915187654321",
        call_preferences={"allowed_hours": {"start": 9, "end": 18}},
    )


@pytest.fixture
def patient_factory(session_factory):
    """Create additional committed patients."""

    async def factory(**fields):
        return await _create_patient(session_factory, **fields)

    return factory


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def mock_gateway():
    """Mock dispatch gateway that accepts every call."""
    from rx_caller.integrations.voice.base import MockDispatchGateway

    return MockDispatchGateway()


@pytest.fixture
def lifecycle(db_session, mock_gateway, clock):
    """CallLifecycleService on the test session."""
    from rx_caller.services.call_lifecycle import CallLifecycleService
    from rx_caller.services.campaigns import CampaignService

    campaigns = CampaignService(db_session, clock=clock, gateway=mock_gateway)
    return CallLifecycleService(
        db_session,
        mock_gateway,
        clock=clock,
        campaigns=campaigns,
        dispatch_timeout=1.0,
    )


# ============================================================================
# API Fixtures
# ============================================================================


@pytest.fixture
def api_client(tmp_path, monkeypatch):
    """TestClient running the full app lifespan against a tmp database."""
    from fastapi.testclient import TestClient

    from rx_caller.config import get_settings
    from rx_caller.dependencies import reset_dependencies
    from rx_caller.main import create_app

    monkeypatch.setenv("RXC_DATABASE__URL", f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("RXC_WEBHOOKS__SECRET", WEBHOOK_SECRET)
    get_settings.cache_clear()
    reset_dependencies()

    with TestClient(create_app()) as client:
        yield client

    get_settings.cache_clear()
    reset_dependencies()


@pytest.fixture
def api_patient(api_client):
    """Patient row inserted through the app's own engine."""
    from rx_caller.db.models.core import PatientModel
    from rx_caller.db.repositories.patients import PatientRepository
    from rx_caller.db.session import get_db_context

    async def create():
        async with get_db_context() as db:
            patient = await PatientRepository(db).create(
                PatientModel(
                    name="Erika Musterfrau",
                    phone="+4915112345678",
                    call_preferences={},
                )
            )
            return {"id": str(patient.id), "phone": patient.phone}

    return api_client.portal.call(create)
