"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator, Generator
from datetime import datetime, time, timedelta, timezone

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import Settings
from app.core.security import Actor, create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models.patient import Patient
from app.models.scheduling import AvailabilityTemplate, DayOfWeek
from app.models.specialist import Specialist


# Use SQLite for testing (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Tuesday 2030-01-01 12:00 UTC. Monday 2030-01-07 is the first bookable Monday.
NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
MONDAY = NOW.date().replace(day=7)

TEST_TIMEZONE = "America/Mexico_City"


def local(day, hour: int, minute: int = 0) -> datetime:
    """Wall-clock time on the agenda expressed in UTC.

    Mexico City is UTC-6 all year.
    """
    return datetime(day.year, day.month, day.day, hour + 6, minute, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FrozenClock:
    """Pinned clock for service tests."""
    return FrozenClock()


@pytest.fixture
def test_settings() -> Settings:
    """Settings with every reminder kind enabled."""
    return Settings(
        env="test",
        agenda_timezone=TEST_TIMEZONE,
        reminder_one_hour_enabled=True,
        booking_confirmation_enabled=True,
        follow_up_delay_hours=24,
        reminder_max_attempts=3,
        reminder_lease_seconds=300,
        delivery_timeout_seconds=0.5,
    )


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture(scope="function")
def client(async_session: AsyncSession) -> Generator[TestClient, None, None]:
    """Create FastAPI test client with overridden dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
async def api_client(async_session: AsyncSession) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client running the app on the test event loop."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
async def specialist(async_session: AsyncSession) -> Specialist:
    """Create an active specialist."""
    specialist = Specialist(
        email="dra.lopez@agenda.local",
        name="Dra. Ana López",
        specialty="Psicología clínica",
        whatsapp_number="+5215500000001",
        is_active=True,
        booking_version=0,
    )
    async_session.add(specialist)
    await async_session.commit()
    await async_session.refresh(specialist)
    return specialist


@pytest.fixture
async def other_specialist(async_session: AsyncSession) -> Specialist:
    """Create a second active specialist."""
    specialist = Specialist(
        email="dr.ruiz@agenda.local",
        name="Dr. Luis Ruiz",
        is_active=True,
        booking_version=0,
    )
    async_session.add(specialist)
    await async_session.commit()
    await async_session.refresh(specialist)
    return specialist


@pytest.fixture
async def inactive_specialist(async_session: AsyncSession) -> Specialist:
    """Create a specialist that no longer takes bookings."""
    specialist = Specialist(
        email="retired@agenda.local",
        name="Dr. Retirado",
        is_active=False,
        booking_version=0,
    )
    async_session.add(specialist)
    await async_session.commit()
    await async_session.refresh(specialist)
    return specialist


@pytest.fixture
async def patient(async_session: AsyncSession) -> Patient:
    """Create a test patient."""
    patient = Patient(
        name="Carlos Pérez",
        phone="+5215512345678",
    )
    async_session.add(patient)
    await async_session.commit()
    await async_session.refresh(patient)
    return patient


@pytest.fixture
async def monday_template(
    async_session: AsyncSession, specialist: Specialist
) -> AvailabilityTemplate:
    """Monday 09:00-17:00 in one-hour slots."""
    template = AvailabilityTemplate(
        specialist_id=specialist.id,
        day_of_week=DayOfWeek.MONDAY.value,
        start_time=time(9, 0),
        end_time=time(17, 0),
        slot_duration_minutes=60,
        is_active=True,
    )
    async_session.add(template)
    await async_session.commit()
    await async_session.refresh(template)
    return template


@pytest.fixture
def specialist_actor(specialist: Specialist) -> Actor:
    """The specialist acting on their own agenda."""
    return Actor.specialist(specialist.id)


@pytest.fixture
def system_actor() -> Actor:
    """Trusted back-office caller."""
    return Actor.system("booking-bot")


def create_test_token(subject: str, actor_type: str) -> str:
    """Create a test JWT token."""
    return create_access_token(
        subject=subject,
        additional_claims={"actor_type": actor_type},
    )


@pytest.fixture
def specialist_headers(specialist: Specialist) -> dict[str, str]:
    """Authorization headers for the specialist."""
    token = create_test_token(specialist.id, "specialist")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def system_headers() -> dict[str, str]:
    """Authorization headers for a system caller."""
    token = create_test_token("booking-bot", "system")
    return {"Authorization": f"Bearer {token}"}
