import os

# Tests always run against an in-memory database with caching disabled
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["REDIS_HOST"] = ""
os.environ["SCHEDULING_TIMEZONE"] = "UTC"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-not-for-production")

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

# Load environment variables from .env file
load_dotenv()

from medischeduler.core.permissions import ActorContext, Role
from medischeduler.core.security import create_access_token
from medischeduler.database import get_db
from medischeduler.main import app
from medischeduler.models import metadata
from medischeduler.schemas.doctors import DoctorCreate, DoctorResponse
from medischeduler.services.doctor_service import DoctorService

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Saturday; 2024-06-10 is the following Monday
FIXED_NOW = datetime(2024, 6, 1, 8, 0, tzinfo=UTC)
MONDAY = date(2024, 6, 10)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    """UTC instant on ``day`` at the given wall-clock time."""
    return datetime.combine(day, time(hour, minute), tzinfo=UTC)


def next_monday(min_days_ahead: int = 3) -> date:
    """First Monday at least ``min_days_ahead`` days from today."""
    day = datetime.now(UTC).date() + timedelta(days=min_days_ahead)
    return day + timedelta(days=(7 - day.weekday()) % 7)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ----------------------------------------------------------------------------
# Actors and tokens
# ----------------------------------------------------------------------------


class FakeClock:
    """Callable clock whose current instant tests can move."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def doctor_user_id() -> UUID:
    return uuid4()


@pytest.fixture
def patient() -> ActorContext:
    return ActorContext.for_role(uuid4(), Role.PATIENT)


@pytest.fixture
def other_patient() -> ActorContext:
    return ActorContext.for_role(uuid4(), Role.PATIENT)


@pytest.fixture
def staff() -> ActorContext:
    return ActorContext.for_role(uuid4(), Role.STAFF)


@pytest.fixture
def admin() -> ActorContext:
    return ActorContext.for_role(uuid4(), Role.ADMIN)


@pytest.fixture
def doctor_actor(doctor_user_id: UUID) -> ActorContext:
    return ActorContext.for_role(doctor_user_id, Role.DOCTOR)


@pytest.fixture
def make_headers() -> Callable[[ActorContext], dict[str, str]]:
    """Build bearer auth headers for an actor."""

    def _make(actor: ActorContext) -> dict[str, str]:
        token = create_access_token(
            {"sub": str(actor.actor_id), "role": actor.role.value},
            expires_delta=timedelta(hours=1),
        )
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def auth_headers(patient: ActorContext, make_headers) -> dict[str, str]:
    """Headers for the default patient."""
    return make_headers(patient)


# ----------------------------------------------------------------------------
# Doctors
# ----------------------------------------------------------------------------


@pytest.fixture
def sample_doctor_data(doctor_user_id: UUID) -> DoctorCreate:
    """Mon-Fri 09:00-17:00 with a 12:00-13:00 break, 30 minute consultations."""
    return DoctorCreate(
        user_id=doctor_user_id,
        full_name="Dr. Jane Smith",
        specialization="Cardiology",
        consultation_fee=Decimal("500.00"),
        consultation_duration_minutes=30,
    )


@pytest_asyncio.fixture
async def doctor(db_session: AsyncSession, sample_doctor_data: DoctorCreate) -> DoctorResponse:
    """Create a test doctor in the database."""
    return await DoctorService().create_doctor(db_session, sample_doctor_data)
