"""
Pytest configuration and fixtures for vet-scheduling tests.

Every test gets a fresh in-memory SQLite database (aiosqlite, StaticPool),
an in-memory catalog of pets and services, recording notification and audit
sinks, mocked SMS and email gateways, and a clock frozen at
2026-10-19 10:00 that tests may move.
"""

from datetime import date, datetime, timedelta
from typing import AsyncGenerator, Dict, Optional
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine

from vet_scheduling.database.connection import create_engine
from vet_scheduling.database.session import SessionManager
from vet_scheduling.engine import SchedulingEngine
from vet_scheduling.models import Base
from vet_scheduling.services import (
    AuthContext,
    CategoryInfo,
    InMemoryAuditSink,
    InMemoryCatalogStore,
    InMemoryNotificationSink,
    PetInfo,
    ReminderService,
    SubtypeInfo,
)
from vet_scheduling.utils.config import SchedulingSettings

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

NOW = datetime(2026, 10, 19, 10, 0)
TODAY = NOW.date()
TOMORROW = TODAY + timedelta(days=1)


class FrozenClock:
    """Callable clock whose time tests can set or advance."""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


def booking_item(
    pet_id: Optional[int] = 1,
    category_id: Optional[int] = 1,
    subtype_id: Optional[int] = 1,
    day: Optional[date] = TOMORROW,
    time: Optional[str] = "09:30",
    **extra,
) -> Dict:
    """Posted booking row as a booking screen would send it."""
    item = {
        "pet_id": pet_id,
        "category_id": category_id,
        "subtype_id": subtype_id,
        "appointment_date": day.isoformat() if isinstance(day, date) else day,
        "appointment_time": time,
    }
    item.update(extra)
    return item


@pytest.fixture
def settings() -> SchedulingSettings:
    return SchedulingSettings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine shared by every session of one test."""
    engine = create_engine(TEST_DATABASE_URL)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_manager(test_engine: AsyncEngine) -> AsyncGenerator[SessionManager, None]:
    """Session manager with the booking schema created."""
    manager = SessionManager(test_engine)
    assert await manager.initialize_database(Base.metadata)
    yield manager


@pytest.fixture
def catalog() -> InMemoryCatalogStore:
    store = InMemoryCatalogStore()
    store.add_pet(
        PetInfo(
            id=1,
            name="Bantay",
            owner_id=10,
            owner_name="Maria Santos",
            owner_user_id=100,
            owner_phone="09171234567",
            owner_email="maria@example.com",
        )
    )
    store.add_pet(
        PetInfo(
            id=2,
            name="Mingming",
            owner_id=10,
            owner_name="Maria Santos",
            owner_user_id=100,
            owner_phone="09171234567",
            owner_email="maria@example.com",
        )
    )
    store.add_pet(
        PetInfo(
            id=3,
            name="Choco",
            owner_id=20,
            owner_name="Jose Cruz",
            owner_user_id=200,
            owner_phone="+639181112222",
            owner_email=None,
        )
    )
    store.add_category(CategoryInfo(id=1, name="Vaccination"))
    store.add_category(CategoryInfo(id=2, name="Grooming"))
    store.add_subtype(SubtypeInfo(id=1, name="Rabies", category_id=1))
    store.add_subtype(SubtypeInfo(id=2, name="Bath", category_id=2))
    return store


@pytest.fixture
def notifier() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
def auditor() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def sms_gateway() -> Mock:
    gateway = Mock()
    gateway.schedule_reminder = AsyncMock(return_value=True)
    return gateway


@pytest.fixture
def email_gateway() -> Mock:
    gateway = Mock()
    gateway.send_email = AsyncMock(return_value=None)
    return gateway


@pytest_asyncio.fixture
async def scheduler(
    session_manager: SessionManager,
    settings: SchedulingSettings,
    catalog: InMemoryCatalogStore,
    notifier: InMemoryNotificationSink,
    auditor: InMemoryAuditSink,
    clock: FrozenClock,
) -> AsyncGenerator[SchedulingEngine, None]:
    """
    Engine over the test database, without reminder gateways.

    Tests that need gateways build a ReminderService (see ``reminders``) so
    that no background reminder task shares the single test connection with
    the test body.
    """
    engine = SchedulingEngine(
        session_manager,
        settings=settings,
        catalog=catalog,
        notifier=notifier,
        auditor=auditor,
        clock=clock,
    )
    yield engine
    await engine.reminders.drain()


@pytest.fixture
def staff() -> AuthContext:
    return AuthContext.staff(user_id=1, user_name="Dr. Reyes")


@pytest.fixture
def other_staff() -> AuthContext:
    return AuthContext.staff(user_id=2, user_name="Nurse Lim")


@pytest.fixture
def owner() -> AuthContext:
    """Owner of pets 1 and 2."""
    return AuthContext.owner(user_id=100, owner_id=10, user_name="Maria Santos")


@pytest.fixture
def other_owner() -> AuthContext:
    """Owner of pet 3."""
    return AuthContext.owner(user_id=200, owner_id=20, user_name="Jose Cruz")


@pytest_asyncio.fixture
async def reminders(
    session_manager: SessionManager,
    settings: SchedulingSettings,
    catalog: InMemoryCatalogStore,
    notifier: InMemoryNotificationSink,
    auditor: InMemoryAuditSink,
    sms_gateway: Mock,
    email_gateway: Mock,
    clock: FrozenClock,
) -> AsyncGenerator[ReminderService, None]:
    service = ReminderService(
        session_manager,
        settings=settings,
        catalog=catalog,
        notifier=notifier,
        auditor=auditor,
        clock=clock,
        sms_gateway=sms_gateway,
        email_gateway=email_gateway,
    )
    yield service
    await service.drain()
