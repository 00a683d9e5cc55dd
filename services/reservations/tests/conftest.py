"""
Shared fixtures for the reservation service tests
"""

import datetime as dt
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from services.reservations.booking_agent import BookingAgent
from services.reservations.config import ReservationSettings, SlotPolicyConfig, reset_config
from services.reservations.conversation_flow_manager import DialogueStateMachine
from services.reservations.database import InMemoryReservationRepository
from services.reservations.lexicon import load_lexicon
from services.reservations.models import BookingFields, SeatingAdvisory
from services.reservations.reservation_service import ReservationService
from services.reservations.session_store import InMemorySessionStore
from services.reservations.time_slot_manager import InMemorySlotStore, TimeSlotManager

# A Wednesday
TODAY = dt.date(2026, 10, 14)
TOMORROW = TODAY + dt.timedelta(days=1)
NOW = dt.datetime(2026, 10, 14, 12, 0, tzinfo=ZoneInfo("Asia/Kolkata"))


@pytest.fixture(autouse=True)
def clean_config():
    """Every test starts without cached settings"""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def lexicon():
    return load_lexicon()


@pytest.fixture
def today():
    return TODAY


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def policy():
    return SlotPolicyConfig()


@pytest.fixture
def slot_store():
    return InMemorySlotStore()


@pytest.fixture
def allocator(slot_store, policy):
    return TimeSlotManager(slot_store, policy)


@pytest.fixture
def repository():
    return InMemoryReservationRepository()


@pytest.fixture
def reservation_service(allocator, repository):
    return ReservationService(allocator, repository)


@pytest.fixture
def sunny_advisory():
    return SeatingAdvisory(
        condition="Clear",
        temperature_c=27,
        description="clear sky",
        recommendation="outdoor",
        reason="Beautiful clear sky with 27°C, perfect for outdoor dining!",
        source="weather",
    )


@pytest.fixture
def advisor(sunny_advisory):
    """Weather collaborator that always answers with a sunny advisory"""
    mock_advisor = AsyncMock()
    mock_advisor.recommend = AsyncMock(return_value=sunny_advisory)
    return mock_advisor


@pytest.fixture
def state_machine(lexicon, allocator, reservation_service, advisor, policy):
    return DialogueStateMachine(
        lexicon=lexicon,
        allocator=allocator,
        reservations=reservation_service,
        advisor=advisor,
        policy=policy,
        advisory_timeout=1.0,
    )


@pytest.fixture
def session_store():
    return InMemorySessionStore(ttl_seconds=1800)


@pytest.fixture
def settings():
    return ReservationSettings(timezone="Asia/Kolkata")


@pytest.fixture
def agent(state_machine, session_store, settings):
    return BookingAgent(state_machine, session_store, config=settings, clock=lambda: NOW)


@pytest.fixture
def almost_complete_fields():
    """Everything but the cuisine, for tomorrow 19:00"""
    return BookingFields(
        customer_name="Alex",
        guest_count=4,
        booking_date=TOMORROW,
        booking_time="19:00",
    )


@pytest.fixture
def mock_redis():
    """Mock async Redis client"""
    redis_mock = AsyncMock()
    redis_mock.eval = AsyncMock()
    redis_mock.get = AsyncMock(return_value=None)
    redis_mock.setex = AsyncMock(return_value=True)
    redis_mock.delete = AsyncMock(return_value=1)
    redis_mock.hgetall = AsyncMock(return_value={})
    redis_mock.pipeline = MagicMock()
    redis_mock.lock = MagicMock()
    return redis_mock
