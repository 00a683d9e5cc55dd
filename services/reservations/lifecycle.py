"""
Runtime wiring for the reservation service
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis

from .booking_agent import BookingAgent
from .config import ReservationSettings, StorageBackend, get_config
from .conversation_flow_manager import DialogueStateMachine
from .database import DatabaseManager, InMemoryReservationRepository, ReservationRepository
from .lexicon import load_lexicon
from .logging_adapter import configure_logging, get_safe_logger, is_configured
from .reservation_service import ReservationService
from .session_store import InMemorySessionStore, RedisSessionStore, SessionStore
from .time_slot_manager import InMemorySlotStore, RedisSlotStore, SlotStore, TimeSlotManager
from .weather_client import WeatherAdvisoryClient

logger = get_safe_logger("reservations.lifecycle")


@dataclass
class Runtime:
    """Wired collaborators of one running service"""
    config: ReservationSettings
    slot_store: SlotStore
    session_store: SessionStore
    allocator: TimeSlotManager
    reservations: ReservationService
    weather: WeatherAdvisoryClient
    state_machine: DialogueStateMachine
    agent: BookingAgent
    redis: Optional[aioredis.Redis] = None
    database: Optional[DatabaseManager] = None


@asynccontextmanager
async def build_runtime(
    config: Optional[ReservationSettings] = None,
    redis_client: Optional[aioredis.Redis] = None
) -> AsyncIterator[Runtime]:
    """
    Build every collaborator from configuration and close them on exit.

    The memory backend keeps sessions, buckets and reservations in process;
    the redis backend stores sessions and buckets in Redis and reservations
    in the configured SQL database.
    """
    config = config or get_config()
    if not is_configured():
        configure_logging(config.log_level, config.log_format)

    logger.info(
        "starting_reservation_service",
        environment=config.environment.value,
        backend=config.sessions.backend.value,
    )
    lexicon = load_lexicon(config.lexicon_path)

    owns_redis = False
    database = None
    if config.sessions.backend == StorageBackend.REDIS:
        if redis_client is None:
            redis_client = aioredis.from_url(config.redis.url, decode_responses=True)
            owns_redis = True
        slot_store = RedisSlotStore(redis_client, key_prefix=config.redis.key_prefix)
        session_store = RedisSessionStore(
            redis_client,
            ttl_seconds=config.sessions.ttl_seconds,
            key_prefix=config.redis.key_prefix,
            lock_timeout_seconds=config.sessions.lock_timeout_seconds,
        )
        database = DatabaseManager(config.database)
        await database.initialize()
        repository = ReservationRepository(database)
    else:
        slot_store = InMemorySlotStore()
        session_store = InMemorySessionStore(ttl_seconds=config.sessions.ttl_seconds)
        repository = InMemoryReservationRepository()

    weather = WeatherAdvisoryClient(config.weather)
    allocator = TimeSlotManager(slot_store, config.slots)
    reservations = ReservationService(allocator, repository)
    state_machine = DialogueStateMachine(
        lexicon=lexicon,
        allocator=allocator,
        reservations=reservations,
        advisor=weather,
        policy=config.slots,
        advisory_timeout=config.weather.timeout_seconds * config.weather.max_attempts + 1,
        require_explicit_confirmation=config.require_explicit_confirmation,
        default_location=config.weather.default_location,
    )
    agent = BookingAgent(state_machine, session_store, config=config)

    runtime = Runtime(
        config=config,
        slot_store=slot_store,
        session_store=session_store,
        allocator=allocator,
        reservations=reservations,
        weather=weather,
        state_machine=state_machine,
        agent=agent,
        redis=redis_client,
        database=database,
    )
    logger.info("reservation_service_started")

    try:
        yield runtime
    finally:
        logger.info("shutting_down_reservation_service")
        await weather.close()
        await session_store.close()
        await slot_store.close()
        if database is not None:
            await database.close()
        if owns_redis:
            await redis_client.aclose()
        logger.info("reservation_service_shutdown_completed")
