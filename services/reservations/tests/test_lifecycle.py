"""
Tests for runtime wiring
"""

import pytest

from services.reservations.config import ReservationSettings
from services.reservations.database import InMemoryReservationRepository, ReservationRepository
from services.reservations.lifecycle import build_runtime
from services.reservations.models import MessageTurnRequest
from services.reservations.session_store import InMemorySessionStore, RedisSessionStore
from services.reservations.time_slot_manager import InMemorySlotStore, RedisSlotStore


class TestBuildRuntime:
    """Test backend selection and shutdown"""

    @pytest.mark.asyncio
    async def test_memory_backend(self):
        config = ReservationSettings(sessions={"backend": "memory"})

        async with build_runtime(config) as runtime:
            assert isinstance(runtime.slot_store, InMemorySlotStore)
            assert isinstance(runtime.session_store, InMemorySessionStore)
            assert isinstance(runtime.reservations.repository, InMemoryReservationRepository)
            assert runtime.database is None

            response = await runtime.agent.handle_message(
                MessageTurnRequest(session_id="s-1", utterance="I'm Alex")
            )
            assert response.fields["customerName"] == "Alex"

    @pytest.mark.asyncio
    async def test_redis_backend_with_injected_client(self, mock_redis):
        config = ReservationSettings(
            sessions={"backend": "redis", "ttl_seconds": 600},
            redis={"key_prefix": "bistro"},
            database={"url": "sqlite+aiosqlite:///:memory:"},
        )

        async with build_runtime(config, redis_client=mock_redis) as runtime:
            assert isinstance(runtime.slot_store, RedisSlotStore)
            assert isinstance(runtime.session_store, RedisSessionStore)
            assert isinstance(runtime.reservations.repository, ReservationRepository)
            assert runtime.session_store.ttl_seconds == 600
            assert runtime.slot_store.key_prefix == "bistro"
            assert runtime.database.engine is not None

        assert runtime.database.engine is None
        mock_redis.aclose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_explicit_confirmation_setting(self):
        config = ReservationSettings(require_explicit_confirmation=True)

        async with build_runtime(config) as runtime:
            assert runtime.state_machine.require_explicit_confirmation is True
