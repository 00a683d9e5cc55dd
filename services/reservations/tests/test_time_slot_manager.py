"""
Tests for the time-slot allocation engine
"""

import asyncio
import datetime as dt

import pytest

from services.reservations.config import SlotPolicyConfig
from services.reservations.error_models import InvariantViolationError
from services.reservations.models import ReserveOutcome, ReserveReason, SlotStatus, TimeSlotBucket
from services.reservations.time_slot_manager import InMemorySlotStore, TimeSlotManager

DAY = dt.date(2026, 10, 20)


class SlowSlotStore(InMemorySlotStore):
    """Yields to the event loop between read and write to widen race windows"""

    async def _read(self, key):
        await asyncio.sleep(0.01)
        return await super()._read(key)


class BrokenSlotStore(InMemorySlotStore):
    """Returns an oversold bucket from reserve"""

    async def reserve(self, slot_date, slot_time, guest_count, reservation_id, default_capacity):
        bucket = TimeSlotBucket(slot_date=slot_date, slot_time=slot_time, capacity=10, booked=12)
        return ReserveOutcome(success=True, reason=ReserveReason.RESERVED, bucket=bucket)


@pytest.fixture
def small_allocator():
    """Four seats per bucket"""
    return TimeSlotManager(InMemorySlotStore(), SlotPolicyConfig(default_capacity=4))


class TestValidTimes:
    """Test the operating window"""

    def test_default_window(self, allocator):
        times = allocator.valid_times()
        assert times[0] == "11:00"
        assert times[-1] == "22:00"
        assert len(times) == 23

    def test_is_valid_time(self, allocator):
        assert allocator.is_valid_time("19:30")
        assert not allocator.is_valid_time("19:15")
        assert not allocator.is_valid_time("07:30")
        assert not allocator.is_valid_time(None)

    @pytest.mark.asyncio
    async def test_get_or_create_uses_default_capacity(self, allocator):
        bucket = await allocator.get_or_create(DAY, "19:00")
        assert bucket.capacity == 50
        assert bucket.booked == 0
        assert bucket.blocked is False

    @pytest.mark.asyncio
    async def test_get_or_create_rejects_invalid_time(self, allocator):
        with pytest.raises(ValueError):
            await allocator.get_or_create(DAY, "19:15")


class TestReserve:
    """Test reserve and release"""

    @pytest.mark.asyncio
    async def test_reserve_then_release_restores_booked(self, allocator):
        reserved = await allocator.reserve(DAY, "19:00", 4, "RSV-1")
        assert reserved.success is True
        assert reserved.reason == ReserveReason.RESERVED
        assert reserved.bucket.booked == 4
        assert reserved.bucket.reservation_ids == {"RSV-1"}

        released = await allocator.release(DAY, "19:00", 4, "RSV-1")
        assert released.released is True
        assert released.guest_count == 4
        assert released.bucket.booked == 0
        assert released.bucket.reservation_ids == set()

    @pytest.mark.asyncio
    async def test_duplicate_reservation_id_is_idempotent(self, allocator):
        await allocator.reserve(DAY, "19:00", 4, "RSV-1")
        again = await allocator.reserve(DAY, "19:00", 4, "RSV-1")

        assert again.success is True
        assert again.reason == ReserveReason.DUPLICATE
        assert again.bucket.booked == 4

    @pytest.mark.asyncio
    async def test_capacity_conflict(self, small_allocator):
        await small_allocator.reserve(DAY, "19:00", 3, "RSV-1")
        outcome = await small_allocator.reserve(DAY, "19:00", 2, "RSV-2")

        assert outcome.success is False
        assert outcome.conflict is True
        assert outcome.reason == ReserveReason.CAPACITY
        assert outcome.bucket.booked == 3

    @pytest.mark.asyncio
    async def test_exact_fit(self, small_allocator):
        outcome = await small_allocator.reserve(DAY, "19:00", 4, "RSV-1")
        assert outcome.success is True
        assert outcome.bucket.remaining == 0

    @pytest.mark.asyncio
    async def test_blocked_bucket_refuses(self, allocator):
        await allocator.block(DAY, "19:00", actor_id="manager", reason="private event")
        outcome = await allocator.reserve(DAY, "19:00", 2, "RSV-1")

        assert outcome.success is False
        assert outcome.reason == ReserveReason.BLOCKED
        assert outcome.bucket.booked == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("slot_time,guests", [("19:15", 2), ("07:30", 2), ("19:00", 0), ("19:00", -1)])
    async def test_invalid_slot(self, allocator, slot_time, guests):
        outcome = await allocator.reserve(DAY, slot_time, guests, "RSV-1")

        assert outcome.success is False
        assert outcome.reason == ReserveReason.INVALID_SLOT
        assert outcome.bucket is None

    @pytest.mark.asyncio
    async def test_release_unknown_reservation_is_noop(self, allocator):
        await allocator.reserve(DAY, "19:00", 4, "RSV-1")
        outcome = await allocator.release(DAY, "19:00", 4, "RSV-unknown")

        assert outcome.released is False
        assert outcome.bucket.booked == 4

    @pytest.mark.asyncio
    async def test_release_of_missing_bucket(self, allocator):
        outcome = await allocator.release(DAY, "20:00", 2, "RSV-1")
        assert outcome.released is False
        assert outcome.bucket is None

    @pytest.mark.asyncio
    async def test_release_uses_recorded_amount(self, allocator):
        await allocator.reserve(DAY, "19:00", 4, "RSV-1")
        outcome = await allocator.release(DAY, "19:00", 2, "RSV-1")

        assert outcome.guest_count == 4
        assert outcome.bucket.booked == 0

    @pytest.mark.asyncio
    async def test_release_twice_releases_once(self, allocator):
        await allocator.reserve(DAY, "19:00", 4, "RSV-1")
        await allocator.reserve(DAY, "19:00", 2, "RSV-2")

        await allocator.release(DAY, "19:00", 4, "RSV-1")
        second = await allocator.release(DAY, "19:00", 4, "RSV-1")

        assert second.released is False
        assert second.bucket.booked == 2

    @pytest.mark.asyncio
    async def test_concurrent_reserves_never_oversell(self):
        allocator = TimeSlotManager(SlowSlotStore(), SlotPolicyConfig(default_capacity=10))

        outcomes = await asyncio.gather(*[
            allocator.reserve(DAY, "19:00", 4, f"RSV-{i}") for i in range(5)
        ])

        assert sum(1 for o in outcomes if o.success) == 2
        assert sum(1 for o in outcomes if o.reason == ReserveReason.CAPACITY) == 3
        bucket = await allocator.store.get(DAY, "19:00")
        assert bucket.booked == 8
        assert len(bucket.reservations) == 2

    @pytest.mark.asyncio
    async def test_concurrent_reserves_on_different_buckets_all_succeed(self):
        allocator = TimeSlotManager(SlowSlotStore(), SlotPolicyConfig(default_capacity=4))

        outcomes = await asyncio.gather(
            allocator.reserve(DAY, "19:00", 4, "RSV-1"),
            allocator.reserve(DAY, "19:30", 4, "RSV-2"),
        )

        assert all(o.success for o in outcomes)

    @pytest.mark.asyncio
    async def test_broken_accounting_raises(self):
        allocator = TimeSlotManager(BrokenSlotStore(), SlotPolicyConfig())

        with pytest.raises(InvariantViolationError) as exc_info:
            await allocator.reserve(DAY, "19:00", 2, "RSV-1")

        assert exc_info.value.details["booked"] == 12


class TestFindNearest:
    """Test alternative time suggestions"""

    @pytest.mark.asyncio
    async def test_nearest_open_times_by_distance(self, small_allocator):
        for i, slot_time in enumerate(small_allocator.valid_times()):
            if slot_time not in ("18:30", "20:00"):
                await small_allocator.reserve(DAY, slot_time, 4, f"RSV-{i}")

        nearest = await small_allocator.find_nearest(DAY, "19:00", 4, 3)

        assert nearest == ["18:30", "20:00"]

    @pytest.mark.asyncio
    async def test_ties_go_to_the_earlier_time(self, small_allocator):
        await small_allocator.reserve(DAY, "19:00", 4, "RSV-1")

        nearest = await small_allocator.find_nearest(DAY, "19:00", 2, 3)

        assert nearest == ["18:30", "19:30", "18:00"]

    @pytest.mark.asyncio
    async def test_default_limit_from_policy(self, allocator):
        nearest = await allocator.find_nearest(DAY, "19:00", 2)
        assert len(nearest) == 3
        assert nearest[0] == "19:00"

    @pytest.mark.asyncio
    async def test_blocked_buckets_skipped(self, allocator):
        await allocator.block(DAY, "18:30")
        nearest = await allocator.find_nearest(DAY, "18:30", 2, 2)
        assert nearest == ["18:00", "19:00"]

    @pytest.mark.asyncio
    async def test_party_larger_than_capacity(self, small_allocator):
        assert await small_allocator.find_nearest(DAY, "19:00", 5, 3) == []

    @pytest.mark.asyncio
    async def test_zero_results_requested(self, allocator):
        assert await allocator.find_nearest(DAY, "19:00", 2, 0) == []

    @pytest.mark.asyncio
    async def test_off_grid_preference(self, allocator):
        nearest = await allocator.find_nearest(DAY, "07:30", 2, 2)
        assert nearest == ["11:00", "11:30"]


class TestAdministration:
    """Test block, unblock, capacity and availability"""

    @pytest.mark.asyncio
    async def test_block_records_actor_and_reason(self, allocator):
        bucket = await allocator.block(DAY, "19:00", actor_id="manager-1", reason="private event")

        assert bucket.blocked is True
        assert bucket.blocked_by == "manager-1"
        assert bucket.blocked_reason == "private event"

    @pytest.mark.asyncio
    async def test_unblock_clears_block(self, allocator):
        await allocator.block(DAY, "19:00", actor_id="manager-1", reason="private event")
        bucket = await allocator.unblock(DAY, "19:00")

        assert bucket.blocked is False
        assert bucket.blocked_by is None
        assert bucket.blocked_reason is None
        assert (await allocator.reserve(DAY, "19:00", 2, "RSV-1")).success is True

    @pytest.mark.asyncio
    async def test_block_keeps_existing_bookings(self, allocator):
        await allocator.reserve(DAY, "19:00", 4, "RSV-1")
        bucket = await allocator.block(DAY, "19:00")
        assert bucket.booked == 4

    @pytest.mark.asyncio
    async def test_block_invalid_time(self, allocator):
        with pytest.raises(ValueError):
            await allocator.block(DAY, "19:15")

    @pytest.mark.asyncio
    async def test_set_capacity(self, allocator):
        await allocator.reserve(DAY, "19:00", 4, "RSV-1")

        bucket = await allocator.set_capacity(DAY, "19:00", 6)
        assert bucket.capacity == 6

        with pytest.raises(ValueError):
            await allocator.set_capacity(DAY, "19:00", 3)
        with pytest.raises(ValueError):
            await allocator.set_capacity(DAY, "19:00", -1)

        assert (await allocator.store.get(DAY, "19:00")).capacity == 6

    @pytest.mark.asyncio
    async def test_availability_summary(self, small_allocator):
        await small_allocator.block(DAY, "12:00")
        await small_allocator.reserve(DAY, "13:00", 4, "RSV-1")
        await small_allocator.reserve(DAY, "14:00", 2, "RSV-2")

        summary = await small_allocator.availability_summary(DAY)

        assert summary.date == DAY
        assert summary.total_slots == 23
        assert summary.blocked_slots == 1
        assert summary.fully_booked_slots == 1
        assert summary.available_slots == 21
        assert summary.total_capacity == 92
        assert summary.total_booked == 6
        assert summary.capacity_utilization == 6.52

        by_time = {slot.time: slot for slot in summary.slots}
        assert by_time["12:00"].status == SlotStatus.BLOCKED
        assert by_time["13:00"].status == SlotStatus.FULLY_BOOKED
        assert by_time["14:00"].booked == 2

    @pytest.mark.asyncio
    async def test_empty_day_summary(self, allocator):
        summary = await allocator.availability_summary(DAY)
        assert summary.available_slots == summary.total_slots
        assert summary.capacity_utilization == 0.0
