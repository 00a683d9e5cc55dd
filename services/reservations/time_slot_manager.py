"""
Time-slot allocation engine.

Owns capacity accounting for (date, time) buckets. The check-then-increment in
reserve is one atomic step in every store: a per-bucket asyncio.Lock in memory,
a Lua script in Redis.
"""

import asyncio
import datetime as dt
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import redis.asyncio as aioredis

from .config import SlotPolicyConfig, minutes_to_time, time_to_minutes
from .error_models import InvariantViolationError
from .logging_adapter import get_safe_logger
from .metrics import reservation_outcomes
from .models import (
    AvailabilitySummary,
    ReleaseOutcome,
    ReserveOutcome,
    ReserveReason,
    SlotAvailability,
    SlotStatus,
    TimeSlotBucket,
)

logger = get_safe_logger("reservations.time_slot_manager")

BucketKey = Tuple[dt.date, str]


class SlotStore(ABC):
    """Persistence for time-slot buckets; every mutating call is atomic per bucket"""

    @abstractmethod
    async def get(self, slot_date: dt.date, slot_time: str) -> Optional[TimeSlotBucket]:
        """Return the bucket or None if it was never created"""

    @abstractmethod
    async def get_many(self, slot_date: dt.date, slot_times: List[str]) -> Dict[str, TimeSlotBucket]:
        """Return existing buckets of one day keyed by time"""

    @abstractmethod
    async def get_or_create(self, slot_date: dt.date, slot_time: str, default_capacity: int) -> TimeSlotBucket:
        """Return the bucket, creating it with default capacity if missing"""

    @abstractmethod
    async def reserve(
        self,
        slot_date: dt.date,
        slot_time: str,
        guest_count: int,
        reservation_id: str,
        default_capacity: int
    ) -> ReserveOutcome:
        """Add guest_count to booked only if not blocked and it still fits"""

    @abstractmethod
    async def release(
        self,
        slot_date: dt.date,
        slot_time: str,
        reservation_id: str,
        default_capacity: int
    ) -> ReleaseOutcome:
        """Subtract the amount recorded for reservation_id"""

    @abstractmethod
    async def set_blocked(
        self,
        slot_date: dt.date,
        slot_time: str,
        blocked: bool,
        reason: Optional[str],
        actor_id: Optional[str],
        default_capacity: int
    ) -> TimeSlotBucket:
        """Toggle the administrative block"""

    @abstractmethod
    async def set_capacity(
        self,
        slot_date: dt.date,
        slot_time: str,
        capacity: int,
        default_capacity: int
    ) -> Tuple[bool, TimeSlotBucket]:
        """Change capacity unless it would drop below booked"""

    async def close(self) -> None:
        return None


class InMemorySlotStore(SlotStore):
    """
    Process-local bucket store.
    All accounting for one bucket happens while holding that bucket's lock.
    """

    def __init__(self):
        self._buckets: Dict[BucketKey, TimeSlotBucket] = {}
        self._locks: Dict[BucketKey, asyncio.Lock] = {}

    def _lock_for(self, key: BucketKey) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def _read(self, key: BucketKey) -> Optional[TimeSlotBucket]:
        bucket = self._buckets.get(key)
        return bucket.model_copy(deep=True) if bucket else None

    async def _write(self, bucket: TimeSlotBucket) -> None:
        self._buckets[bucket.key] = bucket.model_copy(deep=True)

    async def _load_or_new(self, key: BucketKey, default_capacity: int) -> TimeSlotBucket:
        bucket = await self._read(key)
        if bucket is None:
            bucket = TimeSlotBucket(slot_date=key[0], slot_time=key[1], capacity=default_capacity)
        return bucket

    async def get(self, slot_date, slot_time):
        return await self._read((slot_date, slot_time))

    async def get_many(self, slot_date, slot_times):
        found = {}
        for slot_time in slot_times:
            bucket = await self._read((slot_date, slot_time))
            if bucket is not None:
                found[slot_time] = bucket
        return found

    async def get_or_create(self, slot_date, slot_time, default_capacity):
        key = (slot_date, slot_time)
        async with self._lock_for(key):
            bucket = await self._read(key)
            if bucket is None:
                bucket = TimeSlotBucket(slot_date=slot_date, slot_time=slot_time, capacity=default_capacity)
                await self._write(bucket)
            return bucket

    async def reserve(self, slot_date, slot_time, guest_count, reservation_id, default_capacity):
        key = (slot_date, slot_time)
        async with self._lock_for(key):
            bucket = await self._load_or_new(key, default_capacity)

            if reservation_id in bucket.reservations:
                return ReserveOutcome(success=True, reason=ReserveReason.DUPLICATE, bucket=bucket)
            if bucket.blocked:
                return ReserveOutcome(success=False, reason=ReserveReason.BLOCKED, bucket=bucket)
            if bucket.capacity - bucket.booked < guest_count:
                return ReserveOutcome(success=False, reason=ReserveReason.CAPACITY, bucket=bucket)

            bucket.booked += guest_count
            bucket.reservations[reservation_id] = guest_count
            await self._write(bucket)
            return ReserveOutcome(success=True, reason=ReserveReason.RESERVED, bucket=bucket)

    async def release(self, slot_date, slot_time, reservation_id, default_capacity):
        key = (slot_date, slot_time)
        async with self._lock_for(key):
            bucket = await self._read(key)
            if bucket is None or reservation_id not in bucket.reservations:
                return ReleaseOutcome(released=False, bucket=bucket)

            amount = bucket.reservations.pop(reservation_id)
            bucket.booked = max(0, bucket.booked - amount)
            await self._write(bucket)
            return ReleaseOutcome(released=True, guest_count=amount, bucket=bucket)

    async def set_blocked(self, slot_date, slot_time, blocked, reason, actor_id, default_capacity):
        key = (slot_date, slot_time)
        async with self._lock_for(key):
            bucket = await self._load_or_new(key, default_capacity)
            bucket.blocked = blocked
            bucket.blocked_reason = reason if blocked else None
            bucket.blocked_by = actor_id if blocked else None
            await self._write(bucket)
            return bucket

    async def set_capacity(self, slot_date, slot_time, capacity, default_capacity):
        key = (slot_date, slot_time)
        async with self._lock_for(key):
            bucket = await self._load_or_new(key, default_capacity)
            if capacity < bucket.booked:
                return False, bucket
            bucket.capacity = capacity
            await self._write(bucket)
            return True, bucket


# Shared prelude: materialise the bucket hash if missing and define the reply helper.
_LUA_PRELUDE = """
local key = KEYS[1]
local default_capacity = tonumber(ARGV[1])
if redis.call('EXISTS', key) == 0 then
    redis.call('HSET', key, 'capacity', default_capacity, 'booked', 0, 'blocked', 0, 'reservations', '{}')
end
local function reply(status, amount)
    local out = {status, tostring(amount or 0)}
    local fields = redis.call('HGETALL', key)
    for i = 1, #fields do
        out[#out + 1] = fields[i]
    end
    return out
end
"""

_LUA_GET_OR_CREATE = _LUA_PRELUDE + """
return reply('ok')
"""

_LUA_RESERVE = _LUA_PRELUDE + """
local guests = tonumber(ARGV[2])
local reservation_id = ARGV[3]
local reservations = cjson.decode(redis.call('HGET', key, 'reservations') or '{}')
if reservations[reservation_id] then
    return reply('duplicate')
end
if redis.call('HGET', key, 'blocked') == '1' then
    return reply('blocked')
end
local capacity = tonumber(redis.call('HGET', key, 'capacity'))
local booked = tonumber(redis.call('HGET', key, 'booked'))
if capacity - booked < guests then
    return reply('capacity')
end
reservations[reservation_id] = guests
redis.call('HSET', key, 'booked', booked + guests, 'reservations', cjson.encode(reservations))
return reply('reserved', guests)
"""

_LUA_RELEASE = _LUA_PRELUDE + """
local reservation_id = ARGV[2]
local reservations = cjson.decode(redis.call('HGET', key, 'reservations') or '{}')
local amount = reservations[reservation_id]
if not amount then
    return reply('unknown')
end
reservations[reservation_id] = nil
local booked = tonumber(redis.call('HGET', key, 'booked')) - amount
if booked < 0 then
    booked = 0
end
local encoded = '{}'
if next(reservations) ~= nil then
    encoded = cjson.encode(reservations)
end
redis.call('HSET', key, 'booked', booked, 'reservations', encoded)
return reply('released', amount)
"""

_LUA_BLOCK = _LUA_PRELUDE + """
redis.call('HSET', key, 'blocked', 1, 'blocked_reason', ARGV[2], 'blocked_by', ARGV[3])
return reply('ok')
"""

_LUA_UNBLOCK = _LUA_PRELUDE + """
redis.call('HSET', key, 'blocked', 0)
redis.call('HDEL', key, 'blocked_reason', 'blocked_by')
return reply('ok')
"""

_LUA_SET_CAPACITY = _LUA_PRELUDE + """
local capacity = tonumber(ARGV[2])
if capacity < tonumber(redis.call('HGET', key, 'booked')) then
    return reply('refused')
end
redis.call('HSET', key, 'capacity', capacity)
return reply('ok')
"""


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


class RedisSlotStore(SlotStore):
    """
    Redis-backed bucket store.
    Each bucket is a hash; every mutation is a Lua script run with EVAL.
    """

    def __init__(self, redis_client: aioredis.Redis, key_prefix: str = "reservations"):
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _key(self, slot_date: dt.date, slot_time: str) -> str:
        return f"{self.key_prefix}:slot:{slot_date.isoformat()}:{slot_time}"

    @staticmethod
    def _bucket_from_hash(slot_date: dt.date, slot_time: str, raw: Dict[Any, Any]) -> TimeSlotBucket:
        data = {_text(k): _text(v) for k, v in raw.items()}
        return TimeSlotBucket(
            slot_date=slot_date,
            slot_time=slot_time,
            capacity=int(data.get("capacity", 0)),
            booked=int(data.get("booked", 0)),
            blocked=data.get("blocked", "0") == "1",
            blocked_reason=data.get("blocked_reason") or None,
            blocked_by=data.get("blocked_by") or None,
            reservations={k: int(v) for k, v in json.loads(data.get("reservations") or "{}").items()},
        )

    async def _run(
        self,
        script: str,
        slot_date: dt.date,
        slot_time: str,
        *args
    ) -> Tuple[str, int, TimeSlotBucket]:
        result = await self.redis.eval(script, 1, self._key(slot_date, slot_time), *args)
        status = _text(result[0])
        amount = int(float(_text(result[1])))
        flat = result[2:]
        raw = dict(zip(flat[0::2], flat[1::2]))
        return status, amount, self._bucket_from_hash(slot_date, slot_time, raw)

    async def get(self, slot_date, slot_time):
        raw = await self.redis.hgetall(self._key(slot_date, slot_time))
        if not raw:
            return None
        return self._bucket_from_hash(slot_date, slot_time, raw)

    async def get_many(self, slot_date, slot_times):
        pipe = self.redis.pipeline()
        for slot_time in slot_times:
            pipe.hgetall(self._key(slot_date, slot_time))
        results = await pipe.execute()
        return {
            slot_time: self._bucket_from_hash(slot_date, slot_time, raw)
            for slot_time, raw in zip(slot_times, results)
            if raw
        }

    async def get_or_create(self, slot_date, slot_time, default_capacity):
        _, _, bucket = await self._run(_LUA_GET_OR_CREATE, slot_date, slot_time, default_capacity)
        return bucket

    async def reserve(self, slot_date, slot_time, guest_count, reservation_id, default_capacity):
        status, _, bucket = await self._run(
            _LUA_RESERVE, slot_date, slot_time, default_capacity, guest_count, reservation_id
        )
        reason = ReserveReason(status)
        return ReserveOutcome(
            success=reason in (ReserveReason.RESERVED, ReserveReason.DUPLICATE),
            reason=reason,
            bucket=bucket
        )

    async def release(self, slot_date, slot_time, reservation_id, default_capacity):
        status, amount, bucket = await self._run(
            _LUA_RELEASE, slot_date, slot_time, default_capacity, reservation_id
        )
        if status != "released":
            return ReleaseOutcome(released=False, bucket=bucket)
        return ReleaseOutcome(released=True, guest_count=amount, bucket=bucket)

    async def set_blocked(self, slot_date, slot_time, blocked, reason, actor_id, default_capacity):
        if blocked:
            _, _, bucket = await self._run(
                _LUA_BLOCK, slot_date, slot_time, default_capacity, reason or "", actor_id or ""
            )
        else:
            _, _, bucket = await self._run(_LUA_UNBLOCK, slot_date, slot_time, default_capacity)
        return bucket

    async def set_capacity(self, slot_date, slot_time, capacity, default_capacity):
        status, _, bucket = await self._run(
            _LUA_SET_CAPACITY, slot_date, slot_time, default_capacity, capacity
        )
        return status == "ok", bucket


class TimeSlotManager:
    """Allocation engine over a pluggable SlotStore"""

    def __init__(self, store: SlotStore, policy: Optional[SlotPolicyConfig] = None):
        self.store = store
        self.policy = policy or SlotPolicyConfig()
        opening = time_to_minutes(self.policy.opening_time)
        closing = time_to_minutes(self.policy.closing_time)
        self._valid_times = [
            minutes_to_time(m)
            for m in range(opening, closing + 1, self.policy.granularity_minutes)
        ]
        self._valid_time_set = set(self._valid_times)

    def valid_times(self) -> List[str]:
        """Every bucket time in the operating window, ascending"""
        return list(self._valid_times)

    def is_valid_time(self, slot_time: str) -> bool:
        return slot_time in self._valid_time_set

    def _require_valid_time(self, slot_time: str) -> None:
        if not self.is_valid_time(slot_time):
            raise ValueError(
                f"{slot_time} is not a bookable time "
                f"({self.policy.opening_time}-{self.policy.closing_time}, "
                f"every {self.policy.granularity_minutes} minutes)"
            )

    def _checked(self, bucket: Optional[TimeSlotBucket], operation: str) -> Optional[TimeSlotBucket]:
        if bucket is None:
            return None
        try:
            bucket.check_invariants()
        except InvariantViolationError as e:
            logger.critical(
                "capacity_invariant_violated",
                operation=operation,
                error=e.to_error_detail().model_dump(mode="json"),
            )
            raise
        return bucket

    @staticmethod
    def has_availability(bucket: TimeSlotBucket, guest_count: int) -> bool:
        return bucket.has_availability(guest_count)

    async def get_or_create(self, slot_date: dt.date, slot_time: str) -> TimeSlotBucket:
        self._require_valid_time(slot_time)
        bucket = await self.store.get_or_create(slot_date, slot_time, self.policy.default_capacity)
        return self._checked(bucket, "get_or_create")

    async def reserve(
        self,
        slot_date: dt.date,
        slot_time: str,
        guest_count: int,
        reservation_id: str
    ) -> ReserveOutcome:
        """
        Atomically reserve guest_count seats.
        A conflict comes back as an unsuccessful outcome, never as an exception.
        """
        if guest_count <= 0 or not self.is_valid_time(slot_time):
            logger.info(
                "reservation_invalid_slot",
                date=slot_date.isoformat(),
                time=slot_time,
                guest_count=guest_count,
            )
            reservation_outcomes.labels(reason=ReserveReason.INVALID_SLOT.value).inc()
            return ReserveOutcome(success=False, reason=ReserveReason.INVALID_SLOT)

        outcome = await self.store.reserve(
            slot_date, slot_time, guest_count, reservation_id, self.policy.default_capacity
        )
        self._checked(outcome.bucket, "reserve")
        reservation_outcomes.labels(reason=outcome.reason.value).inc()

        if outcome.success:
            logger.info(
                "slot_reserved",
                date=slot_date.isoformat(),
                time=slot_time,
                guest_count=guest_count,
                reservation_id=reservation_id,
                duplicate=outcome.reason == ReserveReason.DUPLICATE,
                booked=outcome.bucket.booked,
                capacity=outcome.bucket.capacity,
            )
        else:
            logger.info(
                "reservation_conflict",
                date=slot_date.isoformat(),
                time=slot_time,
                guest_count=guest_count,
                reason=outcome.reason.value,
            )
        return outcome

    async def release(
        self,
        slot_date: dt.date,
        slot_time: str,
        guest_count: int,
        reservation_id: str
    ) -> ReleaseOutcome:
        """
        Release a reservation. The amount recorded at reserve time is what gets
        subtracted; guest_count is only compared against it.
        """
        outcome = await self.store.release(
            slot_date, slot_time, reservation_id, self.policy.default_capacity
        )
        self._checked(outcome.bucket, "release")

        if not outcome.released:
            logger.warning(
                "release_unknown_reservation",
                date=slot_date.isoformat(),
                time=slot_time,
                reservation_id=reservation_id,
            )
            return outcome

        if outcome.guest_count != guest_count:
            logger.warning(
                "release_amount_mismatch",
                reservation_id=reservation_id,
                requested=guest_count,
                recorded=outcome.guest_count,
            )
        logger.info(
            "slot_released",
            date=slot_date.isoformat(),
            time=slot_time,
            guest_count=outcome.guest_count,
            reservation_id=reservation_id,
        )
        return outcome

    async def find_nearest(
        self,
        slot_date: dt.date,
        preferred_time: str,
        guest_count: int,
        max_results: Optional[int] = None
    ) -> List[str]:
        """
        Available times closest to preferred_time.
        Ordered by minute distance, ties going to the earlier time.
        """
        limit = max_results if max_results is not None else self.policy.alternatives
        if limit <= 0:
            return []

        preferred = time_to_minutes(preferred_time)
        candidates = sorted(
            self._valid_times,
            key=lambda t: (abs(time_to_minutes(t) - preferred), time_to_minutes(t))
        )
        existing = await self.store.get_many(slot_date, candidates)

        matches = []
        for slot_time in candidates:
            bucket = existing.get(slot_time)
            if bucket is None:
                available = guest_count <= self.policy.default_capacity
            else:
                available = bucket.has_availability(guest_count)
            if available:
                matches.append(slot_time)
                if len(matches) >= limit:
                    break
        return matches

    async def block(
        self,
        slot_date: dt.date,
        slot_time: str,
        actor_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> TimeSlotBucket:
        self._require_valid_time(slot_time)
        bucket = await self.store.set_blocked(
            slot_date, slot_time, True, reason, actor_id, self.policy.default_capacity
        )
        logger.info("slot_blocked", date=slot_date.isoformat(), time=slot_time, actor_id=actor_id, reason=reason)
        return self._checked(bucket, "block")

    async def unblock(self, slot_date: dt.date, slot_time: str) -> TimeSlotBucket:
        self._require_valid_time(slot_time)
        bucket = await self.store.set_blocked(
            slot_date, slot_time, False, None, None, self.policy.default_capacity
        )
        logger.info("slot_unblocked", date=slot_date.isoformat(), time=slot_time)
        return self._checked(bucket, "unblock")

    async def set_capacity(self, slot_date: dt.date, slot_time: str, capacity: int) -> TimeSlotBucket:
        """Administrative capacity change; refused when below current bookings"""
        self._require_valid_time(slot_time)
        if capacity < 0:
            raise ValueError("capacity must not be negative")

        updated, bucket = await self.store.set_capacity(
            slot_date, slot_time, capacity, self.policy.default_capacity
        )
        if not updated:
            logger.warning(
                "capacity_change_refused",
                date=slot_date.isoformat(),
                time=slot_time,
                capacity=capacity,
                booked=bucket.booked,
            )
            raise ValueError(f"capacity {capacity} is below the {bucket.booked} seats already booked")

        logger.info("slot_capacity_changed", date=slot_date.isoformat(), time=slot_time, capacity=capacity)
        return self._checked(bucket, "set_capacity")

    async def availability_summary(self, slot_date: dt.date) -> AvailabilitySummary:
        """Classify every bucket time of the day; missing buckets count as available"""
        existing = await self.store.get_many(slot_date, self._valid_times)

        slots = []
        total_capacity = 0
        total_booked = 0
        for slot_time in self._valid_times:
            bucket = self._checked(existing.get(slot_time), "availability_summary")
            capacity = bucket.capacity if bucket else self.policy.default_capacity
            booked = bucket.booked if bucket else 0

            if bucket and bucket.blocked:
                status = SlotStatus.BLOCKED
            elif booked >= capacity:
                status = SlotStatus.FULLY_BOOKED
            else:
                status = SlotStatus.AVAILABLE

            total_capacity += capacity
            total_booked += booked
            slots.append(SlotAvailability(time=slot_time, status=status, capacity=capacity, booked=booked))

        utilization = round(total_booked / total_capacity * 100, 2) if total_capacity else 0.0
        return AvailabilitySummary(
            date=slot_date,
            total_slots=len(slots),
            available_slots=sum(1 for s in slots if s.status == SlotStatus.AVAILABLE),
            fully_booked_slots=sum(1 for s in slots if s.status == SlotStatus.FULLY_BOOKED),
            blocked_slots=sum(1 for s in slots if s.status == SlotStatus.BLOCKED),
            total_capacity=total_capacity,
            total_booked=total_booked,
            capacity_utilization=utilization,
            slots=slots,
        )
