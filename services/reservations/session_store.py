"""
Session storage for dialogue sessions.
Sessions are kept as JSON documents with an inactivity TTL; turns for one
session are serialised through lock().
"""

import asyncio
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis
from pydantic import ValidationError

from .error_models import SessionCorruptedError
from .logging_adapter import get_safe_logger
from .metrics import active_sessions, sessions_recreated_total
from .models import Session

logger = get_safe_logger("reservations.session_store")


def decode_session(session_id: str, raw) -> Session:
    """Parse a stored session document or raise SessionCorruptedError"""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        session = Session.model_validate_json(raw)
    except ValidationError as e:
        raise SessionCorruptedError(session_id, f"{e.error_count()} validation error(s)") from e
    if session.session_id != session_id:
        raise SessionCorruptedError(session_id, "stored session id does not match key")
    return session


class SessionStore(ABC):
    """Maps a session id to its Session"""

    async def get(self, session_id: str) -> Optional[Session]:
        """
        Load a session. A malformed document is logged, deleted and
        reported as absent so the caller starts again from greeting.
        """
        raw = await self._load(session_id)
        if raw is None:
            return None
        try:
            return decode_session(session_id, raw)
        except SessionCorruptedError as e:
            logger.warning("session_recreated", session_id=session_id, reason=e.details["reason"])
            sessions_recreated_total.labels(reason="corrupted").inc()
            await self.delete(session_id)
            return None

    @abstractmethod
    async def _load(self, session_id: str) -> Optional[str]:
        """Return the raw stored document"""

    @abstractmethod
    async def save(self, session: Session) -> None:
        """Store the session and refresh its TTL"""

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove the session; True if it existed"""

    @abstractmethod
    def lock(self, session_id: str):
        """Async context manager that serialises turns of one session"""

    async def close(self) -> None:
        return None


class InMemorySessionStore(SessionStore):
    """Process-local session store for tests and single-instance deployments"""

    def __init__(self, ttl_seconds: int = 1800, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, Tuple[str, float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        # Turns holding or waiting on each lock; the lock is dropped at zero
        self._lock_users: Dict[str, int] = {}

    async def _load(self, session_id):
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at <= self._clock():
            logger.info("session_expired", session_id=session_id)
            self._sessions.pop(session_id, None)
            active_sessions.set(len(self._sessions))
            return None
        return raw

    async def save(self, session):
        self.evict_expired()
        self._sessions[session.session_id] = (
            session.model_dump_json(),
            self._clock() + self.ttl_seconds,
        )
        active_sessions.set(len(self._sessions))

    async def delete(self, session_id):
        existed = self._sessions.pop(session_id, None) is not None
        active_sessions.set(len(self._sessions))
        return existed

    def evict_expired(self) -> int:
        """Drop every expired session; returns how many were removed"""
        now = self._clock()
        expired = [sid for sid, (_, expires_at) in self._sessions.items() if expires_at <= now]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            logger.info("sessions_evicted", count=len(expired))
        active_sessions.set(len(self._sessions))
        return len(expired)

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._lock_users[session_id] - 1
            if remaining:
                self._lock_users[session_id] = remaining
            else:
                del self._lock_users[session_id]
                del self._locks[session_id]


class RedisSessionStore(SessionStore):
    """Redis session store; documents written with SETEX so inactivity expires them"""

    def __init__(
        self,
        redis_client: aioredis.Redis,
        ttl_seconds: int = 1800,
        key_prefix: str = "reservations",
        lock_timeout_seconds: float = 10.0
    ):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.lock_timeout_seconds = lock_timeout_seconds

    def _key(self, session_id: str) -> str:
        return f"{self.key_prefix}:session:{session_id}"

    async def _load(self, session_id):
        return await self.redis.get(self._key(session_id))

    async def save(self, session):
        await self.redis.setex(
            self._key(session.session_id),
            self.ttl_seconds,
            session.model_dump_json()
        )

    async def delete(self, session_id):
        return bool(await self.redis.delete(self._key(session_id)))

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self.redis.lock(
            f"{self._key(session_id)}:lock",
            timeout=self.lock_timeout_seconds,
            blocking_timeout=self.lock_timeout_seconds,
        )
        async with lock:
            yield
