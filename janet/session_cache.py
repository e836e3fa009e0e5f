"""Session cache: one live reasoning session per user, expired after a TTL.

Creation is guarded by a per-user lock so concurrent first messages from the
same user end up sharing a single session. A user's lock lives only while a
caller holds or waits on it, so clearing the cache never strands an in-flight
creator. Entries expire two ways:

  - lazily, when an access finds the entry older than the TTL
  - proactively, through a ``loop.call_later`` timer scheduled at creation

Both paths remove only the exact entry they were scheduled for, so a timer
left over from an expired session never evicts its replacement.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

DEFAULT_TTL = 30 * 60.0  # seconds


class UserLocks:
    """One asyncio.Lock per user, kept only while someone holds or waits on it."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str):
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        self._users[user_id] = self._users.get(user_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[user_id] -= 1
            if not self._users[user_id]:
                del self._users[user_id]
                del self._locks[user_id]

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._locks


@dataclass(eq=False)
class SessionCacheEntry:
    user_id: str
    session: Any
    created_at: float
    timer: Optional[asyncio.TimerHandle] = field(default=None, repr=False)


class SessionCache:
    """Maps user id -> reasoning session, creating sessions on demand."""

    def __init__(
        self,
        factory: Callable[[str], Awaitable[Any]],
        ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._factory = factory
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, SessionCacheEntry] = {}
        self._locks = UserLocks()
        self.created = 0
        self.expired = 0

    def _is_expired(self, entry: SessionCacheEntry) -> bool:
        return self._clock() - entry.created_at >= self.ttl

    def _remove(self, entry: SessionCacheEntry) -> bool:
        if self._entries.get(entry.user_id) is not entry:
            return False
        del self._entries[entry.user_id]
        if entry.timer:
            entry.timer.cancel()
            entry.timer = None
        return True

    def _expire(self, entry: SessionCacheEntry) -> None:
        if self._remove(entry):
            self.expired += 1
            logger.info(f"[SESSION] Expired session for {entry.user_id}")

    async def get_session(self, user_id: str) -> Any:
        """Return the live session for ``user_id``, creating one if needed.

        Factory errors propagate and leave no entry behind.
        """
        async with self._locks.hold(user_id):
            entry = self._entries.get(user_id)
            if entry is not None:
                if not self._is_expired(entry):
                    return entry.session
                self._expire(entry)

            session = await self._factory(user_id)
            entry = SessionCacheEntry(user_id=user_id, session=session, created_at=self._clock())
            self._entries[user_id] = entry
            entry.timer = asyncio.get_running_loop().call_later(self.ttl, self._expire, entry)
            self.created += 1
            logger.info(f"[SESSION] Created session for {user_id} (active={len(self._entries)})")
            return session

    def invalidate(self, user_id: str) -> bool:
        entry = self._entries.get(user_id)
        if entry is None:
            return False
        return self._remove(entry)

    def clear(self) -> None:
        for entry in list(self._entries.values()):
            self._remove(entry)

    def __contains__(self, user_id: str) -> bool:
        entry = self._entries.get(user_id)
        return entry is not None and not self._is_expired(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict:
        return {
            "active": len(self._entries),
            "created": self.created,
            "expired": self.expired,
            "ttl_seconds": self.ttl,
        }
