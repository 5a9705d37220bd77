"""
Per-campground mutual exclusion
"""
import asyncio
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Dict, Optional

from ..common.models import PairKey, utcnow


class PairLocks:
    """
    In-memory lock table keyed by (provider, campground_id).

    Idle entries are pruned after `ttl_seconds`. The table also remembers the
    last adhoc trigger per pair, which lets the debouncer answer without a
    store round trip.
    """

    def __init__(self, ttl_seconds: float = 3600):
        self.ttl_seconds = ttl_seconds
        self._locks: Dict[PairKey, asyncio.Lock] = {}
        self._last_used: Dict[PairKey, float] = {}
        self._triggers: Dict[PairKey, datetime] = {}

    def lock_for(self, pair: PairKey) -> asyncio.Lock:
        lock = self._locks.get(pair)
        if lock is None:
            lock = self._locks[pair] = asyncio.Lock()
        self._last_used[pair] = time.monotonic()
        return lock

    @asynccontextmanager
    async def hold(self, pair: PairKey):
        lock = self.lock_for(pair)
        async with lock:
            yield
        self._last_used[pair] = time.monotonic()

    def is_locked(self, pair: PairKey) -> bool:
        lock = self._locks.get(pair)
        return bool(lock and lock.locked())

    def mark_triggered(self, pair: PairKey, when: Optional[datetime] = None):
        self._triggers[pair] = when or utcnow()

    def recently_triggered(self, pair: PairKey, cooldown: timedelta, now: Optional[datetime] = None) -> bool:
        last = self._triggers.get(pair)
        if last is None:
            return False
        return (now or utcnow()) - last < cooldown

    def prune(self, cooldown: Optional[timedelta] = None) -> int:
        """Drop idle locks and expired triggers, returning how many locks were removed"""
        cutoff = time.monotonic() - self.ttl_seconds
        stale = [
            pair for pair, used in self._last_used.items()
            if used < cutoff and not self.is_locked(pair)
        ]
        for pair in stale:
            self._locks.pop(pair, None)
            self._last_used.pop(pair, None)

        if cooldown is not None:
            now = utcnow()
            for pair in [p for p, t in self._triggers.items() if now - t >= cooldown]:
                del self._triggers[pair]

        return len(stale)

    def __len__(self) -> int:
        return len(self._locks)
