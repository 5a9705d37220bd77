"""
Tests for per-campground locks (schniffer/monitor/locks.py)
"""
import pytest
import asyncio
from datetime import datetime, timedelta, timezone

from schniffer.common.models import PairKey
from schniffer.monitor.locks import PairLocks

PAIR = PairKey("recreation_gov", "232447")


class TestPairLocks:
    def test_same_lock_per_pair(self):
        locks = PairLocks()
        assert locks.lock_for(PAIR) is locks.lock_for(PAIR)
        assert locks.lock_for(PAIR) is not locks.lock_for(PairKey("recreation_gov", "1"))

    @pytest.mark.asyncio
    async def test_hold_serializes(self):
        locks = PairLocks()
        order = []

        async def worker(name: str):
            async with locks.hold(PAIR):
                order.append(f"{name}-in")
                await asyncio.sleep(0.01)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a"), worker("b"))
        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_is_locked(self):
        locks = PairLocks()
        async with locks.hold(PAIR):
            assert locks.is_locked(PAIR)
        assert not locks.is_locked(PAIR)

    def test_prune_idle(self):
        locks = PairLocks(ttl_seconds=-1)
        locks.lock_for(PAIR)
        assert locks.prune() == 1
        assert len(locks) == 0

    def test_recently_triggered(self):
        locks = PairLocks()
        now = datetime(2030, 8, 1, 12, 0, tzinfo=timezone.utc)
        cooldown = timedelta(minutes=5)
        assert not locks.recently_triggered(PAIR, cooldown, now)
        locks.mark_triggered(PAIR, now)
        assert locks.recently_triggered(PAIR, cooldown, now + timedelta(minutes=4))
        assert not locks.recently_triggered(PAIR, cooldown, now + timedelta(minutes=5))

    def test_prune_expired_triggers(self):
        locks = PairLocks()
        locks.mark_triggered(PAIR, datetime(2000, 1, 1, tzinfo=timezone.utc))
        locks.prune(cooldown=timedelta(minutes=5))
        assert not locks.recently_triggered(PAIR, timedelta(days=365 * 100))
