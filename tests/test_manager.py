"""
Tests for the availability manager (schniffer/monitor/manager.py)
"""
import pytest
import asyncio
import json
from datetime import date

from schniffer.common.models import AvailabilityCell, DateRange, PairKey
from schniffer.common.notifications import Notifier
from schniffer.common.store import MemoryStore
from schniffer.monitor.locks import PairLocks
from schniffer.monitor.manager import AvailabilityManager
from schniffer.providers.registry import ProviderRegistry

from conftest import FakeProvider

TODAY = date(2030, 7, 1)


def build_manager(config, store, chat, provider: FakeProvider) -> AvailabilityManager:
    registry = ProviderRegistry()
    registry.register("recreation_gov", provider)
    return AvailabilityManager(config, store, registry, Notifier(chat, config.notifications), PairLocks())


class ScriptedProvider(FakeProvider):
    """Each fetch pops (delay, open sites) off the script"""

    def __init__(self, script):
        super().__init__()
        self.script = list(script)
        self.fetching = asyncio.Event()

    async def fetch_availability(self, campground_id, start, end):
        delay, sites = self.script.pop(0)
        self.calls.append((campground_id, start, end))
        self.fetching.set()
        await asyncio.sleep(delay)
        return [
            AvailabilityCell(
                provider=self.name,
                campground_id=campground_id,
                campsite_id=site,
                day=day,
                available=True,
            )
            for site in sites
            for day in DateRange(start=start, end=end).days()
        ]


class TestScrapePair:
    @pytest.mark.asyncio
    async def test_success(self, config, store, chat, make_subscription):
        provider = FakeProvider(available={"X": ["A1"]})
        manager = build_manager(config, store, chat, provider)
        sub = await store.add_subscription(make_subscription(campground_id="X"))

        result = await manager.scrape_pair("recreation_gov", "X", sub.days())
        assert result.success
        assert result.calls == 1
        assert result.cells == 5
        assert result.events == 5

    @pytest.mark.asyncio
    async def test_failure_records_lookup(self, config, store, chat):
        provider = FakeProvider(failing={"X"})
        manager = build_manager(config, store, chat, provider)

        result = await manager.scrape_pair("recreation_gov", "X", [date(2030, 8, 1)])
        assert not result.success
        assert "upstream down" in result.error
        assert (await store.digest_stats()).lookups_24h == 1
        assert await store.get_snapshot("recreation_gov", "X") == {}


class TestPollOnce:
    @pytest.mark.asyncio
    async def test_failure_isolated_per_campground(self, config, store, chat, make_subscription):
        provider = FakeProvider(available={"X": ["A1"], "Y": ["B1"]}, failing={"X"})
        manager = build_manager(config, store, chat, provider)
        await store.add_subscription(make_subscription(user_id="amy", campground_id="X"))
        await store.add_subscription(make_subscription(user_id="zed", campground_id="Y"))

        result = await manager.poll_once(today=TODAY)

        assert [str(p) for p in result.failed_pairs] == ["recreation_gov/X"]
        assert result.events == 5
        assert await store.get_snapshot("recreation_gov", "X") == {}
        assert len(await store.get_snapshot("recreation_gov", "Y")) == 5
        queued = []
        while not manager.notifier.queue.empty():
            queued.append(manager.notifier.queue.get_nowait().user_id)
        assert queued == ["zed"]

    @pytest.mark.asyncio
    async def test_one_fetch_per_campground(self, config, store, chat, make_subscription):
        provider = FakeProvider()
        manager = build_manager(config, store, chat, provider)
        await store.add_subscription(make_subscription(user_id="a", start=date(2030, 8, 1), end=date(2030, 8, 3)))
        await store.add_subscription(make_subscription(user_id="b", start=date(2030, 8, 10), end=date(2030, 8, 12)))

        await manager.poll_once(today=TODAY)
        assert provider.calls == [("232447", date(2030, 8, 1), date(2030, 8, 12))]

    @pytest.mark.asyncio
    async def test_expired_subscriptions_deactivated(self, config, store, chat, make_subscription):
        provider = FakeProvider()
        manager = build_manager(config, store, chat, provider)
        await store.add_subscription(make_subscription(start=date(2030, 6, 1), end=date(2030, 6, 30)))

        result = await manager.poll_once(today=TODAY)
        assert result.pairs == []
        assert await store.list_subscriptions() == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_unknown_provider_skipped(self, config, store, chat, make_subscription):
        provider = FakeProvider()
        manager = build_manager(config, store, chat, provider)
        await store.add_subscription(make_subscription(provider="reservecalifornia", campground_id="1/2"))

        result = await manager.poll_once(today=TODAY)
        assert result.pairs == []

    @pytest.mark.asyncio
    async def test_concurrency_bounded_per_provider(self, config, store, chat, make_subscription):
        provider = FakeProvider()
        manager = build_manager(config, store, chat, provider)
        for i in range(6):
            await store.add_subscription(make_subscription(campground_id=f"cg-{i}"))

        await manager.poll_once(today=TODAY)
        assert len(provider.calls) == 6
        assert provider.max_in_flight <= config.provider("recreation_gov").max_concurrency

    @pytest.mark.asyncio
    async def test_activity_logs_written_each_cycle(self, config, chat, make_subscription, tmp_path):
        path = tmp_path / "state.json"
        store = MemoryStore(str(path))
        manager = build_manager(config, store, chat, FakeProvider(available={"232447": ["A1"]}))
        await store.add_subscription(make_subscription())

        await manager.poll_once(today=TODAY)

        state = json.loads(path.read_text())
        assert len(state["lookups"]) == 1
        assert len(state["notifications"]) == 5


class TestDailyDigest:
    @pytest.mark.asyncio
    async def test_sent_once_per_day(self, config, store, chat):
        manager = build_manager(config, store, chat, FakeProvider())
        assert await manager.send_daily_digest() is True
        assert await manager.send_daily_digest() is False
        assert await manager.send_daily_digest(force=True) is True
        assert len(chat.channel_messages) == 2
        assert chat.channel_messages[0][0] == "summary"

    @pytest.mark.asyncio
    async def test_no_channel(self, config, store, chat):
        config.digest.channel_id = None
        manager = build_manager(config, store, chat, FakeProvider())
        assert await manager.send_daily_digest() is False
        assert chat.channel_messages == []


class TestSameCampground:
    @pytest.mark.asyncio
    async def test_overlapping_scrapes_notify_once(self, config, store, chat, make_subscription):
        # The first fetch sees A1 booked but answers late, the next two see it open
        provider = ScriptedProvider([(0.05, []), (0, ["A1"]), (0, ["A1"])])
        manager = build_manager(config, store, chat, provider)
        sub = await store.add_subscription(make_subscription(start=date(2030, 8, 1), end=date(2030, 8, 1)))
        days = list(sub.days())

        slow = asyncio.create_task(manager.scrape_pair("recreation_gov", "232447", days))
        await provider.fetching.wait()
        fast = await manager.scrape_pair("recreation_gov", "232447", days)
        first = await slow
        later = await manager.scrape_pair("recreation_gov", "232447", days)

        assert (first.events, fast.events, later.events) == (0, 1, 0)
        assert manager.notifier.queue.qsize() == 1
        snapshot = await store.get_snapshot("recreation_gov", "232447")
        assert snapshot[("A1", date(2030, 8, 1))].available is True

    @pytest.mark.asyncio
    async def test_lock_held_while_fetching(self, config, store, chat):
        provider = ScriptedProvider([(0.05, [])])
        manager = build_manager(config, store, chat, provider)

        task = asyncio.create_task(manager.scrape_pair("recreation_gov", "232447", [date(2030, 8, 1)]))
        await provider.fetching.wait()
        assert manager.locks.is_locked(PairKey("recreation_gov", "232447"))
        await task
        assert not manager.locks.is_locked(PairKey("recreation_gov", "232447"))
