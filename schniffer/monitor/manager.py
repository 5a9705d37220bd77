"""
Availability manager

Owns the polling cycle: expire subscriptions, coalesce the rest per
campground, fetch each campground once per cycle and feed the result to the
diff engine. Also owns the daily digest.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional, List, Dict, Iterable

from ..common.config import Config
from ..common.errors import UpstreamError, PersistenceError
from ..common.models import (
    AvailabilityCell,
    LookupRecord,
    PairKey,
    Subscription,
    utcnow,
)
from ..common.notifications import Notifier
from ..common.scheduler import PeriodicTask, DailySchedule
from ..common.store import Store
from ..providers.registry import ProviderRegistry
from .diff import DiffEngine
from .locks import PairLocks
from .planner import group_subscriptions, plan_pair, covered_days

logger = logging.getLogger(__name__)


@dataclass
class PairResult:
    pair: PairKey
    success: bool
    calls: int = 0
    cells: int = 0
    events: int = 0
    error: Optional[str] = None


@dataclass
class PollResult:
    """Summary of one polling cycle"""
    started_at: datetime = field(default_factory=utcnow)
    duration: float = 0.0
    pairs: List[PairResult] = field(default_factory=list)

    @property
    def calls(self) -> int:
        return sum(p.calls for p in self.pairs)

    @property
    def cells(self) -> int:
        return sum(p.cells for p in self.pairs)

    @property
    def events(self) -> int:
        return sum(p.events for p in self.pairs)

    @property
    def failed_pairs(self) -> List[PairKey]:
        return [p.pair for p in self.pairs if not p.success]


class AvailabilityManager:
    """
    Polling scheduler plus the shared fetch -> diff -> notify path.

    Fetches run concurrently across campgrounds, bounded per provider by a
    semaphore of `providers.<name>.max_concurrency`.
    """

    def __init__(
        self,
        config: Config,
        store: Store,
        registry: ProviderRegistry,
        notifier: Notifier,
        locks: Optional[PairLocks] = None,
        diff_engine: Optional[DiffEngine] = None
    ):
        self.config = config
        self.store = store
        self.registry = registry
        self.notifier = notifier
        self.locks = locks or PairLocks()
        self.diff = diff_engine or DiffEngine(store, notifier, self.locks, registry)
        self.semaphores: Dict[str, asyncio.Semaphore] = {
            name: asyncio.Semaphore(config.provider(name).max_concurrency)
            for name in registry.names()
        }
        self.daily = DailySchedule(config.digest.hour, config.digest.timezone)
        self._last_digest_day: Optional[date] = None

    # ========================================
    # Shared scrape path
    # ========================================

    async def scrape_pair(
        self,
        provider_name: str,
        campground_id: str,
        days: Iterable[date],
        subscriptions: Optional[List[Subscription]] = None
    ) -> PairResult:
        """
        Fetch every bucket for one campground, then diff, persist and notify.

        The pair's lock is held from the first fetch until the commit, so a
        scheduled and an adhoc scrape of the same campground never interleave.
        Any failing bucket fails the whole pair for this cycle.
        """
        pair = PairKey(provider_name, campground_id)
        provider = self.registry.get(provider_name)
        ranges = plan_pair(provider, days)
        result = PairResult(pair=pair, success=False)
        if not ranges:
            result.success = True
            return result

        cells: List[AvailabilityCell] = []
        semaphore = self.semaphores.setdefault(
            provider_name,
            asyncio.Semaphore(self.config.provider(provider_name).max_concurrency)
        )
        async with self.locks.hold(pair):
            if subscriptions is None:
                subscriptions = [s for s in await self.store.list_subscriptions() if s.pair == pair]

            async with semaphore:
                for r in ranges:
                    result.calls += 1
                    try:
                        fetched = await provider.fetch_availability(campground_id, r.start, r.end)
                    except UpstreamError as e:
                        result.error = str(e)
                        logger.warning(f"Fetch failed for {pair} {r.start}..{r.end}: {e}")
                    except Exception as e:
                        result.error = f"unexpected error: {e}"
                        logger.exception(f"Unexpected error fetching {pair} {r.start}..{r.end}: {e}")
                    else:
                        cells.extend(fetched)
                        await self._record_lookup(pair, r.start, r.end, True, cell_count=len(fetched))
                        continue

                    await self._record_lookup(pair, r.start, r.end, False, error=result.error)
                    return result

            result.cells = len(cells)
            outcome = await self.diff.commit(provider_name, campground_id, cells, covered_days(ranges), subscriptions)

        result.success = outcome.persisted
        result.events = len(outcome.events)
        if not outcome.persisted:
            result.error = "snapshot not persisted"
        return result

    async def _record_lookup(
        self,
        pair: PairKey,
        start: date,
        end: date,
        success: bool,
        cell_count: int = 0,
        error: Optional[str] = None
    ):
        try:
            await self.store.record_lookup(LookupRecord(
                provider=pair.provider,
                campground_id=pair.campground_id,
                start=start,
                end=end,
                success=success,
                error_message=error,
                cell_count=cell_count
            ))
        except PersistenceError as e:
            logger.warning(f"Recording lookup for {pair} failed: {e}")

    # ========================================
    # Polling cycle
    # ========================================

    async def poll_once(self, today: Optional[date] = None) -> PollResult:
        today = today or utcnow().date()
        started = time.monotonic()
        result = PollResult()

        try:
            await self.store.deactivate_expired(today)
        except PersistenceError as e:
            logger.warning(f"Expiring subscriptions failed: {e}")

        subscriptions = await self.store.list_subscriptions()
        work = group_subscriptions(subscriptions, today)

        jobs = []
        for pair, pair_work in work.items():
            if pair.provider not in self.registry:
                logger.warning(f"Skipping {pair}: provider {pair.provider} is not enabled")
                continue
            jobs.append(self.scrape_pair(pair.provider, pair.campground_id, pair_work.days, pair_work.subscriptions))

        outcomes = await asyncio.gather(*jobs, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.error(f"Pair scrape crashed: {outcome!r}")
                continue
            result.pairs.append(outcome)

        self.locks.prune()
        try:
            await self.store.flush()
        except PersistenceError as e:
            logger.warning(f"Flushing activity logs failed: {e}")
        result.duration = time.monotonic() - started
        logger.info(
            f"Poll cycle: {len(result.pairs)} campgrounds, {result.calls} calls, {result.cells} cells, "
            f"{result.events} events, {len(result.failed_pairs)} failed in {result.duration:.2f}s"
        )
        return result

    # ========================================
    # Daily digest
    # ========================================

    async def send_daily_digest(self, force: bool = False) -> bool:
        today = self.daily.now().date()
        if not force and self._last_digest_day == today:
            logger.debug("Digest already sent today")
            return False

        stats = await self.store.digest_stats()
        sent = await self.notifier.send_digest(self.config.digest.channel_id, stats)
        if sent:
            self._last_digest_day = today
            logger.info(f"Daily digest sent: {stats.notifications_24h} notifications, {stats.lookups_24h} lookups")
        return sent

    # ========================================
    # Loops
    # ========================================

    def polling_task(self) -> PeriodicTask:
        return PeriodicTask("availability-poll", self.poll_once, self.config.polling.interval_seconds)

    def digest_task(self) -> PeriodicTask:
        return PeriodicTask(
            "daily-digest",
            self.send_daily_digest,
            self.daily.seconds_until_next,
            run_immediately=False
        )
