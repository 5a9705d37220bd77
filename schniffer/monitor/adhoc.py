"""
On-demand ("adhoc") scrapes

A user looking at a campground can ask for an immediate check. Requests are
debounced per campground: inside the cool-down window at most one pending
request exists, however many users ask.
"""
import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Optional, List, Set

from ..common.config import AdhocConfig
from ..common.errors import SchnifferError, PersistenceError
from ..common.models import AdhocScrapeRequest, AdhocStatus, PairKey, utcnow
from ..common.store import Store
from .locks import PairLocks
from .manager import AvailabilityManager
from .planner import subscription_days

logger = logging.getLogger(__name__)


class AdhocScraper:
    """Debounced out-of-band scrapes through the manager's scrape path"""

    def __init__(
        self,
        manager: AvailabilityManager,
        store: Store,
        locks: PairLocks,
        config: Optional[AdhocConfig] = None
    ):
        self.manager = manager
        self.store = store
        self.locks = locks
        self.config = config or AdhocConfig()
        self.cooldown = timedelta(seconds=self.config.cooldown_seconds)
        self._tasks: Set[asyncio.Task] = set()

    async def can_request(self, provider: str, campground_id: str, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        pair = PairKey(provider, campground_id)
        if self.locks.recently_triggered(pair, self.cooldown, now):
            return False
        latest = await self.store.latest_adhoc(provider, campground_id)
        return latest is None or now - latest.requested_at >= self.cooldown

    async def request(
        self,
        provider: str,
        campground_id: str,
        user_id: str,
        now: Optional[datetime] = None
    ) -> Optional[AdhocScrapeRequest]:
        """New pending request, or None when debounced"""
        now = now or utcnow()
        pair = PairKey(provider, campground_id)
        if self.locks.recently_triggered(pair, self.cooldown, now):
            logger.debug(f"Adhoc request for {pair} debounced in memory")
            return None

        created = await self.store.create_adhoc_if_absent(provider, campground_id, user_id, now, self.cooldown)
        if created is None:
            return None

        self.locks.mark_triggered(pair, now)
        logger.info(f"Adhoc request #{created.id} for {pair} by user {user_id}")
        return created

    async def days_for(self, provider: str, campground_id: str, today: Optional[date] = None) -> Set[date]:
        """Active subscription days for the pair plus the default horizon from today"""
        today = today or utcnow().date()
        days = {today + timedelta(days=i) for i in range(self.config.horizon_days)}
        for sub in await self.store.list_subscriptions():
            if sub.provider == provider and sub.campground_id == campground_id:
                days.update(subscription_days(sub, today))
        return days

    async def process(self, request: AdhocScrapeRequest) -> AdhocScrapeRequest:
        """Run the scrape for a pending request and record the outcome"""
        try:
            days = await self.days_for(request.provider, request.campground_id)
            result = await asyncio.wait_for(
                self.manager.scrape_pair(request.provider, request.campground_id, days),
                timeout=self.config.timeout_seconds
            )
            if result.success:
                request.mark_completed()
            else:
                request.mark_failed(result.error or "scrape failed")
        except asyncio.TimeoutError:
            request.mark_failed(f"timed out after {self.config.timeout_seconds:.0f}s")
        except SchnifferError as e:
            request.mark_failed(str(e))

        if request.status == AdhocStatus.FAILED:
            logger.warning(f"Adhoc request #{request.id} for {request.pair} failed: {request.error_message}")
        else:
            logger.info(f"Adhoc request #{request.id} for {request.pair} completed")

        try:
            await self.store.update_adhoc(request)
        except PersistenceError as e:
            logger.error(f"Updating adhoc request #{request.id} failed: {e}")
        return request

    async def request_and_process(
        self,
        provider: str,
        campground_id: str,
        user_id: str
    ) -> Optional[AdhocScrapeRequest]:
        request = await self.request(provider, campground_id, user_id)
        if request is None or request.status != AdhocStatus.PENDING:
            return request
        return await self.process(request)

    def submit(self, provider: str, campground_id: str, user_id: str) -> asyncio.Task:
        """Schedule request_and_process in the background"""
        task = asyncio.create_task(
            self.request_and_process(provider, campground_id, user_id),
            name=f"adhoc-{provider}-{campground_id}"
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def in_flight(self) -> List[asyncio.Task]:
        return list(self._tasks)

    async def wait_idle(self):
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
