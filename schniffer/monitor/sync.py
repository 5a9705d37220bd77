"""
Catalog sync

Pulls campgrounds, then per-campground campsite metadata, from each provider
into the store. Runs weekly per provider, with an immediate first sync when
the store has never synced that provider.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional, List

from ..common.config import Config
from ..common.errors import UpstreamError, PersistenceError
from ..common.models import CatalogSyncRecord, CatalogSyncType, SyncResult, utcnow
from ..common.notifications import Notifier
from ..common.scheduler import PeriodicTask, RateLimiter, wait_for_shutdown
from ..common.store import Store
from ..providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


class CatalogSync:
    """Keeps the campground and campsite catalog fresh"""

    def __init__(
        self,
        config: Config,
        store: Store,
        registry: ProviderRegistry,
        notifier: Optional[Notifier] = None
    ):
        self.config = config
        self.store = store
        self.registry = registry
        self.notifier = notifier
        self.min_resync = timedelta(hours=config.catalog_sync.min_resync_hours)
        self.interval = timedelta(hours=config.catalog_sync.interval_hours)

    async def _record(
        self,
        provider: str,
        sync_type: CatalogSyncType,
        started: datetime,
        count: int,
        error: Optional[str] = None,
        campground_id: Optional[str] = None
    ):
        try:
            await self.store.record_catalog_sync(CatalogSyncRecord(
                sync_type=sync_type,
                provider=provider,
                campground_id=campground_id,
                started_at=started,
                count=count,
                success=error is None,
                error_message=error
            ))
        except PersistenceError as e:
            logger.warning(f"Record {sync_type.value} sync for {provider} failed: {e}")

    async def _recently_synced(
        self,
        provider: str,
        sync_type: CatalogSyncType,
        now: datetime,
        campground_id: Optional[str] = None
    ) -> bool:
        last = await self.store.last_catalog_sync(provider, sync_type, campground_id)
        return last is not None and now - last.finished_at < self.min_resync

    async def sync_campgrounds(self, provider_name: str, force: bool = False) -> SyncResult:
        """Fetch the provider's campground list and upsert it"""
        started = utcnow()
        if not force and await self._recently_synced(provider_name, CatalogSyncType.CAMPGROUNDS, started):
            logger.info(f"Skipping campground sync for {provider_name}: synced within {self.min_resync}")
            return SyncResult(provider=provider_name, sync_type=CatalogSyncType.CAMPGROUNDS, skipped=True)

        provider = self.registry.get(provider_name)
        try:
            campgrounds = await provider.fetch_campgrounds()
            count = await self.store.upsert_campgrounds(provider_name, campgrounds)
        except (UpstreamError, PersistenceError) as e:
            logger.error(f"Campground sync for {provider_name} failed: {e}")
            await self._record(provider_name, CatalogSyncType.CAMPGROUNDS, started, 0, str(e))
            return SyncResult(
                provider=provider_name,
                sync_type=CatalogSyncType.CAMPGROUNDS,
                error_message=str(e)
            )

        await self._record(provider_name, CatalogSyncType.CAMPGROUNDS, started, count)
        logger.info(f"Campground sync for {provider_name} completed: {count} campgrounds in {utcnow() - started}")
        return SyncResult(provider=provider_name, sync_type=CatalogSyncType.CAMPGROUNDS, count=count)

    async def sync_campsites(
        self,
        provider_name: str,
        force: bool = False,
        shutdown: Optional[asyncio.Event] = None
    ) -> SyncResult:
        """
        Fetch campsite metadata for every stored campground of a provider.

        Campgrounds synced recently are skipped unless forced. A failing
        campground is announced on the summary channel, slows the sync down
        and does not stop the rest.
        """
        started = utcnow()
        result = SyncResult(provider=provider_name, sync_type=CatalogSyncType.CAMPSITES)
        provider = self.registry.get(provider_name)
        settings = self.config.catalog_sync
        limiter = RateLimiter(settings.campsite_requests_per_second, burst=settings.campsite_burst)

        try:
            campgrounds = await self.store.list_campgrounds(provider_name)
        except PersistenceError as e:
            result.error_message = f"failed to list campgrounds: {e}"
            return result

        if not campgrounds:
            logger.info(f"No campgrounds stored for {provider_name}, nothing to sync")
            return result

        logger.info(f"Starting campsite sync for {provider_name}: {len(campgrounds)} campgrounds")
        skipped = 0
        for campground in campgrounds:
            if shutdown is not None and shutdown.is_set():
                logger.warning(f"Campsite sync for {provider_name} interrupted by shutdown")
                break

            now = utcnow()
            if not force and await self._recently_synced(
                provider_name, CatalogSyncType.CAMPGROUND_CAMPSITES, now, campground.id
            ):
                skipped += 1
                continue

            async with limiter:
                try:
                    campsites = await provider.fetch_campsites(campground.id)
                except UpstreamError as e:
                    result.failed += 1
                    logger.warning(f"Failed to fetch campsites for {provider_name}/{campground.id}: {e}")
                    await self._record(
                        provider_name, CatalogSyncType.CAMPGROUND_CAMPSITES, now, 0, str(e), campground.id
                    )
                    await self._announce_failure(provider_name, campground.id)
                    if shutdown is not None:
                        await wait_for_shutdown(shutdown, settings.failure_pause_seconds)
                    else:
                        await asyncio.sleep(settings.failure_pause_seconds)
                    continue

            try:
                await self.store.upsert_campsites(provider_name, campground.id, campsites)
            except PersistenceError as e:
                logger.error(f"Failed to store campsites for {provider_name}/{campground.id}: {e}")
                result.error_message = f"failed to store campsite metadata: {e}"
                break

            await self._record(
                provider_name, CatalogSyncType.CAMPGROUND_CAMPSITES, now, len(campsites), campground_id=campground.id
            )
            result.count += 1

        await self._record(provider_name, CatalogSyncType.CAMPSITES, started, result.count, result.error_message)
        logger.info(
            f"Campsite sync for {provider_name} completed: {result.count} synced, "
            f"{skipped} skipped, {result.failed} failed"
        )
        return result

    async def _announce_failure(self, provider_name: str, campground_id: str):
        if self.notifier is None:
            return
        await self.notifier.send_channel_message(
            self.config.digest.channel_id,
            "Catalog sync error",
            f"⚠️ {provider_name} error while syncing campsite metadata for campground {campground_id}. Slowing down requests."
        )

    async def sync_provider(
        self,
        provider_name: str,
        force: bool = False,
        shutdown: Optional[asyncio.Event] = None
    ) -> List[SyncResult]:
        """Campgrounds first, then their campsites"""
        campgrounds = await self.sync_campgrounds(provider_name, force=force)
        campsites = await self.sync_campsites(provider_name, force=force, shutdown=shutdown)
        return [campgrounds, campsites]

    async def seconds_until_due(self, provider_name: str, now: Optional[datetime] = None) -> float:
        """0 when the provider has never been synced"""
        now = now or utcnow()
        last = await self.store.last_catalog_sync(provider_name, CatalogSyncType.CAMPGROUNDS)
        if last is None:
            return 0.0
        return max(0.0, (last.finished_at + self.interval - now).total_seconds())

    async def run_provider(self, provider_name: str, shutdown: asyncio.Event):
        """First-run sync if needed, then every `interval_hours`"""
        delay = await self.seconds_until_due(provider_name)
        if delay == 0:
            logger.info(f"Running initial catalog sync for {provider_name}")
        else:
            logger.info(f"Next catalog sync for {provider_name} in {delay / 3600:.1f}h")

        if await wait_for_shutdown(shutdown, delay):
            return

        async def job():
            await self.sync_provider(provider_name, shutdown=shutdown)

        task = PeriodicTask(f"catalog-sync-{provider_name}", job, self.interval.total_seconds())
        await task.run(shutdown)
