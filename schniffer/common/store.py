"""
Persistence for Schniffer

The monitor talks to storage only through the async `Store` interface. Every
mutating call is atomic with respect to every other call.
"""
import asyncio
import json
import logging
import os
from abc import ABC, abstractmethod
from datetime import datetime, date, timedelta
from pathlib import Path
from typing import Optional, Dict, List, Iterable, Tuple

from .errors import PersistenceError
from .models import (
    Subscription,
    AvailabilityCell,
    CampgroundInfo,
    CampsiteInfo,
    AdhocScrapeRequest,
    AdhocStatus,
    LookupRecord,
    NotificationRecord,
    CatalogSyncRecord,
    CatalogSyncType,
    DigestStats,
    PairKey,
    utcnow,
)

logger = logging.getLogger(__name__)

Snapshot = Dict[Tuple[str, date], AvailabilityCell]


class Store(ABC):
    """Persistent store contract used by the monitor"""

    # Subscriptions

    @abstractmethod
    async def add_subscription(self, subscription: Subscription) -> Subscription:
        pass

    @abstractmethod
    async def list_subscriptions(self, active_only: bool = True) -> List[Subscription]:
        pass

    @abstractmethod
    async def deactivate_subscription(self, subscription_id: int) -> bool:
        pass

    @abstractmethod
    async def deactivate_expired(self, today: date) -> int:
        """Deactivate subscriptions whose end date is before today, returning how many"""
        pass

    # Availability snapshot

    @abstractmethod
    async def get_snapshot(self, provider: str, campground_id: str) -> Snapshot:
        pass

    @abstractmethod
    async def replace_snapshot(
        self,
        provider: str,
        campground_id: str,
        cells: List[AvailabilityCell],
        covered: Iterable[date],
        checked_at: Optional[datetime] = None
    ):
        """
        Commit a fetch result for one pair in a single atomic step.

        Fetched cells are upserted. Previously known cells on covered days that
        the fetch did not return are written as unavailable.
        """
        pass

    # Activity logs

    @abstractmethod
    async def record_lookup(self, record: LookupRecord):
        pass

    @abstractmethod
    async def record_notifications(self, records: List[NotificationRecord]):
        pass

    # Catalog

    @abstractmethod
    async def upsert_campgrounds(self, provider: str, campgrounds: List[CampgroundInfo]) -> int:
        pass

    @abstractmethod
    async def list_campgrounds(self, provider: str) -> List[CampgroundInfo]:
        pass

    @abstractmethod
    async def get_campground(self, provider: str, campground_id: str) -> Optional[CampgroundInfo]:
        pass

    @abstractmethod
    async def upsert_campsites(self, provider: str, campground_id: str, campsites: List[CampsiteInfo]) -> int:
        pass

    @abstractmethod
    async def list_campsites(self, provider: str, campground_id: str) -> List[CampsiteInfo]:
        pass

    @abstractmethod
    async def record_catalog_sync(self, record: CatalogSyncRecord):
        pass

    @abstractmethod
    async def last_catalog_sync(
        self,
        provider: str,
        sync_type: CatalogSyncType,
        campground_id: Optional[str] = None
    ) -> Optional[CatalogSyncRecord]:
        """Most recent successful sync of this type"""
        pass

    # Adhoc scrape requests

    @abstractmethod
    async def create_adhoc_if_absent(
        self,
        provider: str,
        campground_id: str,
        user_id: str,
        now: datetime,
        cooldown: timedelta
    ) -> Optional[AdhocScrapeRequest]:
        """
        Insert a pending request unless one exists for the pair within the
        cool-down window. Returns the new row, or None when debounced.
        """
        pass

    @abstractmethod
    async def get_adhoc(self, request_id: int) -> Optional[AdhocScrapeRequest]:
        pass

    @abstractmethod
    async def update_adhoc(self, request: AdhocScrapeRequest):
        pass

    @abstractmethod
    async def latest_adhoc(self, provider: str, campground_id: str) -> Optional[AdhocScrapeRequest]:
        pass

    # Digest

    @abstractmethod
    async def digest_stats(self, now: Optional[datetime] = None) -> DigestStats:
        pass

    async def flush(self):
        pass

    async def close(self):
        pass


class MemoryStore(Store):
    """
    In-process store with optional JSON file persistence.

    One asyncio.Lock serializes all access. When a state file is configured,
    the state is loaded on `open()` and rewritten in a worker thread after
    every change to subscriptions, snapshots or adhoc requests; a failed write
    rolls back the in-memory change and raises PersistenceError. Activity logs
    and catalog entries only mark the state dirty and ride along with the next
    write, or with `flush()` / `close()`.
    """

    def __init__(self, state_file: Optional[str] = None):
        self.state_file = Path(state_file) if state_file else None
        self._lock = asyncio.Lock()
        self._subscriptions: Dict[int, Subscription] = {}
        self._snapshots: Dict[PairKey, Snapshot] = {}
        self._lookups: List[LookupRecord] = []
        self._notifications: List[NotificationRecord] = []
        self._campgrounds: Dict[str, Dict[str, CampgroundInfo]] = {}
        self._campsites: Dict[PairKey, Dict[str, CampsiteInfo]] = {}
        self._syncs: Dict[tuple, CatalogSyncRecord] = {}
        self._adhoc: Dict[int, AdhocScrapeRequest] = {}
        self._next_subscription_id = 1
        self._next_adhoc_id = 1
        self.log_retention = timedelta(days=7)
        self._dirty = False

    # ========================================
    # File persistence
    # ========================================

    def open(self) -> bool:
        """Load state from file"""
        if not self.state_file or not self.state_file.exists():
            return False

        try:
            with open(self.state_file) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to load state from {self.state_file}: {e}") from e

        for raw in data.get("subscriptions", []):
            sub = Subscription.model_validate(raw)
            self._subscriptions[sub.id] = sub
        for raw in data.get("cells", []):
            cell = AvailabilityCell.model_validate(raw)
            pair = PairKey(cell.provider, cell.campground_id)
            self._snapshots.setdefault(pair, {})[cell.key] = cell
        self._lookups = [LookupRecord.model_validate(r) for r in data.get("lookups", [])]
        self._notifications = [NotificationRecord.model_validate(r) for r in data.get("notifications", [])]
        for provider, entries in data.get("campgrounds", {}).items():
            self._campgrounds[provider] = {
                e["id"]: CampgroundInfo.model_validate(e) for e in entries
            }
        for key, entries in data.get("campsites", {}).items():
            provider, _, campground_id = key.partition("|")
            self._campsites[PairKey(provider, campground_id)] = {
                e["id"]: CampsiteInfo.model_validate(e) for e in entries
            }
        for raw in data.get("syncs", []):
            self._keep_sync(CatalogSyncRecord.model_validate(raw))
        for raw in data.get("adhoc", []):
            req = AdhocScrapeRequest.model_validate(raw)
            self._adhoc[req.id] = req

        self._next_subscription_id = max(data.get("next_subscription_id", 1), max(self._subscriptions, default=0) + 1)
        self._next_adhoc_id = max(data.get("next_adhoc_id", 1), max(self._adhoc, default=0) + 1)

        logger.info(
            f"State loaded from {self.state_file}: {len(self._subscriptions)} subscriptions, "
            f"{sum(len(s) for s in self._snapshots.values())} cells"
        )
        return True

    def _dump(self) -> dict:
        return {
            "subscriptions": [s.model_dump(mode="json") for s in self._subscriptions.values()],
            "cells": [
                c.model_dump(mode="json")
                for snapshot in self._snapshots.values()
                for c in snapshot.values()
            ],
            "lookups": [r.model_dump(mode="json") for r in self._lookups],
            "notifications": [r.model_dump(mode="json") for r in self._notifications],
            "campgrounds": {
                provider: [c.model_dump(mode="json") for c in entries.values()]
                for provider, entries in self._campgrounds.items()
            },
            "campsites": {
                f"{pair.provider}|{pair.campground_id}": [c.model_dump(mode="json") for c in entries.values()]
                for pair, entries in self._campsites.items()
            },
            "syncs": [r.model_dump(mode="json") for r in self._syncs.values()],
            "adhoc": [r.model_dump(mode="json") for r in self._adhoc.values()],
            "next_subscription_id": self._next_subscription_id,
            "next_adhoc_id": self._next_adhoc_id,
        }

    def _write(self, data: dict):
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        with open(tmp, 'w') as f:
            json.dump(data, f, default=str)
        os.replace(tmp, self.state_file)

    async def _commit(self):
        """Write the whole state. Caller holds the lock."""
        if not self.state_file:
            self._dirty = False
            return

        data = self._dump()
        try:
            await asyncio.to_thread(self._write, data)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save state to {self.state_file}: {e}") from e
        self._dirty = False
        logger.debug(f"State saved to {self.state_file}")

    async def flush(self):
        """Write pending log and catalog changes, if any"""
        async with self._lock:
            if self._dirty:
                await self._commit()

    async def close(self):
        await self.flush()

    def _prune_logs(self, now: datetime):
        cutoff = now - self.log_retention
        self._lookups = [r for r in self._lookups if r.checked_at >= cutoff]
        self._notifications = [r for r in self._notifications if r.sent_at >= cutoff]

    def _keep_sync(self, record: CatalogSyncRecord):
        """Only the latest record per (provider, type, campground, outcome) is kept"""
        key = (record.provider, record.sync_type, record.campground_id, record.success)
        current = self._syncs.get(key)
        if current is None or record.finished_at >= current.finished_at:
            self._syncs[key] = record

    def _prune_adhoc(self, now: datetime, cooldown: timedelta):
        stale = [
            request_id for request_id, r in self._adhoc.items()
            if (r.status != AdhocStatus.PENDING and now - r.requested_at >= cooldown)
            or now - r.requested_at >= self.log_retention
        ]
        for request_id in stale:
            del self._adhoc[request_id]

    # ========================================
    # Subscriptions
    # ========================================

    async def add_subscription(self, subscription: Subscription) -> Subscription:
        async with self._lock:
            sub = subscription.model_copy(update={"id": self._next_subscription_id})
            self._subscriptions[sub.id] = sub
            try:
                await self._commit()
            except PersistenceError:
                del self._subscriptions[sub.id]
                raise
            self._next_subscription_id += 1
            logger.info(f"Added subscription {sub.id} for user {sub.user_id} on {sub.pair}")
            return sub

    async def list_subscriptions(self, active_only: bool = True) -> List[Subscription]:
        async with self._lock:
            return [
                s for s in self._subscriptions.values()
                if s.active or not active_only
            ]

    async def deactivate_subscription(self, subscription_id: int) -> bool:
        async with self._lock:
            sub = self._subscriptions.get(subscription_id)
            if not sub or not sub.active:
                return False
            sub.active = False
            try:
                await self._commit()
            except PersistenceError:
                sub.active = True
                raise
            return True

    async def deactivate_expired(self, today: date) -> int:
        async with self._lock:
            expired = [s for s in self._subscriptions.values() if s.active and s.is_expired(today)]
            for sub in expired:
                sub.active = False
            if expired:
                try:
                    await self._commit()
                except PersistenceError:
                    for sub in expired:
                        sub.active = True
                    raise
                logger.info(f"Deactivated {len(expired)} expired subscriptions")
            return len(expired)

    # ========================================
    # Availability snapshot
    # ========================================

    async def get_snapshot(self, provider: str, campground_id: str) -> Snapshot:
        async with self._lock:
            return dict(self._snapshots.get(PairKey(provider, campground_id), {}))

    async def replace_snapshot(
        self,
        provider: str,
        campground_id: str,
        cells: List[AvailabilityCell],
        covered: Iterable[date],
        checked_at: Optional[datetime] = None
    ):
        checked_at = checked_at or utcnow()
        covered = set(covered)
        pair = PairKey(provider, campground_id)

        async with self._lock:
            previous = self._snapshots.get(pair, {})
            updated = dict(previous)
            fetched = set()

            for cell in cells:
                updated[cell.key] = cell
                fetched.add(cell.key)

            for key, cell in previous.items():
                if key[1] in covered and key not in fetched and cell.available:
                    updated[key] = cell.model_copy(update={"available": False, "last_checked": checked_at})

            self._snapshots[pair] = updated
            try:
                await self._commit()
            except PersistenceError:
                self._snapshots[pair] = previous
                raise

    # ========================================
    # Activity logs
    # ========================================

    async def record_lookup(self, record: LookupRecord):
        async with self._lock:
            self._lookups.append(record)
            self._prune_logs(utcnow())
            self._dirty = True

    async def record_notifications(self, records: List[NotificationRecord]):
        if not records:
            return
        async with self._lock:
            self._notifications.extend(records)
            self._dirty = True

    # ========================================
    # Catalog
    # ========================================

    async def upsert_campgrounds(self, provider: str, campgrounds: List[CampgroundInfo]) -> int:
        async with self._lock:
            entries = self._campgrounds.setdefault(provider, {})
            for cg in campgrounds:
                entries[cg.id] = cg
            self._dirty = True
            return len(campgrounds)

    async def list_campgrounds(self, provider: str) -> List[CampgroundInfo]:
        async with self._lock:
            return list(self._campgrounds.get(provider, {}).values())

    async def get_campground(self, provider: str, campground_id: str) -> Optional[CampgroundInfo]:
        async with self._lock:
            return self._campgrounds.get(provider, {}).get(campground_id)

    async def upsert_campsites(self, provider: str, campground_id: str, campsites: List[CampsiteInfo]) -> int:
        async with self._lock:
            entries = self._campsites.setdefault(PairKey(provider, campground_id), {})
            for site in campsites:
                entries[site.id] = site
            self._dirty = True
            return len(campsites)

    async def list_campsites(self, provider: str, campground_id: str) -> List[CampsiteInfo]:
        async with self._lock:
            return list(self._campsites.get(PairKey(provider, campground_id), {}).values())

    async def record_catalog_sync(self, record: CatalogSyncRecord):
        async with self._lock:
            self._keep_sync(record)
            self._dirty = True

    async def last_catalog_sync(
        self,
        provider: str,
        sync_type: CatalogSyncType,
        campground_id: Optional[str] = None
    ) -> Optional[CatalogSyncRecord]:
        async with self._lock:
            return self._syncs.get((provider, sync_type, campground_id, True))

    # ========================================
    # Adhoc scrape requests
    # ========================================

    async def create_adhoc_if_absent(
        self,
        provider: str,
        campground_id: str,
        user_id: str,
        now: datetime,
        cooldown: timedelta
    ) -> Optional[AdhocScrapeRequest]:
        async with self._lock:
            self._prune_adhoc(now, cooldown)
            for existing in self._adhoc.values():
                if (
                    existing.provider == provider
                    and existing.campground_id == campground_id
                    and now - existing.requested_at < cooldown
                ):
                    logger.debug(f"Adhoc request for {provider}/{campground_id} debounced by #{existing.id}")
                    return None

            request = AdhocScrapeRequest(
                id=self._next_adhoc_id,
                provider=provider,
                campground_id=campground_id,
                user_id=user_id,
                requested_at=now,
                status=AdhocStatus.PENDING
            )
            self._adhoc[request.id] = request
            try:
                await self._commit()
            except PersistenceError:
                del self._adhoc[request.id]
                raise
            self._next_adhoc_id += 1
            return request.model_copy()

    async def get_adhoc(self, request_id: int) -> Optional[AdhocScrapeRequest]:
        async with self._lock:
            request = self._adhoc.get(request_id)
            return request.model_copy() if request else None

    async def update_adhoc(self, request: AdhocScrapeRequest):
        async with self._lock:
            if request.id not in self._adhoc:
                raise PersistenceError(f"Unknown adhoc request {request.id}")
            previous = self._adhoc[request.id]
            self._adhoc[request.id] = request.model_copy()
            try:
                await self._commit()
            except PersistenceError:
                self._adhoc[request.id] = previous
                raise

    async def latest_adhoc(self, provider: str, campground_id: str) -> Optional[AdhocScrapeRequest]:
        async with self._lock:
            matches = [
                r for r in self._adhoc.values()
                if r.provider == provider and r.campground_id == campground_id
            ]
            latest = max(matches, key=lambda r: r.requested_at, default=None)
            return latest.model_copy() if latest else None

    # ========================================
    # Digest
    # ========================================

    async def digest_stats(self, now: Optional[datetime] = None) -> DigestStats:
        now = now or utcnow()
        since = now - timedelta(hours=24)

        async with self._lock:
            active = [s for s in self._subscriptions.values() if s.active]
            recent_notifications = [r for r in self._notifications if r.sent_at >= since]

            tracked = []
            for pair in sorted({s.pair for s in active}):
                info = self._campgrounds.get(pair.provider, {}).get(pair.campground_id)
                tracked.append(info.name if info else str(pair))

            return DigestStats(
                total_subscriptions=len(self._subscriptions),
                active_subscriptions=len(active),
                lookups_24h=sum(1 for r in self._lookups if r.checked_at >= since),
                notifications_24h=len(recent_notifications),
                users_notified=sorted({r.user_id for r in recent_notifications}),
                users_active=sorted({s.user_id for s in active}),
                tracked_campgrounds=tracked
            )
