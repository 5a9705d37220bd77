"""
Diff engine

Turns a fresh fetch into state transitions, persists the new snapshot and
hands rising edges to the notifier.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from functools import partial
from datetime import date
from typing import Optional, List, Dict, Set, Tuple, Iterable, Callable

from ..common.errors import PersistenceError, UnknownProviderError
from ..common.models import (
    AvailabilityCell,
    CampsiteAvailability,
    CampsiteInfo,
    CellTransition,
    NotificationEvent,
    NotificationRecord,
    PairKey,
    Subscription,
    SubscriptionContext,
    utcnow,
)
from ..common.notifications import Notifier
from ..common.store import Store, Snapshot
from ..providers.registry import ProviderRegistry
from .locks import PairLocks

logger = logging.getLogger(__name__)

TOP_CAMPSITES = 5


def classify(prior: Optional[bool], current: Optional[bool]) -> CellTransition:
    """
    Transition of one cell. None means absent.

    Only a move from absent/False to True is a rising edge.
    """
    if current is True and prior is not True:
        return CellTransition.NEWLY_AVAILABLE
    if prior is True and current is not True:
        return CellTransition.NEWLY_UNAVAILABLE
    return CellTransition.UNCHANGED


@dataclass
class CellDiff:
    newly_available: List[AvailabilityCell] = field(default_factory=list)
    newly_unavailable: List[Tuple[str, date]] = field(default_factory=list)
    unchanged: int = 0


def diff_cells(prior: Snapshot, fetched: Iterable[AvailabilityCell], covered: Set[date]) -> CellDiff:
    """
    Classify every (site, day) on a covered day.

    Days outside `covered` were not fetched this cycle and are left alone.
    """
    current = {cell.key: cell for cell in fetched if cell.day in covered}
    keys = set(current) | {key for key in prior if key[1] in covered}

    result = CellDiff()
    for key in sorted(keys):
        before = prior.get(key)
        after = current.get(key)
        transition = classify(
            before.available if before else None,
            after.available if after else None
        )
        if transition == CellTransition.NEWLY_AVAILABLE:
            result.newly_available.append(after)
        elif transition == CellTransition.NEWLY_UNAVAILABLE:
            result.newly_unavailable.append(key)
        else:
            result.unchanged += 1
    return result


def match_subscriptions(
    cells: Iterable[AvailabilityCell],
    subscriptions: Iterable[Subscription]
) -> List[NotificationEvent]:
    """One event per matching subscription per newly available cell"""
    subscriptions = list(subscriptions)
    events = []
    for cell in cells:
        for sub in subscriptions:
            if (
                sub.active
                and sub.provider == cell.provider
                and sub.campground_id == cell.campground_id
                and sub.covers_day(cell.day)
                and sub.matches_site(cell.campsite_id)
            ):
                events.append(NotificationEvent(
                    subscription_id=sub.id,
                    user_id=sub.user_id,
                    provider=cell.provider,
                    campground_id=cell.campground_id,
                    campsite_id=cell.campsite_id,
                    day=cell.day
                ))
    return events


def current_availability(prior: Snapshot, fetched: Iterable[AvailabilityCell], covered: Set[date]) -> List[AvailabilityCell]:
    """Available cells once `fetched` replaces the covered days of `prior`"""
    current = {key: cell for key, cell in prior.items() if key[1] not in covered}
    current.update((cell.key, cell) for cell in fetched if cell.day in covered)
    return [cell for cell in current.values() if cell.available]


def subscription_context(
    subscription: Subscription,
    available: Iterable[AvailabilityCell],
    newly_unavailable: Iterable[Tuple[str, date]],
    campsites: Optional[Dict[str, CampsiteInfo]] = None,
    campsite_url: Optional[Callable[[str], str]] = None,
    limit: int = TOP_CAMPSITES
) -> SubscriptionContext:
    """What was just booked and which campsites have the most open nights for one subscription"""
    campsites = campsites or {}

    def wanted(site_id: str, day: date) -> bool:
        return subscription.matches_site(site_id) and subscription.covers_day(day)

    by_site: Dict[str, List[date]] = {}
    for cell in available:
        if cell.campground_id != subscription.campground_id:
            continue
        if wanted(cell.campsite_id, cell.day):
            by_site.setdefault(cell.campsite_id, []).append(cell.day)

    total_days = (subscription.end_date - subscription.start_date).days + 1
    ranked = sorted(by_site.items(), key=lambda item: (-len(item[1]), item[0]))
    top = [
        CampsiteAvailability(
            campsite_id=site_id,
            days=sorted(days),
            total_days=total_days,
            details=campsites.get(site_id),
            url=campsite_url(site_id) if campsite_url else None
        )
        for site_id, days in ranked[:limit]
    ]

    return SubscriptionContext(
        booked=sorted(key for key in newly_unavailable if wanted(*key)),
        top_campsites=top,
        campsites_available=len(by_site)
    )


@dataclass
class DiffOutcome:
    pair: PairKey
    persisted: bool = False
    newly_available: int = 0
    newly_unavailable: int = 0
    events: List[NotificationEvent] = field(default_factory=list)


@dataclass
class PreparedMessage:
    """Everything the notifier needs, gathered before the snapshot is written"""
    campground_name: Optional[str] = None
    url: Optional[str] = None
    contexts: Dict[int, SubscriptionContext] = field(default_factory=dict)


class DiffEngine:
    """Snapshot compare, persist and notify for one pair at a time"""

    def __init__(
        self,
        store: Store,
        notifier: Notifier,
        locks: PairLocks,
        registry: Optional[ProviderRegistry] = None
    ):
        self.store = store
        self.notifier = notifier
        self.locks = locks
        self.registry = registry

    async def apply(
        self,
        provider: str,
        campground_id: str,
        fetched: List[AvailabilityCell],
        covered: Set[date],
        subscriptions: Iterable[Subscription]
    ) -> DiffOutcome:
        """Diff and commit one fetch result under the pair's lock"""
        async with self.locks.hold(PairKey(provider, campground_id)):
            return await self.commit(provider, campground_id, fetched, covered, subscriptions)

    async def commit(
        self,
        provider: str,
        campground_id: str,
        fetched: List[AvailabilityCell],
        covered: Set[date],
        subscriptions: Iterable[Subscription]
    ) -> DiffOutcome:
        """
        Diff and commit one fetch result. The caller holds the pair's lock.

        When the snapshot cannot be persisted the events are suppressed, so
        the same edge is detected again on the next cycle. Once the snapshot
        write has started, it and the queueing of its notifications run to
        completion even if the caller is cancelled.
        """
        pair = PairKey(provider, campground_id)
        outcome = DiffOutcome(pair=pair)
        subscriptions = list(subscriptions)
        fetched = [cell for cell in fetched if cell.day in covered]

        try:
            prior = await self.store.get_snapshot(provider, campground_id)
        except PersistenceError as e:
            logger.error(f"Reading snapshot for {pair} failed, skipping this cycle: {e}")
            return outcome

        diff = diff_cells(prior, fetched, covered)
        events = match_subscriptions(diff.newly_available, subscriptions)
        message = None
        if events:
            message = await self._prepare(pair, prior, fetched, covered, diff, subscriptions, events)

        tail = asyncio.ensure_future(self._persist_and_notify(pair, fetched, covered, events, message))
        try:
            persisted = await asyncio.shield(tail)
        except asyncio.CancelledError:
            await tail
            raise

        if not persisted:
            return outcome

        outcome.persisted = True
        outcome.newly_available = len(diff.newly_available)
        outcome.newly_unavailable = len(diff.newly_unavailable)
        outcome.events = events

        if diff.newly_available or diff.newly_unavailable:
            logger.info(
                f"{pair}: {outcome.newly_available} newly available, "
                f"{outcome.newly_unavailable} newly unavailable, {len(events)} events"
            )
        return outcome

    async def _prepare(
        self,
        pair: PairKey,
        prior: Snapshot,
        fetched: List[AvailabilityCell],
        covered: Set[date],
        diff: CellDiff,
        subscriptions: List[Subscription],
        events: List[NotificationEvent]
    ) -> PreparedMessage:
        message = PreparedMessage()
        campsites: Dict[str, CampsiteInfo] = {}
        try:
            campground = await self.store.get_campground(pair.provider, pair.campground_id)
            message.campground_name = campground.name if campground else None
            campsites = {s.id: s for s in await self.store.list_campsites(pair.provider, pair.campground_id)}
        except PersistenceError as e:
            logger.warning(f"Catalog lookup failed for {pair}: {e}")

        campsite_url = None
        if self.registry is not None:
            try:
                provider = self.registry.get(pair.provider)
            except UnknownProviderError:
                provider = None
            if provider is not None:
                message.url = provider.campground_url(pair.campground_id)
                campsite_url = partial(provider.campsite_url, pair.campground_id)

        available = current_availability(prior, fetched, covered)
        notified = {e.subscription_id for e in events}
        for sub in subscriptions:
            if sub.id in notified:
                message.contexts[sub.id] = subscription_context(
                    sub, available, diff.newly_unavailable, campsites, campsite_url
                )
        return message

    async def _persist_and_notify(
        self,
        pair: PairKey,
        fetched: List[AvailabilityCell],
        covered: Set[date],
        events: List[NotificationEvent],
        message: Optional[PreparedMessage]
    ) -> bool:
        try:
            await self.store.replace_snapshot(pair.provider, pair.campground_id, fetched, covered)
        except PersistenceError as e:
            logger.error(f"Persist failed for {pair}, suppressing notifications this cycle: {e}")
            return False

        if not events:
            return True

        message = message or PreparedMessage()
        self.notifier.submit(
            events,
            campground_name=message.campground_name,
            url=message.url,
            contexts=message.contexts
        )

        now = utcnow()
        records = [
            NotificationRecord(
                subscription_id=e.subscription_id,
                user_id=e.user_id,
                provider=e.provider,
                campground_id=e.campground_id,
                campsite_id=e.campsite_id,
                day=e.day,
                sent_at=now
            )
            for e in events
        ]
        try:
            await self.store.record_notifications(records)
        except PersistenceError as e:
            logger.warning(f"Recording notifications for {pair} failed: {e}")
        return True
