"""
Scrape planning

Coalesces active subscriptions into one unit of work per (provider,
campground) and asks each provider how to bucket the requested days.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Optional, List, Dict, Set, Iterable

from ..common.models import PairKey, Subscription, DateRange, normalize_day
from ..providers.base import Provider

logger = logging.getLogger(__name__)

__all__ = [
    "PairWork",
    "normalize_day",
    "subscription_days",
    "group_subscriptions",
    "plan_pair",
    "covered_days",
]


@dataclass
class PairWork:
    """Everything the scheduler needs to fetch one campground"""
    pair: PairKey
    subscriptions: List[Subscription] = field(default_factory=list)
    days: Set[date] = field(default_factory=set)
    ranges: List[DateRange] = field(default_factory=list)


def subscription_days(subscription: Subscription, today: Optional[date] = None) -> List[date]:
    """Inclusive days of the subscription, skipping those before today"""
    start = subscription.start_date
    if today is not None and today > start:
        start = today
    days = []
    current = start
    while current <= subscription.end_date:
        days.append(current)
        current += timedelta(days=1)
    return days


def group_subscriptions(
    subscriptions: Iterable[Subscription],
    today: Optional[date] = None
) -> Dict[PairKey, PairWork]:
    grouped: Dict[PairKey, PairWork] = {}
    for sub in subscriptions:
        if not sub.active:
            continue
        days = subscription_days(sub, today)
        if not days:
            continue
        work = grouped.get(sub.pair)
        if work is None:
            work = grouped[sub.pair] = PairWork(pair=sub.pair)
        work.subscriptions.append(sub)
        work.days.update(days)
    return grouped


def covered_days(ranges: Iterable[DateRange]) -> Set[date]:
    days = set()
    for r in ranges:
        days.update(r.days())
    return days


def plan_pair(provider: Provider, days: Iterable[date]) -> List[DateRange]:
    """
    Bucket days with the provider's own planner.

    Any day the provider leaves uncovered is added back as a single-day range.
    """
    requested = {normalize_day(d) for d in days}
    ranges = provider.plan_buckets(requested)

    missing = requested - covered_days(ranges)
    if missing:
        logger.warning(f"Provider {provider.name} left {len(missing)} day(s) uncovered; adding single-day ranges")
        ranges = ranges + [DateRange(start=d, end=d) for d in sorted(missing)]
        ranges.sort(key=lambda r: (r.start, r.end))

    return ranges
