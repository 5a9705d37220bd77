"""
Tests for scrape planning (schniffer/monitor/planner.py)
"""
from datetime import date, datetime, timezone
from typing import List

import httpx

from schniffer.common.models import DateRange, PairKey
from schniffer.monitor.planner import (
    covered_days,
    group_subscriptions,
    plan_pair,
    subscription_days,
)
from schniffer.providers.recreation_gov import RecreationGov
from schniffer.providers.reserve_california import ReserveCalifornia


class LazyProvider(RecreationGov):
    """Pretends to cover only the first requested day"""

    def plan_buckets(self, days) -> List[DateRange]:
        first = min(days)
        return [DateRange(start=first, end=first)]


class TestSubscriptionDays:
    def test_all_days(self, make_subscription):
        sub = make_subscription(start=date(2030, 8, 1), end=date(2030, 8, 3))
        assert subscription_days(sub) == [date(2030, 8, 1), date(2030, 8, 2), date(2030, 8, 3)]

    def test_past_days_skipped(self, make_subscription):
        sub = make_subscription(start=date(2030, 8, 1), end=date(2030, 8, 3))
        assert subscription_days(sub, today=date(2030, 8, 3)) == [date(2030, 8, 3)]
        assert subscription_days(sub, today=date(2030, 8, 4)) == []


class TestGroupSubscriptions:
    def test_coalesces_per_campground(self, make_subscription):
        subs = [
            make_subscription(user_id="a", start=date(2030, 8, 1), end=date(2030, 8, 2)),
            make_subscription(user_id="b", start=date(2030, 8, 2), end=date(2030, 8, 3)),
            make_subscription(user_id="c", campground_id="999"),
        ]
        work = group_subscriptions(subs)
        assert set(work) == {PairKey("recreation_gov", "232447"), PairKey("recreation_gov", "999")}
        pines = work[PairKey("recreation_gov", "232447")]
        assert len(pines.subscriptions) == 2
        assert pines.days == {date(2030, 8, 1), date(2030, 8, 2), date(2030, 8, 3)}

    def test_inactive_and_past_skipped(self, make_subscription):
        inactive = make_subscription()
        inactive.active = False
        past = make_subscription(campground_id="999", end=date(2030, 8, 2))
        assert group_subscriptions([inactive, past], today=date(2030, 8, 3)) == {}


class TestPlanPair:
    def test_recreation_gov_bucket(self):
        provider = RecreationGov(httpx.AsyncClient())
        ranges = plan_pair(provider, [date(2025, 8, 12), date(2025, 8, 15), date(2025, 8, 13)])
        assert ranges == [DateRange(start=date(2025, 8, 1), end=date(2025, 8, 31))]

    def test_reservecalifornia_instants(self):
        provider = ReserveCalifornia(httpx.AsyncClient())
        ranges = plan_pair(provider, [
            datetime(2025, 8, 12, 13, 0, tzinfo=timezone.utc),
            datetime(2025, 8, 15, 0, 0, tzinfo=timezone.utc),
        ])
        assert ranges == [DateRange(start=date(2025, 8, 12), end=date(2025, 8, 15))]

    def test_uncovered_days_added(self):
        provider = LazyProvider(httpx.AsyncClient())
        ranges = plan_pair(provider, [date(2030, 8, 3), date(2030, 8, 1)])
        assert covered_days(ranges) == {date(2030, 8, 1), date(2030, 8, 3)}
        assert [r.start for r in ranges] == [date(2030, 8, 1), date(2030, 8, 3)]

    def test_no_days(self):
        assert plan_pair(RecreationGov(httpx.AsyncClient()), []) == []
