"""
Tests for data models (schniffer/common/models.py)
"""
import pytest
from datetime import datetime, date, timedelta, timezone
from pydantic import ValidationError

from schniffer.common.models import (
    AdhocScrapeRequest,
    AdhocStatus,
    AvailabilityCell,
    CatalogSyncType,
    DateRange,
    NotificationPayload,
    PairKey,
    Subscription,
    SyncResult,
    normalize_day,
)


class TestNormalizeDay:
    def test_date_passes_through(self):
        assert normalize_day(date(2030, 8, 12)) == date(2030, 8, 12)

    def test_aware_datetime_uses_utc_day(self):
        # 2030-08-12 20:00 in UTC-7 is already the 13th in UTC
        instant = datetime(2030, 8, 12, 20, 0, tzinfo=timezone(timedelta(hours=-7)))
        assert normalize_day(instant) == date(2030, 8, 13)

    def test_naive_datetime_treated_as_utc(self):
        assert normalize_day(datetime(2030, 8, 12, 23, 59)) == date(2030, 8, 12)


class TestPairKey:
    def test_str(self):
        assert str(PairKey("recreation_gov", "232447")) == "recreation_gov/232447"

    def test_hashable_and_equal(self):
        assert {PairKey("a", "1"), PairKey("a", "1")} == {PairKey("a", "1")}


class TestDateRange:
    def test_days_inclusive(self):
        r = DateRange(start=date(2030, 8, 30), end=date(2030, 9, 2))
        assert list(r.days()) == [date(2030, 8, 30), date(2030, 8, 31), date(2030, 9, 1), date(2030, 9, 2)]
        assert r.num_days == 4

    def test_contains(self):
        r = DateRange(start=date(2030, 8, 1), end=date(2030, 8, 31))
        assert date(2030, 8, 15) in r
        assert date(2030, 9, 1) not in r


class TestSubscription:
    def test_empty_filter_matches_any_site(self, make_subscription):
        sub = make_subscription()
        assert sub.any_site is True
        assert sub.matches_site("whatever")

    def test_wildcard_matches_any_site(self, make_subscription):
        sub = make_subscription(sites=["*"])
        assert sub.matches_site("A1")

    def test_filter_restricts_sites(self, make_subscription):
        sub = make_subscription(sites=["A1", "B2"])
        assert sub.matches_site("A1")
        assert not sub.matches_site("C3")

    def test_covers_day_inclusive(self, make_subscription):
        sub = make_subscription(start=date(2030, 8, 1), end=date(2030, 8, 5))
        assert sub.covers_day(date(2030, 8, 1))
        assert sub.covers_day(date(2030, 8, 5))
        assert not sub.covers_day(date(2030, 8, 6))

    def test_is_expired(self, make_subscription):
        sub = make_subscription(end=date(2030, 8, 5))
        assert not sub.is_expired(date(2030, 8, 5))
        assert sub.is_expired(date(2030, 8, 6))

    def test_pair(self, make_subscription):
        sub = make_subscription(provider="reservecalifornia", campground_id="1260/2181")
        assert sub.pair == PairKey("reservecalifornia", "1260/2181")

    def test_end_before_start_rejected(self, make_subscription):
        with pytest.raises(ValidationError):
            make_subscription(start=date(2030, 8, 5), end=date(2030, 8, 1))

    def test_single_day_allowed(self, make_subscription):
        sub = make_subscription(start=date(2030, 8, 5), end=date(2030, 8, 5))
        assert list(sub.days()) == [date(2030, 8, 5)]


class TestAvailabilityCell:
    def test_key(self):
        cell = AvailabilityCell(
            provider="recreation_gov",
            campground_id="1",
            campsite_id="A1",
            day=date(2030, 8, 1),
            available=True,
        )
        assert cell.key == ("A1", date(2030, 8, 1))
        assert cell.last_checked.tzinfo is not None


class TestAdhocScrapeRequest:
    def test_defaults_to_pending(self):
        request = AdhocScrapeRequest(provider="recreation_gov", campground_id="1", user_id="u")
        assert request.status == AdhocStatus.PENDING
        assert request.completed_at is None

    def test_mark_completed(self):
        request = AdhocScrapeRequest(provider="recreation_gov", campground_id="1", user_id="u")
        request.mark_completed()
        assert request.status == AdhocStatus.COMPLETED
        assert request.completed_at is not None

    def test_mark_failed(self):
        request = AdhocScrapeRequest(provider="recreation_gov", campground_id="1", user_id="u")
        request.mark_failed("boom")
        assert request.status == AdhocStatus.FAILED
        assert request.error_message == "boom"


class TestSyncResult:
    def test_ok_without_error(self):
        assert SyncResult(provider="p", sync_type=CatalogSyncType.CAMPGROUNDS, count=3).ok

    def test_not_ok_with_error(self):
        result = SyncResult(provider="p", sync_type=CatalogSyncType.CAMPSITES, error_message="down")
        assert not result.ok


class TestNotificationPayload:
    def test_defaults(self):
        payload = NotificationPayload(title="t", message="m")
        assert payload.url is None
        assert payload.urgency == "normal"

    def test_requires_title(self):
        with pytest.raises(Exception):
            NotificationPayload(message="m")
