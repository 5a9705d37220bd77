import asyncio
import json
from datetime import date
from typing import Dict, List, Optional

import httpx
import pytest

from schniffer.common.config import (
    Config,
    AdhocConfig,
    CatalogSyncConfig,
    DigestConfig,
    NotificationsConfig,
    ProviderConfig,
    StorageConfig,
    LoggingConfig,
)
from schniffer.common.models import (
    AvailabilityCell,
    CampgroundInfo,
    CampsiteInfo,
    DateRange,
    NotificationPayload,
    Subscription,
)
from schniffer.common.notifications import ChatClient
from schniffer.common.store import MemoryStore
from schniffer.common.errors import NotificationDeliveryError, TransientUpstreamError
from schniffer.providers.base import Provider, normalize_days


@pytest.fixture()
def config():
    return Config(
        providers={
            "recreation_gov": ProviderConfig(max_concurrency=2, requests_per_second=1000),
            "reservecalifornia": ProviderConfig(max_concurrency=2, requests_per_second=1000),
        },
        catalog_sync=CatalogSyncConfig(
            campsite_requests_per_second=1000,
            campsite_burst=1000,
            failure_pause_seconds=0
        ),
        digest=DigestConfig(channel_id="summary", hour=22, timezone="America/Los_Angeles"),
        adhoc=AdhocConfig(cooldown_seconds=300, timeout_seconds=5, horizon_days=3),
        notifications=NotificationsConfig(workers=1, queue_size=100, max_attempts=3, retry_delay_ms=1),
        storage=StorageConfig(state_file=None),
        logging=LoggingConfig(file=None),
    )


@pytest.fixture()
def store():
    return MemoryStore()


@pytest.fixture()
def make_subscription():
    def factory(
        user_id: str = "user-1",
        provider: str = "recreation_gov",
        campground_id: str = "232447",
        start: date = date(2030, 8, 1),
        end: date = date(2030, 8, 5),
        sites: List[str] = None,
    ) -> Subscription:
        return Subscription(
            user_id=user_id,
            provider=provider,
            campground_id=campground_id,
            site_filter=sites or [],
            start_date=start,
            end_date=end,
        )
    return factory


class RecordingChat(ChatClient):
    """Chat collaborator that records messages and can be told to fail"""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.user_messages = []
        self.channel_messages = []
        self.closed = False

    def _maybe_fail(self):
        if self.failures > 0:
            self.failures -= 1
            raise NotificationDeliveryError("chat unavailable")

    async def send_to_user(self, user_id: str, payload: NotificationPayload):
        self._maybe_fail()
        self.user_messages.append((user_id, payload))

    async def send_to_channel(self, channel_id: str, payload: NotificationPayload):
        self._maybe_fail()
        self.channel_messages.append((channel_id, payload))

    async def close(self):
        self.closed = True


@pytest.fixture()
def chat():
    return RecordingChat()


def json_response(data, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(data).encode(), headers={"Content-Type": "application/json"})


def mock_client(handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by `handler(request)`"""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FakeProvider(Provider):
    """
    Serves scripted data. Campgrounds listed in `failing` raise on every
    availability or campsite fetch.
    """

    name = "recreation_gov"

    def __init__(
        self,
        available: Optional[Dict[str, List[str]]] = None,
        failing=(),
        campgrounds: Optional[List[CampgroundInfo]] = None
    ):
        super().__init__(client=None, requests_per_second=1000)
        self.available = available or {}
        self.failing = set(failing)
        self.campgrounds = campgrounds or []
        self.calls = []
        self.campsite_calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    def plan_buckets(self, days) -> List[DateRange]:
        normalized = normalize_days(days)
        if not normalized:
            return []
        return [DateRange(start=normalized[0], end=normalized[-1])]

    async def fetch_availability(self, campground_id, start, end):
        self.calls.append((campground_id, start, end))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if campground_id in self.failing:
                raise TransientUpstreamError("upstream down", 503)
            return [
                AvailabilityCell(
                    provider=self.name,
                    campground_id=campground_id,
                    campsite_id=site,
                    day=day,
                    available=True,
                )
                for site in self.available.get(campground_id, [])
                for day in DateRange(start=start, end=end).days()
            ]
        finally:
            self.in_flight -= 1

    async def fetch_campgrounds(self):
        if "*" in self.failing:
            raise TransientUpstreamError("search down", 503)
        return list(self.campgrounds)

    async def fetch_campsites(self, campground_id):
        self.campsite_calls.append(campground_id)
        if campground_id in self.failing:
            raise TransientUpstreamError("campsites down", 503)
        return [CampsiteInfo(id=f"{campground_id}-1", name="Site 1")]

    def campground_url(self, campground_id):
        return f"https://example.com/{campground_id}"

    def campsite_url(self, campground_id, campsite_id):
        return self.campground_url(campground_id)
