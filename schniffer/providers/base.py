"""
Provider adapter contract and shared HTTP plumbing
"""
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional, List, Any, Iterable
import httpx

from .endpoints import DEFAULT_HEADERS
from ..common.config import HTTPConfig
from ..common.errors import (
    TransientUpstreamError,
    PermanentUpstreamError,
    is_retryable_status,
    clip_body,
)
from ..common.models import (
    AvailabilityCell,
    CampgroundInfo,
    CampsiteInfo,
    DateRange,
    Feature,
    normalize_day,
)
from ..common.scheduler import RateLimiter

logger = logging.getLogger(__name__)


def create_http_client(config: Optional[HTTPConfig] = None, **kwargs) -> httpx.AsyncClient:
    """One pooled client shared by every adapter"""
    config = config or HTTPConfig()
    return httpx.AsyncClient(
        headers=DEFAULT_HEADERS,
        timeout=httpx.Timeout(config.timeout, connect=config.connect_timeout),
        limits=httpx.Limits(
            max_connections=config.max_connections,
            max_keepalive_connections=config.max_keepalive_connections,
            keepalive_expiry=config.keepalive_expiry
        ),
        follow_redirects=True,
        **kwargs
    )


def normalize_days(days: Iterable[date | datetime]) -> List[date]:
    """Sorted, de-duplicated UTC days"""
    return sorted({normalize_day(d) for d in days})


def to_float(value: Any, default: float = 0.0) -> float:
    """Lenient numeric parse for upstream fields that arrive as strings, numbers or null"""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


_BOOL_STRINGS = {
    "1": True, "t": True, "true": True,
    "0": False, "f": False, "false": False,
}


def friendly_name(key: str) -> str:
    """"campsite_reserve_type" -> "Campsite Reserve Type" """
    return " ".join(word[:1].upper() + word[1:] for word in key.replace("_", " ").split(" "))


def parse_feature(name: str, raw: Any) -> Feature:
    """
    Convert a raw attribute value into a typed Feature.

    Order: boolean literal, then yes/no anywhere in the value, then number,
    then plain text.
    """
    text = "" if raw is None else str(raw).strip()
    lowered = text.lower()

    if lowered in _BOOL_STRINGS:
        return Feature(name=name, value_boolean=_BOOL_STRINGS[lowered])
    if "yes" in lowered:
        return Feature(name=name, value_boolean=True)
    if "no" in lowered:
        return Feature(name=name, value_boolean=False)
    try:
        return Feature(name=name, value_numeric=float(text))
    except ValueError:
        return Feature(name=name, value_text=text)


class Provider(ABC):
    """
    Base class for reservation back ends.

    Adapters are stateless apart from their rate limiter and are safe to call
    concurrently.
    """

    name: str = ""

    def __init__(self, client: httpx.AsyncClient, requests_per_second: float = 2.0):
        self.client = client
        self.rate_limiter = RateLimiter(requests_per_second)

    @abstractmethod
    async def fetch_availability(self, campground_id: str, start: date, end: date) -> List[AvailabilityCell]:
        """Availability cells for every campsite on every day in [start, end]"""
        pass

    @abstractmethod
    async def fetch_campgrounds(self) -> List[CampgroundInfo]:
        """The provider's full campground catalog"""
        pass

    @abstractmethod
    async def fetch_campsites(self, campground_id: str) -> List[CampsiteInfo]:
        """Campsite metadata for one campground"""
        pass

    @abstractmethod
    def plan_buckets(self, days: Iterable[date | datetime]) -> List[DateRange]:
        """
        Split requested days into the fetch windows this provider prefers.

        The union of the returned ranges covers every input day.
        """
        pass

    @abstractmethod
    def campground_url(self, campground_id: str) -> str:
        pass

    @abstractmethod
    def campsite_url(self, campground_id: str, campsite_id: str) -> str:
        pass

    # ========================================
    # HTTP helpers
    # ========================================

    async def _request(
        self,
        method: str,
        url: str,
        what: str,
        json: Optional[Any] = None,
        headers: Optional[dict] = None
    ) -> httpx.Response:
        """
        Paced request that maps every failure onto the upstream error taxonomy.
        """
        async with self.rate_limiter:
            try:
                response = await self.client.request(method, url, json=json, headers=headers)
            except httpx.TimeoutException as e:
                raise TransientUpstreamError(f"{self.name} {what} timed out: {e}") from e
            except httpx.HTTPError as e:
                raise TransientUpstreamError(f"{self.name} {what} failed: {e}") from e

        if response.status_code != 200:
            body = clip_body(response.text)
            error_cls = TransientUpstreamError if is_retryable_status(response.status_code) else PermanentUpstreamError
            logger.error(f"{self.name} {what} request failed: {response.status_code} - {body[:200]}")
            raise error_cls(
                f"{self.name} {what} status {response.status_code}; body: {body}",
                response.status_code,
                body
            )

        return response

    def _decode(self, response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            body = clip_body(response.text)
            raise PermanentUpstreamError(
                f"{self.name} {what} JSON decode failed: {e}; body: {body}",
                response.status_code,
                body
            ) from e

    async def _get_json(self, url: str, what: str, headers: Optional[dict] = None) -> Any:
        response = await self._request("GET", url, what, headers=headers)
        return self._decode(response, what)

    async def _post_json(self, url: str, what: str, body: Any, headers: Optional[dict] = None) -> Any:
        response = await self._request("POST", url, what, json=body, headers=headers)
        return self._decode(response, what)
