"""
Data models for Schniffer
"""
from datetime import datetime, date, timedelta, timezone
from typing import Optional, List, NamedTuple, Iterator, Tuple
from pydantic import BaseModel, Field, model_validator
from enum import Enum


WILDCARD_SITE = "*"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_day(value: date | datetime) -> date:
    """Reduce an instant to its UTC calendar day. Naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


class PairKey(NamedTuple):
    """A (provider, campground) pair, the unit of upstream fetching"""
    provider: str
    campground_id: str

    def __str__(self) -> str:
        return f"{self.provider}/{self.campground_id}"


class AdhocStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class CellTransition(str, Enum):
    NEWLY_AVAILABLE = "newly_available"
    NEWLY_UNAVAILABLE = "newly_unavailable"
    UNCHANGED = "unchanged"


class DateRange(BaseModel):
    """Inclusive span of UTC days, one upstream fetch window"""
    start: date
    end: date

    def days(self) -> Iterator[date]:
        current = self.start
        while current <= self.end:
            yield current
            current += timedelta(days=1)

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end

    @property
    def num_days(self) -> int:
        return (self.end - self.start).days + 1


class Subscription(BaseModel):
    """A user's standing request (a "schniff") for a campground over a date range"""
    id: int = 0
    user_id: str
    provider: str
    campground_id: str
    site_filter: List[str] = Field(default_factory=list)
    start_date: date
    end_date: date
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_dates(self) -> "Subscription":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self

    @property
    def pair(self) -> PairKey:
        return PairKey(self.provider, self.campground_id)

    @property
    def any_site(self) -> bool:
        return not self.site_filter or WILDCARD_SITE in self.site_filter

    def matches_site(self, campsite_id: str) -> bool:
        return self.any_site or campsite_id in self.site_filter

    def covers_day(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def days(self) -> Iterator[date]:
        return DateRange(start=self.start_date, end=self.end_date).days()

    def is_expired(self, today: date) -> bool:
        return self.end_date < today


class AvailabilityCell(BaseModel):
    """Availability of one campsite on one UTC day"""
    provider: str
    campground_id: str
    campsite_id: str
    day: date
    available: bool
    last_checked: datetime = Field(default_factory=utcnow)
    campsite_type: Optional[str] = None
    cost_per_night: Optional[float] = None

    @property
    def key(self) -> tuple[str, date]:
        return (self.campsite_id, self.day)


class Feature(BaseModel):
    """One typed attribute of a campsite, e.g. "Shade: yes" or "Max Vehicle Length: 40" """
    name: str
    value_boolean: Optional[bool] = None
    value_numeric: Optional[float] = None
    value_text: Optional[str] = None


class CampgroundInfo(BaseModel):
    """Catalog entry for a campground"""
    id: str
    name: str
    latitude: float = 0.0
    longitude: float = 0.0
    rating: float = 0.0
    amenities: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    price_min: float = 0.0
    price_max: float = 0.0
    price_unit: Optional[str] = None


class CampsiteInfo(BaseModel):
    """Catalog entry for a single campsite"""
    id: str
    name: str
    campsite_type: str = "standard"
    cost_per_night: float = 0.0
    price_min: float = 0.0
    price_max: float = 0.0
    rating: float = 0.0
    equipment: List[str] = Field(default_factory=list)
    amenities: List[str] = Field(default_factory=list)
    features: List[Feature] = Field(default_factory=list)
    preview_image_url: Optional[str] = None


class CampsiteAvailability(BaseModel):
    """Open nights of one campsite inside a subscription window"""
    campsite_id: str
    days: List[date] = Field(default_factory=list)
    total_days: int = 0
    details: Optional[CampsiteInfo] = None
    url: Optional[str] = None

    @property
    def days_available(self) -> int:
        return len(self.days)


class SubscriptionContext(BaseModel):
    """
    State shown next to the new nights in a subscriber's message: what was
    just booked and the best campsites open right now.
    """
    booked: List[Tuple[str, date]] = Field(default_factory=list)
    top_campsites: List[CampsiteAvailability] = Field(default_factory=list)
    campsites_available: int = 0


class AdhocScrapeRequest(BaseModel):
    """An out-of-band scrape triggered by a user visiting a campground page"""
    id: int = 0
    provider: str
    campground_id: str
    user_id: str
    requested_at: datetime = Field(default_factory=utcnow)
    status: AdhocStatus = AdhocStatus.PENDING
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    @property
    def pair(self) -> PairKey:
        return PairKey(self.provider, self.campground_id)

    def mark_completed(self, when: Optional[datetime] = None):
        self.status = AdhocStatus.COMPLETED
        self.completed_at = when or utcnow()

    def mark_failed(self, error: str, when: Optional[datetime] = None):
        self.status = AdhocStatus.FAILED
        self.completed_at = when or utcnow()
        self.error_message = error


class NotificationEvent(BaseModel):
    """A campsite that just became available for one subscription"""
    subscription_id: int
    user_id: str
    provider: str
    campground_id: str
    campsite_id: str
    day: date

    @property
    def key(self) -> tuple[int, str, date]:
        return (self.subscription_id, self.campsite_id, self.day)


class LookupRecord(BaseModel):
    """One upstream availability fetch"""
    provider: str
    campground_id: str
    start: date
    end: date
    success: bool
    error_message: Optional[str] = None
    cell_count: int = 0
    checked_at: datetime = Field(default_factory=utcnow)


class NotificationRecord(BaseModel):
    """Delivery log entry, kept only for the daily digest"""
    subscription_id: int
    user_id: str
    provider: str
    campground_id: str
    campsite_id: str
    day: date
    sent_at: datetime = Field(default_factory=utcnow)


class CatalogSyncType(str, Enum):
    CAMPGROUNDS = "campgrounds"
    CAMPSITES = "campsites"
    CAMPGROUND_CAMPSITES = "campground_campsites"


class CatalogSyncRecord(BaseModel):
    sync_type: CatalogSyncType
    provider: str
    campground_id: Optional[str] = None
    started_at: datetime
    finished_at: datetime = Field(default_factory=utcnow)
    count: int = 0
    success: bool = True
    error_message: Optional[str] = None


class SyncResult(BaseModel):
    """Outcome of a catalog sync: how many entries were stored and what went wrong"""
    provider: str
    sync_type: CatalogSyncType
    count: int = 0
    failed: int = 0
    skipped: bool = False
    error_message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error_message is None


class DigestStats(BaseModel):
    """Aggregate activity for the daily digest"""
    total_subscriptions: int = 0
    active_subscriptions: int = 0
    lookups_24h: int = 0
    notifications_24h: int = 0
    users_notified: List[str] = Field(default_factory=list)
    users_active: List[str] = Field(default_factory=list)
    tracked_campgrounds: List[str] = Field(default_factory=list)


class NotificationPayload(BaseModel):
    """Notification content"""
    title: str
    message: str
    url: Optional[str] = None
    urgency: str = "normal"  # low, normal, high
