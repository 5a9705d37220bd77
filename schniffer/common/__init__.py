"""
Common utilities for Schniffer
"""
from .config import Config, load_config
from .errors import (
    SchnifferError,
    UpstreamError,
    TransientUpstreamError,
    PermanentUpstreamError,
    RecordParseError,
    PersistenceError,
    NotificationDeliveryError,
    UnknownProviderError,
)
from .models import (
    PairKey,
    DateRange,
    Subscription,
    AvailabilityCell,
    CampgroundInfo,
    CampsiteInfo,
    Feature,
    AdhocScrapeRequest,
    AdhocStatus,
    NotificationEvent,
    NotificationPayload,
    DigestStats,
    SyncResult,
)
from .notifications import ChatClient, ConsoleChat, WebhookChat, Notifier
from .scheduler import PeriodicTask, DailySchedule, RateLimiter, RetryStrategy
from .store import Store, MemoryStore

__all__ = [
    "Config",
    "load_config",
    "SchnifferError",
    "UpstreamError",
    "TransientUpstreamError",
    "PermanentUpstreamError",
    "RecordParseError",
    "PersistenceError",
    "NotificationDeliveryError",
    "UnknownProviderError",
    "PairKey",
    "DateRange",
    "Subscription",
    "AvailabilityCell",
    "CampgroundInfo",
    "CampsiteInfo",
    "Feature",
    "AdhocScrapeRequest",
    "AdhocStatus",
    "NotificationEvent",
    "NotificationPayload",
    "DigestStats",
    "SyncResult",
    "ChatClient",
    "ConsoleChat",
    "WebhookChat",
    "Notifier",
    "PeriodicTask",
    "DailySchedule",
    "RateLimiter",
    "RetryStrategy",
    "Store",
    "MemoryStore",
]
