"""
Error taxonomy for the availability monitor

Every failure is scoped to the smallest unit it affects (one record, one
site, one campground, one message) and handled there.
"""
from typing import Optional


class SchnifferError(Exception):
    """Base class for all monitor errors"""
    pass


class UpstreamError(SchnifferError):
    """Raised when a provider request fails"""
    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class TransientUpstreamError(UpstreamError):
    """429, 5xx, timeouts and network errors. Worth retrying later."""
    pass


class PermanentUpstreamError(UpstreamError):
    """Other 4xx responses or payloads we cannot decode"""
    pass


class RecordParseError(SchnifferError):
    """A single upstream record could not be parsed"""
    pass


class PersistenceError(SchnifferError):
    """A store read or write failed"""
    pass


class NotificationDeliveryError(SchnifferError):
    """The chat collaborator refused or failed to deliver a message"""
    pass


class UnknownProviderError(SchnifferError):
    """No adapter registered under the requested name"""
    pass


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def clip_body(body: Optional[str], limit: int = 2048) -> str:
    """Shorten a response body for log lines and error messages"""
    if not body:
        return ""
    if len(body) > limit:
        return body[:limit] + "..."
    return body
