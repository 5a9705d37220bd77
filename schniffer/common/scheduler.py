"""
Scheduling primitives for Schniffer

Background loops, request pacing and retry policies.
"""
import asyncio
import time
import logging
from datetime import datetime, timedelta
from typing import Callable, Awaitable, Optional
import pytz

logger = logging.getLogger(__name__)


async def wait_for_shutdown(shutdown: asyncio.Event, seconds: float) -> bool:
    """
    Sleep for up to `seconds`, waking early if shutdown is signalled.

    Returns:
        True if shutdown was signalled, False if the full delay elapsed
    """
    if seconds <= 0:
        return shutdown.is_set()
    try:
        await asyncio.wait_for(shutdown.wait(), timeout=seconds)
        return True
    except asyncio.TimeoutError:
        return False


class PeriodicTask:
    """
    Runs an async job repeatedly until a shared shutdown event is set.

    A failing iteration is logged and the loop carries on. Shutdown is
    observed between iterations, so the current iteration always finishes.
    """

    def __init__(
        self,
        name: str,
        job: Callable[[], Awaitable],
        interval: float | Callable[[], float],
        run_immediately: bool = True
    ):
        self.name = name
        self.job = job
        self.interval = interval
        self.run_immediately = run_immediately
        self.iterations = 0

    def next_delay(self) -> float:
        if callable(self.interval):
            return max(0.0, self.interval())
        return self.interval

    async def run(self, shutdown: asyncio.Event):
        logger.info(f"Starting loop {self.name}")
        if not self.run_immediately:
            if await wait_for_shutdown(shutdown, self.next_delay()):
                logger.info(f"Loop {self.name} stopped")
                return

        while not shutdown.is_set():
            started = time.monotonic()
            try:
                await self.job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Loop {self.name} iteration failed: {e}")
            self.iterations += 1
            logger.debug(f"Loop {self.name} iteration took {time.monotonic() - started:.2f}s")

            if await wait_for_shutdown(shutdown, self.next_delay()):
                break

        logger.info(f"Loop {self.name} stopped")


class DailySchedule:
    """
    Computes the next wall-clock occurrence of an hour in a timezone.

    DST transitions are handled by localizing each candidate day separately.
    """

    def __init__(self, hour: int, timezone: str = "America/Los_Angeles"):
        self.hour = hour
        self.tz = pytz.timezone(timezone)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def next_run(self, now: Optional[datetime] = None) -> datetime:
        now = now.astimezone(self.tz) if now else self.now()
        candidate = self.tz.localize(datetime(now.year, now.month, now.day, self.hour))
        if candidate <= now:
            tomorrow = now.date() + timedelta(days=1)
            candidate = self.tz.localize(datetime(tomorrow.year, tomorrow.month, tomorrow.day, self.hour))
        return candidate

    def seconds_until_next(self, now: Optional[datetime] = None) -> float:
        now = now.astimezone(self.tz) if now else self.now()
        return (self.next_run(now) - now).total_seconds()


class RateLimiter:
    """
    Rate limiter for API requests.

    Uses token bucket algorithm.
    """

    def __init__(self, requests_per_second: float = 2.0, burst: Optional[float] = None):
        self.rate = requests_per_second
        self.capacity = burst or requests_per_second
        self.tokens = self.capacity
        self.last_update = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self):
        """Wait until a request can be made"""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_update
            self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
            self.last_update = now

            if self.tokens < 1:
                wait_time = (1 - self.tokens) / self.rate
                await asyncio.sleep(wait_time)
                self.tokens = 0
                self.last_update = time.monotonic()
            else:
                self.tokens -= 1

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, *args):
        pass


class RetryStrategy:
    """
    Configurable retry strategy for upstream requests and deliveries.

    Delay is constant by default, grows linearly with the attempt number when
    `linear_backoff` is set, or doubles when `exponential_backoff` is set.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_ms: int = 500,
        max_delay_ms: int = 5000,
        exponential_backoff: bool = False,
        linear_backoff: bool = False
    ):
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.exponential_backoff = exponential_backoff
        self.linear_backoff = linear_backoff
        self.attempts = 0

    def should_retry(self) -> bool:
        """Check if another attempt should be made"""
        return self.attempts < self.max_attempts

    def record_attempt(self):
        """Record an attempt"""
        self.attempts += 1

    def delay_ms(self) -> int:
        if self.exponential_backoff:
            delay = self.base_delay_ms * (2 ** max(self.attempts - 1, 0))
        elif self.linear_backoff:
            delay = self.base_delay_ms * max(self.attempts, 1)
        else:
            delay = self.base_delay_ms
        return min(delay, self.max_delay_ms)

    async def wait(self):
        """Wait appropriate time before next attempt"""
        await asyncio.sleep(self.delay_ms() / 1000)

    def reset(self):
        """Reset attempt counter"""
        self.attempts = 0
