"""
Notification delivery for Schniffer

Availability events are grouped per subscription, queued, and delivered by a
small pool of workers through a chat collaborator.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Optional, List, Dict
import httpx
from pydantic import BaseModel

from .models import (
    CampsiteAvailability,
    DigestStats,
    NotificationEvent,
    NotificationPayload,
    SubscriptionContext,
)
from .config import NotificationsConfig
from .errors import NotificationDeliveryError, clip_body
from .scheduler import RetryStrategy

logger = logging.getLogger(__name__)


class ChatClient(ABC):
    """Base class for chat collaborators"""

    @abstractmethod
    async def send_to_user(self, user_id: str, payload: NotificationPayload):
        """Send a direct message, raising NotificationDeliveryError on failure"""
        pass

    @abstractmethod
    async def send_to_channel(self, channel_id: str, payload: NotificationPayload):
        """Post to a channel, raising NotificationDeliveryError on failure"""
        pass

    async def close(self):
        pass


class ConsoleChat(ChatClient):
    """Console output for local runs and testing"""

    def _print(self, header: str, payload: NotificationPayload):
        print("\n" + "=" * 60)
        print(f"📢 {header}: {payload.title}")
        print("-" * 60)
        print(payload.message)
        if payload.url:
            print(f"\n🔗 {payload.url}")
        print("=" * 60 + "\n")

    async def send_to_user(self, user_id: str, payload: NotificationPayload):
        self._print(f"@{user_id}", payload)

    async def send_to_channel(self, channel_id: str, payload: NotificationPayload):
        self._print(f"#{channel_id}", payload)


class WebhookChat(ChatClient):
    """Discord-compatible webhook. Direct messages become mentions."""

    def __init__(self, webhook_url: str, client: Optional[httpx.AsyncClient] = None):
        self.webhook_url = webhook_url
        self.client = client or httpx.AsyncClient()
        self._owns_client = client is None

    def _body(self, payload: NotificationPayload, mention: Optional[str] = None) -> dict:
        embed = {
            "title": payload.title,
            "description": payload.message[:4096],
        }
        if payload.url:
            embed["url"] = payload.url
        body = {"embeds": [embed]}
        if mention:
            body["content"] = f"<@{mention}>"
            body["allowed_mentions"] = {"users": [mention]}
        return body

    async def _post(self, body: dict):
        try:
            response = await self.client.post(self.webhook_url, json=body)
        except httpx.HTTPError as e:
            raise NotificationDeliveryError(f"Webhook send error: {e}") from e

        if response.status_code not in (200, 204):
            raise NotificationDeliveryError(
                f"Webhook send failed: {response.status_code} - {clip_body(response.text, 200)}"
            )

    async def send_to_user(self, user_id: str, payload: NotificationPayload):
        await self._post(self._body(payload, mention=user_id))

    async def send_to_channel(self, channel_id: str, payload: NotificationPayload):
        await self._post(self._body(payload))

    async def close(self):
        if self._owns_client:
            await self.client.aclose()


class Delivery(BaseModel):
    """One queued message for a user or a channel"""
    payload: NotificationPayload
    user_id: Optional[str] = None
    channel_id: Optional[str] = None

    @property
    def target(self) -> str:
        return f"user {self.user_id}" if self.user_id else f"channel {self.channel_id}"


def format_days(days) -> str:
    return ", ".join(d.strftime("%a %b %d") for d in sorted(days))


def format_campsite(site: CampsiteAvailability) -> str:
    details = []
    info = site.details
    if info:
        if info.name and info.name != site.campsite_id:
            details.append(info.name)
        if info.campsite_type:
            details.append(info.campsite_type)
        if info.cost_per_night > 0:
            details.append(f"${info.cost_per_night:.2f}/night")
        if info.rating > 0:
            details.append(f"⭐ {info.rating:.1f}")
        if info.equipment:
            equipment = ", ".join(info.equipment[:5])
            if len(info.equipment) > 5:
                equipment += f", +{len(info.equipment) - 5} more"
            details.append(equipment)

    line = f"Site {site.campsite_id}"
    if details:
        line += " (" + "; ".join(details) + ")"
    line += f": {site.days_available} of {site.total_days} nights open"
    if site.url:
        line += f" {site.url}"
    return line


def build_availability_payload(
    events: List[NotificationEvent],
    campground_name: Optional[str] = None,
    url: Optional[str] = None,
    context: Optional[SubscriptionContext] = None
) -> NotificationPayload:
    """
    One message for all events of a single subscription.

    With a context the message also lists the nights that were just booked
    and the campsites with the most open nights in the subscription window.
    """
    first = events[0]
    name = campground_name or f"{first.provider} campground {first.campground_id}"

    by_site: Dict[str, set] = defaultdict(set)
    for event in events:
        by_site[event.campsite_id].add(event.day)

    lines = [f"New availability at {name}:", ""]
    for site_id in sorted(by_site):
        lines.append(f"Site {site_id}: {format_days(by_site[site_id])}")

    if context is not None:
        if context.booked:
            booked: Dict[str, set] = defaultdict(set)
            for site_id, day in context.booked:
                booked[site_id].add(day)
            lines.extend(["", "Newly booked:"])
            for site_id in sorted(booked):
                lines.append(f"Site {site_id}: {format_days(booked[site_id])}")

        if context.top_campsites:
            lines.extend([
                "",
                f"Top {len(context.top_campsites)} of {context.campsites_available} "
                f"open campsite(s) by nights available:"
            ])
            lines.extend(format_campsite(site) for site in context.top_campsites)

    return NotificationPayload(
        title=f"🏕️ Schniff hit: {len(events)} new night(s) at {name}",
        message="\n".join(lines),
        url=url,
        urgency="high"
    )


def format_digest(stats: DigestStats) -> str:
    lines = [
        "24 Hour Schniff roundup:",
        "Available campsites found",
        str(stats.notifications_24h),
        "Checks made",
        str(stats.lookups_24h),
        "Active Schniffs",
        str(stats.active_subscriptions),
        "Schniffists who got schniffs",
    ]
    if stats.users_notified:
        lines.append(" ".join(f"<@{u}>" for u in stats.users_notified))
    else:
        lines.append("No bueno today.")

    lines.append("Schniffists with active schniffs")
    if stats.users_active:
        lines.append(" ".join(f"<@{u}>" for u in stats.users_active))
    else:
        lines.append("None")

    lines.append("Campgrounds being tracked")
    lines.extend(stats.tracked_campgrounds or ["None"])
    return "\n".join(lines)


class Notifier:
    """
    Queue plus worker pool in front of a ChatClient.

    `submit()` never blocks the caller: when the queue is full the message is
    logged and dropped. Each delivery is retried with RetryStrategy before it
    is given up on.
    """

    def __init__(self, chat: ChatClient, config: Optional[NotificationsConfig] = None):
        self.chat = chat
        self.config = config or NotificationsConfig()
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._workers: List[asyncio.Task] = []
        self.sent = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self):
        if self._workers:
            return
        for i in range(self.config.workers):
            self._workers.append(asyncio.create_task(self._worker(i), name=f"notifier-{i}"))
        logger.info(f"Notifier started with {self.config.workers} workers")

    async def join(self):
        """Wait until every queued message has been handled"""
        await self.queue.join()

    async def stop(self, drain: bool = True):
        if drain and self._workers:
            await self.queue.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        await self.chat.close()
        logger.info(f"Notifier stopped: {self.sent} sent, {self.failed} failed, {self.dropped} dropped")

    def enqueue(self, delivery: Delivery) -> bool:
        try:
            self.queue.put_nowait(delivery)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.error(f"Notification queue full, dropping message for {delivery.target}: {delivery.payload.title}")
            return False

    def submit(
        self,
        events: List[NotificationEvent],
        campground_name: Optional[str] = None,
        url: Optional[str] = None,
        contexts: Optional[Dict[int, SubscriptionContext]] = None
    ) -> int:
        """
        Queue one message per subscription. Returns the number of messages queued.

        `contexts` maps subscription id to the extra state shown in its message.
        """
        contexts = contexts or {}
        grouped: Dict[int, List[NotificationEvent]] = defaultdict(list)
        for event in events:
            grouped[event.subscription_id].append(event)

        queued = 0
        for subscription_id, sub_events in grouped.items():
            payload = build_availability_payload(
                sub_events, campground_name, url, contexts.get(subscription_id)
            )
            if self.enqueue(Delivery(payload=payload, user_id=sub_events[0].user_id)):
                queued += 1
        return queued

    async def deliver(self, delivery: Delivery) -> bool:
        retry = RetryStrategy(
            max_attempts=self.config.max_attempts,
            base_delay_ms=self.config.retry_delay_ms,
            max_delay_ms=self.config.retry_delay_ms * 8,
            exponential_backoff=True
        )

        while retry.should_retry():
            retry.record_attempt()
            try:
                if delivery.user_id:
                    await self.chat.send_to_user(delivery.user_id, delivery.payload)
                else:
                    await self.chat.send_to_channel(delivery.channel_id, delivery.payload)
                self.sent += 1
                return True
            except NotificationDeliveryError as e:
                logger.warning(f"Delivery to {delivery.target} failed (attempt {retry.attempts}): {e}")
                if retry.should_retry():
                    await retry.wait()

        self.failed += 1
        logger.error(f"Giving up on message for {delivery.target} after {retry.attempts} attempts: {delivery.payload.title}")
        return False

    async def send_digest(self, channel_id: Optional[str], stats: DigestStats) -> bool:
        if not channel_id:
            logger.warning("No summary channel configured, skipping digest")
            return False

        payload = NotificationPayload(
            title="🏕️ 24h Schniffer Roundup",
            message=format_digest(stats),
            urgency="low"
        )
        return await self.deliver(Delivery(payload=payload, channel_id=channel_id))

    async def send_channel_message(self, channel_id: Optional[str], title: str, message: str) -> bool:
        if not channel_id:
            return False
        payload = NotificationPayload(title=title, message=message)
        return self.enqueue(Delivery(payload=payload, channel_id=channel_id))

    async def _worker(self, index: int):
        while True:
            delivery = await self.queue.get()
            try:
                await self.deliver(delivery)
            except Exception as e:
                logger.exception(f"Notifier worker {index} error: {e}")
            finally:
                self.queue.task_done()
