"""
Tests for notification delivery (schniffer/common/notifications.py)
"""
import pytest
import asyncio
import json
from datetime import date

import httpx

from schniffer.common.config import NotificationsConfig
from schniffer.common.errors import NotificationDeliveryError
from schniffer.common.models import (
    CampsiteAvailability,
    CampsiteInfo,
    DigestStats,
    NotificationEvent,
    NotificationPayload,
    SubscriptionContext,
)
from schniffer.common.notifications import (
    ConsoleChat,
    Delivery,
    Notifier,
    WebhookChat,
    build_availability_payload,
    format_campsite,
    format_digest,
)

from conftest import RecordingChat, mock_client


def event(subscription_id: int, site: str, day: date, user_id: str = "user-1") -> NotificationEvent:
    return NotificationEvent(
        subscription_id=subscription_id,
        user_id=user_id,
        provider="recreation_gov",
        campground_id="232447",
        campsite_id=site,
        day=day,
    )


class TestBuildAvailabilityPayload:
    def test_groups_days_by_site(self):
        payload = build_availability_payload(
            [
                event(1, "B2", date(2030, 8, 2)),
                event(1, "A1", date(2030, 8, 2)),
                event(1, "A1", date(2030, 8, 1)),
            ],
            campground_name="North Pines",
            url="https://www.recreation.gov/camping/campgrounds/232447",
        )
        assert payload.title == "🏕️ Schniff hit: 3 new night(s) at North Pines"
        assert "Site A1: Thu Aug 01, Fri Aug 02" in payload.message
        assert "Site B2: Fri Aug 02" in payload.message
        assert payload.message.index("Site A1") < payload.message.index("Site B2")
        assert payload.urgency == "high"
        assert payload.url.endswith("/232447")

    def test_unknown_campground_name(self):
        payload = build_availability_payload([event(1, "A1", date(2030, 8, 1))])
        assert "recreation_gov campground 232447" in payload.title

    def test_context_sections(self):
        aug1, aug2 = date(2030, 8, 1), date(2030, 8, 2)
        context = SubscriptionContext(
            booked=[("C3", aug2), ("C3", aug1)],
            top_campsites=[
                CampsiteAvailability(campsite_id="A1", days=[aug1, aug2], total_days=3, url="https://example.com/A1"),
            ],
            campsites_available=4,
        )
        payload = build_availability_payload([event(1, "A1", aug1)], campground_name="North Pines", context=context)

        assert payload.title == "🏕️ Schniff hit: 1 new night(s) at North Pines"
        assert "Newly booked:\nSite C3: Thu Aug 01, Fri Aug 02" in payload.message
        assert "Top 1 of 4 open campsite(s) by nights available:\nSite A1: 2 of 3 nights open https://example.com/A1" in payload.message

    def test_empty_context_adds_nothing(self):
        events = [event(1, "A1", date(2030, 8, 1))]
        plain = build_availability_payload(events)
        assert build_availability_payload(events, context=SubscriptionContext()).message == plain.message


class TestFormatCampsite:
    def test_details(self):
        site = CampsiteAvailability(
            campsite_id="A1",
            days=[date(2030, 8, 1)],
            total_days=2,
            details=CampsiteInfo(
                id="A1",
                name="Loop A 1",
                campsite_type="tent only",
                cost_per_night=36,
                rating=4.46,
                equipment=["Tent", "Van", "Trailer", "RV", "Car", "Boat", "Caravan"],
            ),
        )
        assert format_campsite(site) == (
            "Site A1 (Loop A 1; tent only; $36.00/night; ⭐ 4.5; "
            "Tent, Van, Trailer, RV, Car, +2 more): 1 of 2 nights open"
        )

    def test_bare_site(self):
        site = CampsiteAvailability(campsite_id="A1", days=[], total_days=2, details=CampsiteInfo(id="A1", name="A1"))
        assert format_campsite(site) == "Site A1 (standard): 0 of 2 nights open"


class TestFormatDigest:
    def test_quiet_day(self):
        text = format_digest(DigestStats())
        assert "24 Hour Schniff roundup:" in text
        assert "No bueno today." in text
        assert text.endswith("Campgrounds being tracked\nNone")

    def test_busy_day(self):
        text = format_digest(DigestStats(
            active_subscriptions=2,
            lookups_24h=120,
            notifications_24h=3,
            users_notified=["amy"],
            users_active=["amy", "zed"],
            tracked_campgrounds=["North Pines", "Upper Pines"],
        ))
        lines = text.split("\n")
        assert lines[lines.index("Available campsites found") + 1] == "3"
        assert lines[lines.index("Checks made") + 1] == "120"
        assert "<@amy>" in text
        assert "<@amy> <@zed>" in text
        assert lines[-2:] == ["North Pines", "Upper Pines"]


class TestConsoleChat:
    @pytest.mark.asyncio
    async def test_send_to_user(self, capsys):
        await ConsoleChat().send_to_user("amy", NotificationPayload(title="Hit", message="Site A1", url="https://x"))
        captured = capsys.readouterr()
        assert "@amy: Hit" in captured.out
        assert "Site A1" in captured.out
        assert "https://x" in captured.out

    @pytest.mark.asyncio
    async def test_send_to_channel(self, capsys):
        await ConsoleChat().send_to_channel("summary", NotificationPayload(title="Roundup", message="m"))
        assert "#summary: Roundup" in capsys.readouterr().out


class TestWebhookChat:
    @pytest.mark.asyncio
    async def test_user_message_mentions_user(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(204)

        async with mock_client(handler) as client:
            chat = WebhookChat("https://discord.example.com/hook", client=client)
            await chat.send_to_user("42", NotificationPayload(title="Hit", message="Site A1", url="https://x"))

        body = requests[0]
        assert body["content"] == "<@42>"
        assert body["allowed_mentions"] == {"users": ["42"]}
        assert body["embeds"][0] == {"title": "Hit", "description": "Site A1", "url": "https://x"}

    @pytest.mark.asyncio
    async def test_channel_message_has_no_mention(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            return httpx.Response(200, json={})

        async with mock_client(handler) as client:
            await WebhookChat("https://hook", client=client).send_to_channel("c", NotificationPayload(title="t", message="m"))

        assert "content" not in requests[0]

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        async with mock_client(lambda request: httpx.Response(400, text="bad")) as client:
            chat = WebhookChat("https://hook", client=client)
            with pytest.raises(NotificationDeliveryError):
                await chat.send_to_user("42", NotificationPayload(title="t", message="m"))

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with mock_client(handler) as client:
            chat = WebhookChat("https://hook", client=client)
            with pytest.raises(NotificationDeliveryError):
                await chat.send_to_channel("c", NotificationPayload(title="t", message="m"))


class TestNotifier:
    @pytest.mark.asyncio
    async def test_submit_one_message_per_subscription(self, chat):
        notifier = Notifier(chat, NotificationsConfig(workers=2, retry_delay_ms=1))
        await notifier.start()
        queued = notifier.submit([
            event(1, "A1", date(2030, 8, 1), user_id="amy"),
            event(1, "A1", date(2030, 8, 2), user_id="amy"),
            event(2, "A1", date(2030, 8, 1), user_id="zed"),
        ])
        await notifier.join()
        await notifier.stop()

        assert queued == 2
        assert sorted(user for user, _ in chat.user_messages) == ["amy", "zed"]
        assert notifier.sent == 2
        assert chat.closed is True

    @pytest.mark.asyncio
    async def test_deliver_retries_then_succeeds(self):
        chat = RecordingChat(failures=2)
        notifier = Notifier(chat, NotificationsConfig(max_attempts=3, retry_delay_ms=1))
        ok = await notifier.deliver(Delivery(payload=NotificationPayload(title="t", message="m"), user_id="amy"))
        assert ok is True
        assert len(chat.user_messages) == 1

    @pytest.mark.asyncio
    async def test_deliver_gives_up(self):
        chat = RecordingChat(failures=10)
        notifier = Notifier(chat, NotificationsConfig(max_attempts=3, retry_delay_ms=1))
        ok = await notifier.deliver(Delivery(payload=NotificationPayload(title="t", message="m"), user_id="amy"))
        assert ok is False
        assert notifier.failed == 1
        assert chat.failures == 7

    @pytest.mark.asyncio
    async def test_full_queue_drops(self, chat):
        notifier = Notifier(chat, NotificationsConfig(queue_size=1))
        payload = NotificationPayload(title="t", message="m")
        assert notifier.enqueue(Delivery(payload=payload, user_id="a")) is True
        assert notifier.enqueue(Delivery(payload=payload, user_id="b")) is False
        assert notifier.dropped == 1

    @pytest.mark.asyncio
    async def test_send_digest_without_channel(self, chat):
        notifier = Notifier(chat)
        assert await notifier.send_digest(None, DigestStats()) is False
        assert chat.channel_messages == []

    @pytest.mark.asyncio
    async def test_send_digest(self, chat):
        notifier = Notifier(chat)
        assert await notifier.send_digest("summary", DigestStats()) is True
        channel, payload = chat.channel_messages[0]
        assert channel == "summary"
        assert "No bueno today." in payload.message

    @pytest.mark.asyncio
    async def test_channel_message_queued(self, chat):
        notifier = Notifier(chat, NotificationsConfig(workers=1))
        await notifier.start()
        assert await notifier.send_channel_message("summary", "Catalog sync error", "slow down") is True
        assert await notifier.send_channel_message(None, "ignored", "ignored") is False
        await notifier.stop()
        assert [c for c, _ in chat.channel_messages] == ["summary"]
