from datetime import timedelta

import pytest

from conftest import NOW, USER, RecordingNotifier, make_scored
from spendwise.schemas.notifications import QuietHours
from spendwise.schemas.orchestration import Trigger
from spendwise.services.deal_notification_service import (
    DealNotificationService,
    in_quiet_hours,
    notification_content,
    notification_priority,
    notification_type,
)


@pytest.fixture
def service(notifier, store, clock):
    return DealNotificationService(notifier, store, clock)


@pytest.mark.parametrize("overrides, trigger, expected", [
    ({"tags": ["Flash"]}, None, "flash_deal"),
    ({"tags": ["Limited Time"], "valid_until": NOW + timedelta(days=1)}, None, "flash_deal"),
    ({"valid_until": NOW + timedelta(days=2)}, Trigger.BUDGET_UPDATE, "expiring_soon"),
    ({}, Trigger.BUDGET_UPDATE, "budget_match"),
    ({"relevance_score": 95}, None, "personalized_recommendation"),
    ({}, Trigger.SCHEDULED_CHECK, "new_deal"),
])
def test_notification_type(overrides, trigger, expected):
    assert notification_type(make_scored(**overrides), trigger, NOW) == expected


@pytest.mark.parametrize("overrides, expected", [
    ({"tags": ["Flash"]}, "urgent"),
    ({"relevance_score": 92, "discounted_price": 95_000}, "high"),
    ({}, "high"),
    ({"discounted_price": 80_000, "valid_until": NOW + timedelta(days=5)}, "medium"),
    ({"discounted_price": 80_000}, "low"),
])
def test_notification_priority(overrides, expected):
    assert notification_priority(make_scored(**overrides), NOW) == expected


def test_notification_content():
    deal = make_scored(tags=["Flash"])
    assert notification_content(deal, "flash_deal", NOW) == (
        "Flash Deal Available", "Save 50% at Warung Test - Test Deal. Limited offer!",
    )
    title, message = notification_content(make_scored(valid_until=NOW + timedelta(days=2)), "expiring_soon", NOW)
    assert title == "Deal Ending Soon"
    assert message == "Test Deal from Warung Test ends in 2 days. Save IDR 50,000!"


@pytest.mark.parametrize("hour, minute, expected", [
    (23, 30, True),
    (7, 59, True),
    (8, 1, False),
    (12, 0, False),
])
def test_overnight_quiet_hours(hour, minute, expected):
    quiet = QuietHours(enabled=True, start="22:00", end="08:00")
    assert in_quiet_hours(NOW.replace(hour=hour, minute=minute), quiet) is expected


def test_same_day_quiet_hours():
    quiet = QuietHours(enabled=True, start="12:00", end="13:00")
    assert in_quiet_hours(NOW, quiet)
    assert not in_quiet_hours(NOW, quiet.model_copy(update={"enabled": False}))


async def test_immediate_delivery(service, notifier):
    sent = await service.notify_deals(USER, [make_scored("a"), make_scored("b")], Trigger.SCHEDULED_CHECK)

    assert [n.deal_id for n in sent] == ["a", "b"]
    assert [t for _, t, _, _ in notifier.sent] == ["New Deal Available", "New Deal Available"]
    assert sent[0].expires_at == NOW + timedelta(hours=6)


async def test_recently_notified_deals_are_skipped(service, notifier, clock):
    await service.notify_deals(USER, [make_scored("a")])
    clock.advance(days=1)
    assert await service.notify_deals(USER, [make_scored("a")]) == []

    clock.advance(days=7)
    again = await service.notify_deals(USER, [make_scored("a", valid_until=NOW + timedelta(days=30))])
    assert [n.deal_id for n in again] == ["a"]


async def test_daily_cap(service, notifier):
    service.update_preferences(USER, {"max_daily_notifications": 2})

    sent = await service.notify_deals(USER, [make_scored(f"d{i}") for i in range(3)])
    assert len(sent) == 2
    assert await service.notify_deals(USER, [make_scored("later")]) == []
    assert len(notifier.sent) == 2


async def test_disabled_type_is_skipped(service, notifier):
    prefs = service.update_preferences(USER, {"types": {"flash_deal": False}})
    assert prefs.types["new_deal"] is True

    sent = await service.notify_deals(USER, [make_scored("flash", tags=["Flash"]), make_scored("plain")])
    assert [n.deal_id for n in sent] == ["plain"]


async def test_disabled_or_quiet_user_gets_nothing(service, notifier):
    service.update_preferences(USER, {"enabled": False})
    assert await service.notify_deals(USER, [make_scored()]) == []

    service.update_preferences("user-2", {"quiet_hours": {"enabled": True, "start": "11:00", "end": "13:00"}})
    assert await service.notify_deals("user-2", [make_scored()]) == []
    assert notifier.sent == []


async def test_delivery_failure_does_not_raise(store, clock):
    service = DealNotificationService(RecordingNotifier(fail=True), store, clock)
    sent = await service.notify_deals(USER, [make_scored()])
    assert len(sent) == 1


async def test_daily_digest(service, notifier):
    service.update_preferences(USER, {"frequency": "daily"})
    queued = await service.notify_deals(USER, [make_scored("a"), make_scored("b", category="activities")])

    assert len(queued) == 2
    assert notifier.sent == []

    digest = await service.process_queued(USER, "daily")
    assert digest.title == "Daily Deal Summary"
    assert digest.message == "2 deals found in dining, activities. Potential savings: IDR 100,000"
    assert digest.potential_savings == 100_000
    assert len(notifier.sent) == 1
    assert await service.process_queued(USER, "daily") is None
