"""Deal notification service — turns ranked deals into user notifications.

Respects per-user preferences (enabled types, quiet hours, daily cap and
delivery frequency). Immediate notifications go straight to the notifier;
daily and weekly ones are queued and later delivered as one digest.
"""

import logging
import math
import uuid
from datetime import datetime, time, timedelta

from spendwise.config import settings
from spendwise.schemas.deals import ScoredDeal
from spendwise.schemas.notifications import (
    DealNotification,
    NotificationPreferences,
    NotificationType,
    Priority,
    QuietHours,
)
from spendwise.schemas.orchestration import Trigger
from spendwise.services.cache_service import (
    KeyValueStore,
    notification_count_key,
    notification_queue_key,
    recent_notifications_key,
)
from spendwise.services.collaborators import Notifier
from spendwise.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

FLASH_TAGS = ("Flash", "Limited Time")
EXPIRY_HOURS: dict[str, int] = {"urgent": 2, "high": 6, "medium": 24, "low": 72}
RECENT_WINDOW = timedelta(days=7)
RECENT_LIMIT = 50
QUEUE_TTL = int(timedelta(days=7).total_seconds())
DAY_TTL = int(timedelta(days=1).total_seconds())


def _days_until(moment: datetime, now: datetime) -> int:
    return math.ceil((moment - now) / timedelta(days=1))


def _savings_percent(deal: ScoredDeal) -> float:
    return deal.savings / deal.original_price * 100 if deal.original_price > 0 else 0.0


def _money(amount: float) -> str:
    return f"{settings.default_currency} {amount:,.0f}"


def is_flash(deal: ScoredDeal) -> bool:
    return any(tag in deal.tags for tag in FLASH_TAGS)


def notification_type(deal: ScoredDeal, trigger: Trigger | None, now: datetime) -> NotificationType:
    if is_flash(deal):
        return "flash_deal"
    if _days_until(deal.valid_until, now) <= 3:
        return "expiring_soon"
    if trigger == Trigger.BUDGET_UPDATE:
        return "budget_match"
    if deal.relevance_score >= 90:
        return "personalized_recommendation"
    return "new_deal"


def notification_priority(deal: ScoredDeal, now: datetime) -> Priority:
    if is_flash(deal):
        return "urgent"
    if deal.relevance_score >= 90 or _savings_percent(deal) >= 30:
        return "high"
    if _days_until(deal.valid_until, now) <= 7:
        return "medium"
    return "low"


def notification_content(deal: ScoredDeal, kind: NotificationType, now: datetime) -> tuple[str, str]:
    percent = round(_savings_percent(deal))
    if kind == "flash_deal":
        return "Flash Deal Available", f"Save {percent}% at {deal.merchant_name} - {deal.title}. Limited offer!"
    if kind == "expiring_soon":
        days = max(0, _days_until(deal.valid_until, now))
        return (
            "Deal Ending Soon",
            f"{deal.title} from {deal.merchant_name} ends in {days} days. Save {_money(deal.savings)}!",
        )
    if kind == "budget_match":
        return "Deal Matches Your Budget", f"{deal.title} fits your budget. Save {_money(deal.savings)} ({percent}%)"
    if kind == "personalized_recommendation":
        return (
            "Personal Recommendation",
            f"Based on your preferences: {deal.title} from {deal.merchant_name}. Match score: {deal.relevance_score}%",
        )
    return "New Deal Available", f"{deal.title} - save {percent}% at {deal.merchant_name}"


def in_quiet_hours(now: datetime, quiet: QuietHours) -> bool:
    """Overnight windows (start after end) wrap past midnight. Times are UTC."""
    if not quiet.enabled:
        return False
    current = now.time().replace(second=0, microsecond=0)
    start = time.fromisoformat(quiet.start)
    end = time.fromisoformat(quiet.end)
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


class DealNotificationService:
    def __init__(self, notifier: Notifier, store: KeyValueStore, clock: Clock | None = None):
        self.notifier = notifier
        self.store = store
        self.clock = clock or SystemClock()
        self._preferences: dict[str, NotificationPreferences] = {}

    def preferences_for(self, user_id: str) -> NotificationPreferences:
        return self._preferences.get(
            user_id,
            NotificationPreferences(max_daily_notifications=settings.max_daily_deal_notifications),
        )

    def update_preferences(self, user_id: str, updates: dict) -> NotificationPreferences:
        """Partial update; `types` and `quiet_hours` merge into the current values."""
        current = self.preferences_for(user_id).model_dump()
        merged = {**current, **updates}
        for nested in ("types", "quiet_hours"):
            if isinstance(updates.get(nested), dict):
                merged[nested] = {**current[nested], **updates[nested]}
        self._preferences[user_id] = NotificationPreferences.model_validate(merged)
        logger.info(f"Updated notification preferences for user {user_id}")
        return self._preferences[user_id]

    async def notify_deals(
        self, user_id: str, deals: list[ScoredDeal], trigger: Trigger | None = None
    ) -> list[DealNotification]:
        """Create notifications for new deals; returns those delivered or queued."""
        prefs = self.preferences_for(user_id)
        if not prefs.enabled:
            logger.info(f"Notifications disabled for user {user_id}")
            return []

        now = self.clock.now()
        if in_quiet_hours(now, prefs.quiet_hours):
            logger.info(f"In quiet hours for user {user_id}, skipping notifications")
            return []

        sent_today = await self.store.get(notification_count_key(user_id, now.date().isoformat())) or 0
        if sent_today >= prefs.max_daily_notifications:
            logger.info(f"Daily notification limit reached for user {user_id}")
            return []

        recent_ids = await self._recent_deal_ids(user_id, now)
        notifications: list[DealNotification] = []
        for deal in deals:
            if sent_today + len(notifications) >= prefs.max_daily_notifications:
                break
            if deal.id in recent_ids:
                continue
            kind = notification_type(deal, trigger, now)
            if not prefs.types.get(kind, False):
                continue
            notifications.append(self._build(user_id, deal, kind, now))
            recent_ids.add(deal.id)

        if not notifications:
            return []

        if prefs.frequency == "immediate":
            await self._deliver(user_id, notifications)
        else:
            await self._enqueue(user_id, notifications, prefs.frequency)
        await self._remember(user_id, notifications, now)

        logger.info(f"Created {len(notifications)} deal notifications for user {user_id}")
        return notifications

    def _build(self, user_id: str, deal: ScoredDeal, kind: NotificationType, now: datetime) -> DealNotification:
        priority = notification_priority(deal, now)
        title, message = notification_content(deal, kind, now)
        return DealNotification(
            id=f"deal-notif-{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            deal_id=deal.id,
            type=kind,
            title=title,
            message=message,
            priority=priority,
            relevance_score=deal.relevance_score,
            potential_savings=deal.savings,
            category=deal.category,
            merchant_name=deal.merchant_name,
            expires_at=now + timedelta(hours=EXPIRY_HOURS[priority]),
            created_at=now,
            deal=deal,
        )

    async def _deliver(self, user_id: str, notifications: list[DealNotification]) -> int:
        delivered = 0
        for n in notifications:
            try:
                await self.notifier.send_notification(
                    user_id, n.title, n.message, n.priority, type=f"deal_{n.type}", reference_id=n.deal_id
                )
                delivered += 1
            except Exception as e:
                logger.warning(f"Deal notification {n.id} for user {user_id} failed: {e}")

        day_key = notification_count_key(user_id, self.clock.now().date().isoformat())
        count = await self.store.get(day_key) or 0
        await self.store.set(day_key, count + delivered, DAY_TTL)
        return delivered

    async def _enqueue(self, user_id: str, notifications: list[DealNotification], frequency: str):
        key = notification_queue_key(user_id, frequency)
        queue = await self.store.get(key) or []
        queue.extend(n.model_dump(mode="json", exclude={"deal"}) for n in notifications)
        await self.store.set(key, queue, QUEUE_TTL)
        logger.info(f"Queued {len(notifications)} notifications for user {user_id} ({frequency})")

    async def _recent_deal_ids(self, user_id: str, now: datetime) -> set[str]:
        recent = await self.store.get(recent_notifications_key(user_id)) or []
        cutoff = now - RECENT_WINDOW
        return {r["deal_id"] for r in recent if datetime.fromisoformat(r["at"]) >= cutoff}

    async def _remember(self, user_id: str, notifications: list[DealNotification], now: datetime):
        key = recent_notifications_key(user_id)
        recent = await self.store.get(key) or []
        recent.extend({"deal_id": n.deal_id, "at": now.isoformat()} for n in notifications)
        await self.store.set(key, recent[-RECENT_LIMIT:], QUEUE_TTL)

    async def process_queued(self, user_id: str, frequency: str) -> DealNotification | None:
        """Deliver the queued notifications as a single digest and clear the queue."""
        key = notification_queue_key(user_id, frequency)
        queued = [DealNotification.model_validate(q) for q in await self.store.get(key) or []]
        if not queued:
            return None

        now = self.clock.now()
        total_savings = sum(n.potential_savings for n in queued)
        categories = list(dict.fromkeys(n.category for n in queued))
        digest = DealNotification(
            id=f"digest-{uuid.uuid4().hex[:12]}",
            user_id=user_id,
            deal_id="digest",
            type="personalized_recommendation",
            title="Daily Deal Summary" if frequency == "daily" else "Weekly Deal Summary",
            message=(
                f"{len(queued)} deals found in {', '.join(categories)}. "
                f"Potential savings: {_money(total_savings)}"
            ),
            priority="medium",
            relevance_score=max(n.relevance_score for n in queued),
            potential_savings=total_savings,
            category=", ".join(categories),
            merchant_name="Multiple Merchants",
            expires_at=now + timedelta(hours=EXPIRY_HOURS["medium"]),
            created_at=now,
        )
        await self._deliver(user_id, [digest])
        await self.store.delete(key)
        logger.info(f"Processed {len(queued)} queued notifications for user {user_id}")
        return digest
