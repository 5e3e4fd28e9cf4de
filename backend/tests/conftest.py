import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from spendwise.exceptions import CollaboratorUnavailableError
from spendwise.schemas.alerts import AlertInstance
from spendwise.schemas.deals import (
    BudgetConstraints,
    Deal,
    ScoredDeal,
    UserPreferences,
)
from spendwise.schemas.expense import BudgetRecord, ExpenseSample
from spendwise.services.cache_service import InMemoryCacheService
from spendwise.utils.clock import FrozenClock

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
USER = "user-1"


class FakeBudgets:
    def __init__(self, budgets: list[BudgetRecord] | None = None):
        self.budgets = list(budgets or [])
        self.fail_for: set[str] = set()

    async def get_budget(self, user_id, budget_id):
        if budget_id in self.fail_for:
            raise RuntimeError(f"database timeout for {budget_id}")
        return next((b for b in self.budgets if b.user_id == user_id and b.id == budget_id), None)

    async def list_budgets(self, user_id):
        return [b for b in self.budgets if b.user_id == user_id]


class FakeExpenses:
    def __init__(self, expenses: list[ExpenseSample] | None = None):
        self.expenses = list(expenses or [])
        self.calls = 0

    async def get_expenses(self, user_id, start=None, end=None, budget_id=None):
        self.calls += 1
        return [
            e for e in self.expenses
            if (start is None or e.date >= start)
            and (end is None or e.date <= end)
            and (budget_id is None or e.budget_id == budget_id)
        ]


class FakePreferences:
    def __init__(self, preferences: dict[str, UserPreferences] | None = None):
        self.preferences = preferences or {}

    async def get_user_preferences(self, user_id):
        return self.preferences.get(user_id)


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple] = []
        self.labels: list[tuple] = []

    async def send_notification(self, user_id, title, message, severity, type="general", reference_id=None):
        if self.fail:
            raise CollaboratorUnavailableError("notifier", "push gateway down")
        self.sent.append((user_id, title, message, severity))
        self.labels.append((type, reference_id))


class MemoryRecorder:
    def __init__(self):
        self.instances: list[AlertInstance] = []
        self.records: list[dict] = []

    async def persist_alert_instance(self, instance):
        self.instances.append(instance)

    async def persist_notification_record(self, user_id, type, title, message, reference_id=None):
        self.records.append({"user_id": user_id, "type": type, "title": title, "reference_id": reference_id})

    async def resolve_alert(self, user_id, alert_id, resolved_at):
        for instance in self.instances:
            if instance.id == alert_id and instance.user_id == user_id and not instance.resolved:
                instance.resolved = True
                instance.resolved_at = resolved_at
                return True
        return False

    async def list_active_alerts(self, user_id, since):
        return [i for i in self.instances if i.user_id == user_id and not i.resolved and i.created_at >= since]


class StaticDealSource:
    def __init__(self, name: str, deals: list[Deal], delay: float = 0.0):
        self.name = name
        self.deals = deals
        self.delay = delay
        self.calls = 0

    async def fetch_deals(self, location=None, category=None, price_range=None):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return list(self.deals)


class FailingDealSource:
    def __init__(self, name: str = "broken"):
        self.name = name

    async def fetch_deals(self, location=None, category=None, price_range=None):
        raise CollaboratorUnavailableError(self.name, "connection refused")


def make_deal(deal_id: str = "deal-1", **overrides) -> Deal:
    fields = {
        "id": deal_id,
        "merchant_id": "merchant-1",
        "merchant_name": "Warung Test",
        "title": "Test Deal",
        "category": "dining",
        "original_price": 100000,
        "discounted_price": 50000,
        "discount_percentage": 50,
        "location": "Surabaya",
        "valid_until": NOW + timedelta(days=14),
        "tags": [],
        "budget_category": "moderate",
    }
    fields.update(overrides)
    return Deal(**fields)


def make_budget(budget_id: str = "budget-1", **overrides) -> BudgetRecord:
    fields = {
        "id": budget_id,
        "user_id": USER,
        "name": "Bali Trip",
        "itinerary_id": "itin-1",
        "total_budget": 1_000_000,
        "spent": 300_000,
        "start_date": date(2026, 3, 7),
        "end_date": date(2026, 3, 17),
        "location": "Surabaya",
    }
    fields.update(overrides)
    return BudgetRecord(**fields)


def daily_expenses(amounts: list[float], budget_id: str = "budget-1", start: datetime | None = None):
    start = start or NOW - timedelta(days=len(amounts))
    return [
        ExpenseSample(id=f"exp-{i}", date=start + timedelta(days=i), amount=a, category="dining", budget_id=budget_id)
        for i, a in enumerate(amounts)
    ]


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def store(clock):
    return InMemoryCacheService(clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def recorder():
    return MemoryRecorder()


@pytest.fixture
def constraints():
    return BudgetConstraints(
        total_budget=3_000_000,
        daily_budget=300_000,
        category_budgets={"dining": 500_000, "accommodation": 1_500_000, "miscellaneous": 200_000},
        location="Surabaya",
        trip_duration_days=5,
    )


@pytest.fixture
def preferences():
    return UserPreferences(
        preferred_categories=["dining"],
        price_sensitivity="medium",
        deal_types=["discount", "flash"],
        preferred_locations=[],
        dining_style="moderate",
        accommodation_type="moderate",
    )


def make_scored(deal_id: str = "deal-1", relevance_score: int = 80, **overrides) -> ScoredDeal:
    deal = make_deal(deal_id, **overrides)
    return ScoredDeal(
        **deal.model_dump(),
        relevance_score=relevance_score,
        budget_alignment_score=relevance_score,
        category_fit_score=relevance_score,
        location_score=relevance_score,
        time_score=relevance_score,
        preference_score=relevance_score,
    )
