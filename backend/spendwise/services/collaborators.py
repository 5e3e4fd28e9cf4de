"""Collaborator ports — the narrow capabilities the engine consumes.

The host application supplies implementations (database readers, the
merchant integration, the delivery channel). Every method is awaitable so
I/O-bound adapters can run concurrently inside one orchestration run.
"""

from datetime import datetime
from typing import Protocol

from spendwise.schemas.alerts import AlertInstance, Severity
from spendwise.schemas.deals import Deal, UserPreferences
from spendwise.schemas.expense import BudgetRecord, ExpenseSample


class ExpenseReader(Protocol):
    async def get_expenses(
        self,
        user_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
        budget_id: str | None = None,
    ) -> list[ExpenseSample]:
        """Expenses for a user (optionally one budget) within [start, end]."""
        ...


class BudgetReader(Protocol):
    async def get_budget(self, user_id: str, budget_id: str) -> BudgetRecord | None:
        ...

    async def list_budgets(self, user_id: str) -> list[BudgetRecord]:
        """All budgets of a user, most recent first."""
        ...


class PreferencesReader(Protocol):
    async def get_user_preferences(self, user_id: str) -> UserPreferences | None:
        ...


class DealSource(Protocol):
    name: str

    async def fetch_deals(
        self,
        location: str | None = None,
        category: str | None = None,
        price_range: tuple[float, float] | None = None,
    ) -> list[Deal]:
        """May return stale or partial data; raises CollaboratorUnavailableError on failure."""
        ...


class Notifier(Protocol):
    async def send_notification(
        self,
        user_id: str,
        title: str,
        message: str,
        severity: Severity | str,
        type: str = "general",
        reference_id: str | None = None,
    ) -> None:
        """Fire-and-forget delivery. `type` and `reference_id` label the in-app record."""
        ...


class AlertRecorder(Protocol):
    async def persist_alert_instance(self, instance: AlertInstance) -> None:
        ...

    async def persist_notification_record(
        self, user_id: str, type: str, title: str, message: str, reference_id: str | None = None
    ) -> None:
        ...

    async def resolve_alert(self, user_id: str, alert_id: str, resolved_at: datetime) -> bool:
        ...

    async def list_active_alerts(self, user_id: str, since: datetime) -> list[AlertInstance]:
        ...
