from datetime import date, datetime

from pydantic import BaseModel


class ExpenseSample(BaseModel):
    """A recorded expense; immutable once produced by the expense tracker."""

    id: str | None = None
    date: datetime
    amount: float
    category: str = "miscellaneous"
    budget_id: str | None = None

    model_config = {"frozen": True}


class BudgetRecord(BaseModel):
    """Budget snapshot as returned by the persistence collaborator."""

    id: str
    user_id: str
    name: str = "Budget"
    itinerary_id: str | None = None
    total_budget: float
    spent: float = 0.0
    start_date: date
    end_date: date
    location: str = ""
    category_budgets: dict[str, float] = {}
    dining_budget_per_hour: float | None = None

    @property
    def remaining_budget(self) -> float:
        return self.total_budget - self.spent

    @property
    def duration_days(self) -> int:
        return max(1, (self.end_date - self.start_date).days)


class BurnRateHistoryPoint(BaseModel):
    date: date
    daily_amount: float
    cumulative_amount: float
