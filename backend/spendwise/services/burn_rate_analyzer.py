"""Burn rate analyzer — projects spending trajectory and budget-exhaustion risk.

The analyzer itself is pure: it turns a list of expenses plus budget
figures into a BurnRateReport. BurnRateService wraps it with the budget
lookup, the expense fetch and a short-lived cache.
"""

import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from spendwise.config import settings
from spendwise.exceptions import NotFoundError
from spendwise.schemas.burn_rate import BurnRateReport, PeriodAnalysis, RiskLevel, Trend
from spendwise.schemas.expense import BurnRateHistoryPoint, ExpenseSample
from spendwise.services.cache_service import KeyValueStore, burn_rate_history_key, burn_rate_key
from spendwise.services.collaborators import BudgetReader, ExpenseReader
from spendwise.utils.clock import Clock, SystemClock, days_between

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionWeights:
    daily: float = 0.5
    weekly: float = 0.3
    monthly: float = 0.2
    velocity_factor: float = 0.1  # 10% adjustment per velocity unit


@dataclass(frozen=True)
class RiskThresholds:
    critical: float = 1.5
    high: float = 1.2
    medium: float = 0.9
    velocity_trigger: float = 0.2
    velocity_adjustment: float = 0.2


WEEKLY_WINDOW = 7
MONTHLY_WINDOW = 30
TREND_WINDOW = 7
TREND_CHANGE = 0.1
RECOMMENDATION_VELOCITY = 0.1
NO_EXHAUSTION_DAYS = 365

PROJECTION_WEIGHTS = ProjectionWeights()
RISK_THRESHOLDS = RiskThresholds()


def group_by_day(expenses: list[ExpenseSample]) -> list[tuple[date, float]]:
    """Sum amounts per calendar day, oldest day first. Non-finite amounts are dropped."""
    daily: dict[date, float] = defaultdict(float)
    for expense in expenses:
        if not math.isfinite(expense.amount):
            continue
        daily[expense.date.date()] += expense.amount
    return sorted(daily.items())


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def calculate_trend(amounts: list[float]) -> Trend:
    """Compare the latest 7 points with the 7 before them."""
    if len(amounts) < 2:
        return Trend.STABLE

    recent_len = min(TREND_WINDOW, len(amounts))
    recent = amounts[-recent_len:]
    earlier = amounts[-min(2 * TREND_WINDOW, len(amounts)):-recent_len]
    if not earlier:
        return Trend.STABLE

    recent_avg = _mean(recent)
    earlier_avg = _mean(earlier)
    if earlier_avg <= 0:
        return Trend.INCREASING if recent_avg > 0 else Trend.STABLE

    change = (recent_avg - earlier_avg) / earlier_avg
    if change > TREND_CHANGE:
        return Trend.INCREASING
    if change < -TREND_CHANGE:
        return Trend.DECREASING
    return Trend.STABLE


def calculate_velocity(amounts: list[float]) -> float:
    """OLS slope of amount vs. index, normalised by the mean amount."""
    n = len(amounts)
    if n < 3:
        return 0.0

    sum_x = n * (n - 1) / 2
    sum_y = sum(amounts)
    sum_xy = sum(i * y for i, y in enumerate(amounts))
    sum_xx = sum(i * i for i in range(n))

    denominator = n * sum_xx - sum_x * sum_x
    avg = sum_y / n
    if denominator == 0 or avg <= 0:
        return 0.0

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    velocity = slope / avg
    return velocity if math.isfinite(velocity) else 0.0


def analyze_periods(amounts: list[float]) -> tuple[PeriodAnalysis, PeriodAnalysis, PeriodAnalysis]:
    if not amounts:
        return (
            PeriodAnalysis(period="daily"),
            PeriodAnalysis(period="weekly"),
            PeriodAnalysis(period="monthly"),
        )

    weekly = amounts[-WEEKLY_WINDOW:]
    monthly = amounts[-MONTHLY_WINDOW:]

    return (
        PeriodAnalysis(
            period="daily",
            burn_rate=max(0.0, _mean(amounts)),
            trend=calculate_trend(amounts),
            confidence=min(len(amounts) / WEEKLY_WINDOW, 1.0),
            data_points=len(amounts),
        ),
        PeriodAnalysis(
            period="weekly",
            burn_rate=max(0.0, _mean(weekly)),
            trend=calculate_trend(weekly),
            confidence=min(len(weekly) / WEEKLY_WINDOW, 1.0),
            data_points=len(weekly),
        ),
        PeriodAnalysis(
            period="monthly",
            burn_rate=max(0.0, _mean(monthly)),
            trend=calculate_trend(monthly),
            confidence=min(len(monthly) / MONTHLY_WINDOW, 1.0),
            data_points=len(monthly),
        ),
    )


def projected_burn_rate(
    daily: float, weekly: float, monthly: float, velocity: float,
    weights: ProjectionWeights = PROJECTION_WEIGHTS,
) -> float:
    blended = daily * weights.daily + weekly * weights.weekly + monthly * weights.monthly
    return max(0.0, blended * (1 + velocity * weights.velocity_factor))


def assess_risk_level(
    projected: float, remaining_budget: float, remaining_days: int, velocity: float,
    thresholds: RiskThresholds = RISK_THRESHOLDS,
) -> RiskLevel:
    if remaining_days <= 0:
        return RiskLevel.CRITICAL
    # Nothing left to spend: any runway is already gone.
    if remaining_budget <= 0:
        return RiskLevel.CRITICAL

    daily_budget = remaining_budget / remaining_days
    ratio = projected / daily_budget

    if velocity > thresholds.velocity_trigger:
        ratio += thresholds.velocity_adjustment
    elif velocity < -thresholds.velocity_trigger:
        ratio -= thresholds.velocity_adjustment

    if ratio > thresholds.critical:
        return RiskLevel.CRITICAL
    if ratio > thresholds.high:
        return RiskLevel.HIGH
    if ratio > thresholds.medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def projected_exhaustion_date(remaining_budget: float, projected: float, now: datetime) -> datetime:
    if projected <= 0:
        return now + timedelta(days=NO_EXHAUSTION_DAYS)
    return now + timedelta(days=max(0.0, remaining_budget) / projected)


def generate_recommendations(
    risk_level: RiskLevel, velocity: float, remaining_budget: float, remaining_days: int,
    currency: str | None = None,
) -> list[str]:
    currency = currency or settings.default_currency
    recommendations: list[str] = []

    if risk_level == RiskLevel.CRITICAL:
        recommendations.append("Critical: your spending rate exceeds budget capacity. Immediate action required.")
        recommendations.append("Consider postponing non-essential expenses.")
        recommendations.append("Review and adjust your daily spending limits.")
    elif risk_level == RiskLevel.HIGH:
        recommendations.append("High risk: your spending rate is concerning. Monitor it closely.")
        recommendations.append("Identify areas where you can reduce spending.")
        recommendations.append("Consider reallocating budget from less critical categories.")
    elif risk_level == RiskLevel.MEDIUM:
        recommendations.append("Moderate risk: keep an eye on your spending velocity.")
        recommendations.append("Track expenses daily to make sure you stay on budget.")

    if velocity > RECOMMENDATION_VELOCITY:
        recommendations.append("Spending is accelerating. Consider stricter daily limits.")
    elif velocity < -RECOMMENDATION_VELOCITY:
        recommendations.append("Spending is decelerating. You may have room for planned expenses.")

    if remaining_days > 0:
        limit = max(0.0, remaining_budget) / remaining_days
        recommendations.append(f"Suggested daily limit: {currency} {limit:,.0f}")

    return recommendations


class BurnRateAnalyzer:
    """Pure burn-rate computation over an expense series."""

    def analyze(
        self,
        expenses: list[ExpenseSample],
        elapsed_days: int,
        total_budget: float,
        spent: float,
        remaining_days: int,
        now: datetime | None = None,
    ) -> BurnRateReport:
        now = now or datetime.now(timezone.utc)
        remaining_days = max(0, remaining_days)
        remaining_budget = total_budget - spent

        amounts = [amount for _, amount in group_by_day(expenses)]
        daily, weekly, monthly = analyze_periods(amounts)
        velocity = calculate_velocity(amounts)

        projected = projected_burn_rate(
            daily.burn_rate, weekly.burn_rate, monthly.burn_rate, velocity
        )
        risk_level = assess_risk_level(projected, remaining_budget, remaining_days, velocity)

        return BurnRateReport(
            current_burn_rate=max(0.0, spent) / max(1, elapsed_days),
            projected_burn_rate=projected,
            daily_average=daily.burn_rate,
            weekly_average=weekly.burn_rate,
            monthly_average=monthly.burn_rate,
            velocity=velocity,
            risk_level=risk_level,
            remaining_days=remaining_days,
            remaining_budget=remaining_budget,
            total_budget=total_budget,
            spent=spent,
            utilization_percentage=(spent / total_budget * 100) if total_budget > 0 else 0.0,
            projected_exhaustion_date=projected_exhaustion_date(remaining_budget, projected, now),
            recommendations=generate_recommendations(
                risk_level, velocity, remaining_budget, remaining_days
            ),
            periods=[daily, weekly, monthly],
            generated_at=now,
        )


def _start_of_day(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


class BurnRateService:
    """Resolves a budget, analyzes its expenses and caches the report."""

    def __init__(
        self,
        budgets: BudgetReader,
        expenses: ExpenseReader,
        cache: KeyValueStore,
        clock: Clock | None = None,
        analyzer: BurnRateAnalyzer | None = None,
    ):
        self.budgets = budgets
        self.expenses = expenses
        self.cache = cache
        self.clock = clock or SystemClock()
        self.analyzer = analyzer or BurnRateAnalyzer()

    async def calculate(self, user_id: str, budget_id: str) -> BurnRateReport:
        """Burn-rate report for one budget. Raises NotFoundError if the budget is unknown."""
        key = burn_rate_key(user_id, budget_id)
        cached = await self.cache.get(key)
        if cached:
            return BurnRateReport.model_validate(cached)

        budget = await self.budgets.get_budget(user_id, budget_id)
        if budget is None:
            raise NotFoundError(f"Budget {budget_id} not found for user {user_id}")

        now = self.clock.now()
        start = _start_of_day(budget.start_date)
        end = _start_of_day(budget.end_date)
        remaining_days = max(0, math.ceil(days_between(now, end)))
        total_days = math.ceil(days_between(start, end))
        elapsed_days = max(1, total_days - remaining_days)

        expenses = await self.expenses.get_expenses(user_id, budget_id=budget_id)
        report = self.analyzer.analyze(
            expenses,
            elapsed_days=elapsed_days,
            total_budget=budget.total_budget,
            spent=budget.spent,
            remaining_days=remaining_days,
            now=now,
        )
        report.user_id = user_id
        report.budget_id = budget_id

        await self.cache.set(key, report.model_dump(mode="json"), settings.burn_rate_cache_ttl)
        logger.info(
            f"Burn rate for budget {budget_id}: {report.projected_burn_rate:,.0f}/day, "
            f"risk={report.risk_level.value}"
        )
        return report

    async def history(self, user_id: str, budget_id: str, days: int = 30) -> list[BurnRateHistoryPoint]:
        """Daily and cumulative spending over the last `days` days."""
        key = burn_rate_history_key(user_id, budget_id, days)
        cached = await self.cache.get(key)
        if isinstance(cached, list):
            return [BurnRateHistoryPoint.model_validate(p) for p in cached]

        start = self.clock.now() - timedelta(days=days)
        expenses = await self.expenses.get_expenses(user_id, start=start, budget_id=budget_id)

        history = []
        cumulative = 0.0
        for day, amount in group_by_day(expenses):
            cumulative += amount
            history.append(BurnRateHistoryPoint(date=day, daily_amount=amount, cumulative_amount=cumulative))

        await self.cache.set(
            key, [p.model_dump(mode="json") for p in history], settings.burn_rate_history_cache_ttl
        )
        return history

    async def invalidate(self, user_id: str, budget_id: str) -> None:
        """Drop cached burn-rate data; called when a new expense is recorded."""
        await self.cache.delete(burn_rate_key(user_id, budget_id))
        await self.cache.delete_prefix(f"burn-rate-history:{user_id}:{budget_id}:")
