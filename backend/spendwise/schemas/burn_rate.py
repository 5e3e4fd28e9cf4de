from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class PeriodAnalysis(BaseModel):
    period: str  # "daily" | "weekly" | "monthly"
    burn_rate: float = 0.0
    trend: Trend = Trend.STABLE
    confidence: float = 0.0
    data_points: int = 0


class BurnRateReport(BaseModel):
    user_id: str | None = None
    budget_id: str | None = None
    current_burn_rate: float
    projected_burn_rate: float
    daily_average: float
    weekly_average: float
    monthly_average: float
    velocity: float
    risk_level: RiskLevel
    remaining_days: int
    remaining_budget: float
    total_budget: float
    spent: float
    utilization_percentage: float
    projected_exhaustion_date: datetime
    recommendations: list[str]
    periods: list[PeriodAnalysis] = []
    generated_at: datetime
