from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RuleType(str, Enum):
    BURN_RATE = "burn_rate"
    BUDGET_THRESHOLD = "budget_threshold"
    SPENDING_VELOCITY = "spending_velocity"
    UNUSUAL_ACTIVITY = "unusual_activity"


Operator = Literal["gt", "gte", "lt", "lte", "eq"]


class AlertCondition(BaseModel):
    field: str
    operator: Operator
    value: float | str


class AlertRule(BaseModel):
    id: str
    name: str
    type: RuleType
    condition: AlertCondition
    severity: Severity
    message: str
    enabled: bool = True
    cooldown_minutes: int = Field(ge=0)


class AlertInstance(BaseModel):
    id: str
    rule_id: str
    user_id: str
    budget_id: str | None = None
    scope_id: str
    type: RuleType
    severity: Severity
    title: str
    message: str
    data: dict = {}
    resolved: bool = False
    resolved_at: datetime | None = None
    created_at: datetime


class AlertStatistics(BaseModel):
    total: int = 0
    by_severity: dict[str, int] = Field(
        default_factory=lambda: {s.value: 0 for s in Severity}
    )
    by_type: dict[str, int] = {}
