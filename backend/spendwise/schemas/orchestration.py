from datetime import datetime
from enum import Enum

from pydantic import BaseModel

from spendwise.schemas.burn_rate import RiskLevel
from spendwise.schemas.deals import DealSourceStatus, ScoredDeal
from spendwise.schemas.geo import DealMap


class Trigger(str, Enum):
    BUDGET_UPDATE = "budget_update"
    ITINERARY_CHANGE = "itinerary_change"
    SCHEDULED_CHECK = "scheduled_check"
    MANUAL_REQUEST = "manual_request"


class CheckTier(str, Enum):
    FREQUENT = "frequent"
    NORMAL = "normal"
    LOW = "low"


class OrchestrationRequest(BaseModel):
    user_id: str
    itinerary_id: str | None = None
    trigger: Trigger
    location: str | None = None
    force_refresh: bool = False
    include_risk: bool = True


class BudgetAnalysis(BaseModel):
    total_budget: float = 0.0
    remaining_budget: float = 0.0
    recommended_savings: float = 0.0
    deal_coverage: float = 0.0  # percent of remaining budget covered by deal savings


class OrchestrationError(BaseModel):
    kind: str  # "not_found" | "invalid_input" | "internal"
    message: str


class OrchestrationResult(BaseModel):
    success: bool
    deals_found: int = 0
    notifications_sent: int = 0
    alerts_fired: int = 0
    budget_analysis: BudgetAnalysis = BudgetAnalysis()
    top_deals: list[ScoredDeal] = []
    deal_map: DealMap | None = None
    risk_level: RiskLevel | None = None
    deal_source_status: DealSourceStatus = DealSourceStatus.OK
    check_tier: CheckTier | None = None
    next_check_at: datetime | None = None
    processing_time_ms: int = 0
    cache_used: bool = False
    error: OrchestrationError | None = None
