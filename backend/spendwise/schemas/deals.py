from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

BudgetTier = Literal["budget", "moderate", "premium"]


class Coordinates(BaseModel):
    lat: float
    lng: float


class Deal(BaseModel):
    """A merchant deal as supplied by the merchant integration; read-only to the engine."""

    id: str
    merchant_id: str
    merchant_name: str = ""
    title: str = ""
    description: str = ""
    category: str
    original_price: float
    discounted_price: float
    discount_percentage: float | None = None
    location: str = ""
    coordinates: Coordinates | None = None
    valid_until: datetime
    terms: list[str] = []
    tags: list[str] = []
    rating: float | None = None
    reviews: int | None = None
    budget_category: BudgetTier = "moderate"
    average_spend_per_hour: float | None = None

    @field_validator("valid_until")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    @property
    def discount(self) -> float:
        """Discount percentage, derived from prices when the merchant omits it."""
        if self.discount_percentage is not None:
            return self.discount_percentage
        if self.original_price <= 0:
            return 0.0
        return (self.original_price - self.discounted_price) / self.original_price * 100

    @property
    def savings(self) -> float:
        return self.original_price - self.discounted_price


class BudgetConstraints(BaseModel):
    total_budget: float
    daily_budget: float
    category_budgets: dict[str, float] = {}
    dining_budget_per_hour: float | None = None
    location: str = ""
    trip_duration_days: int = 1


class UserPreferences(BaseModel):
    preferred_categories: list[str] = []
    price_sensitivity: Literal["low", "medium", "high"] = "medium"
    deal_types: list[str] = []
    preferred_locations: list[str] = []
    dining_style: BudgetTier = "moderate"
    accommodation_type: BudgetTier = "moderate"

    @field_validator("accommodation_type", mode="before")
    @classmethod
    def _luxury_is_premium(cls, value):
        return "premium" if value == "luxury" else value


DEFAULT_PREFERENCES = UserPreferences(
    preferred_categories=["dining", "accommodation", "activities"],
    price_sensitivity="medium",
    deal_types=["discount", "bundle", "flash"],
    preferred_locations=[],
    dining_style="moderate",
    accommodation_type="moderate",
)


class ScoredDeal(Deal):
    relevance_score: int = Field(ge=0, le=100)
    budget_alignment_score: float
    category_fit_score: float
    location_score: float
    time_score: float
    preference_score: float
    reasoning: list[str] = []


class DealFilters(BaseModel):
    categories: list[str] = []
    min_discount: float | None = None
    max_price: float | None = None
    location: str | None = None
    deal_types: list[str] = []


class DealMatchingRequest(BaseModel):
    user_id: str
    budget_constraints: BudgetConstraints
    user_preferences: UserPreferences
    filters: DealFilters | None = None
    limit: int = 20
    min_relevance_score: int = 40


class DealSourceStatus(str, Enum):
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


class DealBudgetAnalysis(BaseModel):
    total_savings: float = 0.0
    average_discount: float = 0.0
    best_value_deals: list[ScoredDeal] = []


class DealMatchingResult(BaseModel):
    deals: list[ScoredDeal]
    total_found: int
    filtered_count: int
    top_recommendations: list[ScoredDeal]
    budget_analysis: DealBudgetAnalysis
    source_status: DealSourceStatus = DealSourceStatus.OK
    failed_sources: list[str] = []
    processing_time_ms: int = 0
    cache_used: bool = False
    last_updated: datetime
