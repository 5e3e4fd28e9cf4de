"""Relevance scorer — ranks merchant deals against a traveler's budget and preferences."""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from spendwise.schemas.deals import BudgetConstraints, Deal, ScoredDeal, UserPreferences

NEUTRAL_SCORE = 50.0
BUDGETED_CATEGORIES = ("dining", "accommodation", "transportation", "activities")
FALLBACK_CATEGORY = "miscellaneous"

# (max share of the category budget in percent, score)
BUDGET_BANDS = ((10, 100.0), (25, 90.0), (50, 75.0), (75, 60.0), (100, 40.0))
OVER_BUDGET_SCORE = 20.0


@dataclass(frozen=True)
class Weights:
    budget: float = 0.4
    category: float = 0.25
    location: float = 0.15
    time: float = 0.10
    preference: float = 0.10


def _clamp(score: float) -> float:
    return min(100.0, max(0.0, score))


def category_budget(category: str, constraints: BudgetConstraints) -> float | None:
    key = category if category in BUDGETED_CATEGORIES else FALLBACK_CATEGORY
    return constraints.category_budgets.get(key)


def budget_alignment_score(deal: Deal, constraints: BudgetConstraints) -> float:
    if (
        deal.category == "dining"
        and deal.average_spend_per_hour
        and constraints.dining_budget_per_hour
    ):
        return _clamp(100 * constraints.dining_budget_per_hour / deal.average_spend_per_hour)

    budget = category_budget(deal.category, constraints)
    if not budget or budget <= 0:
        return NEUTRAL_SCORE

    percentage = deal.discounted_price / budget * 100
    for limit, score in BUDGET_BANDS:
        if percentage <= limit:
            return score
    return OVER_BUDGET_SCORE


def category_fit_score(deal: Deal, preferences: UserPreferences) -> float:
    score = NEUTRAL_SCORE
    if deal.category in preferences.preferred_categories:
        score += 30
    if deal.category == "dining" and deal.budget_category == preferences.dining_style:
        score += 20
    elif deal.category == "accommodation" and deal.budget_category == preferences.accommodation_type:
        score += 20
    if preferences.price_sensitivity == "high" and deal.discount >= 30:
        score += 15
    return min(100.0, score)


def location_score(deal_location: str, budget_location: str) -> float:
    """Substring match either way is ideal; any overlapping word is convenient."""
    deal_loc = deal_location.strip().lower()
    budget_loc = budget_location.strip().lower()
    if not deal_loc or not budget_loc:
        return 30.0
    if deal_loc in budget_loc or budget_loc in deal_loc:
        return 100.0

    budget_words = budget_loc.split()
    for word in deal_loc.split():
        if any(word in other or other in word for other in budget_words):
            return 70.0
    return 30.0


def time_score(valid_until: datetime, trip_duration_days: int, now: datetime) -> float:
    days_left = math.ceil((valid_until - now) / timedelta(days=1))
    if days_left < 1:
        return 10.0  # expired or expiring today
    if days_left >= trip_duration_days:
        return 100.0
    if days_left >= trip_duration_days / 2:
        return 70.0
    return 40.0


def preference_score(deal: Deal, preferences: UserPreferences) -> float:
    score = NEUTRAL_SCORE
    if deal.discount >= 50 and "discount" in preferences.deal_types:
        score += 20
    if "Flash" in deal.tags and "flash" in preferences.deal_types:
        score += 15
    if deal.rating is not None and deal.rating >= 4.5:
        score += 10
    location = deal.location.lower()
    if any(loc and loc.lower() in location for loc in preferences.preferred_locations):
        score += 15
    return min(100.0, score)


def _reasoning(budget: float, category: float, location: float, time: float, preference: float) -> list[str]:
    reasons = []
    if budget >= 80:
        reasons.append("Excellent budget fit")
    elif budget >= 60:
        reasons.append("Good budget alignment")
    elif budget >= 40:
        reasons.append("Moderate budget fit")
    else:
        reasons.append("Budget constraints may be tight")

    if category >= 80:
        reasons.append("Perfect category match")
    elif category >= 60:
        reasons.append("Good category alignment")

    if location >= 80:
        reasons.append("Ideal location match")
    elif location >= 60:
        reasons.append("Convenient location")

    if time >= 80:
        reasons.append("Available during trip dates")
    if preference >= 80:
        reasons.append("Matches your preferences perfectly")
    return reasons


def filter_by_relevance(deals: list[ScoredDeal], min_score: int = 50) -> list[ScoredDeal]:
    return [d for d in deals if d.relevance_score >= min_score]


def top_deals(deals: list[ScoredDeal], limit: int = 10) -> list[ScoredDeal]:
    """Highest-scoring deals first; equal scores keep their input order."""
    return sorted(deals, key=lambda d: d.relevance_score, reverse=True)[:limit]


class RelevanceScorer:
    """Deterministic weighted scoring of deals. No learned components."""

    def __init__(self, weights: Weights | None = None):
        self.weights = weights or Weights()

    def score(
        self,
        deal: Deal,
        constraints: BudgetConstraints,
        preferences: UserPreferences,
        now: datetime | None = None,
    ) -> ScoredDeal:
        now = now or datetime.now(timezone.utc)
        budget = budget_alignment_score(deal, constraints)
        category = category_fit_score(deal, preferences)
        location = location_score(deal.location, constraints.location)
        time = time_score(deal.valid_until, constraints.trip_duration_days, now)
        preference = preference_score(deal, preferences)

        w = self.weights
        composite = (
            w.budget * budget
            + w.category * category
            + w.location * location
            + w.time * time
            + w.preference * preference
        )

        return ScoredDeal(
            **deal.model_dump(include=set(Deal.model_fields)),
            relevance_score=int(_clamp(round(composite))),
            budget_alignment_score=budget,
            category_fit_score=category,
            location_score=location,
            time_score=time,
            preference_score=preference,
            reasoning=_reasoning(budget, category, location, time, preference),
        )

    def score_deals(
        self,
        deals: list[Deal],
        constraints: BudgetConstraints,
        preferences: UserPreferences,
        now: datetime | None = None,
    ) -> list[ScoredDeal]:
        """Score every deal and sort by relevance, keeping input order on ties."""
        now = now or datetime.now(timezone.utc)
        scored = [self.score(deal, constraints, preferences, now) for deal in deals]
        scored.sort(key=lambda d: d.relevance_score, reverse=True)
        return scored

    filter_by_relevance = staticmethod(filter_by_relevance)
    top_deals = staticmethod(top_deals)


relevance_scorer = RelevanceScorer()
