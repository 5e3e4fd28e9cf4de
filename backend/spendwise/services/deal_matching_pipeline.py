"""Deal matching pipeline — fetches, filters, scores and ranks merchant deals for a traveler."""

import asyncio
import hashlib
import logging
import time

from spendwise.config import settings
from spendwise.schemas.deals import (
    BudgetConstraints,
    Deal,
    DealBudgetAnalysis,
    DealFilters,
    DealMatchingRequest,
    DealMatchingResult,
    DealSourceStatus,
    ScoredDeal,
    UserPreferences,
)
from spendwise.services.cache_service import KeyValueStore, deal_matching_key
from spendwise.services.collaborators import DealSource
from spendwise.services.merchant_client import DEFAULT_GUEST_COUNT, fetch_dining_deals
from spendwise.services.relevance_scorer import (
    RelevanceScorer,
    filter_by_relevance,
    top_deals,
)
from spendwise.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

MAX_PRICE_SHARE = 0.5  # deals up to half of the total budget
BEST_VALUE_COUNT = 5
CATEGORY_MIN_SCORE = 50
OPTIMIZED_MIN_SCORE = 60
OPTIMIZED_LIMIT = 50


def apply_filters(deals: list[Deal], filters: DealFilters | None) -> list[Deal]:
    if not filters:
        return deals

    def keep(deal: Deal) -> bool:
        if filters.categories and deal.category not in filters.categories:
            return False
        if filters.min_discount and deal.discount < filters.min_discount:
            return False
        if filters.max_price and deal.discounted_price > filters.max_price:
            return False
        if filters.location and filters.location.lower() not in deal.location.lower():
            return False
        if filters.deal_types:
            tags = [t.lower() for t in deal.tags]
            if not any(kind.lower() in tag for kind in filters.deal_types for tag in tags):
                return False
        return True

    return [d for d in deals if keep(d)]


def deduplicate(deals: list[Deal]) -> list[Deal]:
    """Drop repeats of (merchant_id, id); the first occurrence wins."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for deal in deals:
        key = (deal.merchant_id, deal.id)
        if key in seen:
            continue
        seen.add(key)
        unique.append(deal)
    return unique


def budget_analysis(deals: list[ScoredDeal]) -> DealBudgetAnalysis:
    if not deals:
        return DealBudgetAnalysis()

    def value_ratio(deal: ScoredDeal) -> float:
        return deal.savings / deal.discounted_price if deal.discounted_price > 0 else 0.0

    return DealBudgetAnalysis(
        total_savings=sum(d.savings for d in deals),
        average_discount=sum(d.discount for d in deals) / len(deals),
        best_value_deals=sorted(deals, key=value_ratio, reverse=True)[:BEST_VALUE_COUNT],
    )


def request_digest(request: DealMatchingRequest) -> str:
    return hashlib.sha256(request.model_dump_json().encode()).hexdigest()


class DealMatchingPipeline:
    """Matches deals from every registered source against a user's budget."""

    def __init__(
        self,
        sources: list[DealSource],
        cache: KeyValueStore,
        scorer: RelevanceScorer | None = None,
        clock: Clock | None = None,
    ):
        self.sources = sources
        self.cache = cache
        self.scorer = scorer or RelevanceScorer()
        self.clock = clock or SystemClock()

    async def _fetch(self, request: DealMatchingRequest) -> tuple[list[Deal], list[str], DealSourceStatus]:
        """Fetch from every source concurrently; returns deals, failed source names and status."""
        constraints = request.budget_constraints
        filters = request.filters or DealFilters()
        location = filters.location or constraints.location
        category = filters.categories[0] if filters.categories else None
        price_range = (0.0, constraints.total_budget * MAX_PRICE_SHARE) if constraints.total_budget else None

        calls = []
        for source in self.sources:
            calls.append((source.name, source.fetch_deals(location, category, price_range)))
            if constraints.dining_budget_per_hour:
                calls.append((
                    source.name,
                    fetch_dining_deals(
                        source, constraints.location, constraints.dining_budget_per_hour, DEFAULT_GUEST_COUNT
                    ),
                ))

        results = await asyncio.gather(*(coro for _, coro in calls), return_exceptions=True)

        # Merge in registration order so completion order never changes the output.
        deals: list[Deal] = []
        failed: list[str] = []
        failed_calls = 0
        for (name, _), result in zip(calls, results):
            if isinstance(result, Exception):
                failed_calls += 1
                logger.warning(f"Deal source {name} failed for user {request.user_id}: {result}")
                if name not in failed:
                    failed.append(name)
            else:
                deals.extend(result)
        if not failed_calls:
            status = DealSourceStatus.OK
        elif failed_calls == len(calls):
            status = DealSourceStatus.FAILED
        else:
            status = DealSourceStatus.PARTIAL
        return deduplicate(deals), failed, status

    async def find_matching_deals(self, request: DealMatchingRequest) -> DealMatchingResult:
        start = time.monotonic()
        key = deal_matching_key(request.user_id, request_digest(request))

        cached = await self.cache.get(key)
        if cached:
            logger.info(f"Using cached deal matching results for user {request.user_id}")
            result = DealMatchingResult.model_validate(cached)
            result.cache_used = True
            return result

        all_deals, failed, status = await self._fetch(request)

        now = self.clock.now()
        filtered = apply_filters(all_deals, request.filters)
        scored = self.scorer.score_deals(filtered, request.budget_constraints, request.user_preferences, now)
        relevant = filter_by_relevance(scored, request.min_relevance_score)

        result = DealMatchingResult(
            deals=relevant,
            total_found=len(all_deals),
            filtered_count=len(relevant),
            top_recommendations=top_deals(relevant, request.limit),
            budget_analysis=budget_analysis(relevant),
            source_status=status,
            failed_sources=failed,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            last_updated=now,
        )

        # A fully failed fetch is retried on the next request instead of being cached.
        if status != DealSourceStatus.FAILED:
            await self.cache.set(key, result.model_dump(mode="json"), settings.deal_matching_cache_ttl)

        logger.info(
            f"Found {len(relevant)} relevant deals for user {request.user_id} "
            f"({len(result.top_recommendations)} top, sources {status.value})"
        )
        return result

    async def category_recommendations(
        self,
        user_id: str,
        category: str,
        constraints: BudgetConstraints,
        preferences: UserPreferences,
        limit: int = 10,
    ) -> list[ScoredDeal]:
        result = await self.find_matching_deals(DealMatchingRequest(
            user_id=user_id,
            budget_constraints=constraints,
            user_preferences=preferences,
            filters=DealFilters(categories=[category]),
            limit=limit,
            min_relevance_score=CATEGORY_MIN_SCORE,
        ))
        return result.top_recommendations

    async def budget_optimized_deals(
        self,
        user_id: str,
        constraints: BudgetConstraints,
        preferences: UserPreferences,
        target_savings: float,
    ) -> list[ScoredDeal]:
        """Highest-savings deals, taken greedily until the savings target is reached."""
        result = await self.find_matching_deals(DealMatchingRequest(
            user_id=user_id,
            budget_constraints=constraints,
            user_preferences=preferences,
            limit=OPTIMIZED_LIMIT,
            min_relevance_score=OPTIMIZED_MIN_SCORE,
        ))

        selected: list[ScoredDeal] = []
        accumulated = 0.0
        for deal in sorted(result.deals, key=lambda d: d.savings, reverse=True):
            if accumulated >= target_savings:
                break
            selected.append(deal)
            accumulated += deal.savings
        return selected

    async def clear_user_cache(self, user_id: str) -> int:
        return await self.cache.delete_prefix(deal_matching_key(user_id, ""))
