"""Budget/deal orchestrator — runs the deal, risk and notification pipelines per trigger.

The orchestrator never raises to its caller. Missing budgets and bad input
come back as `success=False` results with a typed error; every other
failure degrades that part of the result and is logged.
"""

import logging
import time
from datetime import datetime, timedelta

from spendwise.config import settings
from spendwise.exceptions import InvalidInputError, NotFoundError
from spendwise.schemas.burn_rate import RiskLevel
from spendwise.schemas.deals import (
    DEFAULT_PREFERENCES,
    BudgetConstraints,
    DealFilters,
    DealMatchingRequest,
    DealMatchingResult,
)
from spendwise.schemas.expense import BudgetRecord
from spendwise.schemas.orchestration import (
    BudgetAnalysis,
    CheckTier,
    OrchestrationError,
    OrchestrationRequest,
    OrchestrationResult,
    Trigger,
)
from spendwise.services.alert_rule_engine import AlertRuleEngine
from spendwise.services.burn_rate_analyzer import BurnRateService
from spendwise.services.cache_service import KeyValueStore, orchestration_key, orchestration_prefix
from spendwise.services.collaborators import BudgetReader, PreferencesReader
from spendwise.services.deal_matching_pipeline import DealMatchingPipeline
from spendwise.services.deal_notification_service import DealNotificationService
from spendwise.services.geo_cluster_engine import GeoClusterEngine
from spendwise.services.scheduler import ProactiveCheckScheduler
from spendwise.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

TOP_DEALS = 10
DEAL_LIMIT = 50
MIN_RELEVANCE_SCORE = 50
MAX_SAVINGS_SHARE = 0.3

RISK_SCORES: dict[RiskLevel, float] = {
    RiskLevel.CRITICAL: 1.0,
    RiskLevel.HIGH: 0.85,
    RiskLevel.MEDIUM: 0.6,
    RiskLevel.LOW: 0.2,
}

# Share of the daily budget given to each category when the budget has no breakdown
CATEGORY_DAY_SHARES: dict[str, float] = {
    "dining": 2,
    "accommodation": 3,
    "transportation": 2,
    "activities": 2,
    "miscellaneous": 1,
}


def check_tier(risk_level: RiskLevel | None) -> CheckTier:
    """Higher risk checks more often. Unknown risk is treated as medium."""
    score = RISK_SCORES[risk_level or RiskLevel.MEDIUM]
    if score > 0.8:
        return CheckTier.FREQUENT
    if score > 0.5:
        return CheckTier.NORMAL
    return CheckTier.LOW


def check_interval(tier: CheckTier) -> timedelta:
    minutes = {
        CheckTier.FREQUENT: settings.check_interval_frequent,
        CheckTier.NORMAL: settings.check_interval_normal,
        CheckTier.LOW: settings.check_interval_low,
    }[tier]
    return timedelta(minutes=minutes)


def budget_constraints(budget: BudgetRecord, location: str | None = None) -> BudgetConstraints:
    days = budget.duration_days
    daily = budget.total_budget / days
    categories = budget.category_budgets or {
        name: daily * share for name, share in CATEGORY_DAY_SHARES.items()
    }
    return BudgetConstraints(
        total_budget=budget.total_budget,
        daily_budget=daily,
        category_budgets=categories,
        dining_budget_per_hour=budget.dining_budget_per_hour,
        location=location or budget.location,
        trip_duration_days=days,
    )


def budget_analysis(budget: BudgetRecord, total_savings: float) -> BudgetAnalysis:
    remaining = budget.remaining_budget
    coverage = min(100.0, total_savings / remaining * 100) if remaining > 0 else 0.0
    return BudgetAnalysis(
        total_budget=budget.total_budget,
        remaining_budget=remaining,
        recommended_savings=min(total_savings, max(0.0, remaining) * MAX_SAVINGS_SHARE),
        deal_coverage=coverage,
    )


class BudgetDealOrchestrator:
    def __init__(
        self,
        budgets: BudgetReader,
        preferences: PreferencesReader,
        pipeline: DealMatchingPipeline,
        burn_rate_service: BurnRateService,
        alert_engine: AlertRuleEngine,
        deal_notifications: DealNotificationService,
        cache: KeyValueStore,
        geo_engine: GeoClusterEngine | None = None,
        scheduler: ProactiveCheckScheduler | None = None,
        clock: Clock | None = None,
    ):
        self.budgets = budgets
        self.preferences = preferences
        self.pipeline = pipeline
        self.burn_rate_service = burn_rate_service
        self.alert_engine = alert_engine
        self.deal_notifications = deal_notifications
        self.cache = cache
        self.geo_engine = geo_engine or GeoClusterEngine()
        self.scheduler = scheduler
        self.clock = clock or SystemClock()

    # Triggers

    async def on_budget_update(self, user_id: str, itinerary_id: str | None = None) -> OrchestrationResult:
        return await self.orchestrate(OrchestrationRequest(
            user_id=user_id, itinerary_id=itinerary_id, trigger=Trigger.BUDGET_UPDATE, force_refresh=True,
        ))

    async def on_itinerary_change(self, user_id: str, itinerary_id: str) -> OrchestrationResult:
        return await self.orchestrate(OrchestrationRequest(
            user_id=user_id, itinerary_id=itinerary_id, trigger=Trigger.ITINERARY_CHANGE, force_refresh=True,
        ))

    async def scheduled_check(self, user_id: str, itinerary_id: str | None = None) -> OrchestrationResult:
        return await self.orchestrate(OrchestrationRequest(
            user_id=user_id, itinerary_id=itinerary_id, trigger=Trigger.SCHEDULED_CHECK,
        ))

    async def manual_request(
        self, user_id: str, location: str | None = None, itinerary_id: str | None = None
    ) -> OrchestrationResult:
        return await self.orchestrate(OrchestrationRequest(
            user_id=user_id,
            itinerary_id=itinerary_id,
            trigger=Trigger.MANUAL_REQUEST,
            location=location,
            force_refresh=True,
        ))

    # Pipeline

    async def orchestrate(self, request: OrchestrationRequest) -> OrchestrationResult:
        start = time.monotonic()
        try:
            return await self._orchestrate(request, start)
        except NotFoundError as e:
            logger.warning(f"Orchestration for user {request.user_id}: {e}")
            return self._failure(start, "not_found", str(e))
        except InvalidInputError as e:
            logger.warning(f"Orchestration for user {request.user_id} rejected: {e}")
            return self._failure(start, "invalid_input", str(e))
        except Exception as e:
            logger.error(f"Orchestration failed for user {request.user_id} ({request.trigger.value}): {e}")
            return self._failure(start, "internal", str(e))

    def _failure(self, start: float, kind: str, message: str) -> OrchestrationResult:
        return OrchestrationResult(
            success=False,
            processing_time_ms=int((time.monotonic() - start) * 1000),
            error=OrchestrationError(kind=kind, message=message),
        )

    async def _orchestrate(self, request: OrchestrationRequest, start: float) -> OrchestrationResult:
        user_id = request.user_id
        key = orchestration_key(user_id, request.itinerary_id, request.trigger.value)

        if not request.force_refresh:
            cached = await self.cache.get(key)
            if cached:
                logger.info(f"Using cached orchestration result for user {user_id}")
                result = OrchestrationResult.model_validate(cached)
                result.cache_used = True
                # Cache hits reschedule the next check too
                result.check_tier, result.next_check_at = self._schedule_next(
                    user_id, request.itinerary_id, result.risk_level
                )
                return result

        budget = await self._resolve_budget(user_id, request.itinerary_id)
        preferences = await self.preferences.get_user_preferences(user_id) or DEFAULT_PREFERENCES
        constraints = budget_constraints(budget, request.location)

        matches = await self.pipeline.find_matching_deals(DealMatchingRequest(
            user_id=user_id,
            budget_constraints=constraints,
            user_preferences=preferences,
            filters=DealFilters(location=constraints.location),
            limit=DEAL_LIMIT,
            min_relevance_score=MIN_RELEVANCE_SCORE,
        ))
        top = matches.top_recommendations[:TOP_DEALS]

        risk_level, alerts_fired = None, 0
        if request.include_risk:
            risk_level, alerts_fired = await self._run_risk(user_id, budget)

        deal_map = self._build_map(user_id, matches)
        notifications_sent = await self._notify(user_id, top, request.trigger)
        tier, next_check_at = self._schedule_next(user_id, request.itinerary_id, risk_level)

        result = OrchestrationResult(
            success=True,
            deals_found=len(matches.deals),
            notifications_sent=notifications_sent,
            alerts_fired=alerts_fired,
            budget_analysis=budget_analysis(budget, matches.budget_analysis.total_savings),
            top_deals=top,
            deal_map=deal_map,
            risk_level=risk_level,
            deal_source_status=matches.source_status,
            check_tier=tier,
            next_check_at=next_check_at,
            processing_time_ms=int((time.monotonic() - start) * 1000),
        )
        await self.cache.set(key, result.model_dump(mode="json"), settings.orchestration_cache_ttl)

        logger.info(
            f"Orchestration for user {user_id} ({request.trigger.value}): "
            f"{result.deals_found} deals, {alerts_fired} alerts, {notifications_sent} notifications"
        )
        return result

    async def _resolve_budget(self, user_id: str, itinerary_id: str | None) -> BudgetRecord:
        budgets = await self.budgets.list_budgets(user_id)
        if itinerary_id:
            budgets = [b for b in budgets if itinerary_id in (b.itinerary_id, b.id)]
        if not budgets:
            target = f"itinerary {itinerary_id}" if itinerary_id else "any budget"
            raise NotFoundError(f"No budget found for user {user_id} ({target})")
        return budgets[0]

    async def _run_risk(self, user_id: str, budget: BudgetRecord) -> tuple[RiskLevel | None, int]:
        try:
            report = await self.burn_rate_service.calculate(user_id, budget.id)
        except Exception as e:
            logger.error(f"Burn rate analysis failed for budget {budget.id}: {e}")
            return None, 0

        fired = 0
        try:
            fired += len(await self.alert_engine.evaluate_budget(user_id, budget, report))
            fired += len(await self.alert_engine.evaluate_recent_expenses(user_id))
        except Exception as e:
            logger.error(f"Alert evaluation failed for budget {budget.id}: {e}")
        return report.risk_level, fired

    def _build_map(self, user_id: str, matches: DealMatchingResult):
        try:
            return self.geo_engine.build_map(matches.deals)
        except Exception as e:
            logger.warning(f"Deal map unavailable for user {user_id}: {e}")
            return None

    async def _notify(self, user_id: str, deals, trigger: Trigger) -> int:
        if not deals:
            return 0
        try:
            return len(await self.deal_notifications.notify_deals(user_id, deals, trigger))
        except Exception as e:
            logger.warning(f"Deal notifications failed for user {user_id}: {e}")
            return 0

    def _schedule_next(
        self, user_id: str, itinerary_id: str | None, risk_level: RiskLevel | None
    ) -> tuple[CheckTier, datetime | None]:
        tier = check_tier(risk_level)
        if self.scheduler is None:
            return tier, None

        run_at = self.clock.now() + check_interval(tier)
        try:
            self.scheduler.schedule(user_id, run_at, lambda: self.scheduled_check(user_id, itinerary_id))
        except Exception as e:
            logger.error(f"Scheduling next check for user {user_id} failed: {e}")
            return tier, None
        return tier, run_at

    async def clear_user_cache(self, user_id: str) -> int:
        cleared = await self.cache.delete_prefix(orchestration_prefix(user_id))
        cleared += await self.pipeline.clear_user_cache(user_id)
        logger.info(f"Cleared {cleared} cached results for user {user_id}")
        return cleared
