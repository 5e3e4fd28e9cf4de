"""Alert rule engine — evaluates budget alert rules with per-scope cooldowns."""

import logging
from collections import defaultdict, deque
from datetime import datetime, timedelta

from pydantic import ValidationError

from spendwise.exceptions import InvalidInputError
from spendwise.schemas.alerts import (
    AlertCondition,
    AlertInstance,
    AlertRule,
    AlertStatistics,
    RuleType,
    Severity,
)
from spendwise.schemas.burn_rate import BurnRateReport
from spendwise.schemas.expense import BudgetRecord, ExpenseSample
from spendwise.services.burn_rate_analyzer import BurnRateService
from spendwise.services.cache_service import KeyValueStore, cooldown_key
from spendwise.services.collaborators import AlertRecorder, BudgetReader, ExpenseReader, Notifier
from spendwise.services.message_templates import (
    AlertContext,
    BudgetContext,
    BurnRateContext,
    ExpenseContext,
    render_message,
    validate_template,
)
from spendwise.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

GLOBAL_SCOPE = "global"
ANOMALY_LOOKBACK = timedelta(hours=24)
ANOMALY_MAX_EXPENSES = 10
ACTIVE_ALERT_WINDOW = timedelta(days=7)
STATISTICS_WINDOW = timedelta(days=30)
MAX_TRACKED_INSTANCES = 500

DEFAULT_RULES: list[AlertRule] = [
    AlertRule(
        id="burn-rate-critical",
        name="Critical Burn Rate Alert",
        type=RuleType.BURN_RATE,
        condition=AlertCondition(field="riskLevel", operator="eq", value="critical"),
        severity=Severity.CRITICAL,
        message=(
            "Critical: spending on {budgetName} will exhaust the budget before the trip ends "
            "({remainingDays} days left). Immediate action required."
        ),
        cooldown_minutes=60,
    ),
    AlertRule(
        id="burn-rate-high",
        name="High Burn Rate Alert",
        type=RuleType.BURN_RATE,
        condition=AlertCondition(field="riskLevel", operator="eq", value="high"),
        severity=Severity.HIGH,
        message="High risk: spending on {budgetName} runs at {burnRate} per day. Review your allocation.",
        cooldown_minutes=120,
    ),
    AlertRule(
        id="velocity-increasing",
        name="Spending Acceleration Alert",
        type=RuleType.SPENDING_VELOCITY,
        condition=AlertCondition(field="velocity", operator="gt", value=0.2),
        severity=Severity.MEDIUM,
        message="Spending on {budgetName} is accelerating. Monitor your daily expenses closely.",
        cooldown_minutes=240,
    ),
    AlertRule(
        id="budget-90-percent",
        name="90% Budget Utilization",
        type=RuleType.BUDGET_THRESHOLD,
        condition=AlertCondition(field="utilizationPercentage", operator="gte", value=90),
        severity=Severity.HIGH,
        message="{budgetName} has reached {utilization} utilization with {remainingDays} days left.",
        cooldown_minutes=1440,
    ),
    AlertRule(
        id="unusual-spending",
        name="Unusual Spending Pattern",
        type=RuleType.UNUSUAL_ACTIVITY,
        condition=AlertCondition(field="amount", operator="gt", value=100000),
        severity=Severity.MEDIUM,
        message="Unusual expense of {amount} in {category}. Please verify this transaction.",
        cooldown_minutes=60,
    ),
]

BUDGET_RULE_TYPES = (RuleType.BURN_RATE, RuleType.SPENDING_VELOCITY, RuleType.BUDGET_THRESHOLD)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _fields(values: dict) -> dict:
    """Expose every field under both its snake_case and camelCase name."""
    fields = dict(values)
    fields.update({_camel(k): v for k, v in values.items()})
    return fields


def evaluate_condition(condition: AlertCondition, data: dict) -> bool:
    """Compare one field of `data` against the condition. Missing fields never match."""
    value = data.get(condition.field)
    if value is None:
        return False

    if isinstance(value, str) or isinstance(condition.value, str):
        # Ordering operators are not defined for strings.
        return condition.operator == "eq" and value == condition.value

    if isinstance(value, bool):
        return False

    threshold = float(condition.value)
    if condition.operator == "gt":
        return value > threshold
    if condition.operator == "gte":
        return value >= threshold
    if condition.operator == "lt":
        return value < threshold
    if condition.operator == "lte":
        return value <= threshold
    return value == threshold


def report_fields(report: BurnRateReport) -> dict:
    return _fields(report.model_dump(mode="json", exclude={"recommendations", "periods"}))


def expense_fields(expense: ExpenseSample) -> dict:
    return _fields(expense.model_dump(mode="json"))


def matching_budget_rules(rules: list[AlertRule], report: BurnRateReport) -> list[AlertRule]:
    data = report_fields(report)
    return [
        rule for rule in rules
        if rule.enabled and rule.type in BUDGET_RULE_TYPES and evaluate_condition(rule.condition, data)
    ]


def matching_expense_rules(rules: list[AlertRule], expense: ExpenseSample) -> list[AlertRule]:
    data = expense_fields(expense)
    return [
        rule for rule in rules
        if rule.enabled and rule.type == RuleType.UNUSUAL_ACTIVITY
        and evaluate_condition(rule.condition, data)
    ]


def budget_context(rule: AlertRule, budget: BudgetRecord, report: BurnRateReport) -> AlertContext:
    if rule.type == RuleType.BUDGET_THRESHOLD:
        return BudgetContext(
            budget_name=budget.name,
            remaining_days=report.remaining_days,
            utilization_percentage=report.utilization_percentage,
        )
    return BurnRateContext(
        budget_name=budget.name,
        remaining_days=report.remaining_days,
        projected_burn_rate=report.projected_burn_rate,
    )


class AlertRuleEngine:
    """Evaluates enabled rules per budget and fires alerts outside their cooldown window."""

    def __init__(
        self,
        burn_rate_service: BurnRateService,
        budgets: BudgetReader,
        expenses: ExpenseReader,
        cache: KeyValueStore,
        notifier: Notifier,
        recorder: AlertRecorder | None = None,
        clock: Clock | None = None,
        default_rules: list[AlertRule] | None = None,
        record_notifications: bool = True,
    ):
        self.burn_rate_service = burn_rate_service
        self.budgets = budgets
        self.expenses = expenses
        self.cache = cache
        self.notifier = notifier
        self.recorder = recorder
        # Off when the notifier already keeps the in-app record
        self.record_notifications = record_notifications
        self.clock = clock or SystemClock()
        self._default_rules = list(default_rules or DEFAULT_RULES)
        self._user_rules: dict[str, list[AlertRule]] = {}
        self._fired: dict[str, deque[AlertInstance]] = defaultdict(
            lambda: deque(maxlen=MAX_TRACKED_INSTANCES)
        )

    # Rule configuration

    def rules_for(self, user_id: str) -> list[AlertRule]:
        return self._user_rules.get(user_id, self._default_rules)

    def configure_rules(self, user_id: str, updates: list[dict]) -> list[AlertRule]:
        """Apply partial rule updates for one user; unknown ids must be full rule definitions."""
        rules = {rule.id: rule for rule in self.rules_for(user_id)}
        for update in updates:
            rule_id = update.get("id")
            if not rule_id:
                raise InvalidInputError("Rule update is missing an id")
            base = rules[rule_id].model_dump() if rule_id in rules else {}
            try:
                rule = AlertRule.model_validate({**base, **update})
            except ValidationError as e:
                raise InvalidInputError(f"Invalid rule {rule_id}: {e}") from e
            validate_template(rule.message, rule.type)
            rules[rule_id] = rule

        self._user_rules[user_id] = list(rules.values())
        logger.info(f"Configured {len(updates)} alert rule(s) for user {user_id}")
        return self._user_rules[user_id]

    # Evaluation

    async def evaluate_alerts(self, user_id: str, budget_id: str | None = None) -> list[AlertInstance]:
        """Evaluate every rule for the user's budgets (or one budget) and recent expenses."""
        if budget_id:
            budget = await self.budgets.get_budget(user_id, budget_id)
            budgets = [budget] if budget else []
        else:
            budgets = await self.budgets.list_budgets(user_id)

        fired: list[AlertInstance] = []
        for budget in budgets:
            try:
                report = await self.burn_rate_service.calculate(user_id, budget.id)
                fired.extend(await self.evaluate_budget(user_id, budget, report))
            except Exception as e:
                logger.error(f"Error evaluating alerts for budget {budget.id}: {e}")

        fired.extend(await self.evaluate_recent_expenses(user_id))
        return fired

    async def evaluate_budget(
        self, user_id: str, budget: BudgetRecord, report: BurnRateReport
    ) -> list[AlertInstance]:
        fired = []
        for rule in matching_budget_rules(self.rules_for(user_id), report):
            message = render_message(rule.message, budget_context(rule, budget, report))
            instance = await self._fire(
                user_id,
                rule,
                scope_id=budget.id,
                budget_id=budget.id,
                message=message,
                data={
                    "risk_level": report.risk_level.value,
                    "projected_burn_rate": report.projected_burn_rate,
                    "velocity": report.velocity,
                    "utilization_percentage": report.utilization_percentage,
                    "remaining_days": report.remaining_days,
                },
            )
            if instance:
                fired.append(instance)
        return fired

    async def evaluate_recent_expenses(self, user_id: str) -> list[AlertInstance]:
        rules = [r for r in self.rules_for(user_id) if r.enabled and r.type == RuleType.UNUSUAL_ACTIVITY]
        if not rules:
            return []

        now = self.clock.now()
        try:
            expenses = await self.expenses.get_expenses(user_id, start=now - ANOMALY_LOOKBACK, end=now)
        except Exception as e:
            logger.error(f"Error fetching recent expenses for user {user_id}: {e}")
            return []

        recent = sorted(expenses, key=lambda e: e.date, reverse=True)[:ANOMALY_MAX_EXPENSES]
        fired = []
        for expense in recent:
            for rule in matching_expense_rules(rules, expense):
                context = ExpenseContext(amount=expense.amount, category=expense.category)
                instance = await self._fire(
                    user_id,
                    rule,
                    scope_id=expense.id or expense.date.isoformat(),
                    budget_id=expense.budget_id,
                    message=render_message(rule.message, context),
                    data={"expense_id": expense.id, "amount": expense.amount, "category": expense.category},
                )
                if instance:
                    fired.append(instance)
        return fired

    async def _claim_cooldown(self, user_id: str, rule: AlertRule, scope_id: str, now: datetime) -> bool:
        """Record a firing unless the rule fired for this scope within its cooldown."""
        key = cooldown_key(user_id, rule.id, scope_id)
        ttl = rule.cooldown_minutes * 60
        if await self.cache.add(key, now.isoformat(), ttl):
            return True

        last = await self.cache.get(key)
        if last and now - datetime.fromisoformat(last) < timedelta(minutes=rule.cooldown_minutes):
            return False

        # Stored window is longer than the rule's current cooldown.
        await self.cache.set(key, now.isoformat(), ttl)
        return True

    async def _fire(
        self,
        user_id: str,
        rule: AlertRule,
        scope_id: str,
        budget_id: str | None,
        message: str,
        data: dict,
    ) -> AlertInstance | None:
        now = self.clock.now()
        if not await self._claim_cooldown(user_id, rule, scope_id, now):
            logger.info(f"Alert {rule.id} for {user_id}:{scope_id} is in cooldown")
            return None

        instance = AlertInstance(
            id=f"{rule.id}-{scope_id}-{int(now.timestamp() * 1000)}",
            rule_id=rule.id,
            user_id=user_id,
            budget_id=budget_id,
            scope_id=scope_id,
            type=rule.type,
            severity=rule.severity,
            title=rule.name,
            message=message,
            data=data,
            created_at=now,
        )
        self._fired[user_id].append(instance)
        notification_type = f"alert_{rule.type.value}"

        if self.recorder:
            try:
                await self.recorder.persist_alert_instance(instance)
                if self.record_notifications:
                    await self.recorder.persist_notification_record(
                        user_id, notification_type, rule.name, message, reference_id=instance.id
                    )
            except Exception as e:
                logger.warning(f"Persisting alert {instance.id} failed: {e}")

        try:
            await self.notifier.send_notification(
                user_id, rule.name, message, rule.severity, type=notification_type, reference_id=instance.id
            )
        except Exception as e:
            logger.warning(f"Notification for alert {instance.id} failed: {e}")

        logger.info(f"Alert {rule.id} fired for user {user_id} (scope {scope_id})")
        return instance

    # Alert lifecycle

    async def resolve_alert(self, user_id: str, alert_id: str) -> bool:
        now = self.clock.now()
        resolved = False
        for instance in self._fired.get(user_id, ()):
            if instance.id == alert_id and not instance.resolved:
                instance.resolved = True
                instance.resolved_at = now
                resolved = True
        if self.recorder:
            try:
                resolved = await self.recorder.resolve_alert(user_id, alert_id, now) or resolved
            except Exception as e:
                logger.warning(f"Resolving alert {alert_id} failed: {e}")
        return resolved

    async def active_alerts(self, user_id: str) -> list[AlertInstance]:
        since = self.clock.now() - ACTIVE_ALERT_WINDOW
        if self.recorder:
            try:
                return await self.recorder.list_active_alerts(user_id, since)
            except Exception as e:
                logger.warning(f"Listing active alerts for {user_id} failed: {e}")
        return [
            i for i in reversed(self._fired.get(user_id, ()))
            if not i.resolved and i.created_at >= since
        ]

    def statistics(self, user_id: str) -> AlertStatistics:
        since = self.clock.now() - STATISTICS_WINDOW
        stats = AlertStatistics()
        for instance in self._fired.get(user_id, ()):
            if instance.created_at < since:
                continue
            stats.total += 1
            stats.by_severity[instance.severity.value] += 1
            stats.by_type[instance.type.value] = stats.by_type.get(instance.type.value, 0) + 1
        return stats
