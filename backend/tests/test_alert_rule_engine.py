import asyncio
from datetime import timedelta

import pytest

from conftest import NOW, USER, FakeBudgets, FakeExpenses, RecordingNotifier, daily_expenses, make_budget
from spendwise.exceptions import InvalidInputError
from spendwise.schemas.alerts import AlertCondition, RuleType, Severity
from spendwise.schemas.expense import ExpenseSample
from spendwise.services.alert_rule_engine import DEFAULT_RULES, AlertRuleEngine, evaluate_condition
from spendwise.services.burn_rate_analyzer import BurnRateService


def build_engine(store, clock, notifier, recorder=None, budgets=None, expenses=None, rules=None):
    budgets = budgets or FakeBudgets([make_budget(spent=950_000)])
    expenses = expenses or FakeExpenses(daily_expenses([100_000, 100_000, 100_000]))
    service = BurnRateService(budgets, expenses, store, clock)
    return AlertRuleEngine(
        service, budgets, expenses, store, notifier,
        recorder=recorder, clock=clock, default_rules=rules,
    )


def only(*rule_ids):
    return [rule for rule in DEFAULT_RULES if rule.id in rule_ids]


async def test_threshold_rule_respects_cooldown(store, clock, notifier):
    engine = build_engine(store, clock, notifier, rules=only("budget-90-percent"))

    first = await engine.evaluate_alerts(USER)
    assert [a.rule_id for a in first] == ["budget-90-percent"]
    assert first[0].message == "Bali Trip has reached 95% utilization with 7 days left."

    clock.advance(minutes=10)
    assert await engine.evaluate_alerts(USER) == []

    clock.advance(hours=24)
    again = await engine.evaluate_alerts(USER)
    assert [a.rule_id for a in again] == ["budget-90-percent"]
    assert len(notifier.sent) == 2


async def test_cooldowns_are_tracked_per_rule(store, clock, notifier):
    engine = build_engine(store, clock, notifier)

    first = await engine.evaluate_alerts(USER)
    assert {a.rule_id for a in first} == {"burn-rate-critical", "budget-90-percent"}

    clock.advance(minutes=61)
    second = await engine.evaluate_alerts(USER)
    assert [a.rule_id for a in second] == ["burn-rate-critical"]


async def test_failing_budget_does_not_block_others(store, clock, notifier):
    budgets = FakeBudgets([make_budget(spent=950_000), make_budget("budget-2", spent=950_000)])
    budgets.fail_for.add("budget-2")
    engine = build_engine(store, clock, notifier, budgets=budgets, rules=only("budget-90-percent"))

    fired = await engine.evaluate_alerts(USER)

    assert [a.budget_id for a in fired] == ["budget-1"]


async def test_evaluate_single_budget(store, clock, notifier):
    budgets = FakeBudgets([make_budget(spent=950_000), make_budget("budget-2", spent=950_000)])
    engine = build_engine(store, clock, notifier, budgets=budgets, rules=only("budget-90-percent"))

    fired = await engine.evaluate_alerts(USER, budget_id="budget-2")
    assert [a.budget_id for a in fired] == ["budget-2"]
    assert await engine.evaluate_alerts(USER, budget_id="missing") == []


async def test_unusual_expense_fires_once_per_expense(store, clock, notifier):
    big = ExpenseSample(id="exp-big", date=NOW - timedelta(hours=2), amount=250_000, category="dining")
    old = ExpenseSample(id="exp-old", date=NOW - timedelta(days=3), amount=900_000, category="shopping")
    engine = build_engine(
        store, clock, notifier, expenses=FakeExpenses([big, old]), rules=only("unusual-spending"),
    )

    fired = await engine.evaluate_recent_expenses(USER)

    assert len(fired) == 1
    assert fired[0].scope_id == "exp-big"
    assert fired[0].message == "Unusual expense of IDR 250,000 in dining. Please verify this transaction."
    assert await engine.evaluate_recent_expenses(USER) == []


async def test_notifier_failure_still_records_alert(store, clock, recorder):
    engine = build_engine(
        store, clock, RecordingNotifier(fail=True), recorder=recorder, rules=only("budget-90-percent"),
    )

    fired = await engine.evaluate_alerts(USER)

    assert len(fired) == 1
    assert recorder.instances == fired
    assert recorder.records[0]["type"] == "alert_budget_threshold"
    assert recorder.records[0]["reference_id"] == fired[0].id


async def test_resolve_and_active_alerts(store, clock, notifier, recorder):
    engine = build_engine(store, clock, notifier, recorder=recorder)
    fired = await engine.evaluate_alerts(USER)

    active = await engine.active_alerts(USER)
    assert {a.id for a in active} == {a.id for a in fired}

    target = fired[0].id
    assert await engine.resolve_alert(USER, target) is True
    assert await engine.resolve_alert(USER, target) is False
    assert target not in {a.id for a in await engine.active_alerts(USER)}


async def test_active_alerts_without_recorder_newest_first(store, clock, notifier):
    engine = build_engine(store, clock, notifier, rules=only("burn-rate-critical"))
    first = await engine.evaluate_alerts(USER)
    clock.advance(minutes=61)
    second = await engine.evaluate_alerts(USER)

    active = await engine.active_alerts(USER)
    assert [a.id for a in active] == [second[0].id, first[0].id]

    clock.advance(days=8)
    assert await engine.active_alerts(USER) == []


async def test_statistics_count_by_severity_and_type(store, clock, notifier):
    engine = build_engine(store, clock, notifier)
    await engine.evaluate_alerts(USER)

    stats = engine.statistics(USER)

    assert stats.total == 2
    assert stats.by_severity == {"low": 0, "medium": 0, "high": 1, "critical": 1}
    assert stats.by_type == {"burn_rate": 1, "budget_threshold": 1}
    assert engine.statistics("someone-else").total == 0


# Rule configuration

def test_configure_rules_is_per_user(store, clock, notifier):
    engine = build_engine(store, clock, notifier)

    rules = engine.configure_rules(USER, [{"id": "burn-rate-high", "enabled": False, "cooldown_minutes": 30}])

    updated = next(r for r in rules if r.id == "burn-rate-high")
    assert updated.enabled is False
    assert updated.cooldown_minutes == 30
    assert updated.severity == Severity.HIGH
    assert all(r.enabled for r in engine.rules_for("user-2"))


def test_configure_rules_adds_full_definitions(store, clock, notifier):
    engine = build_engine(store, clock, notifier)

    rules = engine.configure_rules(USER, [{
        "id": "half-spent",
        "name": "Half spent",
        "type": "budget_threshold",
        "condition": {"field": "utilization_percentage", "operator": "gte", "value": 50},
        "severity": "low",
        "message": "{budgetName} is {utilization} spent",
        "cooldown_minutes": 60,
    }])

    assert rules[-1].id == "half-spent"
    assert rules[-1].type == RuleType.BUDGET_THRESHOLD


@pytest.mark.parametrize("update", [
    {"id": "burn-rate-high", "message": "Spent {amount} already"},
    {"id": "burn-rate-high", "condition": {"field": "velocity", "operator": "between", "value": 1}},
    {"id": "burn-rate-high", "cooldown_minutes": -5},
    {"id": "brand-new", "name": "Partial rule"},
    {"name": "No id"},
])
def test_configure_rules_rejects_invalid_updates(store, clock, notifier, update):
    engine = build_engine(store, clock, notifier)

    with pytest.raises(InvalidInputError):
        engine.configure_rules(USER, [update])

    assert engine.rules_for(USER) == DEFAULT_RULES


# Conditions

def test_string_fields_only_match_on_equality():
    assert evaluate_condition(AlertCondition(field="riskLevel", operator="eq", value="high"), {"riskLevel": "high"})
    assert not evaluate_condition(AlertCondition(field="riskLevel", operator="gt", value="high"), {"riskLevel": "low"})
    assert not evaluate_condition(AlertCondition(field="riskLevel", operator="gte", value=1), {"riskLevel": "high"})


def test_missing_and_boolean_fields_never_match():
    condition = AlertCondition(field="velocity", operator="gt", value=0)
    assert not evaluate_condition(condition, {})
    assert not evaluate_condition(condition, {"velocity": None})
    assert not evaluate_condition(condition, {"velocity": True})


@pytest.mark.parametrize("operator, value, expected", [
    ("gt", 90, False),
    ("gte", 90, True),
    ("lt", 91, True),
    ("lte", 89, False),
    ("eq", 90, True),
])
def test_numeric_operators(operator, value, expected):
    condition = AlertCondition(field="utilizationPercentage", operator=operator, value=value)
    assert evaluate_condition(condition, {"utilizationPercentage": 90.0}) is expected


async def test_concurrent_evaluations_fire_each_alert_once(store, clock, notifier):
    engine = build_engine(store, clock, notifier)

    first, second = await asyncio.gather(engine.evaluate_alerts(USER), engine.evaluate_alerts(USER))

    fired = sorted(a.rule_id for a in first + second)
    assert fired == ["budget-90-percent", "burn-rate-critical"]
    assert len(notifier.sent) == 2


async def test_shortened_cooldown_replaces_stale_window(store, clock, notifier):
    engine = build_engine(store, clock, notifier, rules=only("budget-90-percent"))
    assert len(await engine.evaluate_alerts(USER)) == 1

    engine.configure_rules(USER, [{"id": "budget-90-percent", "cooldown_minutes": 30}])
    clock.advance(minutes=20)
    assert await engine.evaluate_alerts(USER) == []

    clock.advance(minutes=11)
    assert [a.rule_id for a in await engine.evaluate_alerts(USER)] == ["budget-90-percent"]

    clock.advance(minutes=10)
    assert await engine.evaluate_alerts(USER) == []


async def test_notifier_receives_alert_type_and_reference(store, clock, notifier, recorder):
    engine = build_engine(store, clock, notifier, recorder=recorder, rules=only("budget-90-percent"))

    [alert] = await engine.evaluate_alerts(USER)

    assert notifier.labels == [("alert_budget_threshold", alert.id)]
    assert recorder.records[0]["type"] == "alert_budget_threshold"


async def test_notification_record_skipped_when_notifier_keeps_it(store, clock, notifier, recorder):
    budgets = FakeBudgets([make_budget(spent=950_000)])
    expenses = FakeExpenses(daily_expenses([100_000, 100_000, 100_000]))
    engine = AlertRuleEngine(
        BurnRateService(budgets, expenses, store, clock), budgets, expenses, store, notifier,
        recorder=recorder, clock=clock, default_rules=only("budget-90-percent"), record_notifications=False,
    )

    await engine.evaluate_alerts(USER)

    assert len(recorder.instances) == 1
    assert recorder.records == []
    assert len(notifier.sent) == 1
