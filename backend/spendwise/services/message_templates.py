"""Alert message templates — placeholder substitution from typed evaluation contexts."""

import re
from dataclasses import dataclass

from spendwise.config import settings
from spendwise.exceptions import InvalidInputError
from spendwise.schemas.alerts import RuleType

PLACEHOLDER = re.compile(r"\{(\w+)\}")


@dataclass(frozen=True)
class BurnRateContext:
    budget_name: str
    remaining_days: int
    projected_burn_rate: float


@dataclass(frozen=True)
class BudgetContext:
    budget_name: str
    remaining_days: int
    utilization_percentage: float


@dataclass(frozen=True)
class ExpenseContext:
    amount: float
    category: str
    budget_name: str | None = None


AlertContext = BurnRateContext | BudgetContext | ExpenseContext

CONTEXT_FOR_RULE_TYPE: dict[RuleType, type] = {
    RuleType.BURN_RATE: BurnRateContext,
    RuleType.SPENDING_VELOCITY: BurnRateContext,
    RuleType.BUDGET_THRESHOLD: BudgetContext,
    RuleType.UNUSUAL_ACTIVITY: ExpenseContext,
}

PLACEHOLDERS: dict[type, frozenset[str]] = {
    BurnRateContext: frozenset({"budgetName", "remainingDays", "burnRate"}),
    BudgetContext: frozenset({"budgetName", "remainingDays", "utilization"}),
    ExpenseContext: frozenset({"amount", "category", "budgetName"}),
}


def _money(amount: float) -> str:
    return f"{settings.default_currency} {amount:,.0f}"


def context_values(context: AlertContext) -> dict[str, str]:
    """Placeholder values a context provides. Absent optional fields are omitted."""
    if isinstance(context, BurnRateContext):
        return {
            "budgetName": context.budget_name,
            "remainingDays": str(context.remaining_days),
            "burnRate": _money(context.projected_burn_rate),
        }
    if isinstance(context, BudgetContext):
        return {
            "budgetName": context.budget_name,
            "remainingDays": str(context.remaining_days),
            "utilization": f"{context.utilization_percentage:.0f}%",
        }
    if isinstance(context, ExpenseContext):
        values = {"amount": _money(context.amount), "category": context.category}
        if context.budget_name is not None:
            values["budgetName"] = context.budget_name
        return values
    raise TypeError(f"Unsupported alert context: {type(context).__name__}")


def render_message(template: str, context: AlertContext) -> str:
    """Substitute known placeholders; anything unresolved stays verbatim."""
    values = context_values(context)
    return PLACEHOLDER.sub(lambda m: values.get(m.group(1), m.group(0)), template)


def validate_template(template: str, rule_type: RuleType) -> None:
    """Reject placeholders the rule type's context can never supply."""
    allowed = PLACEHOLDERS[CONTEXT_FOR_RULE_TYPE[rule_type]]
    unknown = sorted(set(PLACEHOLDER.findall(template)) - allowed)
    if unknown:
        raise InvalidInputError(
            f"Placeholders {unknown} are not available for {rule_type.value} rules"
        )
