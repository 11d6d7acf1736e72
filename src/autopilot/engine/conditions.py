"""Pure condition evaluation for automation rules."""

from decimal import Decimal

from autopilot.models import AutomationRule, ConditionOperator, RuleType


def compare(value: Decimal, operator: ConditionOperator, threshold: Decimal) -> bool:
    """Apply a comparison operator as ``value <op> threshold``."""
    if operator is ConditionOperator.GT:
        return value > threshold
    if operator is ConditionOperator.LT:
        return value < threshold
    if operator is ConditionOperator.GTE:
        return value >= threshold
    if operator is ConditionOperator.LTE:
        return value <= threshold
    if operator is ConditionOperator.EQ:
        return value == threshold
    raise ValueError(f"Unknown condition operator: {operator}")


def percentage_change(base: Decimal, price: Decimal) -> Decimal | None:
    """Absolute percent move from ``base`` to ``price``; None without a usable base."""
    if base == 0:
        return None
    return abs((price - base) / base) * 100


def evaluate_condition(
    rule: AutomationRule, price: Decimal, base_price: Decimal | None
) -> bool:
    """Decide whether ``rule`` fires at ``price``.

    Stop-loss and take-profit ignore the rule's operator: they fire at or
    below, respectively at or above, the condition value. Percentage-change
    rules need a baseline and never fire without one.

    Args:
        rule: The rule to evaluate.
        price: The newly observed price of the rule's source asset.
        base_price: The previous fetched price, for percentage-change rules.
    """
    if rule.type is RuleType.PRICE_TARGET:
        return compare(price, rule.condition_operator, rule.condition_value)

    if rule.type is RuleType.PERCENTAGE_CHANGE:
        if base_price is None:
            return False
        change = percentage_change(base_price, price)
        if change is None:
            return False
        return compare(change, rule.condition_operator, rule.condition_value)

    if rule.type is RuleType.STOP_LOSS:
        return price <= rule.condition_value

    if rule.type is RuleType.TAKE_PROFIT:
        return price >= rule.condition_value

    raise ValueError(f"Unknown rule type: {rule.type}")
