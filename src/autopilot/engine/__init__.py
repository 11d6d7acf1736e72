"""Rule engine layer -- conditions, slippage tiering, and dispatch."""

from autopilot.engine.conditions import compare, evaluate_condition
from autopilot.engine.rule_engine import AutomationRuleEngine
from autopilot.engine.slippage import estimate_slippage

__all__ = ["AutomationRuleEngine", "compare", "estimate_slippage", "evaluate_condition"]
