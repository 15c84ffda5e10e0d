"""
Rules Package

Earn rules with caps and cooldowns, and the daily streak bonus curve.
"""

from .rule_engine import (
    RuleEngine,
    Rule,
    RuleKind,
    RuleRequest,
)
from .daily_bonus import (
    DailyBonusConfig,
    DailyBonusService,
    IncrementType,
    amount_for_day,
    progression,
)

__all__ = [
    "RuleEngine",
    "Rule",
    "RuleKind",
    "RuleRequest",
    "DailyBonusConfig",
    "DailyBonusService",
    "IncrementType",
    "amount_for_day",
    "progression",
]
