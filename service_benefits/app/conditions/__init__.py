"""
Condition matching package.

The same condition format gates benefit eligibility rules and selects budget
policies. A stored condition is parsed once into a tagged variant:

- MatchAll: ``{"match_all": [{"field", "operator", "value"}, ...]}``
- FlatMap: ``{"grade": [...], "min_tenure": 12, "location": "Moscow"}``
- InvalidCondition: anything malformed; never matches.

``evaluate`` is pure and never raises.
"""

from .models import (
    Condition, ConditionOperator, EmployeeProfile, FieldCondition, FlatMap,
    InvalidCondition, MatchAll, OPEN_CONDITION, condition_to_dict, parse_condition
)
from .evaluator import evaluate, evaluate_field_condition

__all__ = [
    "Condition",
    "ConditionOperator",
    "EmployeeProfile",
    "FieldCondition",
    "FlatMap",
    "InvalidCondition",
    "MatchAll",
    "OPEN_CONDITION",
    "condition_to_dict",
    "evaluate",
    "evaluate_field_condition",
    "parse_condition",
]
