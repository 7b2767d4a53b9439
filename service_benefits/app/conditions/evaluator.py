"""
Condition evaluation against employee profiles.

Evaluation is pure and total: malformed input, unknown operators and missing
profile fields all evaluate to ``False`` instead of raising.
"""

from numbers import Real
from typing import Any

from shared.logging import get_logger
from .models import (
    Condition, ConditionOperator, EmployeeProfile, FieldCondition,
    FlatMap, InvalidCondition, MatchAll, MIN_TENURE_KEY, parse_condition
)

logger = get_logger("benefits.conditions")


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple, set, frozenset))


def _contains(options: Any, item: Any) -> bool:
    return any(item == option for option in options)


def evaluate_field_condition(profile: EmployeeProfile, condition: FieldCondition) -> bool:
    """Evaluate a single structured condition."""
    if condition.field is None:
        return False

    found, actual = profile.lookup(condition.field)
    if not found:
        return False

    operator = condition.operator
    expected = condition.value

    if operator == ConditionOperator.EQ:
        return actual == expected

    if operator == ConditionOperator.IN:
        if not _is_sequence(expected):
            return False
        return _contains(expected, actual)

    if operator == ConditionOperator.GTE:
        return _is_number(actual) and _is_number(expected) and actual >= expected

    if operator == ConditionOperator.LTE:
        return _is_number(actual) and _is_number(expected) and actual <= expected

    logger.debug("Unknown condition operator", operator=operator, field=condition.field)
    return False


def _evaluate_flat_entry(profile: EmployeeProfile, key: str, expected: Any) -> bool:
    # A null shorthand value places no restriction, whatever the key.
    if expected is None:
        return True

    if key == MIN_TENURE_KEY:
        return _is_number(expected) and profile.tenure_months >= expected

    if _is_sequence(expected):
        # An empty list places no restriction on the field.
        if not expected:
            return True
        found, actual = profile.lookup(key)
        return found and _contains(expected, actual)

    found, actual = profile.lookup(key)
    return found and actual == expected


def evaluate(profile: EmployeeProfile, condition: Any) -> bool:
    """Return whether ``profile`` satisfies ``condition``.

    ``condition`` may be a parsed variant or the raw stored mapping.
    """
    parsed: Condition = parse_condition(condition)

    if isinstance(parsed, MatchAll):
        return all(evaluate_field_condition(profile, c) for c in parsed.conditions)

    if isinstance(parsed, FlatMap):
        return all(_evaluate_flat_entry(profile, key, value) for key, value in parsed.entries)

    if isinstance(parsed, InvalidCondition):
        logger.debug("Invalid condition treated as non-matching", reason=parsed.reason)

    return False
