"""
Condition data models shared by eligibility rules and budget policies.
"""

from typing import Any, Dict, Mapping, Optional, Tuple, Union
from dataclasses import dataclass, field
from enum import Enum


class ConditionOperator(str, Enum):
    """Field condition operators."""
    EQ = "eq"
    IN = "in"
    GTE = "gte"
    LTE = "lte"


# Flat-form keys that describe the condition rather than constrain it.
METADATA_KEYS = frozenset({"rule_name", "description"})

MIN_TENURE_KEY = "min_tenure"


@dataclass(frozen=True)
class EmployeeProfile:
    """Read-only snapshot of an employee used for evaluation."""
    user_id: str
    tenant_id: str
    grade: Optional[str] = None
    tenure_months: int = 0
    location: Optional[str] = None
    legal_entity: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    _FIELDS = ("grade", "tenure_months", "location", "legal_entity")

    def lookup(self, name: str) -> Tuple[bool, Any]:
        """Resolve a field by name; returns (found, value)."""
        if name in self._FIELDS:
            value = getattr(self, name)
            return value is not None, value
        if name in self.extra:
            return True, self.extra[name]
        return False, None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "EmployeeProfile":
        return cls(
            user_id=str(record["user_id"]),
            tenant_id=str(record["tenant_id"]),
            grade=record.get("grade"),
            tenure_months=int(record.get("tenure_months") or 0),
            location=record.get("location"),
            legal_entity=record.get("legal_entity"),
            extra=dict(record.get("extra") or {}),
        )


@dataclass(frozen=True)
class FieldCondition:
    """Single structured condition inside ``match_all``.

    ``operator`` keeps the raw string when it is not a known operator so the
    evaluator can reject it instead of the parser failing.
    """
    field: Optional[str]
    operator: Union[ConditionOperator, str, None]
    value: Any = None


@dataclass(frozen=True)
class MatchAll:
    """Compound form: every field condition must hold."""
    conditions: Tuple[FieldCondition, ...] = ()


@dataclass(frozen=True)
class FlatMap:
    """Shorthand form: field -> scalar, list, or ``min_tenure``."""
    entries: Tuple[Tuple[str, Any], ...] = ()

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.entries)


@dataclass(frozen=True)
class InvalidCondition:
    """Malformed input; never matches."""
    reason: str


Condition = Union[MatchAll, FlatMap, InvalidCondition]

OPEN_CONDITION = MatchAll()


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(v) for v in value)
    return value


def _parse_field_condition(raw: Any) -> FieldCondition:
    if not isinstance(raw, Mapping):
        return FieldCondition(field=None, operator=None)

    operator = raw.get("operator")
    try:
        operator = ConditionOperator(operator)
    except ValueError:
        pass

    field_name = raw.get("field")
    return FieldCondition(
        field=field_name if isinstance(field_name, str) else None,
        operator=operator,
        value=_freeze(raw.get("value")),
    )


def parse_condition(raw: Any) -> Condition:
    """Decide the condition variant once.

    ``None`` and ``{}`` parse to an empty ``MatchAll`` which matches everyone.
    A mapping carrying ``match_all`` is compound and its other keys are
    ignored; any other mapping is the flat form.
    """
    if isinstance(raw, (MatchAll, FlatMap, InvalidCondition)):
        return raw

    if raw is None:
        return OPEN_CONDITION

    if not isinstance(raw, Mapping):
        return InvalidCondition(f"condition must be a mapping, got {type(raw).__name__}")

    if "match_all" in raw:
        items = raw["match_all"]
        if items is None:
            return OPEN_CONDITION
        if not isinstance(items, (list, tuple)):
            return InvalidCondition("match_all must be a list")
        return MatchAll(tuple(_parse_field_condition(item) for item in items))

    entries = tuple(
        (key, _freeze(value))
        for key, value in raw.items()
        if key not in METADATA_KEYS
    )
    if not entries:
        return OPEN_CONDITION
    return FlatMap(entries)


def condition_to_dict(condition: Condition) -> Optional[Dict[str, Any]]:
    """Serialize a parsed condition back to its stored JSON shape."""
    if isinstance(condition, MatchAll):
        return {
            "match_all": [
                {
                    "field": c.field,
                    "operator": c.operator.value if isinstance(c.operator, ConditionOperator) else c.operator,
                    "value": list(c.value) if isinstance(c.value, tuple) else c.value,
                }
                for c in condition.conditions
            ]
        }
    if isinstance(condition, FlatMap):
        return {
            key: list(value) if isinstance(value, tuple) else value
            for key, value in condition.entries
        }
    return None
