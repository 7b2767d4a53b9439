"""
Benefit eligibility evaluation.

Rules for one benefit are ORed; the conditions inside one rule are ANDed.
A benefit without rules is open to everyone.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence
from dataclasses import dataclass, field

from shared.logging import get_logger
from ..conditions import Condition, EmployeeProfile, evaluate, parse_condition, condition_to_dict

logger = get_logger("benefits.eligibility")


@dataclass(frozen=True)
class EligibilityRule:
    """Condition gating one benefit, optionally one tenant offering of it."""
    rule_id: str
    tenant_id: str
    benefit_id: Optional[str]
    condition: Condition = field(default_factory=lambda: parse_condition(None))
    tenant_offering_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "EligibilityRule":
        return cls(
            rule_id=str(record["id"]),
            tenant_id=str(record["tenant_id"]),
            benefit_id=record.get("benefit_id"),
            condition=parse_condition(record.get("conditions")),
            tenant_offering_id=record.get("tenant_offering_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.rule_id,
            "tenant_id": self.tenant_id,
            "benefit_id": self.benefit_id,
            "conditions": condition_to_dict(self.condition),
            "tenant_offering_id": self.tenant_offering_id,
        }


def is_eligible(profile: EmployeeProfile, rules: Sequence[EligibilityRule]) -> bool:
    """Return whether ``profile`` passes any of ``rules``; no rules means open."""
    if not rules:
        return True
    return any(evaluate(profile, rule.condition) for rule in rules)


def rules_for(
    rules: Iterable[EligibilityRule],
    benefit_id: str,
    tenant_offering_id: Optional[str] = None
) -> List[EligibilityRule]:
    """Select the rules governing a benefit or one offering of it.

    Benefit-wide rules always apply. Offering-scoped rules apply only when
    that offering is being checked.
    """
    selected = []
    for rule in rules:
        if rule.benefit_id != benefit_id:
            continue
        if rule.tenant_offering_id is not None and rule.tenant_offering_id != tenant_offering_id:
            continue
        selected.append(rule)
    return selected


def check_benefits(
    profile: Optional[EmployeeProfile],
    rules: Iterable[EligibilityRule],
    benefit_ids: Iterable[str],
    tenant_offering_id: Optional[str] = None
) -> Dict[str, bool]:
    """Decide eligibility for several benefits at once.

    Without a profile only unrestricted benefits are granted.
    """
    rules = list(rules)
    if profile is not None:
        rules = [r for r in rules if r.tenant_id == profile.tenant_id]

    decisions: Dict[str, bool] = {}
    for benefit_id in benefit_ids:
        benefit_rules = rules_for(rules, benefit_id, tenant_offering_id)
        if profile is None:
            decisions[benefit_id] = not benefit_rules
        else:
            decisions[benefit_id] = is_eligible(profile, benefit_rules)

    logger.debug(
        "Eligibility decided",
        user_id=profile.user_id if profile else None,
        decisions=decisions
    )
    return decisions
