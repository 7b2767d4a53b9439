"""
Budget policy resolution.
"""

from typing import Any, Dict, Mapping, Optional, Sequence
from dataclasses import dataclass, field
from enum import Enum

from ..conditions import Condition, EmployeeProfile, evaluate, parse_condition, condition_to_dict


class BudgetPeriod(str, Enum):
    """Accrual period kinds."""
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class BudgetPolicy:
    """Points granted per period to employees matching ``target_filter``."""
    policy_id: str
    tenant_id: str
    name: str
    points_amount: int
    period: BudgetPeriod = BudgetPeriod.QUARTERLY
    target_filter: Condition = field(default_factory=lambda: parse_condition(None))
    is_active: bool = True

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "BudgetPolicy":
        try:
            period = BudgetPeriod(record.get("period") or BudgetPeriod.QUARTERLY.value)
        except ValueError:
            period = BudgetPeriod.QUARTERLY
        return cls(
            policy_id=str(record["id"]),
            tenant_id=str(record["tenant_id"]),
            name=record.get("name") or "",
            points_amount=int(record["points_amount"]),
            period=period,
            target_filter=parse_condition(record.get("target_filter")),
            is_active=bool(record.get("is_active", True)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.policy_id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "points_amount": self.points_amount,
            "period": self.period.value,
            "target_filter": condition_to_dict(self.target_filter),
            "is_active": self.is_active,
        }


def resolve(profile: EmployeeProfile, policies: Sequence[BudgetPolicy]) -> Optional[BudgetPolicy]:
    """Pick the most generous active policy matching ``profile``.

    Ties on ``points_amount`` keep the first policy encountered. Returns
    ``None`` when nothing matches.
    """
    best: Optional[BudgetPolicy] = None
    for policy in policies:
        if not policy.is_active:
            continue
        if not evaluate(profile, policy.target_filter):
            continue
        if best is None or policy.points_amount > best.points_amount:
            best = policy
    return best
