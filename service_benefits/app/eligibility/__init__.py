"""
Eligibility engine package.

Decides whether an employee may access a benefit given the benefit's
eligibility rules. Pure and stateless; callers load rules for their tenant
and pass them in.
"""

from .engine import EligibilityRule, check_benefits, is_eligible, rules_for

__all__ = ["EligibilityRule", "check_benefits", "is_eligible", "rules_for"]
