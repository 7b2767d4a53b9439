"""
Budget policy package: which policy applies to an employee and how many
points it grants per period.
"""

from .resolver import BudgetPeriod, BudgetPolicy, resolve

__all__ = ["BudgetPeriod", "BudgetPolicy", "resolve"]
