"""
Accrual package: the period calendar and the per-tenant accrual run.
"""

from .periods import compute_period_info
from .process import NO_POLICIES, AccrualProcess, AccrualResult

__all__ = ["NO_POLICIES", "AccrualProcess", "AccrualResult", "compute_period_info"]
