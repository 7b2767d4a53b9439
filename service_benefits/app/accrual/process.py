"""
Per-tenant accrual run.

Loads the tenant's active policies once, resolves a policy per employee and
credits the matching wallet through the ledger. Failures are isolated per
employee; the run is always fully attempted.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..budget import resolve
from ..persistence.base import PolicyStore, ProfileStore
from ..wallet.ledger import WalletLedger
from ..wallet.models import utcnow
from .periods import compute_period_info

NO_POLICIES = "NO_POLICIES"


class AccrualResult(BaseModel):
    """Outcome of one accrual run."""
    processed: int = 0
    created: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)

    @property
    def no_policies(self) -> bool:
        return self.errors == [NO_POLICIES]


class AccrualProcess:
    """Deposits periodic budget points into employee wallets."""

    def __init__(
        self,
        ledger: WalletLedger,
        policy_store: PolicyStore,
        profile_store: ProfileStore,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.ledger = ledger
        self.policy_store = policy_store
        self.profile_store = profile_store
        self.metrics = metrics
        self.clock = clock
        self.logger = get_logger("benefits.accrual")
        self._tenant_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def run_accrual(self, tenant_id: str, now: Optional[datetime] = None) -> AccrualResult:
        """Run accrual for every employee of ``tenant_id``."""
        now = now or self.clock()

        async with self._tenant_locks[tenant_id]:
            if self.metrics:
                with self.metrics.time_operation("accrual_run_duration_seconds"):
                    result = await self._run(tenant_id, now)
            else:
                result = await self._run(tenant_id, now)

        if result.no_policies:
            outcome = "no_policies"
        elif result.errors:
            outcome = "partial"
        else:
            outcome = "success"

        self.logger.info(
            "Accrual run completed",
            tenant_id=tenant_id,
            outcome=outcome,
            processed=result.processed,
            created=result.created,
            skipped=result.skipped,
            errors=len(result.errors)
        )
        if self.metrics:
            self.metrics.increment_counter("accrual_runs_total", outcome=outcome)
        return result

    async def _run(self, tenant_id: str, now: datetime) -> AccrualResult:
        result = AccrualResult()

        policies = await self.policy_store.list_active_policies(tenant_id)
        if not policies:
            self.logger.warning("No active budget policies for tenant", tenant_id=tenant_id)
            result.errors.append(NO_POLICIES)
            return result

        profiles = await self.profile_store.list_profiles(tenant_id)
        for profile in profiles:
            result.processed += 1
            try:
                policy = resolve(profile, policies)
                if policy is None:
                    self.logger.debug("No applicable policy", user_id=profile.user_id, tenant_id=tenant_id)
                    result.skipped += 1
                    continue

                label, expires_at = compute_period_info(policy.period, now)
                entry = await self.ledger.accrue(
                    tenant_id,
                    profile.user_id,
                    label,
                    policy.points_amount,
                    expires_at,
                    description=f'Accrual under policy "{policy.name}" for {label}'
                )
                if entry is None:
                    result.skipped += 1
                else:
                    result.created += 1
            except Exception as e:
                self.logger.error(
                    "Accrual failed for employee",
                    user_id=profile.user_id,
                    tenant_id=tenant_id,
                    error=str(e)
                )
                result.errors.append(f"Unexpected error for user {profile.user_id}: {e}")

        return result
