"""
Benefits service for the Benefits Access Layer.
"""

from typing import Dict, List, Optional

from fastapi import Depends, Header, Query
from pydantic import BaseModel, Field

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import AccessLayerException
from shared.logging import set_user_context

from .accrual import AccrualProcess, AccrualResult
from .eligibility import check_benefits
from .persistence import InMemoryStore
from .persistence.postgres import PostgreSQLPersistence
from .wallet.ledger import WalletLedger
from .wallet.models import LedgerEntryResponse, PointsRequest, WalletView


class CallerContext(BaseModel):
    """Tenant and user resolved from request headers."""
    tenant_id: str
    user_id: str


class EligibilityCheckRequest(BaseModel):
    """Request body for an eligibility check."""
    benefit_ids: List[str] = Field(..., min_length=1, description="Benefits to check")
    tenant_offering_id: Optional[str] = Field(None, description="Tenant offering the benefits belong to")


class ExpirySweepResponse(BaseModel):
    """Result of an expiry sweep."""
    expired: int
    entries: List[LedgerEntryResponse] = Field(default_factory=list)


async def get_caller(
    x_tenant_id: str = Header(..., alias="X-Tenant-ID"),
    x_user_id: str = Header(..., alias="X-User-ID")
) -> CallerContext:
    """Resolve the caller from gateway-supplied headers."""
    set_user_context(user_id=x_user_id, tenant_id=x_tenant_id)
    return CallerContext(tenant_id=x_tenant_id, user_id=x_user_id)


class BenefitsService(BaseService):
    """Benefits service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, store=None):
        super().__init__("benefits", 8012, config or get_config("benefits", 8012))

        # Stores
        if store is not None:
            self.store = store
        elif self.config.store_backend == "memory":
            self.store = InMemoryStore()
        else:
            self.store = PostgreSQLPersistence(
                self.config.postgres_dsn,
                min_size=self.config.postgres_min_pool_size,
                max_size=self.config.postgres_max_pool_size
            )

        # Core components
        self.ledger = WalletLedger(
            self.store,
            metrics=self.metrics,
            history_limit=self.config.ledger_history_limit
        )
        self.accrual = AccrualProcess(self.ledger, self.store, self.store, metrics=self.metrics)

        self._setup_benefits_routes()

    def _setup_benefits_routes(self):
        """Set up benefits-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "benefits",
                "message": "Benefits Access Layer - Benefits Service",
                "version": "1.0.0",
                "capabilities": ["eligibility", "budget_policies", "wallet_ledger", "accrual"]
            }

        @self.app.get("/wallets/me", response_model=WalletView)
        async def get_my_wallet(caller: CallerContext = Depends(get_caller)):
            """Active wallet of the caller; zeros if there is none."""
            return await self.ledger.get_balance(caller.user_id, caller.tenant_id)

        @self.app.post("/wallets/accrual", response_model=AccrualResult)
        async def run_accrual(caller: CallerContext = Depends(get_caller)):
            """Run accrual for the caller's tenant."""
            result = await self.accrual.run_accrual(caller.tenant_id)
            if result.no_policies:
                raise AccessLayerException(
                    "NO_POLICIES",
                    "No active budget policies configured for tenant",
                    {"tenant_id": caller.tenant_id}
                )
            self.metrics.record_business_event("accrual_run")
            return result

        @self.app.post("/wallets/expire", response_model=ExpirySweepResponse)
        async def expire_wallets(caller: CallerContext = Depends(get_caller)):
            """Expire every lapsed wallet of the caller's tenant."""
            entries = await self.ledger.expire_due(caller.tenant_id)
            return ExpirySweepResponse(
                expired=len(entries),
                entries=[LedgerEntryResponse.from_entry(e) for e in entries]
            )

        @self.app.post("/wallets/{wallet_id}/reserve", response_model=LedgerEntryResponse)
        async def reserve_points(
            wallet_id: str,
            request: PointsRequest,
            caller: CallerContext = Depends(get_caller)
        ):
            """Hold points for an order."""
            entry = await self.ledger.reserve(
                caller.tenant_id, wallet_id, request.amount,
                order_id=request.order_id, description=request.description
            )
            return LedgerEntryResponse.from_entry(entry)

        @self.app.post("/wallets/{wallet_id}/release", response_model=LedgerEntryResponse)
        async def release_points(
            wallet_id: str,
            request: PointsRequest,
            caller: CallerContext = Depends(get_caller)
        ):
            """Return held points to available."""
            entry = await self.ledger.release(
                caller.tenant_id, wallet_id, request.amount,
                order_id=request.order_id, description=request.description
            )
            return LedgerEntryResponse.from_entry(entry)

        @self.app.post("/wallets/{wallet_id}/spend", response_model=LedgerEntryResponse)
        async def spend_points(
            wallet_id: str,
            request: PointsRequest,
            caller: CallerContext = Depends(get_caller)
        ):
            """Consume held points."""
            entry = await self.ledger.spend(
                caller.tenant_id, wallet_id, request.amount,
                order_id=request.order_id, description=request.description
            )
            return LedgerEntryResponse.from_entry(entry)

        @self.app.get("/wallets/{wallet_id}/history", response_model=List[LedgerEntryResponse])
        async def wallet_history(
            wallet_id: str,
            limit: Optional[int] = Query(None, ge=1, le=500, description="Maximum entries"),
            caller: CallerContext = Depends(get_caller)
        ):
            """Ledger entries of a wallet, newest first."""
            entries = await self.ledger.get_history(caller.tenant_id, wallet_id, limit)
            return [LedgerEntryResponse.from_entry(e) for e in entries]

        @self.app.post("/eligibility/check", response_model=Dict[str, bool])
        async def check_eligibility(
            request: EligibilityCheckRequest,
            caller: CallerContext = Depends(get_caller)
        ):
            """Eligibility of the caller for each requested benefit."""
            profile = await self.store.get_profile(caller.user_id, caller.tenant_id)
            rules = await self.store.list_rules(caller.tenant_id, request.benefit_ids)
            decisions = check_benefits(profile, rules, request.benefit_ids, request.tenant_offering_id)

            for allowed in decisions.values():
                self.metrics.increment_counter(
                    "eligibility_checks_total",
                    decision="allow" if allowed else "deny"
                )
            return decisions

    async def _check_dependencies(self):
        """Check benefits service dependencies."""
        dependencies = {}

        try:
            if await self.store.health_check():
                dependencies["store"] = "ok"
            else:
                dependencies["store"] = "error"
        except Exception:
            dependencies["store"] = "error"

        return dependencies

    async def start(self):
        """Start benefits service components."""
        await self.store.start()
        self.logger.info("Benefits service started", store_backend=type(self.store).__name__)

    async def stop(self):
        """Stop benefits service components."""
        await self.store.stop()
        self.logger.info("Benefits service stopped")


def create_app():
    """Create benefits service application."""
    service = BenefitsService()
    return service.app


if __name__ == "__main__":
    service = BenefitsService()
    service.run()
