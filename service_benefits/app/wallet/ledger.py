"""
Wallet ledger operations.

Each mutation runs in one store transaction: lock the wallet, append exactly
one ledger entry, and write the wallet row computed by ``apply_entry``.
"""

import uuid
from datetime import datetime
from typing import Callable, List, Optional

from shared.errors import (
    DuplicateAccrualError, InsufficientBalanceError, InsufficientReservedError,
    ValidationError, WalletNotFoundError
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..persistence.base import WalletStore, WalletTransaction
from .models import (
    ConsistencyReport, LedgerEntryType, PointLedgerEntry, Wallet, WalletView,
    apply_entry, replay, signed_amount, utcnow
)


def _require_points(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive integer", {"amount": amount})
    return amount


class WalletLedger:
    """Append-only point ledger with derived wallet balances."""

    def __init__(
        self,
        store: WalletStore,
        metrics: Optional[MetricsCollector] = None,
        history_limit: int = 50,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.metrics = metrics
        self.history_limit = history_limit
        self.clock = clock
        self.logger = get_logger("benefits.wallet.ledger")

    async def _commit(
        self,
        tx: WalletTransaction,
        wallet: Wallet,
        entry_type: LedgerEntryType,
        points: int,
        description: str,
        order_id: Optional[str] = None
    ) -> PointLedgerEntry:
        entry = PointLedgerEntry(
            entry_id=str(uuid.uuid4()),
            wallet_id=wallet.wallet_id,
            tenant_id=wallet.tenant_id,
            type=entry_type,
            amount=signed_amount(entry_type, points),
            description=description,
            order_id=order_id,
            created_at=self.clock(),
        )
        updated = wallet.with_state(apply_entry(wallet.state, entry))

        await tx.append_entry(entry)
        await tx.update_wallet(updated)

        self.logger.info(
            "Ledger entry appended",
            wallet_id=wallet.wallet_id,
            tenant_id=wallet.tenant_id,
            type=entry_type.value,
            amount=entry.amount,
            balance=updated.balance,
            reserved=updated.reserved,
            order_id=order_id
        )
        if self.metrics:
            self.metrics.increment_counter("ledger_operations_total", operation=entry_type.value)
        return entry

    async def _locked_wallet(self, tx: WalletTransaction, tenant_id: str, wallet_id: str) -> Wallet:
        wallet = await tx.get_wallet_for_update(wallet_id)
        if wallet is None:
            raise WalletNotFoundError(details={"wallet_id": wallet_id, "tenant_id": tenant_id})
        return wallet

    async def accrue(
        self,
        tenant_id: str,
        user_id: str,
        period: str,
        amount: int,
        expires_at: datetime,
        description: Optional[str] = None
    ) -> Optional[PointLedgerEntry]:
        """Credit the (user, tenant, period) wallet once.

        Creates the wallet on first grant. Returns ``None`` when the period was
        already credited.
        """
        points = _require_points(amount)
        try:
            async with self.store.transaction(tenant_id) as tx:
                wallet = await tx.get_or_create_wallet_for_update(user_id, period, expires_at)
                if await tx.has_entry(wallet.wallet_id, LedgerEntryType.ACCRUAL):
                    raise DuplicateAccrualError(details={"wallet_id": wallet.wallet_id, "period": period})
                return await self._commit(
                    tx, wallet, LedgerEntryType.ACCRUAL, points,
                    description or f"Accrual for {period}"
                )
        except DuplicateAccrualError as e:
            self.logger.info(
                "Accrual already recorded for period",
                user_id=user_id,
                tenant_id=tenant_id,
                period=period,
                wallet_id=e.details.get("wallet_id")
            )
            return None

    async def reserve(
        self,
        tenant_id: str,
        wallet_id: str,
        amount: int,
        order_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> PointLedgerEntry:
        """Hold points for a pending order."""
        points = _require_points(amount)
        async with self.store.transaction(tenant_id) as tx:
            wallet = await self._locked_wallet(tx, tenant_id, wallet_id)
            if not wallet.is_active(self.clock()):
                raise ValidationError(
                    "Wallet has expired",
                    {"wallet_id": wallet_id, "expires_at": wallet.expires_at.isoformat()}
                )
            if points > wallet.available:
                raise InsufficientBalanceError(
                    f"Insufficient points. Available: {wallet.available}, required: {points}",
                    {"wallet_id": wallet_id, "available": wallet.available, "required": points}
                )
            return await self._commit(
                tx, wallet, LedgerEntryType.RESERVE, points,
                description or "Reservation", order_id
            )

    async def release(
        self,
        tenant_id: str,
        wallet_id: str,
        amount: int,
        order_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> PointLedgerEntry:
        """Return held points to available.

        Releases more than the outstanding reservation record only what is held.
        """
        points = _require_points(amount)
        async with self.store.transaction(tenant_id) as tx:
            wallet = await self._locked_wallet(tx, tenant_id, wallet_id)
            if wallet.reserved == 0:
                raise InsufficientReservedError(
                    "No reserved points to release",
                    {"wallet_id": wallet_id, "reserved": 0, "required": points}
                )
            return await self._commit(
                tx, wallet, LedgerEntryType.RELEASE, min(points, wallet.reserved),
                description or "Reservation released", order_id
            )

    async def spend(
        self,
        tenant_id: str,
        wallet_id: str,
        amount: int,
        order_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> PointLedgerEntry:
        """Consume previously reserved points."""
        points = _require_points(amount)
        async with self.store.transaction(tenant_id) as tx:
            wallet = await self._locked_wallet(tx, tenant_id, wallet_id)
            if points > wallet.reserved:
                raise InsufficientReservedError(
                    f"Insufficient reserved points. Reserved: {wallet.reserved}, required: {points}",
                    {"wallet_id": wallet_id, "reserved": wallet.reserved, "required": points}
                )
            return await self._commit(
                tx, wallet, LedgerEntryType.SPEND, points,
                description or "Order confirmed", order_id
            )

    async def expire(
        self,
        tenant_id: str,
        wallet_id: str,
        now: Optional[datetime] = None
    ) -> Optional[PointLedgerEntry]:
        """Write off the available points of an expired wallet.

        Reserved points are left for the order workflow to release or spend.
        """
        now = now or self.clock()
        async with self.store.transaction(tenant_id) as tx:
            wallet = await self._locked_wallet(tx, tenant_id, wallet_id)
            if wallet.expires_at > now:
                raise ValidationError(
                    "Wallet has not expired yet",
                    {"wallet_id": wallet_id, "expires_at": wallet.expires_at.isoformat()}
                )
            if wallet.available == 0:
                return None
            return await self._commit(
                tx, wallet, LedgerEntryType.EXPIRE, wallet.available,
                f"Points expired for {wallet.period}"
            )

    async def expire_due(self, tenant_id: str, now: Optional[datetime] = None) -> List[PointLedgerEntry]:
        """Expire every wallet of the tenant past its ``expires_at``."""
        now = now or self.clock()
        entries = []
        failed = 0
        for wallet in await self.store.list_expired_wallets(tenant_id, now):
            try:
                entry = await self.expire(tenant_id, wallet.wallet_id, now)
            except Exception as e:
                failed += 1
                self.logger.error(
                    "Expiry failed for wallet",
                    wallet_id=wallet.wallet_id,
                    tenant_id=tenant_id,
                    error=str(e)
                )
                continue
            if entry is not None:
                entries.append(entry)

        self.logger.info(
            "Expiry sweep completed",
            tenant_id=tenant_id,
            expired_wallets=len(entries),
            failed_wallets=failed
        )
        return entries

    async def get_balance(self, user_id: str, tenant_id: str, now: Optional[datetime] = None) -> WalletView:
        """Current wallet view; all zeros when the user has no active wallet."""
        wallet = await self.store.find_active_wallet(user_id, tenant_id, now or self.clock())
        if wallet is None:
            return WalletView.empty()
        history = await self.store.list_history(wallet.wallet_id, tenant_id, self.history_limit)
        return WalletView.from_wallet(wallet, history)

    async def get_history(
        self,
        tenant_id: str,
        wallet_id: str,
        limit: Optional[int] = None
    ) -> List[PointLedgerEntry]:
        """Ledger entries of a wallet, newest first."""
        if await self.store.get_wallet(wallet_id, tenant_id) is None:
            raise WalletNotFoundError(details={"wallet_id": wallet_id, "tenant_id": tenant_id})
        if limit is None:
            limit = self.history_limit
        return await self.store.list_history(wallet_id, tenant_id, limit)

    async def check_consistency(self, tenant_id: str, wallet_id: str) -> ConsistencyReport:
        """Compare the stored wallet row with a replay of its full ledger."""
        wallet = await self.store.get_wallet(wallet_id, tenant_id)
        if wallet is None:
            raise WalletNotFoundError(details={"wallet_id": wallet_id, "tenant_id": tenant_id})

        entries = await self.store.list_history(wallet_id, tenant_id)
        state = replay(reversed(entries))
        report = ConsistencyReport(
            wallet_id=wallet_id,
            stored_balance=wallet.balance,
            stored_reserved=wallet.reserved,
            ledger_balance=state.balance,
            ledger_reserved=state.reserved,
            entries=len(entries),
        )
        if not report.consistent:
            self.logger.error("Wallet diverged from ledger", **report.to_dict())
        return report
