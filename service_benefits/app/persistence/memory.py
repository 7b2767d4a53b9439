"""
In-process store for local runs and tests.

Wallet transactions lock one ``asyncio.Lock`` per wallet and restore the
wallet row and its ledger on rollback.
"""

import asyncio
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

from shared.errors import DuplicateAccrualError, StorageError
from shared.logging import get_logger
from ..budget import BudgetPolicy
from ..conditions import EmployeeProfile
from ..eligibility import EligibilityRule
from ..wallet.models import LedgerEntryType, PointLedgerEntry, Wallet
from .base import PolicyStore, ProfileStore, RuleStore, WalletStore, WalletTransaction


class InMemoryWalletTransaction(WalletTransaction):
    """Transaction over an ``InMemoryStore``."""

    def __init__(self, store: "InMemoryStore", tenant_id: str):
        self.store = store
        self.tenant_id = tenant_id
        self._held: List[asyncio.Lock] = []
        self._snapshots: Dict[str, Tuple[Wallet, int]] = {}
        self._created: Set[str] = set()

    async def _lock(self, wallet_id: str) -> Optional[Wallet]:
        if wallet_id not in self._snapshots:
            lock = self.store._wallet_locks[wallet_id]
            await lock.acquire()
            self._held.append(lock)
            wallet = self.store.wallets.get(wallet_id)
            if wallet is None:
                return None
            self._snapshots[wallet_id] = (wallet, len(self.store.ledger[wallet_id]))
        return self.store.wallets.get(wallet_id)

    def _require_locked(self, wallet_id: str):
        if wallet_id not in self._snapshots:
            raise StorageError("Wallet is not locked by this transaction", {"wallet_id": wallet_id})

    async def get_wallet_for_update(self, wallet_id: str) -> Optional[Wallet]:
        wallet = self.store.wallets.get(wallet_id)
        if wallet is None or wallet.tenant_id != self.tenant_id:
            return None
        return await self._lock(wallet_id)

    async def get_or_create_wallet_for_update(
        self, user_id: str, period: str, expires_at: datetime
    ) -> Wallet:
        while True:
            async with self.store._create_lock:
                wallet = self.store._find_by_key(user_id, self.tenant_id, period)
                if wallet is None:
                    wallet = Wallet(
                        wallet_id=str(uuid.uuid4()),
                        user_id=user_id,
                        tenant_id=self.tenant_id,
                        period=period,
                        expires_at=expires_at,
                    )
                    self.store.wallets[wallet.wallet_id] = wallet
                    self._created.add(wallet.wallet_id)
            locked = await self._lock(wallet.wallet_id)
            # A concurrent creator may have rolled back while we waited.
            if locked is not None:
                return locked

    async def has_entry(self, wallet_id: str, entry_type: LedgerEntryType) -> bool:
        return any(e.type == entry_type for e in self.store.ledger[wallet_id])

    async def append_entry(self, entry: PointLedgerEntry) -> PointLedgerEntry:
        self._require_locked(entry.wallet_id)
        if entry.type == LedgerEntryType.ACCRUAL and await self.has_entry(entry.wallet_id, LedgerEntryType.ACCRUAL):
            raise DuplicateAccrualError(details={"wallet_id": entry.wallet_id})
        self.store.ledger[entry.wallet_id].append(entry)
        return entry

    async def update_wallet(self, wallet: Wallet) -> None:
        self._require_locked(wallet.wallet_id)
        self.store.wallets[wallet.wallet_id] = wallet

    def rollback(self):
        for wallet_id, (wallet, ledger_length) in self._snapshots.items():
            if wallet_id in self._created:
                self.store.wallets.pop(wallet_id, None)
                self.store.ledger.pop(wallet_id, None)
                continue
            self.store.wallets[wallet_id] = wallet
            del self.store.ledger[wallet_id][ledger_length:]

    def release(self):
        while self._held:
            self._held.pop().release()


class InMemoryStore(WalletStore, PolicyStore, ProfileStore, RuleStore):
    """Dictionary-backed implementation of every store interface."""

    def __init__(self):
        self.logger = get_logger("benefits.persistence.memory")
        self.wallets: Dict[str, Wallet] = {}
        self.ledger: Dict[str, List[PointLedgerEntry]] = defaultdict(list)
        self.policies: List[BudgetPolicy] = []
        self.profiles: List[EmployeeProfile] = []
        self.rules: List[EligibilityRule] = []
        self._wallet_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._create_lock = asyncio.Lock()

    async def start(self):
        self.logger.info("In-memory store started")

    async def stop(self):
        self.logger.info("In-memory store stopped")

    async def health_check(self) -> bool:
        return True

    # Seeding

    def add_policy(self, policy: BudgetPolicy) -> BudgetPolicy:
        self.policies.append(policy)
        return policy

    def add_profile(self, profile: EmployeeProfile) -> EmployeeProfile:
        self.profiles.append(profile)
        return profile

    def add_rule(self, rule: EligibilityRule) -> EligibilityRule:
        self.rules.append(rule)
        return rule

    # WalletStore

    @asynccontextmanager
    async def transaction(self, tenant_id: str) -> AsyncIterator[InMemoryWalletTransaction]:
        tx = InMemoryWalletTransaction(self, tenant_id)
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        finally:
            tx.release()

    def _find_by_key(self, user_id: str, tenant_id: str, period: str) -> Optional[Wallet]:
        for wallet in self.wallets.values():
            if wallet.user_id == user_id and wallet.tenant_id == tenant_id and wallet.period == period:
                return wallet
        return None

    async def get_wallet(self, wallet_id: str, tenant_id: str) -> Optional[Wallet]:
        wallet = self.wallets.get(wallet_id)
        if wallet is None or wallet.tenant_id != tenant_id:
            return None
        return wallet

    async def find_active_wallet(self, user_id: str, tenant_id: str, now: datetime) -> Optional[Wallet]:
        candidates = [
            w for w in self.wallets.values()
            if w.user_id == user_id and w.tenant_id == tenant_id and w.expires_at > now
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda w: (w.expires_at, w.created_at))

    async def list_history(
        self, wallet_id: str, tenant_id: str, limit: Optional[int] = None
    ) -> List[PointLedgerEntry]:
        if await self.get_wallet(wallet_id, tenant_id) is None:
            return []
        entries = list(reversed(self.ledger.get(wallet_id, [])))
        return entries[:limit] if limit is not None else entries

    async def list_expired_wallets(self, tenant_id: str, now: datetime) -> List[Wallet]:
        return [
            w for w in self.wallets.values()
            if w.tenant_id == tenant_id and w.expires_at <= now and w.available > 0
        ]

    # PolicyStore

    async def list_active_policies(self, tenant_id: str) -> List[BudgetPolicy]:
        return [p for p in self.policies if p.tenant_id == tenant_id and p.is_active]

    # ProfileStore

    async def list_profiles(self, tenant_id: str) -> List[EmployeeProfile]:
        return [p for p in self.profiles if p.tenant_id == tenant_id]

    async def get_profile(self, user_id: str, tenant_id: str) -> Optional[EmployeeProfile]:
        for profile in self.profiles:
            if profile.user_id == user_id and profile.tenant_id == tenant_id:
                return profile
        return None

    # RuleStore

    async def list_rules(self, tenant_id: str, benefit_ids: Iterable[str]) -> List[EligibilityRule]:
        wanted = set(benefit_ids)
        return [r for r in self.rules if r.tenant_id == tenant_id and r.benefit_id in wanted]
