"""
Store interfaces consumed by the benefits core.

Every call is scoped by tenant; a row belonging to another tenant is reported
as absent.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, Iterable, List, Optional

from ..budget import BudgetPolicy
from ..conditions import EmployeeProfile
from ..eligibility import EligibilityRule
from ..wallet.models import LedgerEntryType, PointLedgerEntry, Wallet


class WalletTransaction(ABC):
    """Atomic unit over one tenant's wallets.

    Wallets fetched ``for_update`` stay locked until the transaction ends, so
    mutations of one wallet are serialized.
    """

    @abstractmethod
    async def get_wallet_for_update(self, wallet_id: str) -> Optional[Wallet]:
        """Lock and return a wallet, or None."""

    @abstractmethod
    async def get_or_create_wallet_for_update(
        self, user_id: str, period: str, expires_at: datetime
    ) -> Wallet:
        """Lock the (user, tenant, period) wallet, creating it empty if absent."""

    @abstractmethod
    async def has_entry(self, wallet_id: str, entry_type: LedgerEntryType) -> bool:
        """Whether the wallet's ledger holds an entry of ``entry_type``."""

    @abstractmethod
    async def append_entry(self, entry: PointLedgerEntry) -> PointLedgerEntry:
        """Insert a ledger row. Raises DuplicateAccrualError on a second accrual."""

    @abstractmethod
    async def update_wallet(self, wallet: Wallet) -> None:
        """Persist the cached balance/reserved of a locked wallet."""


class WalletStore(ABC):
    """Wallet and ledger persistence."""

    @abstractmethod
    def transaction(self, tenant_id: str) -> AsyncContextManager[WalletTransaction]:
        """Open an atomic unit; rolls back when the block raises."""

    @abstractmethod
    async def get_wallet(self, wallet_id: str, tenant_id: str) -> Optional[Wallet]:
        pass

    @abstractmethod
    async def find_active_wallet(self, user_id: str, tenant_id: str, now: datetime) -> Optional[Wallet]:
        """Most recent wallet of the user whose ``expires_at`` is after ``now``."""

    @abstractmethod
    async def list_history(
        self, wallet_id: str, tenant_id: str, limit: Optional[int] = None
    ) -> List[PointLedgerEntry]:
        """Ledger entries, newest first."""

    @abstractmethod
    async def list_expired_wallets(self, tenant_id: str, now: datetime) -> List[Wallet]:
        """Wallets with ``expires_at`` at or before ``now`` and points still available."""


class PolicyStore(ABC):
    """Budget policy reads."""

    @abstractmethod
    async def list_active_policies(self, tenant_id: str) -> List[BudgetPolicy]:
        pass


class ProfileStore(ABC):
    """Employee profile reads."""

    @abstractmethod
    async def list_profiles(self, tenant_id: str) -> List[EmployeeProfile]:
        pass

    @abstractmethod
    async def get_profile(self, user_id: str, tenant_id: str) -> Optional[EmployeeProfile]:
        pass


class RuleStore(ABC):
    """Eligibility rule reads."""

    @abstractmethod
    async def list_rules(self, tenant_id: str, benefit_ids: Iterable[str]) -> List[EligibilityRule]:
        pass
