"""
Persistence package.

- base: narrow store interfaces injected into the ledger and accrual process.
- postgres: asyncpg implementation; wallet rows locked with FOR UPDATE.
- memory: in-process implementation for local runs and tests.
"""

from .base import PolicyStore, ProfileStore, RuleStore, WalletStore, WalletTransaction
from .memory import InMemoryStore

__all__ = [
    "InMemoryStore",
    "PolicyStore",
    "ProfileStore",
    "RuleStore",
    "WalletStore",
    "WalletTransaction",
]
