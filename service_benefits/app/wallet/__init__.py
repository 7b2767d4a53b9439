"""
Wallet package.

- models: Wallet, PointLedgerEntry and the ``apply_entry``/``replay``
  transition shared by writes and consistency checks.
- ledger: WalletLedger, the only stateful component. Import it from
  ``wallet.ledger``; it depends on the persistence interfaces.
"""

from .models import (
    LedgerEntryType, LedgerState, PointLedgerEntry, Wallet, WalletView,
    apply_entry, replay, signed_amount
)

__all__ = [
    "LedgerEntryType",
    "LedgerState",
    "PointLedgerEntry",
    "Wallet",
    "WalletView",
    "apply_entry",
    "replay",
    "signed_amount",
]
