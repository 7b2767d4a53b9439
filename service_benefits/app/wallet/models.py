"""
Wallet and point ledger data models.

The ledger is the source of truth. ``apply_entry`` is the single transition
that moves a wallet's (balance, reserved) for one entry; writes use it to
compute the new wallet row and ``replay`` folds it over a full history.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerEntryType(str, Enum):
    """Point movement kinds."""
    ACCRUAL = "accrual"
    SPEND = "spend"
    RESERVE = "reserve"
    RELEASE = "release"
    EXPIRE = "expire"


# Entries that give points back to the holder are stored positive.
_POSITIVE_TYPES = frozenset({LedgerEntryType.ACCRUAL, LedgerEntryType.RELEASE})


def signed_amount(entry_type: LedgerEntryType, points: int) -> int:
    """Stored sign for an entry moving ``points``."""
    return points if entry_type in _POSITIVE_TYPES else -points


@dataclass(frozen=True)
class LedgerState:
    """Balance and reserved points derived from the ledger."""
    balance: int = 0
    reserved: int = 0

    @property
    def available(self) -> int:
        return max(0, self.balance - self.reserved)


@dataclass(frozen=True)
class PointLedgerEntry:
    """Immutable ledger row."""
    entry_id: str
    wallet_id: str
    tenant_id: str
    type: LedgerEntryType
    amount: int
    description: str = ""
    order_id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def points(self) -> int:
        return abs(self.amount)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "PointLedgerEntry":
        return cls(
            entry_id=str(record["id"]),
            wallet_id=str(record["wallet_id"]),
            tenant_id=str(record["tenant_id"]),
            type=LedgerEntryType(record["type"]),
            amount=int(record["amount"]),
            description=record.get("description") or "",
            order_id=record.get("order_id"),
            created_at=record["created_at"],
        )


@dataclass(frozen=True)
class Wallet:
    """Per-user, per-period point container. ``balance``/``reserved`` cache the ledger."""
    wallet_id: str
    user_id: str
    tenant_id: str
    period: str
    expires_at: datetime
    balance: int = 0
    reserved: int = 0
    created_at: datetime = field(default_factory=utcnow)

    @property
    def available(self) -> int:
        return max(0, self.balance - self.reserved)

    @property
    def state(self) -> LedgerState:
        return LedgerState(balance=self.balance, reserved=self.reserved)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at > (now or utcnow())

    def with_state(self, state: LedgerState) -> "Wallet":
        return replace(self, balance=state.balance, reserved=state.reserved)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Wallet":
        return cls(
            wallet_id=str(record["id"]),
            user_id=str(record["user_id"]),
            tenant_id=str(record["tenant_id"]),
            period=record["period"],
            expires_at=record["expires_at"],
            balance=int(record["balance"]),
            reserved=int(record["reserved"]),
            created_at=record["created_at"],
        )


def apply_entry(state: LedgerState, entry: PointLedgerEntry) -> LedgerState:
    """Move ``state`` by one ledger entry."""
    points = entry.points

    if entry.type == LedgerEntryType.ACCRUAL:
        return LedgerState(state.balance + points, state.reserved)

    if entry.type == LedgerEntryType.RESERVE:
        return LedgerState(state.balance, state.reserved + points)

    if entry.type == LedgerEntryType.RELEASE:
        return LedgerState(state.balance, max(0, state.reserved - points))

    if entry.type == LedgerEntryType.SPEND:
        return LedgerState(state.balance - points, max(0, state.reserved - points))

    if entry.type == LedgerEntryType.EXPIRE:
        return LedgerState(state.balance - points, state.reserved)

    raise ValueError(f"Unknown ledger entry type: {entry.type}")


def replay(entries: Iterable[PointLedgerEntry]) -> LedgerState:
    """Rebuild wallet state from its history, oldest entry first."""
    state = LedgerState()
    for entry in entries:
        state = apply_entry(state, entry)
    return state


class LedgerEntryResponse(BaseModel):
    """Ledger entry as returned to callers."""
    id: str
    wallet_id: str
    type: LedgerEntryType
    amount: int
    description: str
    order_id: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_entry(cls, entry: PointLedgerEntry) -> "LedgerEntryResponse":
        return cls(
            id=entry.entry_id,
            wallet_id=entry.wallet_id,
            type=entry.type,
            amount=entry.amount,
            description=entry.description,
            order_id=entry.order_id,
            created_at=entry.created_at,
        )


class WalletView(BaseModel):
    """Caller-facing wallet balance with recent history."""
    wallet_id: Optional[str] = None
    balance: int = 0
    reserved: int = 0
    available: int = 0
    period: str = ""
    expires_at: Optional[datetime] = None
    history: List[LedgerEntryResponse] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "WalletView":
        return cls()

    @classmethod
    def from_wallet(cls, wallet: Wallet, history: Iterable[PointLedgerEntry]) -> "WalletView":
        return cls(
            wallet_id=wallet.wallet_id,
            balance=wallet.balance,
            reserved=wallet.reserved,
            available=wallet.available,
            period=wallet.period,
            expires_at=wallet.expires_at,
            history=[LedgerEntryResponse.from_entry(e) for e in history],
        )


class PointsRequest(BaseModel):
    """Request body for reserve/release/spend."""
    amount: int = Field(..., gt=0, description="Points to move")
    order_id: Optional[str] = Field(None, description="Order that caused the movement")
    description: Optional[str] = Field(None, description="Ledger description override")


class ConsistencyReport(BaseModel):
    """Stored wallet row compared to a replay of its ledger."""
    wallet_id: str
    stored_balance: int
    stored_reserved: int
    ledger_balance: int
    ledger_reserved: int
    entries: int

    @property
    def consistent(self) -> bool:
        return (
            self.stored_balance == self.ledger_balance
            and self.stored_reserved == self.ledger_reserved
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump()
        data["consistent"] = self.consistent
        return data
