"""
PostgreSQL persistence layer for the Benefits Service.
"""

import json
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, List, Optional

import asyncpg

from shared.logging import get_logger
from shared.errors import AccessLayerException, DuplicateAccrualError, StorageError
from ..budget import BudgetPolicy
from ..conditions import EmployeeProfile
from ..eligibility import EligibilityRule
from ..wallet.models import LedgerEntryType, PointLedgerEntry, Wallet
from .base import PolicyStore, ProfileStore, RuleStore, WalletStore, WalletTransaction


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS wallets (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(255) NOT NULL,
        tenant_id VARCHAR(255) NOT NULL,
        period VARCHAR(32) NOT NULL,
        balance INTEGER NOT NULL DEFAULT 0,
        reserved INTEGER NOT NULL DEFAULT 0,
        expires_at TIMESTAMP WITH TIME ZONE NOT NULL,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
        CONSTRAINT wallets_user_tenant_period_key UNIQUE (user_id, tenant_id, period),
        CONSTRAINT wallets_balance_non_negative CHECK (balance >= 0),
        CONSTRAINT wallets_reserved_bounds CHECK (reserved >= 0 AND reserved <= balance)
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_wallets_user_tenant_expires
        ON wallets(user_id, tenant_id, expires_at DESC);
    """,
    """
    CREATE TABLE IF NOT EXISTS point_ledger (
        seq BIGSERIAL,
        id VARCHAR(64) PRIMARY KEY,
        wallet_id VARCHAR(64) NOT NULL REFERENCES wallets(id),
        tenant_id VARCHAR(255) NOT NULL,
        order_id VARCHAR(255),
        type VARCHAR(16) NOT NULL
            CHECK (type IN ('accrual', 'spend', 'reserve', 'release', 'expire')),
        amount INTEGER NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_point_ledger_wallet_created
        ON point_ledger(wallet_id, created_at DESC);
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_point_ledger_wallet_accrual
        ON point_ledger(wallet_id) WHERE type = 'accrual';
    """,
    """
    CREATE OR REPLACE FUNCTION point_ledger_immutable() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'point_ledger rows are immutable';
    END;
    $$ LANGUAGE plpgsql;
    """,
    """
    DROP TRIGGER IF EXISTS point_ledger_no_mutation ON point_ledger;
    """,
    """
    CREATE TRIGGER point_ledger_no_mutation
        BEFORE UPDATE OR DELETE ON point_ledger
        FOR EACH ROW EXECUTE FUNCTION point_ledger_immutable();
    """,
    """
    CREATE TABLE IF NOT EXISTS budget_policies (
        id VARCHAR(64) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        name VARCHAR(255) NOT NULL,
        points_amount INTEGER NOT NULL CHECK (points_amount > 0),
        period VARCHAR(16) NOT NULL DEFAULT 'quarterly',
        target_filter JSONB NOT NULL DEFAULT '{}',
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_budget_policies_tenant_active
        ON budget_policies(tenant_id, is_active);
    """,
    """
    CREATE TABLE IF NOT EXISTS employee_profiles (
        id VARCHAR(64) PRIMARY KEY,
        user_id VARCHAR(255) NOT NULL,
        tenant_id VARCHAR(255) NOT NULL,
        grade VARCHAR(64),
        tenure_months INTEGER NOT NULL DEFAULT 0 CHECK (tenure_months >= 0),
        location VARCHAR(255),
        legal_entity VARCHAR(255),
        extra JSONB NOT NULL DEFAULT '{}',
        CONSTRAINT employee_profiles_user_tenant_key UNIQUE (user_id, tenant_id)
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS eligibility_rules (
        id VARCHAR(64) PRIMARY KEY,
        tenant_id VARCHAR(255) NOT NULL,
        benefit_id VARCHAR(64),
        tenant_offering_id VARCHAR(64),
        conditions JSONB NOT NULL DEFAULT '{}',
        created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
    );
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_eligibility_rules_tenant_benefit
        ON eligibility_rules(tenant_id, benefit_id);
    """,
]


async def _init_connection(conn: asyncpg.Connection):
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog"
    )


class PostgreSQLWalletTransaction(WalletTransaction):
    """Wallet transaction bound to one connection and one tenant."""

    def __init__(self, conn: asyncpg.Connection, tenant_id: str):
        self.conn = conn
        self.tenant_id = tenant_id

    async def get_wallet_for_update(self, wallet_id: str) -> Optional[Wallet]:
        row = await self.conn.fetchrow("""
            SELECT * FROM wallets
            WHERE id = $1 AND tenant_id = $2
            FOR UPDATE
        """, wallet_id, self.tenant_id)
        return Wallet.from_record(row) if row else None

    async def get_or_create_wallet_for_update(
        self, user_id: str, period: str, expires_at: datetime
    ) -> Wallet:
        await self.conn.execute("""
            INSERT INTO wallets (id, user_id, tenant_id, period, expires_at, balance, reserved)
            VALUES ($1, $2, $3, $4, $5, 0, 0)
            ON CONFLICT (user_id, tenant_id, period) DO NOTHING
        """, str(uuid.uuid4()), user_id, self.tenant_id, period, expires_at)

        row = await self.conn.fetchrow("""
            SELECT * FROM wallets
            WHERE user_id = $1 AND tenant_id = $2 AND period = $3
            FOR UPDATE
        """, user_id, self.tenant_id, period)
        return Wallet.from_record(row)

    async def has_entry(self, wallet_id: str, entry_type: LedgerEntryType) -> bool:
        return await self.conn.fetchval("""
            SELECT EXISTS (
                SELECT 1 FROM point_ledger
                WHERE wallet_id = $1 AND tenant_id = $2 AND type = $3
            )
        """, wallet_id, self.tenant_id, entry_type.value)

    async def append_entry(self, entry: PointLedgerEntry) -> PointLedgerEntry:
        try:
            await self.conn.execute("""
                INSERT INTO point_ledger (
                    id, wallet_id, tenant_id, order_id, type, amount, description, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
                entry.entry_id, entry.wallet_id, entry.tenant_id, entry.order_id,
                entry.type.value, entry.amount, entry.description, entry.created_at
            )
        except asyncpg.UniqueViolationError as e:
            if entry.type == LedgerEntryType.ACCRUAL:
                raise DuplicateAccrualError(details={"wallet_id": entry.wallet_id}) from e
            raise
        return entry

    async def update_wallet(self, wallet: Wallet) -> None:
        await self.conn.execute("""
            UPDATE wallets SET balance = $1, reserved = $2
            WHERE id = $3 AND tenant_id = $4
        """, wallet.balance, wallet.reserved, wallet.wallet_id, self.tenant_id)


class PostgreSQLPersistence(WalletStore, PolicyStore, ProfileStore, RuleStore):
    """PostgreSQL persistence layer for wallets, ledger, policies, profiles and rules."""

    def __init__(self, dsn: str, min_size: int = 2, max_size: int = 10):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.logger = get_logger("benefits.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=30,
                init=_init_connection
            )

            await self._create_tables()

            self.logger.info("PostgreSQL persistence started")

        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StorageError("Failed to start PostgreSQL persistence", {"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.logger.info("PostgreSQL persistence stopped")

    async def _create_tables(self):
        """Create database tables."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for statement in SCHEMA:
                    await conn.execute(statement)

    @asynccontextmanager
    async def _storage_errors(self, operation: str, **context):
        try:
            yield
        except AccessLayerException:
            raise
        except (asyncpg.PostgresError, OSError) as e:
            self.logger.error("Storage operation failed", operation=operation, error=str(e), **context)
            raise StorageError(f"{operation} failed", {"error": str(e), **context}) from e

    @asynccontextmanager
    async def transaction(self, tenant_id: str) -> AsyncIterator[PostgreSQLWalletTransaction]:
        async with self._storage_errors("wallet_transaction", tenant_id=tenant_id):
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    yield PostgreSQLWalletTransaction(conn, tenant_id)

    async def get_wallet(self, wallet_id: str, tenant_id: str) -> Optional[Wallet]:
        async with self._storage_errors("get_wallet", wallet_id=wallet_id):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT * FROM wallets WHERE id = $1 AND tenant_id = $2
                """, wallet_id, tenant_id)
                return Wallet.from_record(row) if row else None

    async def find_active_wallet(self, user_id: str, tenant_id: str, now: datetime) -> Optional[Wallet]:
        async with self._storage_errors("find_active_wallet", user_id=user_id):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT * FROM wallets
                    WHERE user_id = $1 AND tenant_id = $2 AND expires_at > $3
                    ORDER BY expires_at DESC, created_at DESC
                    LIMIT 1
                """, user_id, tenant_id, now)
                return Wallet.from_record(row) if row else None

    async def list_history(
        self, wallet_id: str, tenant_id: str, limit: Optional[int] = None
    ) -> List[PointLedgerEntry]:
        async with self._storage_errors("list_history", wallet_id=wallet_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM point_ledger
                    WHERE wallet_id = $1 AND tenant_id = $2
                    ORDER BY created_at DESC, seq DESC
                    LIMIT $3
                """, wallet_id, tenant_id, limit)
                return [PointLedgerEntry.from_record(row) for row in rows]

    async def list_expired_wallets(self, tenant_id: str, now: datetime) -> List[Wallet]:
        async with self._storage_errors("list_expired_wallets", tenant_id=tenant_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM wallets
                    WHERE tenant_id = $1 AND expires_at <= $2 AND balance > reserved
                    ORDER BY expires_at ASC
                """, tenant_id, now)
                return [Wallet.from_record(row) for row in rows]

    async def list_active_policies(self, tenant_id: str) -> List[BudgetPolicy]:
        async with self._storage_errors("list_active_policies", tenant_id=tenant_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM budget_policies
                    WHERE tenant_id = $1 AND is_active = TRUE
                    ORDER BY created_at ASC, id ASC
                """, tenant_id)
                return [BudgetPolicy.from_record(row) for row in rows]

    async def list_profiles(self, tenant_id: str) -> List[EmployeeProfile]:
        async with self._storage_errors("list_profiles", tenant_id=tenant_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM employee_profiles
                    WHERE tenant_id = $1
                    ORDER BY user_id ASC
                """, tenant_id)
                return [EmployeeProfile.from_record(row) for row in rows]

    async def get_profile(self, user_id: str, tenant_id: str) -> Optional[EmployeeProfile]:
        async with self._storage_errors("get_profile", user_id=user_id):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow("""
                    SELECT * FROM employee_profiles
                    WHERE user_id = $1 AND tenant_id = $2
                """, user_id, tenant_id)
                return EmployeeProfile.from_record(row) if row else None

    async def list_rules(self, tenant_id: str, benefit_ids: Iterable[str]) -> List[EligibilityRule]:
        async with self._storage_errors("list_rules", tenant_id=tenant_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM eligibility_rules
                    WHERE tenant_id = $1 AND benefit_id = ANY($2::varchar[])
                    ORDER BY created_at ASC
                """, tenant_id, list(benefit_ids))
                return [EligibilityRule.from_record(row) for row in rows]

    async def health_check(self) -> bool:
        """Check database health."""
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception:
            return False
