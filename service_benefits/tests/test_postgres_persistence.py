"""
Unit tests for PostgreSQL persistence error handling.
"""

import pytest
import asyncpg
from unittest.mock import AsyncMock, MagicMock

from shared.errors import DuplicateAccrualError, StorageError
from service_benefits.app.persistence.postgres import PostgreSQLPersistence, PostgreSQLWalletTransaction
from service_benefits.app.wallet.models import LedgerEntryType, PointLedgerEntry


def entry(entry_type, amount):
    return PointLedgerEntry(
        entry_id="e-1",
        wallet_id="w-1",
        tenant_id="tenant-1",
        type=entry_type,
        amount=amount
    )


class TestPostgreSQLWalletTransaction:
    """Test cases for PostgreSQLWalletTransaction."""

    @pytest.fixture
    def conn(self):
        """Mock asyncpg connection."""
        return AsyncMock()

    @pytest.mark.asyncio
    async def test_duplicate_accrual(self, conn):
        """Test that the accrual unique index maps to DuplicateAccrualError."""
        conn.execute.side_effect = asyncpg.UniqueViolationError("duplicate key")
        tx = PostgreSQLWalletTransaction(conn, "tenant-1")

        with pytest.raises(DuplicateAccrualError):
            await tx.append_entry(entry(LedgerEntryType.ACCRUAL, 100))

    @pytest.mark.asyncio
    async def test_other_unique_violation(self, conn):
        """Test that non-accrual violations propagate unchanged."""
        conn.execute.side_effect = asyncpg.UniqueViolationError("duplicate key")
        tx = PostgreSQLWalletTransaction(conn, "tenant-1")

        with pytest.raises(asyncpg.UniqueViolationError):
            await tx.append_entry(entry(LedgerEntryType.RESERVE, -10))

    @pytest.mark.asyncio
    async def test_missing_wallet(self, conn):
        """Test that an absent row returns None."""
        conn.fetchrow.return_value = None
        tx = PostgreSQLWalletTransaction(conn, "tenant-1")

        assert await tx.get_wallet_for_update("w-1") is None
        assert conn.fetchrow.call_args.args[1:] == ("w-1", "tenant-1")


class TestPostgreSQLPersistence:
    """Test cases for PostgreSQLPersistence."""

    @pytest.fixture
    def conn(self):
        """Mock asyncpg connection."""
        return AsyncMock()

    @pytest.fixture
    def persistence(self, conn):
        """Create persistence with a mocked pool."""
        persistence = PostgreSQLPersistence("postgres://localhost/test")
        persistence.pool = MagicMock()
        persistence.pool.acquire.return_value.__aenter__.return_value = conn
        return persistence

    @pytest.mark.asyncio
    async def test_storage_errors_wrapped(self, persistence, conn):
        """Test that database errors surface as StorageError."""
        conn.fetchrow.side_effect = asyncpg.UndefinedTableError("relation does not exist")

        with pytest.raises(StorageError) as exc_info:
            await persistence.get_wallet("w-1", "tenant-1")

        assert exc_info.value.code == "STORAGE_FAILURE"
        assert exc_info.value.details["wallet_id"] == "w-1"

    @pytest.mark.asyncio
    async def test_list_history_rows(self, persistence, conn):
        """Test mapping ledger rows."""
        conn.fetch.return_value = [{
            "id": "e-2",
            "wallet_id": "w-1",
            "tenant_id": "tenant-1",
            "type": "reserve",
            "amount": -50,
            "description": "Reservation",
            "order_id": "order-1",
            "created_at": None
        }]

        entries = await persistence.list_history("w-1", "tenant-1", 10)

        assert [(e.type, e.points, e.order_id) for e in entries] == [(LedgerEntryType.RESERVE, 50, "order-1")]
        assert conn.fetch.call_args.args[1:] == ("w-1", "tenant-1", 10)

    @pytest.mark.asyncio
    async def test_health_check_without_pool(self):
        """Test health check before start."""
        persistence = PostgreSQLPersistence("postgres://localhost/test")

        assert await persistence.health_check() is False
