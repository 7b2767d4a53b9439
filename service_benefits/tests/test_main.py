"""
Unit tests for the Benefits service HTTP surface.
"""

import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

from shared.config import get_config
from service_benefits.app.budget import BudgetPolicy
from service_benefits.app.conditions import EmployeeProfile, parse_condition
from service_benefits.app.eligibility import EligibilityRule
from service_benefits.app.main import BenefitsService
from service_benefits.app.persistence import InMemoryStore
from service_benefits.app.wallet.models import LedgerEntryType, PointLedgerEntry, Wallet

CALLER = {"X-Tenant-ID": "tenant-1", "X-User-ID": "user-1"}


class TestBenefitsService:
    """Test cases for BenefitsService."""

    @pytest.fixture
    def store(self):
        """In-memory store with one senior employee."""
        store = InMemoryStore()
        store.add_profile(EmployeeProfile(user_id="user-1", tenant_id="tenant-1", grade="senior", tenure_months=24))
        return store

    @pytest.fixture
    def service(self, store):
        """Create BenefitsService over the in-memory store."""
        config = get_config("benefits", 8012, store_backend="memory")
        return BenefitsService(config=config, store=store)

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        with TestClient(service.app) as client:
            yield client

    @pytest.fixture
    def with_policy(self, store):
        """Seed a policy granting 1000 points to everyone."""
        return store.add_policy(BudgetPolicy(
            policy_id="standard",
            tenant_id="tenant-1",
            name="Standard",
            points_amount=1000
        ))

    @pytest.fixture
    def wallet_id(self, client, with_policy):
        """Accrue points for the caller and return the wallet id."""
        response = client.post("/wallets/accrual", headers=CALLER)
        assert response.status_code == 200
        return client.get("/wallets/me", headers=CALLER).json()["wallet_id"]

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "benefits"

    def test_health_check(self, client):
        """Test health check reports the store."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"store": "ok"}

    def test_memory_backend_from_config(self):
        """Test that the configured backend is used when no store is given."""
        service = BenefitsService(config=get_config("benefits", 8012, store_backend="memory"))
        assert isinstance(service.store, InMemoryStore)

    def test_wallet_zero_view(self, client):
        """Test the view for a caller without a wallet."""
        response = client.get("/wallets/me", headers=CALLER)

        assert response.status_code == 200
        data = response.json()
        assert data["wallet_id"] is None
        assert (data["balance"], data["reserved"], data["available"]) == (0, 0, 0)
        assert data["history"] == []

    def test_missing_caller_headers(self, client):
        """Test that tenant and user headers are required."""
        response = client.get("/wallets/me")
        assert response.status_code == 422

    def test_accrual_without_policies(self, client):
        """Test that a tenant without policies gets a 400."""
        response = client.post("/wallets/accrual", headers=CALLER)

        assert response.status_code == 400
        assert response.json()["code"] == "NO_POLICIES"

    def test_accrual_credits_wallet(self, client, with_policy):
        """Test an accrual run followed by the wallet view."""
        response = client.post("/wallets/accrual", headers=CALLER)

        assert response.status_code == 200
        assert response.json() == {"processed": 1, "created": 1, "skipped": 0, "errors": []}

        data = client.get("/wallets/me", headers=CALLER).json()
        assert data["balance"] == 1000
        assert data["history"][0]["type"] == "accrual"

    def test_reserve_release_spend(self, client, wallet_id):
        """Test the order point flow."""
        body = {"amount": 300, "order_id": "order-1"}

        reserve = client.post(f"/wallets/{wallet_id}/reserve", json=body, headers=CALLER)
        assert reserve.status_code == 200
        assert reserve.json()["amount"] == -300

        release = client.post(f"/wallets/{wallet_id}/release", json={"amount": 100}, headers=CALLER)
        assert release.status_code == 200

        spend = client.post(f"/wallets/{wallet_id}/spend", json={"amount": 200}, headers=CALLER)
        assert spend.status_code == 200

        data = client.get("/wallets/me", headers=CALLER).json()
        assert (data["balance"], data["reserved"], data["available"]) == (800, 0, 800)

    def test_reserve_insufficient_balance(self, client, wallet_id):
        """Test that over-reservation maps to 409."""
        response = client.post(f"/wallets/{wallet_id}/reserve", json={"amount": 5000}, headers=CALLER)

        assert response.status_code == 409
        data = response.json()
        assert data["code"] == "INSUFFICIENT_BALANCE"
        assert data["details"]["available"] == 1000

    def test_spend_without_reservation(self, client, wallet_id):
        """Test that spending unreserved points maps to 409."""
        response = client.post(f"/wallets/{wallet_id}/spend", json={"amount": 10}, headers=CALLER)

        assert response.status_code == 409
        assert response.json()["code"] == "INSUFFICIENT_RESERVED"

    def test_non_positive_amount(self, client, wallet_id):
        """Test request validation on amounts."""
        response = client.post(f"/wallets/{wallet_id}/reserve", json={"amount": 0}, headers=CALLER)
        assert response.status_code == 422

    def test_other_tenant_wallet(self, client, wallet_id):
        """Test that another tenant's wallet is not found."""
        headers = {"X-Tenant-ID": "tenant-2", "X-User-ID": "user-1"}

        response = client.post(f"/wallets/{wallet_id}/reserve", json={"amount": 10}, headers=headers)
        assert response.status_code == 404
        assert response.json()["code"] == "WALLET_NOT_FOUND"

        response = client.get(f"/wallets/{wallet_id}/history", headers=headers)
        assert response.status_code == 404

    def test_history(self, client, wallet_id):
        """Test history ordering and limit."""
        client.post(f"/wallets/{wallet_id}/reserve", json={"amount": 10}, headers=CALLER)

        response = client.get(f"/wallets/{wallet_id}/history", params={"limit": 1}, headers=CALLER)

        assert response.status_code == 200
        assert [e["type"] for e in response.json()] == ["reserve"]

    def test_expire_sweep(self, client, store):
        """Test the expiry sweep endpoint."""
        lapsed = datetime.now(timezone.utc) - timedelta(days=1)
        store.wallets["old"] = Wallet(
            wallet_id="old",
            user_id="user-1",
            tenant_id="tenant-1",
            period="2025-Q1",
            expires_at=lapsed,
            balance=400
        )
        store.ledger["old"].append(PointLedgerEntry(
            entry_id="e-1",
            wallet_id="old",
            tenant_id="tenant-1",
            type=LedgerEntryType.ACCRUAL,
            amount=400
        ))

        response = client.post("/wallets/expire", headers=CALLER)

        assert response.status_code == 200
        data = response.json()
        assert data["expired"] == 1
        assert data["entries"][0]["amount"] == -400
        assert store.wallets["old"].balance == 0

    def test_eligibility_check(self, client, store):
        """Test eligibility decisions for the caller."""
        store.add_rule(EligibilityRule(
            rule_id="rule-1",
            tenant_id="tenant-1",
            benefit_id="gym",
            condition=parse_condition({"grade": ["senior"]})
        ))
        store.add_rule(EligibilityRule(
            rule_id="rule-2",
            tenant_id="tenant-1",
            benefit_id="courses",
            condition=parse_condition({"grade": ["junior"]})
        ))

        response = client.post(
            "/eligibility/check",
            json={"benefit_ids": ["gym", "courses", "insurance"]},
            headers=CALLER
        )

        assert response.status_code == 200
        assert response.json() == {"gym": True, "courses": False, "insurance": True}

    def test_metrics_endpoint(self, client, wallet_id):
        """Test that ledger metrics are exported."""
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "ledger_operations_total" in response.text
        assert 'operation="accrual"' in response.text
