"""
Unit tests for budget policy resolution.
"""

import pytest

from service_benefits.app.budget import BudgetPeriod, BudgetPolicy, resolve
from service_benefits.app.conditions import EmployeeProfile, parse_condition


def make_policy(policy_id, points, target_filter=None, is_active=True, name=None):
    return BudgetPolicy(
        policy_id=policy_id,
        tenant_id="tenant-1",
        name=name or policy_id,
        points_amount=points,
        target_filter=parse_condition(target_filter),
        is_active=is_active
    )


class TestResolve:
    """Test cases for resolve."""

    @pytest.fixture
    def profile(self):
        """Senior employee."""
        return EmployeeProfile(user_id="user-1", tenant_id="tenant-1", grade="senior", tenure_months=40)

    def test_picks_highest_points(self, profile):
        """Test that the most generous matching policy wins."""
        policies = [make_policy("a", 500), make_policy("b", 1000)]

        assert resolve(profile, policies).policy_id == "b"

    def test_tie_keeps_first(self, profile):
        """Test that equal amounts keep the first policy."""
        policies = [make_policy("a", 800), make_policy("b", 800)]

        assert resolve(profile, policies).policy_id == "a"

    def test_skips_inactive(self, profile):
        """Test that inactive policies are never returned."""
        policies = [make_policy("a", 500), make_policy("b", 5000, is_active=False)]

        assert resolve(profile, policies).policy_id == "a"

    def test_skips_non_matching(self, profile):
        """Test that target filters are applied."""
        policies = [
            make_policy("juniors", 2000, {"grade": ["junior"]}),
            make_policy("veterans", 700, {"match_all": [{"field": "tenure_months", "operator": "gte", "value": 36}]})
        ]

        assert resolve(profile, policies).policy_id == "veterans"

    def test_none_when_nothing_applies(self, profile):
        """Test resolution without any applicable policy."""
        assert resolve(profile, []) is None
        assert resolve(profile, [make_policy("a", 100, is_active=False)]) is None
        assert resolve(profile, [make_policy("a", 100, {"grade": ["lead"]})]) is None


class TestBudgetPolicy:
    """Test cases for BudgetPolicy records."""

    def test_from_record(self):
        """Test loading a policy from a stored record."""
        policy = BudgetPolicy.from_record({
            "id": "policy-1",
            "tenant_id": "tenant-1",
            "name": "Standard",
            "points_amount": 1000,
            "period": "monthly",
            "target_filter": {"grade": ["senior"]},
            "is_active": True
        })

        assert policy.period == BudgetPeriod.MONTHLY
        assert policy.to_dict()["target_filter"] == {"grade": ["senior"]}

    def test_unknown_period_defaults_to_quarterly(self):
        """Test fallback for unknown period values."""
        policy = BudgetPolicy.from_record({
            "id": "policy-1",
            "tenant_id": "tenant-1",
            "points_amount": 1000,
            "period": "weekly"
        })

        assert policy.period == BudgetPeriod.QUARTERLY
        assert policy.to_dict()["target_filter"] == {"match_all": []}
