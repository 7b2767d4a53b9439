"""
Unit tests for condition parsing and evaluation.
"""

import pytest

from service_benefits.app.conditions import (
    ConditionOperator, EmployeeProfile, FieldCondition, FlatMap, InvalidCondition,
    MatchAll, OPEN_CONDITION, condition_to_dict, evaluate, evaluate_field_condition,
    parse_condition
)


class TestParseCondition:
    """Test cases for parse_condition."""

    def test_none_and_empty_are_open(self):
        """Test that missing conditions match everyone."""
        assert parse_condition(None) == OPEN_CONDITION
        assert parse_condition({}) == OPEN_CONDITION

    def test_match_all_form(self):
        """Test compound form parsing."""
        parsed = parse_condition({
            "match_all": [{"field": "grade", "operator": "in", "value": ["senior", "lead"]}]
        })

        assert isinstance(parsed, MatchAll)
        assert parsed.conditions == (
            FieldCondition(field="grade", operator=ConditionOperator.IN, value=("senior", "lead")),
        )

    def test_match_all_ignores_sibling_keys(self):
        """Test that match_all wins over flat keys."""
        parsed = parse_condition({"match_all": [], "grade": ["junior"]})

        assert parsed == MatchAll(())

    def test_flat_form_drops_metadata(self):
        """Test that rule_name and description do not constrain."""
        parsed = parse_condition({"rule_name": "Seniors", "description": "x", "grade": ["senior"]})

        assert isinstance(parsed, FlatMap)
        assert parsed.as_dict() == {"grade": ("senior",)}

    def test_metadata_only_is_open(self):
        """Test that a metadata-only mapping matches everyone."""
        assert parse_condition({"rule_name": "Everyone"}) == OPEN_CONDITION

    def test_malformed_inputs(self):
        """Test that malformed conditions become InvalidCondition."""
        assert isinstance(parse_condition("grade=senior"), InvalidCondition)
        assert isinstance(parse_condition(["grade"]), InvalidCondition)
        assert isinstance(parse_condition({"match_all": "grade"}), InvalidCondition)

    def test_unknown_operator_kept_raw(self):
        """Test that unknown operators survive parsing."""
        parsed = parse_condition({"match_all": [{"field": "grade", "operator": "regex", "value": ".*"}]})

        assert parsed.conditions[0].operator == "regex"

    def test_parse_is_idempotent(self):
        """Test that parsed variants pass through unchanged."""
        parsed = parse_condition({"grade": ["senior"]})

        assert parse_condition(parsed) is parsed

    def test_condition_to_dict(self):
        """Test serialization back to the stored shape."""
        raw = {"match_all": [{"field": "tenure_months", "operator": "gte", "value": 12}]}

        assert condition_to_dict(parse_condition(raw)) == raw
        assert condition_to_dict(parse_condition({"grade": ["senior"]})) == {"grade": ["senior"]}
        assert condition_to_dict(InvalidCondition("bad")) is None


class TestEvaluate:
    """Test cases for evaluate."""

    @pytest.fixture
    def senior(self):
        """Senior employee in Moscow with three years of tenure."""
        return EmployeeProfile(
            user_id="user-1",
            tenant_id="tenant-1",
            grade="senior",
            tenure_months=36,
            location="Moscow",
            legal_entity="LLC Alpha",
            extra={"department": "engineering", "level": 4}
        )

    @pytest.fixture
    def bare(self):
        """Employee with no optional fields."""
        return EmployeeProfile(user_id="user-2", tenant_id="tenant-1")

    def test_open_conditions(self, senior, bare):
        """Test that empty conditions match every profile."""
        for profile in (senior, bare):
            assert evaluate(profile, None) is True
            assert evaluate(profile, {}) is True
            assert evaluate(profile, {"match_all": []}) is True

    def test_match_all_conjunction(self, senior):
        """Test that all compound conditions must hold."""
        condition = {
            "match_all": [
                {"field": "grade", "operator": "in", "value": ["senior", "lead"]},
                {"field": "tenure_months", "operator": "gte", "value": 12}
            ]
        }
        assert evaluate(senior, condition) is True

        condition["match_all"][0]["value"] = ["junior"]
        assert evaluate(senior, condition) is False

    def test_flat_form_matches_compound_form(self, senior, bare):
        """Test that flat and compound forms agree."""
        for profile in (senior, bare):
            assert evaluate(profile, {"grade": ["senior", "lead"]}) == evaluate(
                profile, {"match_all": [{"field": "grade", "operator": "in", "value": ["senior", "lead"]}]}
            )
            assert evaluate(profile, {"min_tenure": 12}) == evaluate(
                profile, {"match_all": [{"field": "tenure_months", "operator": "gte", "value": 12}]}
            )

    def test_flat_scalar_equality(self, senior):
        """Test flat scalar values compare with equality."""
        assert evaluate(senior, {"location": "Moscow"}) is True
        assert evaluate(senior, {"location": "Kazan"}) is False

    def test_flat_empty_list_places_no_restriction(self, bare):
        """Test that an empty list matches even a missing field."""
        assert evaluate(bare, {"grade": []}) is True

    def test_min_tenure(self, senior, bare):
        """Test the min_tenure shorthand."""
        assert evaluate(senior, {"min_tenure": 36}) is True
        assert evaluate(senior, {"min_tenure": 37}) is False
        assert evaluate(bare, {"min_tenure": None}) is True
        assert evaluate(bare, {"min_tenure": "twelve"}) is False

    def test_null_flat_values_are_ignored(self, senior, bare):
        """Test that null shorthand values never restrict."""
        for profile in (senior, bare):
            assert evaluate(profile, {"grade": None}) is True
            assert evaluate(profile, {"location": None, "min_tenure": None}) is True

        assert evaluate(senior, {"grade": None, "location": ["Kazan"]}) is False

    def test_missing_field_fails(self, bare):
        """Test that absent profile fields never match."""
        assert evaluate(bare, {"location": ["Moscow"]}) is False
        assert evaluate(bare, {"match_all": [{"field": "grade", "operator": "eq", "value": None}]}) is False

    def test_extra_attributes(self, senior):
        """Test lookups fall back to extra attributes."""
        assert evaluate(senior, {"department": ["engineering"]}) is True
        assert evaluate(senior, {"match_all": [{"field": "level", "operator": "lte", "value": 4}]}) is True

    def test_invalid_conditions_are_false(self, senior):
        """Test that malformed input evaluates to False without raising."""
        assert evaluate(senior, "grade=senior") is False
        assert evaluate(senior, {"match_all": "grade"}) is False
        assert evaluate(senior, {"match_all": [{"operator": "eq", "value": "senior"}]}) is False
        assert evaluate(senior, {"match_all": ["grade"]}) is False

    def test_unhashable_values_do_not_raise(self, senior):
        """Test list membership with unhashable options."""
        assert evaluate(senior, {"grade": [["senior"], {"a": 1}, "senior"]}) is True


class TestEvaluateFieldCondition:
    """Test cases for evaluate_field_condition."""

    @pytest.fixture
    def profile(self):
        """Mid-level employee."""
        return EmployeeProfile(user_id="user-1", tenant_id="tenant-1", grade="middle", tenure_months=12)

    @pytest.mark.parametrize("operator,value,expected", [
        (ConditionOperator.EQ, "middle", True),
        (ConditionOperator.EQ, "senior", False),
        (ConditionOperator.IN, ("middle", "senior"), True),
        (ConditionOperator.IN, "middle", False),
    ])
    def test_grade_operators(self, profile, operator, value, expected):
        """Test equality and membership operators."""
        condition = FieldCondition(field="grade", operator=operator, value=value)
        assert evaluate_field_condition(profile, condition) is expected

    @pytest.mark.parametrize("operator,value,expected", [
        (ConditionOperator.GTE, 12, True),
        (ConditionOperator.GTE, 13, False),
        (ConditionOperator.LTE, 12, True),
        (ConditionOperator.LTE, 11, False),
        (ConditionOperator.GTE, "12", False),
        (ConditionOperator.GTE, True, False),
    ])
    def test_numeric_operators(self, profile, operator, value, expected):
        """Test numeric comparisons reject non-numbers."""
        condition = FieldCondition(field="tenure_months", operator=operator, value=value)
        assert evaluate_field_condition(profile, condition) is expected

    def test_unknown_operator(self, profile):
        """Test that unknown operators never match."""
        condition = FieldCondition(field="grade", operator="contains", value="mid")
        assert evaluate_field_condition(profile, condition) is False

    def test_numeric_operator_on_text_field(self, profile):
        """Test that numeric operators never match text fields."""
        condition = FieldCondition(field="grade", operator=ConditionOperator.GTE, value=1)
        assert evaluate_field_condition(profile, condition) is False
