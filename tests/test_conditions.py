"""
Condition Tests - Requirement parsing and evaluation for choice gating.

Tests:
- Parsing stored requirement dicts into typed variants
- Strict vs lenient handling of unknown types/comparisons
- Comparison evaluation against a user stats snapshot
- First-failure message selection

Run with: pytest tests/test_conditions.py -v
"""
import pytest


def _stats(**kwargs):
    from core.story_engine.models import UserStats
    return UserStats(id="u1", **kwargs)


# =============================================================================
# Parsing
# =============================================================================

class TestParseRequirement:
    """Test parse_requirement()."""

    def test_parses_affection_requirement(self):
        """Affection requirement becomes a StatRequirement."""
        from core.story_engine.conditions import parse_requirement
        from core.story_engine.models import StatRequirement, RequirementType, Comparison

        req = parse_requirement({"type": "affection", "comparison": "gte", "value": 50, "errorMessage": "Not yet"})

        assert isinstance(req, StatRequirement)
        assert req.stat == RequirementType.AFFECTION
        assert req.comparison == Comparison.GTE
        assert req.value == 50
        assert req.error_message == "Not yet"

    def test_string_values_are_coerced(self):
        """Numeric and boolean strings are parsed."""
        from core.story_engine.conditions import parse_requirement

        assert parse_requirement({"type": "level", "comparison": "lte", "value": "3"}).value == 3
        assert parse_requirement({"type": "premium", "value": "true"}).value is True

    def test_premium_defaults_to_eq(self):
        """Premium requirement without comparison parses."""
        from core.story_engine.conditions import parse_requirement
        from core.story_engine.models import PremiumRequirement

        req = parse_requirement({"type": "premium", "value": True})
        assert isinstance(req, PremiumRequirement)

    def test_unknown_comparison_lenient(self):
        """Lenient parsing keeps unknown comparisons as pass-through."""
        from core.story_engine.conditions import parse_requirement
        from core.story_engine.models import UnrecognizedRequirement

        req = parse_requirement({"type": "affection", "comparison": "gt", "value": 5})
        assert isinstance(req, UnrecognizedRequirement)
        assert req.to_dict()["comparison"] == "gt"

    def test_unknown_comparison_strict(self):
        """Strict parsing rejects unknown comparisons."""
        from core.story_engine.conditions import parse_requirement
        from core.story_engine.errors import ContentValidationError

        with pytest.raises(ContentValidationError):
            parse_requirement({"type": "affection", "comparison": "gt", "value": 5}, strict=True)

    def test_unknown_type_strict(self):
        """Strict parsing rejects unknown requirement types."""
        from core.story_engine.conditions import parse_requirement
        from core.story_engine.errors import ContentValidationError

        with pytest.raises(ContentValidationError):
            parse_requirement({"type": "charisma", "comparison": "gte", "value": 5}, strict=True)

    def test_non_integer_stat_value_rejected(self):
        """Stat requirements need an integer threshold."""
        from core.story_engine.conditions import parse_requirement
        from core.story_engine.errors import ContentValidationError

        with pytest.raises(ContentValidationError):
            parse_requirement({"type": "level", "comparison": "gte", "value": "high"})
        with pytest.raises(ContentValidationError):
            parse_requirement({"type": "level", "comparison": "gte", "value": True})

    def test_non_dict_rejected(self):
        from core.story_engine.conditions import parse_requirement
        from core.story_engine.errors import ContentValidationError

        with pytest.raises(ContentValidationError):
            parse_requirement(["affection", 5])


# =============================================================================
# Evaluation
# =============================================================================

class TestEvaluate:
    """Test evaluate() comparisons."""

    @pytest.mark.parametrize("comparison,value,affection,expected", [
        ("gte", 50, 50, True),
        ("gte", 50, 49, False),
        ("lte", 10, 10, True),
        ("lte", 10, 11, False),
        ("eq", 7, 7, True),
        ("eq", 7, 8, False),
    ])
    def test_affection_comparisons(self, comparison, value, affection, expected):
        from core.story_engine.conditions import parse_requirement, evaluate

        req = parse_requirement({"type": "affection", "comparison": comparison, "value": value})
        assert evaluate(req, _stats(affection=affection)) is expected

    def test_level_requirement(self):
        from core.story_engine.conditions import parse_requirement, evaluate

        req = parse_requirement({"type": "level", "comparison": "gte", "value": 3})
        assert evaluate(req, _stats(level=3)) is True
        assert evaluate(req, _stats(level=2)) is False

    def test_premium_requirement(self):
        from core.story_engine.conditions import parse_requirement, evaluate

        req = parse_requirement({"type": "premium", "value": True})
        assert evaluate(req, _stats(is_premium=True)) is True
        assert evaluate(req, _stats(is_premium=False)) is False

    def test_unrecognized_passes(self):
        """Stored unknown requirements pass at runtime."""
        from core.story_engine.conditions import parse_requirement, evaluate

        req = parse_requirement({"type": "mood", "value": "happy"})
        assert evaluate(req, _stats()) is True


class TestCheckRequirements:
    """Test check_requirements() AND logic."""

    def test_empty_passes(self):
        from core.story_engine.conditions import check_requirements

        assert check_requirements([], _stats()) == (True, None)

    def test_first_failure_message(self):
        """The first failing requirement's message is returned."""
        from core.story_engine.conditions import parse_requirement, check_requirements

        reqs = [
            parse_requirement({"type": "affection", "comparison": "gte", "value": 5, "errorMessage": "first"}),
            parse_requirement({"type": "level", "comparison": "gte", "value": 9, "errorMessage": "second"}),
        ]
        ok, message = check_requirements(reqs, _stats(affection=10, level=1))
        assert ok is False
        assert message == "second"

    def test_default_message(self):
        from core.story_engine.conditions import parse_requirement, check_requirements, DEFAULT_FAILURE_MESSAGE

        reqs = [parse_requirement({"type": "level", "comparison": "gte", "value": 9})]
        assert check_requirements(reqs, _stats()) == (False, DEFAULT_FAILURE_MESSAGE)
