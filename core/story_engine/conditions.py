# core/story_engine/conditions.py
"""
Requirement parsing and evaluation for choice gating.

Stored form (JSON on each choice):
    {"type": "affection", "comparison": "gte", "value": 50, "errorMessage": "..."}
    {"type": "level", "comparison": "lte", "value": 3}
    {"type": "premium", "value": true}

Evaluation is pure: it reads a UserStats snapshot and never mutates anything.
"""

import logging
from typing import Any, Iterable, Optional

from .errors import ContentValidationError
from .models import (
    Comparison, PremiumRequirement, Requirement, RequirementType,
    StatRequirement, UnrecognizedRequirement, UserStats,
)

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Requirements not met for this choice"


def _parse_value(v: Any) -> Any:
    """Parse string value to appropriate type."""
    if not isinstance(v, str):
        return v

    if v.lower() == "true":
        return True
    elif v.lower() == "false":
        return False

    try:
        return int(v)
    except ValueError:
        return v


def parse_requirement(data: dict, strict: bool = False) -> Requirement:
    """
    Build a typed requirement from its stored dict.

    Args:
        data: Requirement dict as stored on the choice
        strict: Raise ContentValidationError for unknown types/comparisons
            instead of keeping them as always-passing UnrecognizedRequirement

    Returns:
        StatRequirement, PremiumRequirement or UnrecognizedRequirement
    """
    if not isinstance(data, dict):
        raise ContentValidationError(f"Requirement must be an object, got {type(data).__name__}")

    raw_type = str(data.get("type", "")).lower()
    raw_cmp = str(data.get("comparison", "eq")).lower()
    message = data.get("errorMessage") or ""
    value = _parse_value(data.get("value"))

    try:
        req_type = RequirementType(raw_type)
        comparison = Comparison(raw_cmp)
    except ValueError:
        if strict:
            raise ContentValidationError(
                f"Unsupported requirement type/comparison: {raw_type!r}/{raw_cmp!r}"
            )
        logger.warning(f"[COND] Unrecognized requirement kept as pass-through: {data}")
        return UnrecognizedRequirement(raw=dict(data), error_message=message)

    if req_type == RequirementType.PREMIUM:
        if not isinstance(value, bool):
            raise ContentValidationError(f"Premium requirement needs a boolean value, got {value!r}")
        if comparison != Comparison.EQ and strict:
            raise ContentValidationError("Premium requirement only supports 'eq'")
        return PremiumRequirement(value=value, error_message=message)

    if isinstance(value, bool) or not isinstance(value, int):
        raise ContentValidationError(f"{req_type.value} requirement needs an integer value, got {value!r}")
    return StatRequirement(stat=req_type, comparison=comparison, value=value, error_message=message)


def _compare(actual: int, comparison: Comparison, expected: int) -> bool:
    """Compare actual value against expected using comparison."""
    if comparison == Comparison.GTE:
        return actual >= expected
    elif comparison == Comparison.LTE:
        return actual <= expected
    elif comparison == Comparison.EQ:
        return actual == expected
    return True


def evaluate(requirement: Requirement, stats: UserStats) -> bool:
    """Check a single requirement against user stats."""
    if isinstance(requirement, PremiumRequirement):
        return stats.is_premium == requirement.value

    if isinstance(requirement, StatRequirement):
        if requirement.stat == RequirementType.AFFECTION:
            actual = stats.affection or 0
        else:
            actual = stats.level or 1
        return _compare(actual, requirement.comparison, requirement.value)

    # Unknown stored requirement: permissive, but visible in logs
    logger.warning(f"[COND] Passing unrecognized requirement: {requirement.to_dict()}")
    return True


def check_requirements(requirements: Iterable[Requirement], stats: UserStats) -> tuple[bool, Optional[str]]:
    """
    Check all requirements (AND logic), stopping at the first failure.

    Returns:
        (True, None) if all pass, else (False, failing requirement's message)
    """
    for requirement in requirements:
        if not evaluate(requirement, stats):
            logger.debug(f"[COND] Requirement failed: {requirement.to_dict()} for user {stats.id}")
            return False, requirement.error_message or DEFAULT_FAILURE_MESSAGE
    return True, None
