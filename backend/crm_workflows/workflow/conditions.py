# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Condition Evaluator

Total, pure predicate evaluation over an enrollment's fact snapshot.
Malformed input never raises; it evaluates to False so a workflow cannot
jam on bad data.
"""

import math
from collections.abc import Mapping
from typing import Any, Dict, Optional

from .models import ConditionOperator, ConditionPayload
from .templates import resolve_path


def _to_number(value: Any) -> Optional[float]:
    """Numeric view of a value, or None when it does not parse as a number"""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _to_text(value: Any) -> Optional[str]:
    """String view of a scalar; collections have none"""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    return None


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (Mapping, list, tuple, set, frozenset)):
        return len(value) == 0
    return False


def _equals(actual: Any, expected: Any) -> Optional[bool]:
    left, right = _to_number(actual), _to_number(expected)
    if left is not None and right is not None:
        return left == right
    left_text, right_text = _to_text(actual), _to_text(expected)
    if left_text is None or right_text is None:
        return None
    return left_text == right_text


def _contains(actual: Any, expected: Any) -> bool:
    if not isinstance(actual, (str, int, float)) or isinstance(actual, bool):
        return False
    needle = _to_text(expected)
    if needle is None:
        return False
    return needle.lower() in str(actual).lower()


def _compare(actual: Any, expected: Any, operator: ConditionOperator) -> bool:
    left, right = _to_number(actual), _to_number(expected)
    if left is None or right is None:
        return False
    if operator == ConditionOperator.GREATER_THAN:
        return left > right
    return left < right


def evaluate(field: str, operator: Any, value: Any, fact: Dict[str, Any]) -> bool:
    """
    Evaluate `field operator value` against a fact snapshot.

    Examples:
        >>> evaluate("patient.email", "is_not_empty", "", {"patient": {"email": "a@b.com"}})
        True
        >>> evaluate("deal.value", "greater_than", "100", {"deal": {"value": "banana"}})
        False
    """
    try:
        op = ConditionOperator(operator)
    except (TypeError, ValueError):
        return False

    try:
        actual = resolve_path(fact, field)

        if op == ConditionOperator.IS_EMPTY:
            return _is_empty(actual)
        if op == ConditionOperator.IS_NOT_EMPTY:
            return not _is_empty(actual)
        if op == ConditionOperator.CONTAINS:
            return _contains(actual, value)
        if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            return _compare(actual, value, op)

        equal = _equals(actual, value)
        if equal is None:
            return False
        return equal if op == ConditionOperator.EQUALS else not equal
    except Exception:
        return False


def evaluate_condition(payload: ConditionPayload, fact: Dict[str, Any]) -> bool:
    """Evaluate a condition node's payload"""
    return evaluate(payload.field, payload.operator, payload.value, fact)
