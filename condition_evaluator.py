# condition_evaluator.py

import operator
from typing import Any, List, NamedTuple, Optional, Tuple

from sequence_logging import logger
from sequence_models import (
    Comparator,
    Condition,
    ExecutionContext,
    InputCondition,
    NodeCondition,
    NUMERIC_COMPARATORS,
    VariableCondition,
)
from substitution import substitute_string
from value_extractor import _MISSING, extract, format_number, is_missing, parse_float, to_loose_string

__all__ = ["ConditionResult", "ConditionsOutcome", "evaluate_condition", "evaluate_conditions", "NUMERIC_OPERATORS"]

# comparator -> (operator function, symbol used in messages)
NUMERIC_OPERATORS = {
    Comparator.GREATER_THAN: (operator.gt, '>'),
    Comparator.LESS_THAN: (operator.lt, '<'),
    Comparator.GREATER_THAN_OR_EQUAL: (operator.ge, '>='),
    Comparator.LESS_THAN_OR_EQUAL: (operator.le, '<='),
}


class ConditionResult(NamedTuple):
    passed: bool
    reason: str = ""


class ConditionsOutcome(NamedTuple):
    should_execute: bool
    skip_reason: str = ""


def _resolve_operand(expected: Any, context: ExecutionContext) -> Any:
    # Operands may reference vars, input and dynamic values; response references stay literal.
    if isinstance(expected, str):
        return substitute_string(expected, context, resolve_responses=False)
    return expected


def _resolve_source(condition: Condition, context: ExecutionContext) -> Tuple[Optional[ConditionResult], Any, str]:
    """Returns (early result, actual value, description of the source)."""
    if isinstance(condition, NodeCondition):
        record = context.find_response(condition.node)
        if record is None:
            return ConditionResult(False, f"node '{condition.node}' not found or not executed yet"), _MISSING, ""

        if condition.comparator is Comparator.STATUS_CODE:
            if record.status == condition.expected:
                return ConditionResult(True), record.status, ""
            return ConditionResult(
                False,
                f"node '{condition.node}' HTTP status: expected {condition.expected}, got {record.status}",
            ), record.status, ""

        return None, extract(record.body, condition.field, missing=_MISSING), f"node '{condition.node}' field {condition.field}"

    if isinstance(condition, VariableCondition):
        return None, context.variables.get(condition.variable, _MISSING), f"variable '{condition.variable}'"

    if isinstance(condition, InputCondition):
        return None, context.user_input.get(condition.input, _MISSING), f"user input '{condition.input}'"

    raise TypeError(f"Unsupported condition type: {type(condition).__name__}")


def evaluate_condition(condition: Condition, context: ExecutionContext) -> ConditionResult:
    """
    Evaluates one condition. Never raises for data problems: a missing source or a
    non-numeric value simply fails the condition with a readable reason.
    """
    early, actual, source = _resolve_source(condition, context)
    if early is not None:
        return early

    comparator = condition.comparator
    shown_actual = to_loose_string(actual)

    if comparator in (Comparator.EQUALS, Comparator.NOT_EQUALS):
        expected = _resolve_operand(condition.expected, context)
        same = shown_actual == to_loose_string(expected)
        if comparator is Comparator.EQUALS:
            if same:
                return ConditionResult(True)
            return ConditionResult(False, f"{source}: expected '{to_loose_string(expected)}', got '{shown_actual}'")
        if not same:
            return ConditionResult(True)
        return ConditionResult(False, f"{source}: should not equal '{to_loose_string(expected)}', but it does")

    if comparator is Comparator.EXISTS:
        should_exist = bool(condition.expected)
        exists = not is_missing(actual)
        if should_exist == exists:
            return ConditionResult(True)
        if should_exist:
            return ConditionResult(False, f"{source}: expected to exist, but it doesn't")
        return ConditionResult(False, f"{source}: expected to not exist, but got '{shown_actual}'")

    if comparator in NUMERIC_COMPARATORS:
        compare, symbol = NUMERIC_OPERATORS[comparator]
        number = parse_float(actual)
        if number is None:
            return ConditionResult(False, f"{source}: expected numeric value for comparison, got '{shown_actual}'")
        threshold = parse_float(_resolve_operand(condition.expected, context))
        if threshold is not None and compare(number, threshold):
            return ConditionResult(True)
        shown_threshold = format_number(threshold) if threshold is not None else "NaN"
        return ConditionResult(False, f"{source}: expected {symbol} {shown_threshold}, got {format_number(number)}")

    return ConditionResult(False, f"{source}: no valid condition type specified")


def evaluate_conditions(conditions: Optional[List[Condition]], context: ExecutionContext) -> ConditionsOutcome:
    """AND semantics: the first failing condition decides the skip reason. No conditions means execute."""
    if not conditions:
        return ConditionsOutcome(True)

    for index, condition in enumerate(conditions):
        result = evaluate_condition(condition, context)
        if context.debug:
            logger.debug(f"Condition {index + 1}/{len(conditions)} ({condition.source}): passed={result.passed} {result.reason}")
        if not result.passed:
            return ConditionsOutcome(False, result.reason)

    return ConditionsOutcome(True)
