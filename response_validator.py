# response_validator.py

import json
from typing import Any, Dict, List, Optional

from condition_evaluator import NUMERIC_OPERATORS
from sequence_errors import ResponseValidationError
from sequence_logging import logger
from sequence_models import (
    Comparator,
    HttpResponse,
    JsonpathValidation,
    StatusValidation,
    ValidationRule,
)
from value_extractor import extract, format_number, is_missing, parse_float, to_loose_string

__all__ = ["DEFAULT_RULES", "validate_response"]

DEFAULT_RULES: List[ValidationRule] = [StatusValidation(httpStatusCode=200)]


def _check_status(rule: StatusValidation, response: HttpResponse, errors: List[str]) -> Dict[str, Any]:
    passed = response.status == rule.httpStatusCode
    if not passed:
        errors.append(f"HTTP status validation failed: expected {rule.httpStatusCode}, got {response.status}")
    return {
        'type': 'httpStatusCode',
        'expected': rule.httpStatusCode,
        'actual': response.status,
        'passed': passed,
    }


def _check_jsonpath(rule: JsonpathValidation, response: HttpResponse, errors: List[str]) -> Dict[str, Any]:
    path = rule.jsonpath
    value = extract(response.body, path)
    result = {'type': 'jsonpath', 'path': path, 'value': None if is_missing(value) else value, 'checks': [], 'passed': True}

    def fail(message: str):
        errors.append(f"Validation failed: field {path} {message}")
        result['passed'] = False

    explicit = bool(rule.explicit_checks())
    for comparator, expected in rule.checks():
        result['checks'].append(comparator.value)

        if comparator is Comparator.EXISTS:
            exists = not is_missing(value)
            if expected and not exists:
                fail("should exist but doesn't" if explicit else "does not exist")
            elif not expected and exists:
                fail(f"should not exist but does (value: {json.dumps(value)})")

        elif comparator is Comparator.EQUALS:
            if to_loose_string(value) != to_loose_string(expected):
                fail(f'should equal "{to_loose_string(expected)}", got "{to_loose_string(value)}"')

        elif comparator is Comparator.NOT_EQUALS:
            if to_loose_string(value) == to_loose_string(expected):
                fail(f'should not equal "{to_loose_string(expected)}"')

        else:
            compare, symbol = NUMERIC_OPERATORS[comparator]
            number = parse_float(value)
            threshold = parse_float(expected)
            if number is None:
                fail(f"is not numeric (value: {to_loose_string(value)})")
            elif threshold is None:
                fail(f"cannot be compared against non-numeric threshold '{to_loose_string(expected)}'")
            elif not compare(number, threshold):
                fail(f"should be {symbol} {format_number(threshold)}, got {format_number(number)}")

    return result


def validate_response(response: HttpResponse, rules: Optional[List[ValidationRule]] = None, debug: bool = False) -> List[Dict[str, Any]]:
    """
    Checks a response against validation rules, in order.

    An empty or missing rule list means a single implicit `httpStatusCode: 200` rule.
    Every comparator of a rule is evaluated, but validation stops at the first rule that
    fails: ResponseValidationError is raised with that rule's messages joined by '; '
    and `results` holding every rule result computed so far (the failing one included).
    """
    rules = rules or DEFAULT_RULES
    results: List[Dict[str, Any]] = []

    for rule in rules:
        errors: List[str] = []
        if isinstance(rule, StatusValidation):
            result = _check_status(rule, response, errors)
        elif isinstance(rule, JsonpathValidation):
            result = _check_jsonpath(rule, response, errors)
        else:
            raise TypeError(f"Unsupported validation rule: {type(rule).__name__}")

        results.append(result)
        if debug:
            logger.debug(f"Validation {result['type']} {result.get('path', '')} passed={result['passed']}")
        if errors:
            raise ResponseValidationError("; ".join(errors), results=results)

    return results
