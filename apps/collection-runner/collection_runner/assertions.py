"""Assertion evaluation against captured responses."""

from __future__ import annotations

import re
from typing import Any, Callable, Mapping

from .errors import TypeMismatch, UnresolvedVariable
from .models import Assertion, AssertionOutcome, HttpResponse
from .selectors import select_body, select_header
from .variables import MISSING, render_template, single_placeholder, stringify


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _to_number(value: Any, side: str) -> float:
    if _is_number(value):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise TypeMismatch(f"{side} value {value!r} is not numeric")


def _equals(actual: Any, expected: Any) -> bool:
    if _is_number(actual) and _is_number(expected):
        return actual == expected
    if type(actual) is type(expected):
        return actual == expected
    return stringify(actual) == stringify(expected)


def _less_than(actual: Any, expected: Any) -> bool:
    return _to_number(actual, "actual") < _to_number(expected, "expected")


def _greater_than(actual: Any, expected: Any) -> bool:
    return _to_number(actual, "actual") > _to_number(expected, "expected")


def _matches(actual: Any, expected: Any) -> bool:
    return re.search(stringify(expected), stringify(actual)) is not None


def _exists(actual: Any, expected: Any) -> bool:
    return actual is not MISSING


COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "lessThan": _less_than,
    "greaterThan": _greater_than,
    "matches": _matches,
    "exists": _exists,
}


def actual_value(assertion: Assertion, response: HttpResponse) -> Any:
    if assertion.target == "status":
        return response.status_code
    if assertion.target == "latency":
        return response.latency_ms
    if assertion.target == "header":
        return select_header(response, assertion.path or "")
    return select_body(response, assertion.path or "")


def resolve_expected(expected: Any, variables: Mapping[str, Any]) -> Any:
    if not isinstance(expected, str):
        return expected
    name = single_placeholder(expected)
    if name is not None and name in variables:
        return variables[name]
    return render_template(expected, variables)


class AssertionEngine:
    """Evaluates every assertion of a step, in order, without short-circuiting."""

    def evaluate(
        self,
        assertions: list[Assertion],
        response: HttpResponse,
        variables: Mapping[str, Any],
    ) -> list[AssertionOutcome]:
        return [self.evaluate_one(assertion, response, variables) for assertion in assertions]

    def evaluate_one(
        self,
        assertion: Assertion,
        response: HttpResponse,
        variables: Mapping[str, Any],
    ) -> AssertionOutcome:
        target = assertion.describe()
        actual = actual_value(assertion, response)
        found = actual is not MISSING
        reported_actual = actual if found else None

        def outcome(expected: Any, passed: bool, message: str) -> AssertionOutcome:
            return AssertionOutcome(
                target=target,
                comparator=assertion.comparator,
                expected=expected,
                actual=reported_actual,
                found=found,
                passed=passed,
                message=message,
            )

        try:
            expected = resolve_expected(assertion.expected, variables)
        except UnresolvedVariable as exc:
            return outcome(assertion.expected, False, f"{target}: {exc}")

        if assertion.comparator == "exists":
            if found:
                return outcome(expected, True, f"{target} exists")
            return outcome(expected, False, f"{target}: expected value to exist but it is missing")

        if not found:
            return outcome(
                expected,
                False,
                f"{target}: expected {assertion.comparator} {expected!r} but value is missing",
            )

        try:
            passed = COMPARATORS[assertion.comparator](actual, expected)
        except TypeMismatch as exc:
            return outcome(expected, False, f"{target}: TypeMismatch: {exc}")
        except re.error as exc:
            return outcome(expected, False, f"{target}: invalid pattern {expected!r}: {exc}")
        except Exception as exc:
            # Comparator failures are recorded on the outcome, never raised
            return outcome(expected, False, f"{target}: {type(exc).__name__}: {exc}")

        if passed:
            return outcome(expected, True, f"{target} {assertion.comparator} {expected!r}")
        return outcome(
            expected,
            False,
            f"{target}: expected {assertion.comparator} {expected!r}, got {actual!r}",
        )
