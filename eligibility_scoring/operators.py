"""Comparison operator catalog and its evaluation."""

import functools
import re
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable

from .exceptions import ConfigurationError


class Operator(str, Enum):
    """The fixed set of comparison operators a rule may use."""

    EQUAL = "=="
    NOT_EQUAL = "!="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"
    REGEX = "regex"

    @classmethod
    def parse(cls, value: "str | Operator") -> "Operator":
        """Resolve an operator name, rejecting anything outside the catalog."""
        if isinstance(value, Operator):
            return value
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(op.value for op in cls)
            raise ConfigurationError(f"Invalid operator: {value!r}. Must be one of: {valid}") from None

    @property
    def label(self) -> str:
        return _LABELS[self][0]

    @property
    def description(self) -> str:
        return _LABELS[self][1]

    @property
    def requires_multiple_values(self) -> bool:
        return self in (Operator.IN, Operator.NOT_IN, Operator.BETWEEN, Operator.NOT_BETWEEN)

    @property
    def is_numeric_comparison(self) -> bool:
        return self in NUMERIC_OPERATORS

    @property
    def is_string_operation(self) -> bool:
        return self in (Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH, Operator.REGEX)


_LABELS: dict[Operator, tuple[str, str]] = {
    Operator.EQUAL: ("Equal To", "Value must be exactly equal"),
    Operator.NOT_EQUAL: ("Not Equal To", "Value must not be equal"),
    Operator.GREATER_THAN: ("Greater Than", "Value must be greater than"),
    Operator.GREATER_THAN_OR_EQUAL: ("Greater Than or Equal", "Value must be greater than or equal to"),
    Operator.LESS_THAN: ("Less Than", "Value must be less than"),
    Operator.LESS_THAN_OR_EQUAL: ("Less Than or Equal", "Value must be less than or equal to"),
    Operator.IN: ("In Array", "Value must be in the given array"),
    Operator.NOT_IN: ("Not In Array", "Value must not be in the given array"),
    Operator.BETWEEN: ("Between", "Value must be between two values (inclusive)"),
    Operator.NOT_BETWEEN: ("Not Between", "Value must not be between two values"),
    Operator.CONTAINS: ("Contains", "String must contain the substring, or array must contain the item"),
    Operator.STARTS_WITH: ("Starts With", "String must start with the given substring"),
    Operator.ENDS_WITH: ("Ends With", "String must end with the given substring"),
    Operator.EXISTS: ("Exists", "Value must not be null or empty"),
    Operator.NOT_EXISTS: ("Does Not Exist", "Value must be null or empty"),
    Operator.REGEX: ("Regular Expression", "Value must match the given regex pattern"),
}

NUMERIC_OPERATORS = frozenset({
    Operator.GREATER_THAN, Operator.GREATER_THAN_OR_EQUAL,
    Operator.LESS_THAN, Operator.LESS_THAN_OR_EQUAL,
})


class FieldType(str, Enum):
    """Data types a rule field can hold, used to offer suitable operators."""

    NUMERIC = "numeric"
    INTEGER = "integer"
    STRING = "string"
    BOOLEAN = "boolean"
    DATE = "date"
    ARRAY = "array"


_ORDERING = [
    Operator.EQUAL, Operator.NOT_EQUAL,
    Operator.GREATER_THAN, Operator.GREATER_THAN_OR_EQUAL,
    Operator.LESS_THAN, Operator.LESS_THAN_OR_EQUAL,
    Operator.BETWEEN, Operator.NOT_BETWEEN,
]

FIELD_TYPE_OPERATORS: dict[FieldType, list[Operator]] = {
    FieldType.NUMERIC: [*_ORDERING, Operator.IN, Operator.NOT_IN],
    FieldType.INTEGER: [*_ORDERING, Operator.IN, Operator.NOT_IN],
    FieldType.STRING: [
        Operator.EQUAL, Operator.NOT_EQUAL, Operator.IN, Operator.NOT_IN,
        Operator.CONTAINS, Operator.STARTS_WITH, Operator.ENDS_WITH, Operator.REGEX,
    ],
    FieldType.BOOLEAN: [Operator.EQUAL, Operator.NOT_EQUAL],
    FieldType.DATE: list(_ORDERING),
    FieldType.ARRAY: [Operator.IN, Operator.NOT_IN, Operator.CONTAINS],
}


def operators_for(field_type: FieldType | str) -> list[Operator]:
    """Return the operators that make sense for a field type."""
    return list(FIELD_TYPE_OPERATORS[FieldType(field_type)])


# -- Construction-time validation --

def validate_expected(operator: Operator, value: Any) -> None:
    """Check that ``value`` has the shape ``operator`` needs.

    Raises ConfigurationError describing the problem.
    """
    if operator in (Operator.IN, Operator.NOT_IN):
        if not isinstance(value, (list, tuple)):
            raise ConfigurationError(f"Operator {operator.value!r} requires an array value")
        if not value:
            raise ConfigurationError(f"Operator {operator.value!r} requires a non-empty array")
    elif operator in (Operator.BETWEEN, Operator.NOT_BETWEEN):
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise ConfigurationError(f"Operator {operator.value!r} requires an array with exactly 2 values")
        low, high = (_as_number(v) for v in value)
        if low is None or high is None:
            raise ConfigurationError(f"Operator {operator.value!r} requires numeric range values")
        if low > high:
            raise ConfigurationError(f"Operator {operator.value!r} range minimum must not exceed maximum")
    elif operator == Operator.REGEX:
        if not isinstance(value, str):
            raise ConfigurationError("Operator 'regex' requires a string pattern")
    elif operator in (Operator.EXISTS, Operator.NOT_EXISTS):
        return
    elif isinstance(value, (list, tuple, dict, set)):
        raise ConfigurationError(f"Operator {operator.value!r} requires a scalar value")


# -- Evaluation --

def evaluate_operator(operator: Operator, actual: Any, expected: Any) -> bool:
    """Apply ``operator`` to a field value and the rule's expected value.

    Type mismatches evaluate to False rather than raising. The only operator
    that can raise is ``regex`` when given an invalid pattern.
    """
    return _DISPATCH[operator](actual, expected)


def _as_number(value: Any) -> float | Decimal | int | None:
    """Return ``value`` as a number, or None if it is not numeric.

    Booleans are not numbers here. Numeric strings such as "42" or "3.5" are.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return value
    if isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
        if not number.is_finite():
            return None
        return number
    return None


def _compare_numbers(actual: Any, expected: Any, compare: Callable[[Any, Any], bool]) -> bool:
    a = _as_number(actual)
    b = _as_number(expected)
    if a is None or b is None:
        return False
    if isinstance(a, Decimal) or isinstance(b, Decimal):
        a, b = Decimal(str(a)), Decimal(str(b))
    return compare(a, b)


def _is_equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    a = _as_number(actual)
    b = _as_number(expected)
    if a is not None and b is not None:
        return Decimal(str(a)) == Decimal(str(b))
    return actual == expected


def _is_between(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)) or len(expected) != 2:
        return False
    low, high = expected
    return (
        _compare_numbers(actual, low, lambda a, b: a >= b)
        and _compare_numbers(actual, high, lambda a, b: a <= b)
    )


def _is_not_between(actual: Any, expected: Any) -> bool:
    if not isinstance(expected, (list, tuple)) or len(expected) != 2:
        return False
    if _as_number(actual) is None or any(_as_number(v) is None for v in expected):
        return False
    return not _is_between(actual, expected)


def _is_in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple, set, frozenset)) and any(_is_equal(actual, e) for e in expected)


def _is_not_in(actual: Any, expected: Any) -> bool:
    return isinstance(expected, (list, tuple, set, frozenset)) and not any(_is_equal(actual, e) for e in expected)


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return isinstance(expected, str) and expected in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        return expected in actual
    return False


def _starts_with(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and isinstance(expected, str) and actual.startswith(expected)


def _ends_with(actual: Any, expected: Any) -> bool:
    return isinstance(actual, str) and isinstance(expected, str) and actual.endswith(expected)


def _exists(actual: Any, _expected: Any = None) -> bool:
    return actual is not None and actual != ""


def _not_exists(actual: Any, _expected: Any = None) -> bool:
    return not _exists(actual)


_DELIMITED = re.compile(r"^/(?P<body>.*)/(?P<flags>[imsxu]*)$", re.DOTALL)
_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE, "u": 0}


@functools.lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a bare or ``/delimited/flags`` pattern.

    Raises re.error on an invalid pattern.
    """
    match = _DELIMITED.match(pattern)
    if match is None:
        return re.compile(pattern)
    flags = 0
    for flag in match.group("flags"):
        flags |= _FLAG_MAP[flag]
    return re.compile(match.group("body"), flags)


def _matches_regex(actual: Any, expected: Any) -> bool:
    if not isinstance(actual, str) or not isinstance(expected, str):
        return False
    return compile_pattern(expected).search(actual) is not None


_DISPATCH: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQUAL: _is_equal,
    Operator.NOT_EQUAL: lambda a, e: not _is_equal(a, e),
    Operator.GREATER_THAN: lambda a, e: _compare_numbers(a, e, lambda x, y: x > y),
    Operator.GREATER_THAN_OR_EQUAL: lambda a, e: _compare_numbers(a, e, lambda x, y: x >= y),
    Operator.LESS_THAN: lambda a, e: _compare_numbers(a, e, lambda x, y: x < y),
    Operator.LESS_THAN_OR_EQUAL: lambda a, e: _compare_numbers(a, e, lambda x, y: x <= y),
    Operator.IN: _is_in,
    Operator.NOT_IN: _is_not_in,
    Operator.BETWEEN: _is_between,
    Operator.NOT_BETWEEN: _is_not_between,
    Operator.CONTAINS: _contains,
    Operator.STARTS_WITH: _starts_with,
    Operator.ENDS_WITH: _ends_with,
    Operator.EXISTS: _exists,
    Operator.NOT_EXISTS: _not_exists,
    Operator.REGEX: _matches_regex,
}
