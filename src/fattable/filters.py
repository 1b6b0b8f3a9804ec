"""Filter expression types for table queries.

Filters are conjunctive only: comparisons over the partition key, the sort key,
or one named property, combined with ``&``.
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from fattable.values import TypedValue

PARTITION_KEY_FIELD = "PartitionKey"
SORT_KEY_FIELD = "SortKey"
PROPERTY_PREFIX = "$."

_PROPERTY_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

COMPARISON_OPS = ("==", ">=", "<=")

OR_ERROR = "Table filters are conjunctive only; '|' is not supported."
NOT_ERROR = "Table filters are conjunctive only; '~' is not supported."


def _validate_property_name(name: str) -> None:
    if not _PROPERTY_NAME_RE.match(name):
        raise ValueError(f"Invalid property name '{name}': must match [A-Za-z_][A-Za-z0-9_]*")


class FilterExpression:
    """Base class for filter expressions."""

    def __and__(self, other: FilterExpression) -> AndExpression:
        return AndExpression(children=[*flatten(self), *flatten(other)])

    def __or__(self, other: FilterExpression) -> FilterExpression:
        raise TypeError(OR_ERROR)

    def __invert__(self) -> FilterExpression:
        raise TypeError(NOT_ERROR)


@dataclass
class ComparisonExpression(FilterExpression):
    """A comparison between a field and a value.

    field_path is ``PartitionKey``, ``SortKey``, or ``$.<property>``.
    Key comparisons hold plain strings, property comparisons a TypedValue.
    """

    field_path: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in COMPARISON_OPS:
            raise ValueError(f"Unsupported comparison '{self.op}'")
        if self.is_key:
            if not isinstance(self.value, str):
                raise TypeError(f"{self.field_path} comparisons take a string value")
        elif self.field_path.startswith(PROPERTY_PREFIX):
            _validate_property_name(self.property_name)
            self.value = TypedValue.of(self.value)
        else:
            raise ValueError(f"Invalid field path: {self.field_path}")

    @property
    def is_key(self) -> bool:
        return self.field_path in (PARTITION_KEY_FIELD, SORT_KEY_FIELD)

    @property
    def property_name(self) -> str:
        return self.field_path[len(PROPERTY_PREFIX) :]

    def __hash__(self) -> int:
        return hash((self.field_path, self.op, self.value))


@dataclass
class AndExpression(FilterExpression):
    """Conjunction of comparisons."""

    children: list[ComparisonExpression] = field(default_factory=list)


def flatten(expr: FilterExpression) -> Iterator[ComparisonExpression]:
    """Yield the comparisons AND-ed together by ``expr``."""
    if isinstance(expr, ComparisonExpression):
        yield expr
    elif isinstance(expr, AndExpression):
        for child in expr.children:
            yield from flatten(child)
    else:
        raise ValueError(f"Unknown filter expression type: {type(expr)}")


class FieldProxy:
    """Proxy that generates FilterExpression from field comparisons."""

    def __init__(self, field_path: str) -> None:
        self._field_path = field_path

    def __eq__(self, other: object) -> ComparisonExpression:  # type: ignore[override]
        if other is None:
            raise TypeError("Table filters cannot compare against None")
        return ComparisonExpression(self._field_path, "==", other)

    def __ge__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, ">=", other)

    def __le__(self, other: Any) -> ComparisonExpression:
        return ComparisonExpression(self._field_path, "<=", other)

    def between(self, lower: Any, upper: Any) -> AndExpression:
        return (self >= lower) & (self <= upper)

    __hash__ = None  # type: ignore[assignment]


def partition_key() -> FieldProxy:
    return FieldProxy(PARTITION_KEY_FIELD)


def sort_key() -> FieldProxy:
    return FieldProxy(SORT_KEY_FIELD)


def prop(name: str) -> FieldProxy:
    """Proxy for a named record property."""
    _validate_property_name(name)
    return FieldProxy(f"{PROPERTY_PREFIX}{name}")


def partition_key_of(expr: FilterExpression) -> str | None:
    """Return the value of the partition key equality in ``expr``, if any."""
    for comparison in flatten(expr):
        if comparison.field_path == PARTITION_KEY_FIELD and comparison.op == "==":
            return comparison.value
    return None
