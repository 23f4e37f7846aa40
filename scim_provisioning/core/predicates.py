"""Backend-agnostic query predicates produced by the filter compiler.

A predicate can be evaluated against a document dict (``matches``) or
rendered as a document-store query (``to_query``). Field paths use dots
for nested documents (``assignment.unitId``).
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Mapping, Optional

_MISSING = object()

EQUALITY_OPERATORS = {"eq", "ne"}
STRING_OPERATORS = {"co", "sw", "ew"}
ORDERING_OPERATORS = {"gt", "ge", "lt", "le"}
COMPARISON_OPERATORS = EQUALITY_OPERATORS | STRING_OPERATORS | ORDERING_OPERATORS

_QUERY_OPERATORS = {"ne": "$ne", "gt": "$gt", "ge": "$gte", "lt": "$lt", "le": "$lte"}


def resolve_field(record: Mapping[str, Any], path: str) -> Any:
    """Return the value at a dotted path, or ``_MISSING``."""
    current: Any = record
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return value.lower()
    return value


class Predicate:
    """Base class for compiled filter predicates."""

    def matches(self, record: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def to_query(self) -> dict:
        raise NotImplementedError


@dataclass(frozen=True)
class Comparison(Predicate):
    field: str
    operator: str
    value: Any

    def matches(self, record: Mapping[str, Any]) -> bool:
        actual = resolve_field(record, self.field)
        if self.operator == "eq":
            if actual is _MISSING:
                return self.value is None
            if isinstance(actual, str) and isinstance(self.value, str):
                return actual.lower() == self.value.lower()
            return actual == self.value
        if self.operator == "ne":
            return not Comparison(self.field, "eq", self.value).matches(record)
        if actual is _MISSING or actual is None:
            return False
        if self.operator in STRING_OPERATORS:
            if not isinstance(actual, str) or self.value is None:
                return False
            haystack, needle = actual.lower(), str(self.value).lower()
            if self.operator == "co":
                return needle in haystack
            if self.operator == "sw":
                return haystack.startswith(needle)
            return haystack.endswith(needle)
        try:
            left, right = _normalize(actual), _normalize(self.value)
            if self.operator == "gt":
                return left > right
            if self.operator == "ge":
                return left >= right
            if self.operator == "lt":
                return left < right
            return left <= right
        except TypeError:
            return False

    def to_query(self) -> dict:
        if self.operator == "eq":
            return {self.field: self.value}
        if self.operator in STRING_OPERATORS:
            escaped = re.escape(str(self.value))
            pattern = {"co": escaped, "sw": f"^{escaped}", "ew": f"{escaped}$"}[self.operator]
            return {self.field: {"$regex": pattern, "$options": "i"}}
        return {self.field: {_QUERY_OPERATORS[self.operator]: self.value}}


@dataclass(frozen=True)
class Exists(Predicate):
    field: str

    def matches(self, record: Mapping[str, Any]) -> bool:
        value = resolve_field(record, self.field)
        if value is _MISSING or value is None:
            return False
        # Empty multi-valued attributes and empty strings count as absent
        if isinstance(value, (str, list, dict)) and not value:
            return False
        return True

    def to_query(self) -> dict:
        return {self.field: {"$exists": True, "$ne": None}}


@dataclass(frozen=True)
class And(Predicate):
    left: Predicate
    right: Predicate

    def matches(self, record: Mapping[str, Any]) -> bool:
        return self.left.matches(record) and self.right.matches(record)

    def to_query(self) -> dict:
        return {"$and": [self.left.to_query(), self.right.to_query()]}


@dataclass(frozen=True)
class Or(Predicate):
    left: Predicate
    right: Predicate

    def matches(self, record: Mapping[str, Any]) -> bool:
        return self.left.matches(record) or self.right.matches(record)

    def to_query(self) -> dict:
        return {"$or": [self.left.to_query(), self.right.to_query()]}


@dataclass(frozen=True)
class Not(Predicate):
    operand: Predicate

    def matches(self, record: Mapping[str, Any]) -> bool:
        return not self.operand.matches(record)

    def to_query(self) -> dict:
        return {"$nor": [self.operand.to_query()]}


@dataclass(frozen=True)
class MatchAll(Predicate):
    """Predicate used when no filter was supplied."""

    def matches(self, record: Mapping[str, Any]) -> bool:
        return True

    def to_query(self) -> dict:
        return {}


# ─────────────────────────────────────────────────────────────────────────────
# Value codecs
# ─────────────────────────────────────────────────────────────────────────────

class ValueCodec:
    """Rewrites comparisons on one storage field after compilation."""

    def rewrite(self, comparison: Comparison) -> Predicate:
        raise NotImplementedError


@dataclass(frozen=True)
class TriStateBooleanCodec(ValueCodec):
    """Maps protocol booleans onto a status string field.

    ``true`` means ``field == true_value``; ``false`` means any other value.
    """
    true_value: str = "active"

    def rewrite(self, comparison: Comparison) -> Predicate:
        if comparison.operator not in EQUALITY_OPERATORS or not isinstance(comparison.value, bool):
            return comparison
        wants_true = comparison.value if comparison.operator == "eq" else not comparison.value
        return Comparison(comparison.field, "eq" if wants_true else "ne", self.true_value)


def apply_value_codecs(predicate: Predicate, codecs: Optional[Mapping[str, ValueCodec]]) -> Predicate:
    """Return a copy of ``predicate`` with codecs applied to matching fields."""
    if not codecs:
        return predicate
    if isinstance(predicate, Comparison):
        codec = codecs.get(predicate.field)
        return codec.rewrite(predicate) if codec else predicate
    if isinstance(predicate, And):
        return And(apply_value_codecs(predicate.left, codecs), apply_value_codecs(predicate.right, codecs))
    if isinstance(predicate, Or):
        return Or(apply_value_codecs(predicate.left, codecs), apply_value_codecs(predicate.right, codecs))
    if isinstance(predicate, Not):
        return Not(apply_value_codecs(predicate.operand, codecs))
    return predicate
