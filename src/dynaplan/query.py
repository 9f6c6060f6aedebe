# src/dynaplan/query.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from .errors import InvalidOperatorError, ValidationError
from .models import Operator, Predicate
from .utils import validate_attribute_name

# Aliases accepted on input, normalized to Operator
_OPERATOR_ALIASES = {
    "==": Operator.EQ,
    "=": Operator.EQ,
    "eq": Operator.EQ,
    "in": Operator.IN,
    "is_nil": Operator.IS_NIL,
    "is_null": Operator.IS_NIL,
    "isnull": Operator.IS_NIL,
    "between": Operator.BETWEEN,
    "begins_with": Operator.BEGINS_WITH,
    "starts_with": Operator.BEGINS_WITH,
}

PredicateInput = Union[Predicate, Tuple[str, Any, Any], Mapping[str, Any], "PredicateBuilder"]


def parse_operator(op: Union[Operator, str]) -> Operator:
    if isinstance(op, Operator):
        return op
    try:
        return _OPERATOR_ALIASES[str(op).lower()]
    except KeyError:
        raise InvalidOperatorError(f"Unsupported operator: {op!r}")


def _check_value(field_name: str, operator: Operator, value: Any) -> Any:
    if operator == Operator.IN:
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise InvalidOperatorError(f"'in' on '{field_name}' needs a list of values, got {value!r}")
        value = tuple(value)
        if not value:
            raise InvalidOperatorError(f"'in' on '{field_name}' needs at least one value")
    elif operator == Operator.BETWEEN:
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise InvalidOperatorError(f"'between' on '{field_name}' needs a (low, high) pair")
        value = tuple(value)
        if len(value) != 2:
            raise InvalidOperatorError(f"'between' on '{field_name}' needs exactly two bounds, got {len(value)}")
    elif operator == Operator.IS_NIL:
        value = None
    return value


def make_predicate(field_name: str, op: Union[Operator, str], value: Any = None) -> Predicate:
    validate_attribute_name(field_name)
    operator = parse_operator(op)
    return Predicate(field_name, operator, _check_value(field_name, operator, value))


def _from_lookup(lookup: Mapping[str, Any]) -> List[Predicate]:
    """`{"email": x, "age__between": (1, 5), "name__is_nil": True}` style lookups"""
    predicates = []
    for raw_key, value in lookup.items():
        name, sep, suffix = raw_key.rpartition("__")
        if not sep or suffix.lower() not in _OPERATOR_ALIASES:
            predicates.append(make_predicate(raw_key, Operator.EQ, value))
            continue
        operator = parse_operator(suffix)
        if operator == Operator.IS_NIL and value is False:
            raise InvalidOperatorError(f"'{raw_key}=False' is not supported; only nil tests are")
        predicates.append(make_predicate(name, operator, value))
    return predicates


def normalize_predicates(conditions: Union[PredicateInput, Iterable[PredicateInput], None]) -> List[Predicate]:
    """
    Flatten loosely-typed conditions into an ordered Predicate list.

    Accepts Predicate objects, (field, op, value) tuples, lookup dicts, a
    PredicateBuilder, or any list mixing them. Input order is kept.
    """
    if conditions is None:
        return []
    if isinstance(conditions, PredicateBuilder):
        return list(conditions.predicates)
    if isinstance(conditions, Predicate):
        return [conditions]
    if isinstance(conditions, Mapping):
        return _from_lookup(conditions)
    if isinstance(conditions, tuple) and len(conditions) == 3 and isinstance(conditions[0], str):
        return [make_predicate(*conditions)]

    predicates: List[Predicate] = []
    for item in conditions:
        if isinstance(item, Predicate):
            predicates.append(item)
        elif isinstance(item, PredicateBuilder):
            predicates.extend(item.predicates)
        elif isinstance(item, Mapping):
            predicates.extend(_from_lookup(item))
        elif isinstance(item, (tuple, list)) and len(item) == 3:
            predicates.append(make_predicate(*item))
        elif isinstance(item, (tuple, list)) and len(item) == 2:
            # (field, value) pairs mean equality
            predicates.append(make_predicate(item[0], Operator.EQ, item[1]))
        else:
            raise ValidationError(f"Cannot interpret condition {item!r}")
    return predicates


@dataclass
class PredicateBuilder:
    """Fluent builder producing a flat predicate list"""

    predicates: List[Predicate] = field(default_factory=list)
    descending: bool = False

    def where(self, field_name: str, operator: Union[Operator, str], value: Any = None) -> PredicateBuilder:
        """Add filter condition"""
        self.predicates.append(make_predicate(field_name, operator, value))
        return self

    def eq(self, field_name: str, value: Any) -> PredicateBuilder:
        return self.where(field_name, Operator.EQ, value)

    def in_(self, field_name: str, values: Iterable[Any]) -> PredicateBuilder:
        return self.where(field_name, Operator.IN, values)

    def is_nil(self, field_name: str) -> PredicateBuilder:
        return self.where(field_name, Operator.IS_NIL)

    def between(self, field_name: str, low: Any, high: Any) -> PredicateBuilder:
        return self.where(field_name, Operator.BETWEEN, (low, high))

    def begins_with(self, field_name: str, prefix: Any) -> PredicateBuilder:
        return self.where(field_name, Operator.BEGINS_WITH, prefix)

    def order(self, descending: bool = False) -> PredicateBuilder:
        """Sort direction on the chosen index's range key"""
        self.descending = descending
        return self

    def to_lookup(self) -> Dict[str, Any]:
        """Convert back to a lookup dict"""
        result = {}
        for p in self.predicates:
            key = p.field if p.operator == Operator.EQ else f"{p.field}__{p.operator.value}"
            result[key] = True if p.operator == Operator.IS_NIL else p.value
        return result


def _comparable(value: Any, bound: Any) -> bool:
    try:
        value < bound  # noqa: B015
    except TypeError:
        return False
    return True


def evaluate(predicate: Predicate, item: Mapping[str, Any]) -> bool:
    """Client-side evaluation of one predicate, with the store's semantics"""
    present = predicate.field in item
    value = item.get(predicate.field)
    op = predicate.operator

    if op == Operator.IS_NIL:
        return not present or value is None
    if not present:
        return False
    if op == Operator.EQ:
        return value == predicate.value
    if op == Operator.IN:
        return value in predicate.value
    if op == Operator.BETWEEN:
        low, high = predicate.value
        if not (_comparable(value, low) and _comparable(value, high)):
            return False
        return low <= value <= high
    if op == Operator.BEGINS_WITH:
        if isinstance(value, str) and isinstance(predicate.value, str):
            return value.startswith(predicate.value)
        if isinstance(value, (bytes, bytearray)) and isinstance(predicate.value, (bytes, bytearray)):
            return bytes(value).startswith(bytes(predicate.value))
        return False
    raise InvalidOperatorError(f"Unsupported operator: {op!r}")


def apply_filters(items: Iterable[Mapping[str, Any]], predicates: Iterable[Predicate]) -> List[Dict[str, Any]]:
    """Keep the items matching every predicate, in order"""
    predicates = list(predicates)
    if not predicates:
        return [dict(item) for item in items]
    return [dict(item) for item in items if all(evaluate(p, item) for p in predicates)]
