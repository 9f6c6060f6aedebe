# src/dynaplan/planner.py
"""
Index selection: decide which key schema, if any, serves a predicate list.

Only equality (`eq`) or membership (`in`) on an index's hash attribute makes
the index usable. Range-attribute predicates are pushed into the key
condition when the hash is matched; everything else becomes a post-fetch
filter. Without a usable index the plan falls back to a scan, when allowed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, Optional, Sequence, Tuple

from .errors import DynaPlanError, NoMatchingIndexError, UnsupportedKeyFilterError
from .models import AccessPlan, IndexDescriptor, Operator, PlanOperation, Predicate, TableMetadata

logger = logging.getLogger(__name__)

HASH_OPERATORS = (Operator.EQ, Operator.IN)
RANGE_KEY_OPERATORS = (Operator.EQ, Operator.BETWEEN, Operator.BEGINS_WITH)


@dataclass(frozen=True)
class ScanPolicy:
    """Which tables may fall back to a full scan"""
    scan_all: bool = False
    scan_tables: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls, settings) -> ScanPolicy:
        return cls(scan_all=settings.scan_all, scan_tables=frozenset(settings.scan_tables))

    def allows(self, table: str, override: bool = False) -> bool:
        return override or self.scan_all or table in self.scan_tables


@dataclass(frozen=True)
class PlanResult:
    """Plan or error, for callers that branch on error kind instead of catching"""
    plan: Optional[AccessPlan] = None
    error: Optional[DynaPlanError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class _Candidate:
    index: IndexDescriptor
    position: int
    operation: PlanOperation
    hash_position: int
    range_position: Optional[int]

    @property
    def score(self) -> Tuple[int, bool, bool, int]:
        matched = 2 if self.range_position is not None else 1
        covered = self.index.range_attribute is None or self.range_position is not None
        return (matched, covered, self.index.is_primary, -self.position)


def _first(predicates: Sequence[Predicate], attribute: Optional[str],
           operators: Iterable[Operator]) -> Optional[int]:
    operators = tuple(operators)
    for i, p in enumerate(predicates):
        if p.field == attribute and p.operator in operators:
            return i
    return None


class IndexSelector:
    """Turns (table metadata, predicates, scan policy) into an AccessPlan"""

    def _evaluate(self, index: IndexDescriptor, position: int,
                  predicates: Sequence[Predicate]) -> Optional[_Candidate]:
        hash_position = _first(predicates, index.hash_attribute, HASH_OPERATORS)
        if hash_position is None:
            return None
        hash_predicate = predicates[hash_position]
        range_attribute = index.range_attribute
        pushable = _first(predicates, range_attribute, RANGE_KEY_OPERATORS) if range_attribute else None

        if hash_predicate.operator == Operator.IN:
            if index.is_primary:
                if not range_attribute:
                    return _Candidate(index, position, PlanOperation.BATCH_GET, hash_position, None)
                # batch_get on a composite key needs a paired range list of equal length
                for i, p in enumerate(predicates):
                    if (p.field == range_attribute and p.operator == Operator.IN
                            and len(p.value) == len(hash_predicate.value)):
                        return _Candidate(index, position, PlanOperation.BATCH_GET, hash_position, i)
            return _Candidate(index, position, PlanOperation.QUERY, hash_position, pushable)

        if index.is_primary:
            if not range_attribute:
                return _Candidate(index, position, PlanOperation.POINT_GET, hash_position, None)
            range_eq = _first(predicates, range_attribute, (Operator.EQ,))
            if range_eq is not None:
                return _Candidate(index, position, PlanOperation.POINT_GET, hash_position, range_eq)

        return _Candidate(index, position, PlanOperation.QUERY, hash_position, pushable)

    def plan(self, metadata: TableMetadata, predicates: Sequence[Predicate],
             scan_policy: ScanPolicy, scan: bool = False) -> AccessPlan:
        predicates = list(predicates)
        indexes = [metadata.primary_index] + list(metadata.secondary_indexes)

        candidates = []
        for position, index in enumerate(indexes):
            candidate = self._evaluate(index, position, predicates)
            if candidate is not None:
                candidates.append(candidate)

        if not candidates:
            table = metadata.table_name
            if scan_policy.allows(table, scan):
                logger.info(f"No index matches on {table}; scanning with {len(predicates)} filter(s)")
                return AccessPlan(
                    table_name=table,
                    operation=PlanOperation.SCAN,
                    residual_filters=tuple(predicates),
                )
            raise NoMatchingIndexError(table, [p.field for p in predicates])

        best = max(candidates, key=lambda c: c.score)
        index = best.index

        for p in predicates:
            if p.operator == Operator.IS_NIL and p.field in index.key_attributes:
                raise UnsupportedKeyFilterError(
                    f"is_nil on '{p.field}' is not supported: it is a key attribute of "
                    f"{index.name or 'the primary key'} on table '{metadata.table_name}'"
                )

        key_positions = [best.hash_position]
        if best.range_position is not None:
            key_positions.append(best.range_position)

        plan = AccessPlan(
            table_name=metadata.table_name,
            operation=best.operation,
            chosen_index=index,
            key_conditions=tuple(predicates[i] for i in key_positions),
            residual_filters=tuple(p for i, p in enumerate(predicates) if i not in key_positions),
        )
        logger.info(
            f"Planned {plan.operation.value} on {metadata.table_name} "
            f"via {index.name or 'primary key'} ({len(plan.residual_filters)} filter(s))"
        )
        return plan

    def try_plan(self, metadata: TableMetadata, predicates: Sequence[Predicate],
                 scan_policy: ScanPolicy, scan: bool = False) -> PlanResult:
        try:
            return PlanResult(plan=self.plan(metadata, predicates, scan_policy, scan))
        except DynaPlanError as e:
            return PlanResult(error=e)
