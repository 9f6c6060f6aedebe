# src/dynaplan/request.py
"""
Request builder: access plans and write intents to store operation descriptors
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from boto3.dynamodb import conditions

from .config import Settings
from .errors import InvalidOperatorError, ValidationError
from .json_safe import to_store_value
from .models import AccessPlan, CallOptions, Operator, PlanOperation, Predicate, TableMetadata
from .types import JsonDict, Key, OperationDescriptor, StoreAction, UpdateActions, WriteCondition

logger = logging.getLogger(__name__)


def _value_type(value: Any) -> Optional[str]:
    """DynamoDB scalar type letter for a comparable value"""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return "N"
    if isinstance(value, str):
        return "S"
    if isinstance(value, (bytes, bytearray)):
        return "B"
    return None


def check_operator(predicate: Predicate, attribute_type: Optional[str] = None) -> None:
    """Raise InvalidOperatorError when the operator cannot apply to the attribute or value"""
    op = predicate.operator
    field = predicate.field

    if op == Operator.BEGINS_WITH:
        if attribute_type == "N":
            raise InvalidOperatorError(f"begins_with is not supported on numeric attribute '{field}'")
        if _value_type(predicate.value) not in ("S", "B"):
            raise InvalidOperatorError(
                f"begins_with on '{field}' needs a string or binary prefix, got {predicate.value!r}"
            )
    elif op == Operator.BETWEEN:
        low, high = predicate.value
        low_type, high_type = _value_type(low), _value_type(high)
        if low_type is None or low_type != high_type:
            raise InvalidOperatorError(
                f"between on '{field}' needs two comparable bounds of one type, got {low!r} and {high!r}"
            )
        if attribute_type and attribute_type != low_type:
            raise InvalidOperatorError(
                f"between on '{field}' uses {low_type} bounds but the attribute is of type {attribute_type}"
            )
        if low > high:
            raise InvalidOperatorError(f"between on '{field}' has lower bound {low!r} above upper bound {high!r}")
    elif op in (Operator.EQ, Operator.IN) and attribute_type:
        values = predicate.value if op == Operator.IN else (predicate.value,)
        for value in values:
            if _value_type(value) != attribute_type:
                raise InvalidOperatorError(
                    f"{op.value} on key attribute '{field}' of type {attribute_type} got {value!r}"
                )


def key_condition(predicates: Sequence[Predicate]):
    """`Key(...)` condition for the key predicates of a query, joined with AND"""
    condition = None
    for p in predicates:
        key = conditions.Key(p.field)
        if p.operator == Operator.EQ:
            expression = key.eq(to_store_value(p.value))
        elif p.operator == Operator.BETWEEN:
            low, high = p.value
            expression = key.between(to_store_value(low), to_store_value(high))
        elif p.operator == Operator.BEGINS_WITH:
            expression = key.begins_with(p.value)
        else:
            raise InvalidOperatorError(f"{p.operator.value} cannot be used in a key condition on '{p.field}'")
        condition = expression if condition is None else condition & expression
    return condition


def filter_condition(predicates: Sequence[Predicate]):
    """`Attr(...)` condition for residual filters, or None when there are none"""
    condition = None
    for p in predicates:
        attr = conditions.Attr(p.field)
        if p.operator == Operator.EQ:
            expression = attr.eq(to_store_value(p.value))
        elif p.operator == Operator.IN:
            expression = attr.is_in([to_store_value(v) for v in p.value])
        elif p.operator == Operator.IS_NIL:
            expression = attr.not_exists() | attr.eq(None)
        elif p.operator == Operator.BETWEEN:
            low, high = p.value
            expression = attr.between(to_store_value(low), to_store_value(high))
        elif p.operator == Operator.BEGINS_WITH:
            expression = attr.begins_with(p.value)
        else:
            raise InvalidOperatorError(f"Unsupported operator: {p.operator!r}")
        condition = expression if condition is None else condition & expression
    return condition


class ExpressionContext:
    """
    Allocates `#<prefix>` / `:<prefix>` placeholders for projections and
    update expressions.

    boto3 names the placeholders of condition objects `#n*` / `:v*` and merges
    them into the same maps, so these use a different prefix.
    """

    def __init__(self, prefix: str = "p"):
        self.prefix = prefix
        self.names: Dict[str, str] = {}
        self.values: Dict[str, Any] = {}
        self._name_lookup: Dict[str, str] = {}

    def name(self, attribute: str) -> str:
        placeholder = self._name_lookup.get(attribute)
        if placeholder is None:
            placeholder = f"#{self.prefix}{len(self.names)}"
            self.names[placeholder] = attribute
            self._name_lookup[attribute] = placeholder
        return placeholder

    def path(self, attribute: str, index: int) -> str:
        return f"{self.name(attribute)}[{int(index)}]"

    def value(self, value: Any) -> str:
        placeholder = f":{self.prefix}{len(self.values)}"
        self.values[placeholder] = to_store_value(value)
        return placeholder

    def projection(self, attributes: Sequence[str]) -> str:
        return ", ".join(self.name(a) for a in attributes)

    def apply(self, params: JsonDict) -> JsonDict:
        if self.names:
            params["ExpressionAttributeNames"] = dict(self.names)
        if self.values:
            params["ExpressionAttributeValues"] = dict(self.values)
        return params


def _dedupe(keys: List[Key]) -> List[Key]:
    seen = set()
    unique = []
    for key in keys:
        marker = tuple(sorted((k, repr(v)) for k, v in key.items()))
        if marker not in seen:
            seen.add(marker)
            unique.append(key)
    return unique


class RequestBuilder:
    """Compiles plans and write intents into OperationDescriptors"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

    # -------------------------
    # Reads
    # -------------------------
    def build(self, plan: AccessPlan, options: Optional[CallOptions] = None,
              select: Optional[Sequence[str]] = None) -> OperationDescriptor:
        options = options or CallOptions()
        select = list(select) if select is not None else options.select
        index = plan.chosen_index

        for p in plan.key_conditions:
            check_operator(p, index.attribute_type(p.field) if index else None)
        for p in plan.residual_filters:
            check_operator(p)

        if plan.operation == PlanOperation.SCAN:
            descriptor = self._build_scan(plan, options, select)
        elif plan.operation == PlanOperation.POINT_GET:
            descriptor = self._build_point_get(plan, options, select)
        elif plan.operation == PlanOperation.BATCH_GET:
            descriptor = self._build_batch_get(plan, options, select)
        else:
            descriptor = self._build_query(plan, options, select)

        logger.debug(f"Built {descriptor.action.value} for {plan.table_name}: {descriptor.params}")
        return descriptor

    def _read_projection(self, plan: AccessPlan, select: Optional[Sequence[str]]) -> Optional[List[str]]:
        if select is None:
            return None
        # residual filters on gets are evaluated client-side, so their attributes must come back
        attributes = list(dict.fromkeys(list(select) + [p.field for p in plan.residual_filters]))
        return attributes

    def _build_scan(self, plan: AccessPlan, options: CallOptions,
                    select: Optional[Sequence[str]]) -> OperationDescriptor:
        ctx = ExpressionContext()
        params: JsonDict = {}
        filter_expression = filter_condition(plan.residual_filters)
        if filter_expression is not None:
            params["FilterExpression"] = filter_expression
        if select:
            params["ProjectionExpression"] = ctx.projection(select)
        limit = options.scan_limit or self.settings.scan_limit
        if limit:
            params["Limit"] = limit
        if options.consistent_read:
            params["ConsistentRead"] = True
        if options.exclusive_start_key:
            params["ExclusiveStartKey"] = options.exclusive_start_key

        return OperationDescriptor(
            action=StoreAction.SCAN,
            table=plan.table_name,
            params=ctx.apply(params),
            filters=plan.residual_filters,
            projection=list(select) if select else None,
            limit=limit,
            exclusive_start_key=options.exclusive_start_key,
            consistent_read=options.consistent_read,
        )

    def _build_query(self, plan: AccessPlan, options: CallOptions,
                     select: Optional[Sequence[str]]) -> OperationDescriptor:
        index = plan.chosen_index
        hash_predicate = plan.key_conditions[0]
        range_conditions = plan.key_conditions[1:]

        if hash_predicate.operator == Operator.IN:
            # one query per hash value, in the caller's order
            parts = []
            for value in dict.fromkeys(hash_predicate.value):
                single = Predicate(hash_predicate.field, Operator.EQ, value)
                parts.append(self._build_query(
                    AccessPlan(plan.table_name, PlanOperation.QUERY, index,
                               (single,) + tuple(range_conditions), plan.residual_filters),
                    options, select,
                ))
            return OperationDescriptor(
                action=StoreAction.QUERY,
                table=plan.table_name,
                index_name=index.name,
                key_conditions=plan.key_conditions,
                filters=plan.residual_filters,
                parts=parts,
            )

        ctx = ExpressionContext()
        params: JsonDict = {"KeyConditionExpression": key_condition(plan.key_conditions)}
        if index.name:
            params["IndexName"] = index.name
        filter_expression = filter_condition(plan.residual_filters)
        if filter_expression is not None:
            params["FilterExpression"] = filter_expression
        if select:
            params["ProjectionExpression"] = ctx.projection(select)
        if not options.scan_index_forward:
            params["ScanIndexForward"] = False
        if options.consistent_read:
            params["ConsistentRead"] = True
        if options.scan_limit:
            params["Limit"] = options.scan_limit
        if options.exclusive_start_key:
            params["ExclusiveStartKey"] = options.exclusive_start_key

        return OperationDescriptor(
            action=StoreAction.QUERY,
            table=plan.table_name,
            params=ctx.apply(params),
            index_name=index.name,
            key_conditions=plan.key_conditions,
            filters=plan.residual_filters,
            projection=list(select) if select else None,
            limit=options.scan_limit,
            exclusive_start_key=options.exclusive_start_key,
            scan_index_forward=options.scan_index_forward,
            consistent_read=options.consistent_read,
        )

    def _build_point_get(self, plan: AccessPlan, options: CallOptions,
                         select: Optional[Sequence[str]]) -> OperationDescriptor:
        key = {p.field: to_store_value(p.value) for p in plan.key_conditions}
        ctx = ExpressionContext()
        params: JsonDict = {"Key": key}
        projection = self._read_projection(plan, select)
        if projection:
            params["ProjectionExpression"] = ctx.projection(projection)
        if options.consistent_read:
            params["ConsistentRead"] = True

        return OperationDescriptor(
            action=StoreAction.GET_ITEM,
            table=plan.table_name,
            params=ctx.apply(params),
            key=key,
            key_conditions=plan.key_conditions,
            filters=plan.residual_filters,
            projection=projection,
            consistent_read=options.consistent_read,
        )

    def _build_batch_get(self, plan: AccessPlan, options: CallOptions,
                         select: Optional[Sequence[str]]) -> OperationDescriptor:
        hash_predicate = plan.key_conditions[0]
        if len(plan.key_conditions) > 1:
            range_predicate = plan.key_conditions[1]
            keys = [
                {hash_predicate.field: to_store_value(h), range_predicate.field: to_store_value(r)}
                for h, r in zip(hash_predicate.value, range_predicate.value)
            ]
        else:
            keys = [{hash_predicate.field: to_store_value(h)} for h in hash_predicate.value]
        return self.build_batch_get(plan.table_name, keys, options, self._read_projection(plan, select),
                                    key_conditions=plan.key_conditions, filters=plan.residual_filters)

    def build_batch_get(self, table: str, keys: List[Key], options: Optional[CallOptions] = None,
                        projection: Optional[List[str]] = None,
                        key_conditions: Tuple[Predicate, ...] = (),
                        filters: Tuple[Predicate, ...] = ()) -> OperationDescriptor:
        options = options or CallOptions()
        keys = _dedupe(keys)
        if projection and keys:
            # key attributes come back so results can be put in requested order
            projection = list(dict.fromkeys(list(keys[0]) + list(projection)))
        ctx = ExpressionContext()
        request: JsonDict = {"Keys": keys}
        if projection:
            request["ProjectionExpression"] = ctx.projection(projection)
        if options.consistent_read:
            request["ConsistentRead"] = True
        ctx.apply(request)

        return OperationDescriptor(
            action=StoreAction.BATCH_GET_ITEM,
            table=table,
            params={"RequestItems": {table: request}},
            keys=keys,
            key_conditions=key_conditions,
            filters=filters,
            projection=projection,
            consistent_read=options.consistent_read,
        )

    # -------------------------
    # Writes
    # -------------------------
    def build_put(self, metadata: TableMetadata, record: JsonDict,
                  options: Optional[CallOptions] = None) -> OperationDescriptor:
        options = options or CallOptions()
        insert_nil = options.insert_nil_fields
        if insert_nil is None:
            insert_nil = self.settings.insert_nil_fields

        item = {k: v for k, v in record.items() if v is not None or insert_nil}
        key = metadata.key_for(item, options.range_key)
        item.update(key)
        item = to_store_value(item)

        params: JsonDict = {"Item": item}
        condition = None
        if options.on_conflict != "replace":
            hash_attribute = metadata.primary_index.hash_attribute
            condition = WriteCondition("attribute_not_exists", hash_attribute)
            params["ConditionExpression"] = conditions.Attr(hash_attribute).not_exists()

        return OperationDescriptor(
            action=StoreAction.PUT_ITEM,
            table=metadata.table_name,
            params=params,
            key=to_store_value(key),
            item=item,
            condition=condition,
        )

    def build_update(self, metadata: TableMetadata, key: Key, changes: JsonDict,
                     options: Optional[CallOptions] = None,
                     require_existing: bool = True) -> OperationDescriptor:
        options = options or CallOptions()
        remove_nil = options.remove_nil_fields
        if remove_nil is None:
            remove_nil = self.settings.remove_nil_fields

        key_attributes = metadata.key_attributes
        actions = UpdateActions()
        for attribute, value in changes.items():
            if attribute in key_attributes:
                if value != key.get(attribute):
                    raise ValidationError(f"Cannot change key attribute '{attribute}' with an update")
                continue
            if value is None and remove_nil:
                actions.remove.append(attribute)
            else:
                actions.set[attribute] = to_store_value(value)

        actions.add = to_store_value(dict(options.add))
        actions.delete = to_store_value(dict(options.delete))
        actions.pull_indexes = {k: sorted(set(v)) for k, v in options.pull_indexes.items()}
        actions.prepend = to_store_value(dict(options.prepend_to_list))
        actions.append = to_store_value(dict(options.push))
        for attribute in list(actions.add) + list(actions.delete) + list(actions.pull_indexes) \
                + list(actions.prepend) + list(actions.append):
            if attribute in key_attributes:
                raise ValidationError(f"Cannot change key attribute '{attribute}' with an update")

        if actions.is_empty():
            raise ValidationError(f"Nothing to update on table '{metadata.table_name}'")

        ctx = ExpressionContext("u")
        clauses = []
        set_parts = [f"{ctx.name(a)} = {ctx.value(v)}" for a, v in actions.set.items()]
        for attribute, values in actions.prepend.items():
            name = ctx.name(attribute)
            set_parts.append(f"{name} = list_append({ctx.value(list(values))}, if_not_exists({name}, {ctx.value([])}))")
        for attribute, values in actions.append.items():
            name = ctx.name(attribute)
            set_parts.append(f"{name} = list_append(if_not_exists({name}, {ctx.value([])}), {ctx.value(list(values))})")
        if set_parts:
            clauses.append("SET " + ", ".join(set_parts))

        remove_parts = [ctx.name(a) for a in actions.remove]
        for attribute, indexes in actions.pull_indexes.items():
            remove_parts.extend(ctx.path(attribute, i) for i in indexes)
        if remove_parts:
            clauses.append("REMOVE " + ", ".join(remove_parts))

        if actions.add:
            clauses.append("ADD " + ", ".join(f"{ctx.name(a)} {ctx.value(v)}" for a, v in actions.add.items()))
        if actions.delete:
            clauses.append("DELETE " + ", ".join(f"{ctx.name(a)} {ctx.value(v)}" for a, v in actions.delete.items()))

        store_key = to_store_value(dict(key))
        params: JsonDict = {"Key": store_key, "UpdateExpression": " ".join(clauses), "ReturnValues": "ALL_NEW"}
        condition = None
        if require_existing:
            hash_attribute = metadata.primary_index.hash_attribute
            condition = WriteCondition("attribute_exists", hash_attribute)
            params["ConditionExpression"] = conditions.Attr(hash_attribute).exists()

        return OperationDescriptor(
            action=StoreAction.UPDATE_ITEM,
            table=metadata.table_name,
            params=ctx.apply(params),
            key=store_key,
            condition=condition,
            updates=actions,
        )

    def build_delete(self, metadata: TableMetadata, key: Key,
                     require_existing: bool = False) -> OperationDescriptor:
        store_key = to_store_value(dict(key))
        params: JsonDict = {"Key": store_key}
        condition = None
        if require_existing:
            hash_attribute = metadata.primary_index.hash_attribute
            condition = WriteCondition("attribute_exists", hash_attribute)
            params["ConditionExpression"] = conditions.Attr(hash_attribute).exists()

        return OperationDescriptor(
            action=StoreAction.DELETE_ITEM,
            table=metadata.table_name,
            params=params,
            key=store_key,
            condition=condition,
        )
