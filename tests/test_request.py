"""Tests for request compilation."""

from __future__ import annotations

from decimal import Decimal

import pytest

from boto3.dynamodb.conditions import Attr, ConditionExpressionBuilder, Key

from dynaplan.config import Settings
from dynaplan.errors import InvalidOperatorError, ValidationError
from dynaplan.models import (
    AccessPlan,
    CallOptions,
    IndexDescriptor,
    Operator,
    PlanOperation,
    Predicate,
    TableMetadata,
)
from dynaplan.request import RequestBuilder, check_operator, filter_condition, key_condition
from dynaplan.types import StoreAction, WriteCondition

PRIMARY = IndexDescriptor(None, "id", "S")
EMAIL = IndexDescriptor("email", "email", "S")
PERSON = TableMetadata("person", PRIMARY, (EMAIL,))
BOOK_PRIMARY = IndexDescriptor(None, "id", "S", "page_num", "N")
BOOK_PAGE = TableMetadata("book_page", BOOK_PRIMARY)


@pytest.fixture
def builder():
    return RequestBuilder(Settings())


class TestReads:
    def test_point_get(self, builder):
        plan = AccessPlan("person", PlanOperation.POINT_GET, PRIMARY, (Predicate("id", Operator.EQ, "p1"),))
        descriptor = builder.build(plan)
        assert descriptor.action == StoreAction.GET_ITEM
        assert descriptor.params == {"Key": {"id": "p1"}}
        assert descriptor.key == {"id": "p1"}

    def test_point_get_projection_includes_filter_fields(self, builder):
        plan = AccessPlan(
            "person", PlanOperation.POINT_GET, PRIMARY,
            (Predicate("id", Operator.EQ, "p1"),), (Predicate("age", Operator.EQ, 3),),
        )
        descriptor = builder.build(plan, select=["name"])
        assert descriptor.projection == ["name", "age"]
        assert descriptor.params["ProjectionExpression"] == "#p0, #p1"
        assert descriptor.params["ExpressionAttributeNames"] == {"#p0": "name", "#p1": "age"}

    def test_query_with_range_and_filters(self, builder):
        plan = AccessPlan(
            "book_page", PlanOperation.QUERY, BOOK_PRIMARY,
            (Predicate("id", Operator.EQ, "x"), Predicate("page_num", Operator.BETWEEN, (1, 5))),
            (Predicate("deleted_at", Operator.IS_NIL),),
        )
        descriptor = builder.build(plan, CallOptions(scan_index_forward=False, scan_limit=10))
        params = descriptor.params
        assert descriptor.action == StoreAction.QUERY
        assert params["KeyConditionExpression"] == Key("id").eq("x") & Key("page_num").between(1, 5)
        assert params["FilterExpression"] == Attr("deleted_at").not_exists() | Attr("deleted_at").eq(None)
        assert "ExpressionAttributeNames" not in params
        assert params["ScanIndexForward"] is False
        assert params["Limit"] == 10
        assert "IndexName" not in params
        assert descriptor.limit == 10

    def test_query_on_secondary_index(self, builder):
        plan = AccessPlan("person", PlanOperation.QUERY, EMAIL, (Predicate("email", Operator.EQ, "e"),),
                          (Predicate("name", Operator.BEGINS_WITH, "J"),))
        params = builder.build(plan, CallOptions(consistent_read=True)).params
        assert params["IndexName"] == "email"
        assert params["FilterExpression"] == Attr("name").begins_with("J")
        assert params["ConsistentRead"] is True

    def test_in_hash_query_fans_out_per_value(self, builder):
        plan = AccessPlan("person", PlanOperation.QUERY, EMAIL,
                          (Predicate("email", Operator.IN, ("b", "a", "b")),))
        descriptor = builder.build(plan)
        assert [p.key_conditions[0].value for p in descriptor.parts] == ["b", "a"]
        assert all(p.params["IndexName"] == "email" for p in descriptor.parts)
        assert descriptor.parts[0].params["KeyConditionExpression"] == Key("email").eq("b")

    def test_scan_uses_configured_limit(self):
        builder = RequestBuilder(Settings(scan_limit=25))
        plan = AccessPlan("person", PlanOperation.SCAN, residual_filters=(Predicate("name", Operator.EQ, "Ann"),))
        descriptor = builder.build(plan, CallOptions(exclusive_start_key={"id": "p9"}))
        assert descriptor.action == StoreAction.SCAN
        assert descriptor.params["Limit"] == 25
        assert descriptor.params["FilterExpression"] == Attr("name").eq("Ann")
        assert descriptor.params["ExclusiveStartKey"] == {"id": "p9"}

    def test_batch_get(self, builder):
        plan = AccessPlan(
            "book_page", PlanOperation.BATCH_GET, BOOK_PRIMARY,
            (Predicate("id", Operator.IN, ("a", "b")), Predicate("page_num", Operator.IN, (1, 2))),
        )
        descriptor = builder.build(plan)
        assert descriptor.action == StoreAction.BATCH_GET_ITEM
        assert descriptor.keys == [{"id": "a", "page_num": 1}, {"id": "b", "page_num": 2}]
        assert descriptor.params == {"RequestItems": {"book_page": {"Keys": descriptor.keys}}}

    def test_batch_get_projection_keeps_keys(self, builder):
        descriptor = builder.build_batch_get("person", [{"id": "a"}, {"id": "a"}], projection=["name"])
        assert descriptor.keys == [{"id": "a"}]
        assert descriptor.projection == ["id", "name"]


class TestCheckOperator:
    def test_begins_with_on_number_rejected(self):
        with pytest.raises(InvalidOperatorError):
            check_operator(Predicate("page_num", Operator.BEGINS_WITH, "1"), "N")

    def test_begins_with_needs_string_prefix(self):
        with pytest.raises(InvalidOperatorError):
            check_operator(Predicate("name", Operator.BEGINS_WITH, 1))

    def test_between_mixed_types_rejected(self):
        with pytest.raises(InvalidOperatorError):
            check_operator(Predicate("n", Operator.BETWEEN, (1, "5")))

    def test_between_against_attribute_type(self):
        with pytest.raises(InvalidOperatorError):
            check_operator(Predicate("page_num", Operator.BETWEEN, ("a", "b")), "N")

    def test_between_reversed_bounds(self):
        with pytest.raises(InvalidOperatorError):
            check_operator(Predicate("n", Operator.BETWEEN, (5, 1)))

    def test_key_equality_type_mismatch(self):
        with pytest.raises(InvalidOperatorError):
            check_operator(Predicate("page_num", Operator.EQ, "1"), "N")

    def test_valid_predicates_pass(self):
        check_operator(Predicate("page_num", Operator.BETWEEN, (1, Decimal("2.5"))), "N")
        check_operator(Predicate("id", Operator.IN, ("a", "b")), "S")

    def test_build_checks_key_types(self, builder):
        plan = AccessPlan("book_page", PlanOperation.QUERY, BOOK_PRIMARY,
                          (Predicate("id", Operator.EQ, "x"), Predicate("page_num", Operator.BEGINS_WITH, "1")))
        with pytest.raises(InvalidOperatorError):
            builder.build(plan)



class TestConditions:
    def test_key_condition_joins_with_and(self):
        condition = key_condition([
            Predicate("id", Operator.EQ, "x"),
            Predicate("page_num", Operator.BEGINS_WITH, "1"),
        ])
        assert condition == Key("id").eq("x") & Key("page_num").begins_with("1")

    def test_in_is_not_a_key_condition(self):
        with pytest.raises(InvalidOperatorError):
            key_condition([Predicate("id", Operator.IN, ("a", "b"))])

    def test_filter_values_go_to_the_store_form(self):
        condition = filter_condition([
            Predicate("age", Operator.IN, (1.5, 2)),
            Predicate("n", Operator.BETWEEN, (1, 2)),
        ])
        assert condition == Attr("age").is_in([Decimal("1.5"), 2]) & Attr("n").between(1, 2)

    def test_no_filters(self):
        assert filter_condition([]) is None

    def test_placeholders_do_not_collide_with_projection(self, builder):
        plan = AccessPlan("person", PlanOperation.SCAN, residual_filters=(Predicate("name", Operator.EQ, "Ann"),))
        params = builder.build(plan, select=["name", "age"]).params
        built = ConditionExpressionBuilder().build_expression(params["FilterExpression"])
        assert built.condition_expression == "#n0 = :v0"
        assert built.attribute_name_placeholders == {"#n0": "name"}
        assert not set(built.attribute_name_placeholders) & set(params["ExpressionAttributeNames"])

class TestPut:
    def test_conditional_put_by_default(self, builder):
        descriptor = builder.build_put(PERSON, {"id": "p1", "score": 1.5})
        assert descriptor.action == StoreAction.PUT_ITEM
        assert descriptor.params["ConditionExpression"] == Attr("id").not_exists()
        assert "ExpressionAttributeNames" not in descriptor.params
        assert descriptor.item == {"id": "p1", "score": Decimal("1.5")}
        assert descriptor.condition == WriteCondition("attribute_not_exists", "id")

    def test_replace_has_no_condition(self, builder):
        descriptor = builder.build_put(PERSON, {"id": "p1"}, CallOptions(on_conflict="replace"))
        assert "ConditionExpression" not in descriptor.params
        assert descriptor.condition is None

    def test_nil_fields_kept_by_default(self, builder):
        assert builder.build_put(PERSON, {"id": "p1", "name": None}).item == {"id": "p1", "name": None}

    def test_nil_fields_dropped_when_disabled(self, builder):
        descriptor = builder.build_put(PERSON, {"id": "p1", "name": None}, CallOptions(insert_nil_fields=False))
        assert descriptor.item == {"id": "p1"}

    def test_missing_hash_key(self, builder):
        with pytest.raises(ValidationError):
            builder.build_put(PERSON, {"name": "Ann"})

    def test_range_key_option_supplies_range(self, builder):
        descriptor = builder.build_put(BOOK_PAGE, {"id": "x"}, CallOptions(range_key=("page_num", 3)))
        assert descriptor.key == {"id": "x", "page_num": 3}
        assert descriptor.item["page_num"] == 3


class TestUpdate:
    def test_set_and_directives(self, builder):
        options = CallOptions(add={"visits": 1}, push={"tags": ["x"]})
        descriptor = builder.build_update(PERSON, {"id": "p1"}, {"name": "Ann"}, options)
        params = descriptor.params
        assert params["UpdateExpression"] == (
            "SET #u0 = :u0, #u1 = list_append(if_not_exists(#u1, :u1), :u2) ADD #u2 :u3"
        )
        assert params["ConditionExpression"] == Attr("id").exists()
        assert params["ExpressionAttributeNames"] == {"#u0": "name", "#u1": "tags", "#u2": "visits"}
        assert params["ExpressionAttributeValues"] == {":u0": "Ann", ":u1": [], ":u2": ["x"], ":u3": 1}
        assert params["ReturnValues"] == "ALL_NEW"

    def test_nil_fields_set_or_removed(self, builder):
        kept = builder.build_update(PERSON, {"id": "p1"}, {"name": None})
        assert kept.updates.set == {"name": None}
        removed = builder.build_update(PERSON, {"id": "p1"}, {"name": None}, CallOptions(remove_nil_fields=True))
        assert removed.updates.remove == ["name"]
        assert removed.params["UpdateExpression"] == "REMOVE #u0"

    def test_pull_indexes_and_prepend(self, builder):
        options = CallOptions(pull_indexes={"tags": [2, 0, 2]}, prepend_to_list={"log": ["first"]})
        descriptor = builder.build_update(PERSON, {"id": "p1"}, {}, options)
        assert descriptor.params["UpdateExpression"] == (
            "SET #u0 = list_append(:u0, if_not_exists(#u0, :u1)) REMOVE #u1[0], #u1[2]"
        )

    def test_set_delete(self, builder):
        descriptor = builder.build_update(PERSON, {"id": "p1"}, {}, CallOptions(delete={"roles": {"admin"}}))
        assert descriptor.params["UpdateExpression"] == "DELETE #u0 :u0"

    def test_changing_key_rejected(self, builder):
        with pytest.raises(ValidationError):
            builder.build_update(PERSON, {"id": "p1"}, {"id": "p2"})

    def test_unchanged_key_ignored(self, builder):
        descriptor = builder.build_update(PERSON, {"id": "p1"}, {"id": "p1", "name": "Ann"})
        assert descriptor.updates.set == {"name": "Ann"}

    def test_nothing_to_update(self, builder):
        with pytest.raises(ValidationError):
            builder.build_update(PERSON, {"id": "p1"}, {})

    def test_without_existence_condition(self, builder):
        descriptor = builder.build_update(PERSON, {"id": "p1"}, {"name": "Ann"}, require_existing=False)
        assert "ConditionExpression" not in descriptor.params


class TestDelete:
    def test_delete(self, builder):
        descriptor = builder.build_delete(BOOK_PAGE, {"id": "x", "page_num": 1})
        assert descriptor.action == StoreAction.DELETE_ITEM
        assert descriptor.params == {"Key": {"id": "x", "page_num": 1}}

    def test_delete_existing_only(self, builder):
        descriptor = builder.build_delete(PERSON, {"id": "p1"}, require_existing=True)
        assert descriptor.params["ConditionExpression"] == Attr("id").exists()
