"""Tests for predicate normalization and client-side evaluation."""

from __future__ import annotations

import pytest

from dynaplan.errors import InvalidOperatorError, ValidationError
from dynaplan.models import Operator, Predicate
from dynaplan.query import PredicateBuilder, apply_filters, evaluate, make_predicate, normalize_predicates


class TestNormalize:
    def test_none_is_empty(self):
        assert normalize_predicates(None) == []

    def test_tuples_and_predicates_keep_order(self):
        result = normalize_predicates([
            ("email", "eq", "a@x.com"),
            Predicate("id", Operator.IN, ("p1", "p2")),
            ("name", "is_nil", None),
        ])
        assert [p.field for p in result] == ["email", "id", "name"]
        assert result[0].operator == Operator.EQ
        assert result[2].value is None

    def test_single_tuple(self):
        assert normalize_predicates(("id", "==", "p1")) == [Predicate("id", Operator.EQ, "p1")]

    def test_pairs_mean_equality(self):
        assert normalize_predicates([("id", "p1")]) == [Predicate("id", Operator.EQ, "p1")]

    def test_lookup_dict(self):
        result = normalize_predicates({
            "email": "e@x.com",
            "age__between": [1, 5],
            "name__is_nil": True,
            "title__begins_with": "Dr",
        })
        assert result == [
            Predicate("email", Operator.EQ, "e@x.com"),
            Predicate("age", Operator.BETWEEN, (1, 5)),
            Predicate("name", Operator.IS_NIL, None),
            Predicate("title", Operator.BEGINS_WITH, "Dr"),
        ]

    def test_lookup_with_unknown_suffix_is_a_field_name(self):
        assert normalize_predicates({"first__name": "Ann"}) == [Predicate("first__name", Operator.EQ, "Ann")]

    def test_is_nil_false_rejected(self):
        with pytest.raises(InvalidOperatorError):
            normalize_predicates({"name__is_nil": False})

    def test_in_values_become_tuple(self):
        p = make_predicate("id", "in", ["a", "b"])
        assert p.value == ("a", "b")

    @pytest.mark.parametrize("value", ["abc", [], 5])
    def test_in_needs_a_non_empty_list(self, value):
        with pytest.raises(InvalidOperatorError):
            make_predicate("id", "in", value)

    def test_between_needs_two_bounds(self):
        with pytest.raises(InvalidOperatorError):
            make_predicate("age", "between", (1, 2, 3))

    def test_unknown_operator(self):
        with pytest.raises(InvalidOperatorError):
            make_predicate("age", "like", "%x%")

    def test_uninterpretable_condition(self):
        with pytest.raises(ValidationError):
            normalize_predicates([42])


class TestPredicateBuilder:
    def test_fluent_chain(self):
        builder = (
            PredicateBuilder()
            .eq("id", "houseofleaves")
            .between("page_num", 1, 10)
            .is_nil("deleted_at")
            .order(descending=True)
        )
        predicates = normalize_predicates(builder)
        assert [p.operator for p in predicates] == [Operator.EQ, Operator.BETWEEN, Operator.IS_NIL]
        assert builder.descending is True

    def test_to_lookup_round_trips(self):
        builder = PredicateBuilder().eq("id", "p1").in_("email", ["a", "b"]).begins_with("name", "J")
        assert normalize_predicates(builder.to_lookup()) == builder.predicates


class TestEvaluate:
    def test_is_nil_matches_absent_and_none(self):
        p = Predicate("name", Operator.IS_NIL)
        assert evaluate(p, {})
        assert evaluate(p, {"name": None})
        assert not evaluate(p, {"name": "x"})

    def test_between_and_begins_with(self):
        assert evaluate(Predicate("n", Operator.BETWEEN, (1, 3)), {"n": 2})
        assert not evaluate(Predicate("n", Operator.BETWEEN, (1, 3)), {"n": "2"})
        assert evaluate(Predicate("s", Operator.BEGINS_WITH, "ab"), {"s": "abc"})
        assert not evaluate(Predicate("s", Operator.BEGINS_WITH, "ab"), {"s": 12})

    def test_apply_filters_keeps_order(self):
        items = [{"id": 1, "tag": "a"}, {"id": 2, "tag": "b"}, {"id": 3, "tag": "a"}]
        assert [i["id"] for i in apply_filters(items, [Predicate("tag", Operator.EQ, "a")])] == [1, 3]
