"""
Tests for transition condition kinds.

Covers:
- parse_condition(): every kind, canonical payloads, malformed payloads,
  unknown kinds, value without type
- evaluate(): dotted field resolution, missing fields, numeric comparison
  with non-numeric and non-finite inputs
- build_evaluation_context(): shape and defaults
"""

from decimal import Decimal

import pytest

from workflow_kernel.domain.conditions import (
    ConditionParseError,
    ConditionType,
    EntityTypeIs,
    FieldCompare,
    FieldEquals,
    FieldIn,
    FieldPresent,
    build_evaluation_context,
    parse_condition,
    resolve_field,
)


def ctx(data=None, context=None, entity_type="invoice", entity_id="42"):
    return build_evaluation_context(entity_type, entity_id, data, context)


class TestBuildEvaluationContext:
    def test_shape(self):
        result = ctx({"a": 1}, {"b": 2})
        assert result == {
            "entity": {"type": "invoice", "id": "42"},
            "data": {"a": 1},
            "context": {"b": 2},
        }

    def test_missing_payloads_become_empty_dicts(self):
        result = build_evaluation_context("invoice", "42")
        assert result["data"] == {}
        assert result["context"] == {}


class TestResolveField:
    def test_nested_path(self):
        assert resolve_field("context.vendor.country", ctx(context={"vendor": {"country": "DE"}})) == "DE"

    def test_missing_segment_is_none(self):
        assert resolve_field("context.vendor.country", ctx(context={"vendor": None})) is None

    def test_path_through_scalar_is_none(self):
        assert resolve_field("context.amount.value", ctx(context={"amount": 5})) is None


class TestParseCondition:
    def test_none_is_unconditioned(self):
        assert parse_condition(None, None) is None

    def test_value_without_type_rejected(self):
        with pytest.raises(ConditionParseError):
            parse_condition(None, {"field": "data.x"})

    def test_unknown_type_rejected(self):
        with pytest.raises(ConditionParseError) as exc_info:
            parse_condition("amount_over", {"value": 5})
        assert exc_info.value.reason == "unknown condition type"

    def test_payload_must_be_mapping(self):
        with pytest.raises(ConditionParseError):
            parse_condition("field_present", ["data.x"])

    def test_field_equals(self):
        condition = parse_condition("field_equals", {"field": "context.region", "value": "EU"})
        assert condition == FieldEquals(field="context.region", value="EU")
        assert condition.condition_type is ConditionType.FIELD_EQUALS
        assert condition.to_payload() == {"field": "context.region", "value": "EU"}

    def test_field_equals_requires_value(self):
        with pytest.raises(ConditionParseError):
            parse_condition("field_equals", {"field": "context.region"})

    def test_field_equals_rejects_null_value(self):
        with pytest.raises(ConditionParseError):
            parse_condition("field_equals", {"field": "context.region", "value": None})

    def test_field_in(self):
        condition = parse_condition("field_in", {"field": "data.kind", "values": ["a", "b"]})
        assert condition == FieldIn(field="data.kind", values=("a", "b"))
        assert condition.to_payload() == {"field": "data.kind", "values": ["a", "b"]}

    def test_field_in_requires_non_empty_list(self):
        with pytest.raises(ConditionParseError):
            parse_condition("field_in", {"field": "data.kind", "values": []})

    def test_field_compare_canonical_value_is_string(self):
        condition = parse_condition(
            "field_compare", {"field": "context.amount", "operator": ">=", "value": 10000}
        )
        assert condition == FieldCompare(field="context.amount", operator=">=", value=Decimal("10000"))
        assert condition.to_payload() == {
            "field": "context.amount", "operator": ">=", "value": "10000",
        }

    def test_field_compare_round_trips_canonical_payload(self):
        first = parse_condition(
            "field_compare", {"field": "context.amount", "operator": "<", "value": "12.50"}
        )
        assert parse_condition("field_compare", first.to_payload()) == first

    @pytest.mark.parametrize("operator", ["=>", "gt", None])
    def test_field_compare_bad_operator(self, operator):
        with pytest.raises(ConditionParseError):
            parse_condition("field_compare", {"field": "context.amount", "operator": operator, "value": 1})

    @pytest.mark.parametrize("value", ["abc", "NaN", "Infinity", None, True])
    def test_field_compare_bad_threshold(self, value):
        with pytest.raises(ConditionParseError):
            parse_condition("field_compare", {"field": "context.amount", "operator": ">", "value": value})

    def test_field_present(self):
        assert parse_condition("field_present", {"field": "data.po_number"}) == FieldPresent("data.po_number")

    @pytest.mark.parametrize("field_path", ["", "  ", "data..x", ".data", 7])
    def test_malformed_field_path(self, field_path):
        with pytest.raises(ConditionParseError):
            parse_condition("field_present", {"field": field_path})

    def test_entity_type(self):
        condition = parse_condition("entity_type", {"entity_types": ["invoice", "expense"]})
        assert condition == EntityTypeIs(entity_types=("invoice", "expense"))

    def test_entity_type_requires_strings(self):
        with pytest.raises(ConditionParseError):
            parse_condition("entity_type", {"entity_types": ["invoice", 3]})


class TestEvaluate:
    def test_field_equals(self):
        condition = FieldEquals(field="context.region", value="EU")
        assert condition.evaluate(ctx(context={"region": "EU"}))
        assert not condition.evaluate(ctx(context={"region": "US"}))
        assert not condition.evaluate(ctx())

    def test_field_in(self):
        condition = FieldIn(field="data.kind", values=("capex", "opex"))
        assert condition.evaluate(ctx(data={"kind": "opex"}))
        assert not condition.evaluate(ctx(data={"kind": "other"}))
        assert not condition.evaluate(ctx())

    @pytest.mark.parametrize(
        "expected,actual",
        [(True, 1), (1, True), (False, 0), (0, False), (True, 1.0)],
    )
    def test_field_equals_keeps_booleans_apart_from_numbers(self, expected, actual):
        condition = parse_condition("field_equals", {"field": "data.urgent", "value": expected})
        assert condition.evaluate(ctx(data={"urgent": actual})) is False
        assert condition.evaluate(ctx(data={"urgent": expected})) is True

    def test_field_in_keeps_booleans_apart_from_numbers(self):
        flags = FieldIn(field="data.flag", values=(True,))
        assert not flags.evaluate(ctx(data={"flag": 1}))
        assert flags.evaluate(ctx(data={"flag": True}))

        levels = FieldIn(field="data.level", values=(0, 1))
        assert not levels.evaluate(ctx(data={"level": False}))
        assert levels.evaluate(ctx(data={"level": 1}))

    @pytest.mark.parametrize(
        "operator,actual,expected",
        [
            (">=", 10000, True),
            (">=", "9999.99", False),
            (">", 10000, False),
            ("<", 5, True),
            ("<=", 10000, True),
            ("==", "10000.00", True),
            ("!=", 1, True),
        ],
    )
    def test_field_compare(self, operator, actual, expected):
        condition = FieldCompare(field="context.amount", operator=operator, value=Decimal("10000"))
        assert condition.evaluate(ctx(context={"amount": actual})) is expected

    @pytest.mark.parametrize("actual", ["lots", None, True, "NaN", {"x": 1}])
    def test_field_compare_non_numeric_never_matches(self, actual):
        condition = FieldCompare(field="context.amount", operator="!=", value=Decimal("1"))
        assert condition.evaluate(ctx(context={"amount": actual})) is False

    def test_field_present(self):
        condition = FieldPresent(field="data.po_number")
        assert condition.evaluate(ctx(data={"po_number": "PO-1"}))
        assert not condition.evaluate(ctx(data={"po_number": None}))

    def test_entity_type(self):
        condition = EntityTypeIs(entity_types=("invoice",))
        assert condition.evaluate(ctx(entity_type="invoice"))
        assert not condition.evaluate(ctx(entity_type="expense"))
