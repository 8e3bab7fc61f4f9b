"""
Tests for caller input checks.

Covers:
- check_length(): limits are inclusive, None passes
- validate_entity_ref(): empty and over-long entity type and id
- validate_action_input(): action type parsing, payload shape, JSON-only
  payload values, payload contents never echoed
"""

from datetime import date
from decimal import Decimal

import pytest

from workflow_kernel.domain.input_validation import (
    ENTITY_ID_MAX_LENGTH,
    ENTITY_TYPE_MAX_LENGTH,
    check_length,
    validate_action_input,
    validate_entity_ref,
)
from workflow_kernel.domain.workflow import ActionType


def codes(errors):
    return [(e["field"], e["code"]) for e in errors]


class TestCheckLength:
    def test_at_limit_passes(self):
        assert check_length("name", "x" * 10, 10) == []

    def test_over_limit_reports_length(self):
        assert check_length("name", "x" * 11, 10) == [{
            "field": "name", "code": "TOO_LONG",
            "message": "name must be at most 10 characters", "value": 11,
        }]

    def test_none_passes(self):
        assert check_length("key", None, 1) == []


class TestValidateEntityRef:
    def test_valid(self):
        assert validate_entity_ref("invoice", 42) == []
        assert validate_entity_ref("t" * ENTITY_TYPE_MAX_LENGTH, "i" * ENTITY_ID_MAX_LENGTH) == []

    def test_integer_id_measured_as_text(self):
        assert codes(validate_entity_ref("invoice", 10 ** ENTITY_ID_MAX_LENGTH)) == [
            ("entity_id", "TOO_LONG"),
        ]

    @pytest.mark.parametrize("entity_type", ["", "   ", None, 7])
    def test_bad_entity_type(self, entity_type):
        assert codes(validate_entity_ref(entity_type, 1)) == [("entity_type", "EMPTY_ENTITY_TYPE")]

    @pytest.mark.parametrize("entity_id", ["", None, True])
    def test_bad_entity_id(self, entity_id):
        assert codes(validate_entity_ref("invoice", entity_id)) == [("entity_id", "EMPTY_ENTITY_ID")]

    def test_both_reported(self):
        assert codes(validate_entity_ref("t" * 51, "i" * 101)) == [
            ("entity_type", "TOO_LONG"),
            ("entity_id", "TOO_LONG"),
        ]


class TestValidateActionInput:
    @pytest.mark.parametrize("raw", ["APPROVE", ActionType.APPROVE])
    def test_valid(self, raw):
        action, errors = validate_action_input(raw, {"amount": "5.00"}, {"tags": ["a", 1, None]})
        assert action is ActionType.APPROVE
        assert errors == []

    @pytest.mark.parametrize("raw", ["approve", "ESCALATE", None, 3])
    def test_unknown_action_type(self, raw):
        action, errors = validate_action_input(raw, None, None)
        assert action is None
        assert codes(errors) == [("action_type", "INVALID_ACTION_TYPE")]
        assert errors[0]["value"] == str(raw)

    @pytest.mark.parametrize("payload", [["amount"], "amount", 5, ("a", 1)])
    def test_payload_must_be_object(self, payload):
        _, errors = validate_action_input("MODIFY", payload, None)
        assert codes(errors) == [("data_modifications", "NOT_AN_OBJECT")]
        assert errors[0]["value"] == type(payload).__name__

    @pytest.mark.parametrize(
        "payload",
        [
            {"amount": Decimal("5")},
            {"due": date(2024, 1, 31)},
            {"nested": {"ids": {1, 2}}},
            {"ratio": float("inf")},
            {(1, 2): "tuple key"},
        ],
    )
    def test_payload_values_must_be_json(self, payload):
        _, errors = validate_action_input("APPROVE", None, payload)
        assert codes(errors) == [("context", "NOT_JSON_SERIALIZABLE")]
        assert "value" not in errors[0]

    def test_all_problems_reported_together(self):
        action, errors = validate_action_input("SKIP", [1], {"x": Decimal("1")})
        assert action is None
        assert codes(errors) == [
            ("action_type", "INVALID_ACTION_TYPE"),
            ("data_modifications", "NOT_AN_OBJECT"),
            ("context", "NOT_JSON_SERIALIZABLE"),
        ]
