"""
Caller input checks (``workflow_kernel.domain.input_validation``).

Pure checks on values that arrive from outside the engine and end up in a
bounded column or a JSON column: names, keys, entity references and action
payloads.  Each check returns field errors in the ``ValidationError`` shape;
the services decide when to raise.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from workflow_kernel.domain.workflow import ActionType

# Column widths of the bounded text fields.
TEMPLATE_NAME_MAX_LENGTH = 200
STEP_NAME_MAX_LENGTH = 200
STEP_KEY_MAX_LENGTH = 100
ENTITY_TYPE_MAX_LENGTH = 50
ENTITY_ID_MAX_LENGTH = 100


def field_error(field_name: str, code: str, message: str, value: Any = None) -> dict[str, Any]:
    err: dict[str, Any] = {"field": field_name, "code": code, "message": message}
    if value is not None:
        err["value"] = value
    return err


def check_length(field_name: str, value: str | None, limit: int) -> list[dict[str, Any]]:
    """One TOO_LONG error when ``value`` exceeds ``limit`` characters."""
    if value is None or len(value) <= limit:
        return []
    return [field_error(
        field_name, "TOO_LONG",
        f"{field_name} must be at most {limit} characters", len(value),
    )]


def validate_entity_ref(entity_type: Any, entity_id: Any) -> list[dict[str, Any]]:
    errors: list[dict[str, Any]] = []
    if not isinstance(entity_type, str) or not entity_type.strip():
        errors.append(field_error(
            "entity_type", "EMPTY_ENTITY_TYPE", "entity_type must be a non-empty string",
        ))
    else:
        errors.extend(check_length("entity_type", entity_type, ENTITY_TYPE_MAX_LENGTH))

    if entity_id is None or isinstance(entity_id, bool) or str(entity_id) == "":
        errors.append(field_error(
            "entity_id", "EMPTY_ENTITY_ID", "entity_id must be a non-empty string or integer",
        ))
    else:
        errors.extend(check_length("entity_id", str(entity_id), ENTITY_ID_MAX_LENGTH))
    return errors


def _check_json_object(field_name: str, payload: Any) -> list[dict[str, Any]]:
    if payload is None:
        return []
    if not isinstance(payload, Mapping):
        return [field_error(
            field_name, "NOT_AN_OBJECT",
            f"{field_name} must be an object", type(payload).__name__,
        )]
    try:
        json.dumps(dict(payload), allow_nan=False)
    except (TypeError, ValueError) as exc:
        return [field_error(
            field_name, "NOT_JSON_SERIALIZABLE",
            f"{field_name} must hold only JSON values: {exc}",
        )]
    return []


def validate_action_input(
    action_type: Any,
    data_modifications: Any,
    context: Any,
) -> tuple[ActionType | None, list[dict[str, Any]]]:
    """Parse the action type and check both payloads are JSON objects.

    Returns the parsed action type (None when unknown) and the field errors.
    Payload contents are never echoed back, only their type.
    """
    errors: list[dict[str, Any]] = []
    try:
        action = ActionType(action_type)
    except ValueError:
        action = None
        errors.append(field_error(
            "action_type", "INVALID_ACTION_TYPE",
            f"action_type must be one of {[a.value for a in ActionType]}", str(action_type),
        ))
    errors.extend(_check_json_object("data_modifications", data_modifications))
    errors.extend(_check_json_object("context", context))
    return action, errors
