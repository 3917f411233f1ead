"""JSON Schema validation utilities for tool inputs."""

import copy
from typing import Any

from jsonschema import Draft7Validator

from shared.errors import ValidationError


def validate_schema(data: Any, schema: dict[str, Any]) -> tuple[bool, list[str]]:
    """
    Validate data against a JSON Schema.

    Args:
        data: The data to validate
        schema: JSON Schema to validate against

    Returns:
        Tuple of (is_valid, list of error messages)
    """
    if not schema:
        return True, []

    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.path))

    if not errors:
        return True, []

    error_messages = [
        f"{'.'.join(str(p) for p in e.path)}: {e.message}" if e.path else e.message
        for e in errors
    ]

    return False, error_messages


def apply_defaults(data: dict[str, Any], schema: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``data`` with top-level property defaults filled in."""
    result = dict(data)
    for name, prop in schema.get("properties", {}).items():
        if name not in result and "default" in prop:
            result[name] = copy.deepcopy(prop["default"])
    return result


def validated_arguments(data: Any, schema: dict[str, Any]) -> dict[str, Any]:
    """
    Validate tool arguments and apply defaults.

    Raises:
        ValidationError: If the arguments violate the schema
    """
    if data is None:
        data = {}
    is_valid, errors = validate_schema(data, schema)
    if not is_valid:
        raise ValidationError(errors)
    return apply_defaults(data, schema)


def subject_property() -> dict[str, Any]:
    """Schema fragment for the optional tenant selector every tool accepts."""
    return {
        "type": "string",
        "minLength": 1,
        "description": "Tenant (workspace) id whose credential is used; defaults to 'default'",
    }


def object_schema(
    properties: dict[str, Any],
    required: list[str] | None = None,
) -> dict[str, Any]:
    """Build a tool input schema that always accepts ``subject``."""
    schema: dict[str, Any] = {
        "type": "object",
        "properties": {"subject": subject_property(), **properties},
        "required": required or [],
        "additionalProperties": False,
    }
    return schema
