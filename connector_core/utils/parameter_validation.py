"""
Validation of caller parameters against an action's request schema.

The request schema is JSON-schema-like::

    {
        "type": "object",
        "properties": {
            "sheetName": {"type": "string", "required": true, "default": "Sheet1"},
            "returnAll": {"type": "boolean", "default": true}
        },
        "required": ["spreadsheetId"]
    }

Required-ness may be declared per property or in the top-level list.
A required field must be supplied by the caller; defaults only fill in
optional fields and template references.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from ..exceptions import ConfigError, missing_required, validation_failed

_TYPE_CHECKS = {
    "string": lambda v: isinstance(v, str),
    "number": lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    "integer": lambda v: isinstance(v, int) and not isinstance(v, bool),
    "boolean": lambda v: isinstance(v, bool),
    "array": lambda v: isinstance(v, list),
    "object": lambda v: isinstance(v, dict),
}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    type: Optional[str]
    required: bool
    has_default: bool
    default: Any = None
    enum: Optional[List[Any]] = None
    description: Optional[str] = None


def parse_request_schema(schema: Optional[Dict[str, Any]]) -> Dict[str, FieldSpec]:
    """Turn a request schema into field specs, rejecting malformed schemas."""
    if schema is None:
        return {}
    if not isinstance(schema, dict):
        raise ConfigError("Request schema must be an object")

    properties = schema.get("properties")
    if properties is None:
        properties = {}
    if not isinstance(properties, dict):
        raise ConfigError("Request schema 'properties' must be an object")

    required_list = schema.get("required")
    if required_list is None:
        required_list = []
    if not isinstance(required_list, list):
        raise ConfigError("Request schema 'required' must be a list")

    fields = {}
    for name, prop in properties.items():
        if not isinstance(prop, dict):
            raise ConfigError(f"Request schema property '{name}' must be an object")
        field_type = prop.get("type")
        if field_type is not None and field_type not in _TYPE_CHECKS:
            raise ConfigError(f"Unsupported type '{field_type}' for property '{name}'")
        fields[name] = FieldSpec(
            name=name,
            type=field_type,
            required=bool(prop.get("required")) or name in required_list,
            has_default="default" in prop,
            default=prop.get("default"),
            enum=prop.get("enum"),
            description=prop.get("description"),
        )

    for name in required_list:
        if name not in fields:
            fields[name] = FieldSpec(name=name, type=None, required=True, has_default=False)

    return fields


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def validate_parameters(fields: Dict[str, FieldSpec], parameters: Dict[str, Any]) -> None:
    """
    Check required presence and basic types.

    Raises:
        ValidationError: ``missing required field: <name>`` or a type/enum mismatch
    """
    for prop in fields.values():
        if prop.required and _is_missing(parameters.get(prop.name)):
            raise missing_required(prop.name)

    for name, value in parameters.items():
        prop = fields.get(name)
        if prop is None or value is None:
            continue
        if prop.type and not _TYPE_CHECKS[prop.type](value):
            raise validation_failed(name, value, f"expected {prop.type}")
        if prop.enum is not None and value not in prop.enum:
            raise validation_failed(name, value, f"must be one of {prop.enum}")


def resolve_values(fields: Dict[str, FieldSpec], parameters: Dict[str, Any]) -> Dict[str, Any]:
    """Caller parameters layered over schema defaults."""
    values = {prop.name: prop.default for prop in fields.values() if prop.has_default}
    values.update({k: v for k, v in parameters.items() if v is not None})
    return values


def required_names(fields: Dict[str, FieldSpec]) -> Set[str]:
    return {prop.name for prop in fields.values() if prop.required}
