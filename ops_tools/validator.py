"""Schema Validator.

Rule-based checks over a small JSON-Schema subset:
- required (absent, None or "" counts as missing)
- type: string | number | boolean | object | array
- strings: minLength, maxLength, enum
- numbers: minimum, maximum

Only top-level ``type: object`` schemas are checked. Any other schema is
accepted as-is; tests pin this behavior.
"""

from dataclasses import dataclass, field
from typing import Any

TYPE_NAMES = ("string", "number", "boolean", "object", "array")


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


@dataclass
class OutputValidationResult:
    valid: bool
    warnings: list[str] = field(default_factory=list)


def type_name(value: Any) -> str:
    """JSON type name of a Python value."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def is_schema(schema: Any) -> bool:
    """True if ``schema`` is a descriptor this module understands."""
    if not isinstance(schema, dict):
        return False
    if "type" in schema and schema["type"] not in TYPE_NAMES:
        return False
    if not isinstance(schema.get("properties", {}), dict):
        return False
    return isinstance(schema.get("required", []), list)


def validate(data: Any, schema: dict[str, Any] | None) -> ValidationResult:
    """
    Validate ``data`` against ``schema``.

    Args:
        data: Candidate input (normally a dict)
        schema: Validator descriptor

    Returns:
        ValidationResult with one message per violated constraint
    """
    if not schema or schema.get("type") != "object":
        return ValidationResult(valid=True)

    if not isinstance(data, dict):
        return ValidationResult(valid=False, errors=[f"Expected object, got {type_name(data)}"])

    errors: list[str] = []

    for name in schema.get("required", []):
        value = data.get(name)
        if value is None or value == "":
            errors.append(f"Missing required field: {name}")

    for name, prop in (schema.get("properties") or {}).items():
        if name not in data:
            continue
        value = data[name]

        # None means "intentionally absent"
        if value is None:
            continue

        expected = prop.get("type")
        actual = type_name(value)
        if expected and expected != actual:
            errors.append(f"Field '{name}' expected {expected}, got {actual}")
            continue

        if actual == "string":
            min_length = prop.get("minLength")
            max_length = prop.get("maxLength")
            if min_length and len(value) < min_length:
                # Empty required strings are already reported as missing
                if not (value == "" and name in schema.get("required", [])):
                    errors.append(f"Field '{name}' must be at least {min_length} characters")
            if max_length is not None and len(value) > max_length:
                errors.append(f"Field '{name}' must be at most {max_length} characters")
            if "enum" in prop and value not in prop["enum"]:
                errors.append(f"Field '{name}' must be one of: {', '.join(map(str, prop['enum']))}")

        elif actual == "number":
            if prop.get("minimum") is not None and value < prop["minimum"]:
                errors.append(f"Field '{name}' must be at least {prop['minimum']}")
            if prop.get("maximum") is not None and value > prop["maximum"]:
                errors.append(f"Field '{name}' must be at most {prop['maximum']}")

    return ValidationResult(valid=not errors, errors=errors)


def validate_output(data: Any, schema: dict[str, Any] | None) -> OutputValidationResult:
    """Output validation: same rules, every error downgraded to a warning."""
    if not schema:
        return OutputValidationResult(valid=True)
    result = validate(data, schema)
    return OutputValidationResult(
        valid=result.valid,
        warnings=[f"Output schema warning: {e}" for e in result.errors],
    )
