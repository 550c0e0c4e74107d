"""Schema Validator Tests."""

from ops_tools.validator import is_schema, type_name, validate, validate_output

SCHEMA = {
    "type": "object",
    "required": ["businessId"],
    "properties": {
        "businessId": {"type": "string", "minLength": 1},
        "currency": {"type": "string", "minLength": 3, "maxLength": 3},
        "mode": {"type": "string", "enum": ["plan", "execute"]},
        "timeoutMs": {"type": "number", "minimum": 100, "maximum": 30000},
        "skipVoiceTest": {"type": "boolean"},
        "priceMap": {"type": "object"},
        "targets": {"type": "array"},
    },
}


def test_valid_input_has_no_errors():
    result = validate({"businessId": "acme", "mode": "plan", "timeoutMs": 2000}, SCHEMA)
    assert result.valid
    assert result.errors == []


def test_missing_required_field():
    result = validate({}, SCHEMA)
    assert not result.valid
    assert result.errors == ["Missing required field: businessId"]


def test_none_required_field_counts_as_missing():
    result = validate({"businessId": None}, SCHEMA)
    assert result.errors == ["Missing required field: businessId"]


def test_empty_required_string_reported_once():
    """An empty required string is missing, not also too short."""
    result = validate({"businessId": ""}, SCHEMA)
    assert result.errors == ["Missing required field: businessId"]


def test_type_mismatch():
    result = validate({"businessId": 42}, SCHEMA)
    assert result.errors == ["Field 'businessId' expected string, got number"]


def test_boolean_is_not_a_number():
    result = validate({"businessId": "acme", "timeoutMs": True}, SCHEMA)
    assert result.errors == ["Field 'timeoutMs' expected number, got boolean"]


def test_array_and_object_types():
    result = validate({"businessId": "acme", "priceMap": [], "targets": {}}, SCHEMA)
    assert "Field 'priceMap' expected object, got array" in result.errors
    assert "Field 'targets' expected array, got object" in result.errors


def test_string_length_bounds():
    assert validate({"businessId": "acme", "currency": "us"}, SCHEMA).errors == [
        "Field 'currency' must be at least 3 characters"
    ]
    assert validate({"businessId": "acme", "currency": "usdx"}, SCHEMA).errors == [
        "Field 'currency' must be at most 3 characters"
    ]


def test_enum_violation():
    result = validate({"businessId": "acme", "mode": "apply"}, SCHEMA)
    assert result.errors == ["Field 'mode' must be one of: plan, execute"]


def test_number_bounds():
    assert validate({"businessId": "acme", "timeoutMs": 50}, SCHEMA).errors == [
        "Field 'timeoutMs' must be at least 100"
    ]
    assert validate({"businessId": "acme", "timeoutMs": 60000}, SCHEMA).errors == [
        "Field 'timeoutMs' must be at most 30000"
    ]


def test_optional_none_is_skipped():
    assert validate({"businessId": "acme", "mode": None}, SCHEMA).valid


def test_multiple_errors_collected():
    result = validate({"mode": "apply", "timeoutMs": "fast"}, SCHEMA)
    assert len(result.errors) == 3


def test_unknown_fields_ignored():
    assert validate({"businessId": "acme", "extra": 1}, SCHEMA).valid


def test_non_object_input():
    result = validate(["acme"], SCHEMA)
    assert result.errors == ["Expected object, got array"]


def test_non_object_schema_is_permissive():
    """Only object schemas are checked; anything else passes."""
    assert validate("anything", {"type": "string", "minLength": 100}).valid
    assert validate(123, None).valid
    assert validate({"a": 1}, {}).valid


def test_output_validation_returns_warnings():
    schema = {"type": "object", "required": ["ok", "ready"], "properties": {"ready": {"type": "boolean"}}}
    result = validate_output({"ok": True, "ready": "yes"}, schema)
    assert not result.valid
    assert result.warnings == ["Output schema warning: Field 'ready' expected boolean, got string"]
    assert validate_output({"ok": True}, None).valid


def test_type_name():
    assert type_name(None) == "null"
    assert type_name(1.5) == "number"
    assert type_name(False) == "boolean"


def test_is_schema():
    assert is_schema(SCHEMA)
    assert not is_schema({"type": "integer"})
    assert not is_schema({"type": "object", "required": "businessId"})
    assert not is_schema("object")
