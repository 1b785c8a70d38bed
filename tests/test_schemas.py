"""
Tests for JSON schema validation.
"""

import pytest
from jsonschema.exceptions import SchemaError

from teteatete.schemas import (
    SchemaValidator, get_validator, validate,
    KEYPAIR_SCHEMA, ENVELOPE_SCHEMA, WIRE_EVENT_SCHEMA,
    RPC_REQUEST_SCHEMA, RPC_RESPONSE_SCHEMA,
)


class TestSchemaValidator:
    """Tests for the schema registry."""

    def test_standard_schemas_registered(self):
        validator = SchemaValidator()

        for schema_id in (KEYPAIR_SCHEMA, ENVELOPE_SCHEMA, WIRE_EVENT_SCHEMA,
                          RPC_REQUEST_SCHEMA, RPC_RESPONSE_SCHEMA):
            assert schema_id in validator.list_schemas()
            assert validator.get_schema(schema_id) is not None

    def test_collects_all_errors_with_paths(self):
        result = validate(KEYPAIR_SCHEMA, {"publicKey": "XYZ", "privateKey": 5})

        assert not result.valid
        assert result.schema_id == KEYPAIR_SCHEMA
        paths = {error.path for error in result.errors}
        assert paths == {"/publicKey", "/privateKey"}
        assert all(":" in message for message in result.error_messages)

    def test_valid_document(self):
        result = validate(KEYPAIR_SCHEMA, {"publicKey": "ab" * 32, "privateKey": "cd" * 32})

        assert result.valid
        assert result.errors == []

    def test_unknown_schema(self):
        with pytest.raises(KeyError):
            validate("tete/unknown/v1", {})

    def test_register_custom_schema(self):
        validator = SchemaValidator()
        validator.register_schema("test/v1", {"type": "object", "required": ["a"]})

        assert validator.is_valid("test/v1", {"a": 1})
        assert not validator.is_valid("test/v1", {})

    def test_register_rejects_broken_schema(self):
        with pytest.raises(SchemaError):
            SchemaValidator().register_schema("broken/v1", {"type": "no-such-type"})

    def test_shared_validator(self):
        assert get_validator() is get_validator()

    def test_response_needs_exactly_one_of_result_or_error(self):
        assert validate(RPC_RESPONSE_SCHEMA, {"jsonrpc": "2.0", "id": 1, "result": {}}).valid
        assert not validate(RPC_RESPONSE_SCHEMA, {"jsonrpc": "2.0", "id": 1}).valid
