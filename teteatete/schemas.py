"""
Message Schemas for tete-a-tete.
Validates every JSON shape that crosses a trust boundary: keypair files,
envelopes, relay events and decrypted JSON-RPC payloads.
"""

import logging
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

from jsonschema import Draft7Validator

logger = logging.getLogger(__name__)

HEX_32 = "^[0-9a-f]{64}$"
HEX_64 = "^[0-9a-f]{128}$"

KEYPAIR_SCHEMA = "tete/keypair/v1"
ENVELOPE_SCHEMA = "tete/envelope/v1"
WIRE_EVENT_SCHEMA = "tete/wire-event/v1"
RPC_REQUEST_SCHEMA = "tete/rpc-request/v1"
RPC_RESPONSE_SCHEMA = "tete/rpc-response/v1"

_PARTS = {
    "type": "array",
    "items": {
        "type": "object",
        "required": ["kind"],
        "properties": {
            "kind": {"type": "string"},
            "text": {"type": "string"},
            "data": {"type": "object"},
        },
    },
}

_RPC_ID = {"type": ["string", "integer"]}

STANDARD_SCHEMAS = {
    KEYPAIR_SCHEMA: {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "title": "Keypair File",
        "type": "object",
        "required": ["publicKey", "privateKey"],
        "properties": {
            "publicKey": {"type": "string", "pattern": HEX_32},
            "privateKey": {"type": "string", "pattern": HEX_32},
        },
    },
    ENVELOPE_SCHEMA: {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "title": "Encrypted Envelope",
        "type": "object",
        "required": ["ciphertext", "nonce", "senderPubKey", "signature"],
        "properties": {
            "ciphertext": {"type": "string", "minLength": 1},
            "nonce": {"type": "string", "minLength": 1},
            "senderPubKey": {"type": "string", "pattern": HEX_32},
            "signature": {"type": "string", "minLength": 1},
        },
    },
    WIRE_EVENT_SCHEMA: {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "title": "Relay Wire Event",
        "type": "object",
        "required": ["id", "pubkey", "created_at", "kind", "tags", "content", "sig"],
        "properties": {
            "id": {"type": "string", "pattern": HEX_32},
            "pubkey": {"type": "string", "pattern": HEX_32},
            "created_at": {"type": "integer", "minimum": 0},
            "kind": {"type": "integer", "minimum": 0},
            "tags": {
                "type": "array",
                "items": {"type": "array", "items": {"type": "string"}},
            },
            "content": {"type": "string"},
            "sig": {"type": "string", "pattern": HEX_64},
        },
    },
    RPC_REQUEST_SCHEMA: {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "title": "JSON-RPC Request",
        "type": "object",
        "required": ["jsonrpc", "method", "id"],
        "properties": {
            "jsonrpc": {"const": "2.0"},
            "method": {"type": "string"},
            "id": _RPC_ID,
            "params": {
                "type": "object",
                "properties": {
                    "sender": {"type": "string"},
                    "message": {
                        "type": "object",
                        "required": ["parts"],
                        "properties": {
                            "role": {"type": "string"},
                            "parts": _PARTS,
                        },
                    },
                },
            },
        },
    },
    RPC_RESPONSE_SCHEMA: {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "title": "JSON-RPC Response",
        "type": "object",
        "required": ["jsonrpc", "id"],
        "properties": {
            "jsonrpc": {"const": "2.0"},
            "id": _RPC_ID,
            "result": {
                "type": "object",
                "properties": {
                    "task": {
                        "type": "object",
                        "properties": {"id": {"type": "string"}},
                    },
                    "message": {
                        "type": "object",
                        "properties": {"parts": _PARTS},
                    },
                },
            },
            "error": {
                "type": "object",
                "required": ["code", "message"],
                "properties": {
                    "code": {"type": "integer"},
                    "message": {"type": "string"},
                },
            },
        },
        "oneOf": [
            {"required": ["result"]},
            {"required": ["error"]},
        ],
    },
}


@dataclass
class ValidationError:
    """A single validation error with details."""
    path: str           # JSON path to the error (e.g., "/sig")
    message: str        # Human-readable error message
    schema_id: str      # Schema ID that was validated against

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


@dataclass
class ValidationResult:
    """Result of schema validation."""
    valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    schema_id: Optional[str] = None

    @property
    def error_messages(self) -> List[str]:
        """Get list of error messages as strings."""
        return [str(e) for e in self.errors]


class SchemaValidator:
    """
    Validates wire data against the built-in JSON schemas.

    Compiled Draft-07 validators are cached per schema id. All errors are
    collected, not just the first one.
    """

    def __init__(self):
        self._schemas: Dict[str, dict] = {}
        self._validators: Dict[str, Draft7Validator] = {}
        for schema_id, schema in STANDARD_SCHEMAS.items():
            self.register_schema(schema_id, schema)

    def register_schema(self, schema_id: str, schema: dict) -> None:
        """Register (or replace) a schema and compile its validator."""
        Draft7Validator.check_schema(schema)
        self._schemas[schema_id] = schema
        self._validators[schema_id] = Draft7Validator(schema)

    def get_schema(self, schema_id: str) -> Optional[dict]:
        return self._schemas.get(schema_id)

    def list_schemas(self) -> List[str]:
        return list(self._schemas.keys())

    def validate(self, schema_id: str, data: Any) -> ValidationResult:
        """
        Validate data against a registered schema.

        Raises:
            KeyError: if the schema id is unknown
        """
        validator = self._validators[schema_id]

        errors = []
        for error in validator.iter_errors(data):
            path = "/" + "/".join(str(p) for p in error.absolute_path)
            errors.append(ValidationError(
                path=path,
                message=error.message,
                schema_id=schema_id,
            ))

        return ValidationResult(valid=not errors, errors=errors, schema_id=schema_id)

    def is_valid(self, schema_id: str, data: Any) -> bool:
        return self._validators[schema_id].is_valid(data)


_default_validator: Optional[SchemaValidator] = None


def get_validator() -> SchemaValidator:
    """Shared validator instance (schemas are immutable once compiled)."""
    global _default_validator
    if _default_validator is None:
        _default_validator = SchemaValidator()
    return _default_validator


def validate(schema_id: str, data: Any) -> ValidationResult:
    """Validate data with the shared validator."""
    return get_validator().validate(schema_id, data)
