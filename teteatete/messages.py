"""
Application-level messages carried inside envelopes.

Requests are JSON-RPC 2.0 `message/send` calls; the JSON-RPC id doubles as
the correlation id that pairs a response with its request.
"""

import json
import uuid
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List, Union, Callable, Awaitable

from .errors import InvalidPayload, RemoteError
from .schemas import validate, RPC_REQUEST_SCHEMA, RPC_RESPONSE_SCHEMA

logger = logging.getLogger(__name__)

METHOD_MESSAGE_SEND = "message/send"
FALLBACK_RESPONSE_TEXT = "Message received"

# Standard JSON-RPC error codes
JSON_RPC_ERRORS = {
    "PARSE_ERROR": -32700,
    "INVALID_REQUEST": -32600,
    "METHOD_NOT_FOUND": -32601,
    "INVALID_PARAMS": -32602,
    "INTERNAL_ERROR": -32603,
}


def generate_message_id() -> str:
    return f"msg-{uuid.uuid4().hex}"


def generate_task_id() -> str:
    return f"task-{uuid.uuid4().hex}"


@dataclass
class IncomingMessage:
    """A request delivered to the application handler."""
    text: str
    data: Optional[Dict[str, Any]] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SenderInfo:
    """Who sent an incoming message. `public_key` is the verified identity."""
    name: str
    public_key: str


@dataclass
class MessageResponse:
    """What the application handler answers with."""
    text: str
    data: Optional[Dict[str, Any]] = None


@dataclass
class SendResult:
    """Successful outcome of RelayTransport.send()."""
    task_id: Optional[str]
    response: Optional[str]
    data: Optional[Dict[str, Any]] = None
    sender: Optional[str] = None


MessageHandler = Callable[
    [IncomingMessage, SenderInfo],
    Union[MessageResponse, str, Awaitable[Union[MessageResponse, str]]],
]


def build_parts(text: str, data: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    parts: List[Dict[str, Any]] = [{"kind": "text", "text": text}]
    if data:
        parts.append({"kind": "data", "data": data})
    return parts


def _find_part(parts: List[Dict[str, Any]], kind: str) -> Optional[Dict[str, Any]]:
    for part in parts:
        if part.get("kind") == kind:
            return part
    return None


@dataclass
class RpcRequest:
    """Decoded JSON-RPC request."""
    id: Union[str, int]
    method: str
    params: Dict[str, Any]

    @classmethod
    def message_send(
        cls,
        text: str,
        data: Optional[Dict[str, Any]] = None,
        sender: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> "RpcRequest":
        params: Dict[str, Any] = {
            "message": {"role": "user", "parts": build_parts(text, data)},
        }
        if sender:
            params["sender"] = sender
        return cls(id=request_id or generate_message_id(), method=METHOD_MESSAGE_SEND, params=params)

    def to_dict(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "method": self.method,
            "params": self.params,
            "id": self.id,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @property
    def sender_name(self) -> Optional[str]:
        return self.params.get("sender")

    def incoming_message(self) -> Optional[IncomingMessage]:
        """The `message/send` payload, or None if it has no text part."""
        message = self.params.get("message")
        if not isinstance(message, dict):
            return None

        parts = message.get("parts") or []
        text_part = _find_part(parts, "text")
        if not text_part or not text_part.get("text"):
            return None

        data_part = _find_part(parts, "data")
        return IncomingMessage(
            text=text_part["text"],
            data=data_part.get("data") if data_part else None,
            raw=message,
        )


@dataclass
class RpcResponse:
    """Decoded JSON-RPC response (either `result` or `error`)."""
    id: Union[str, int]
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None

    @classmethod
    def success(
        cls,
        request_id: Union[str, int],
        text: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> "RpcResponse":
        return cls(id=request_id, result={
            "task": {"id": generate_task_id(), "status": {"state": "completed"}},
            "message": {"role": "agent", "parts": build_parts(text, data)},
        })

    @classmethod
    def failure(cls, request_id: Union[str, int], code: int, message: str) -> "RpcResponse":
        return cls(id=request_id, error={"code": code, "message": message})

    def to_dict(self) -> dict:
        payload: Dict[str, Any] = {"jsonrpc": "2.0", "id": self.id}
        if self.error is not None:
            payload["error"] = self.error
        else:
            payload["result"] = self.result or {}
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    def to_send_result(self, sender: Optional[str] = None) -> SendResult:
        """
        Convert to the caller-facing result.

        Raises:
            RemoteError: if this is an error response
        """
        if self.error is not None:
            raise RemoteError(self.error["code"], self.error["message"], self.error.get("data"))

        result = self.result or {}
        parts = (result.get("message") or {}).get("parts") or []
        text_part = _find_part(parts, "text")
        data_part = _find_part(parts, "data")

        return SendResult(
            task_id=(result.get("task") or {}).get("id"),
            response=text_part.get("text") if text_part else None,
            data=data_part.get("data") if data_part else None,
            sender=sender,
        )


def parse_payload(plaintext: str) -> Union[RpcRequest, RpcResponse]:
    """
    Decode a decrypted payload into a request or a response.

    Raises:
        InvalidPayload: if the plaintext is not a JSON-RPC request or response
    """
    try:
        data = json.loads(plaintext)
    except (ValueError, RecursionError) as e:
        raise InvalidPayload(f"Payload is not JSON: {e}") from e

    if not isinstance(data, dict):
        raise InvalidPayload("Payload is not a JSON object")

    if "result" in data or "error" in data:
        result = validate(RPC_RESPONSE_SCHEMA, data)
        if not result.valid:
            raise InvalidPayload(f"Invalid response: {'; '.join(result.error_messages)}")
        return RpcResponse(id=data["id"], result=data.get("result"), error=data.get("error"))

    if "method" in data:
        result = validate(RPC_REQUEST_SCHEMA, data)
        if not result.valid:
            raise InvalidPayload(f"Invalid request: {'; '.join(result.error_messages)}")
        return RpcRequest(id=data["id"], method=data["method"], params=data.get("params") or {})

    raise InvalidPayload("Payload is neither a request nor a response")
