"""
Tests for JSON-RPC request/response payloads.
"""

import json

import pytest

from teteatete.errors import InvalidPayload, RemoteError
from teteatete.messages import (
    RpcRequest, RpcResponse, parse_payload, build_parts,
    METHOD_MESSAGE_SEND, JSON_RPC_ERRORS,
)


class TestRpcRequest:
    """Tests for message/send requests."""

    def test_message_send_shape(self):
        request = RpcRequest.message_send("hi", {"k": 1}, sender="alice")
        data = request.to_dict()

        assert data["jsonrpc"] == "2.0"
        assert data["method"] == METHOD_MESSAGE_SEND
        assert data["id"].startswith("msg-")
        assert data["params"]["sender"] == "alice"
        assert data["params"]["message"]["parts"] == [
            {"kind": "text", "text": "hi"},
            {"kind": "data", "data": {"k": 1}},
        ]

    def test_ids_are_unique(self):
        assert RpcRequest.message_send("a").id != RpcRequest.message_send("a").id

    def test_no_data_part_without_data(self):
        assert build_parts("hi") == [{"kind": "text", "text": "hi"}]

    def test_incoming_message(self):
        request = RpcRequest.message_send("hello", {"x": [1, 2]})
        incoming = request.incoming_message()

        assert incoming.text == "hello"
        assert incoming.data == {"x": [1, 2]}

    def test_incoming_message_requires_text(self):
        request = RpcRequest(id="1", method=METHOD_MESSAGE_SEND, params={
            "message": {"parts": [{"kind": "data", "data": {}}]},
        })

        assert request.incoming_message() is None

    def test_sender_name_optional(self):
        assert RpcRequest.message_send("hi").sender_name is None


class TestRpcResponse:
    """Tests for responses and their conversion to SendResult."""

    def test_success_to_send_result(self):
        response = RpcResponse.success("msg-1", "pong", {"n": 2})
        result = response.to_send_result(sender="ab" * 32)

        assert result.response == "pong"
        assert result.data == {"n": 2}
        assert result.task_id.startswith("task-")
        assert result.sender == "ab" * 32

    def test_failure_raises_remote_error(self):
        response = RpcResponse.failure("msg-1", JSON_RPC_ERRORS["METHOD_NOT_FOUND"], "nope")

        with pytest.raises(RemoteError) as exc_info:
            response.to_send_result()

        assert exc_info.value.code == -32601
        assert exc_info.value.message == "nope"

    def test_failure_serializes_error_only(self):
        data = RpcResponse.failure("msg-1", -32602, "bad params").to_dict()

        assert "result" not in data
        assert data["error"] == {"code": -32602, "message": "bad params"}


class TestParsePayload:
    """Tests for decoding decrypted plaintext."""

    def test_parses_request(self):
        request = RpcRequest.message_send("hi", sender="bob")
        parsed = parse_payload(request.to_json())

        assert isinstance(parsed, RpcRequest)
        assert parsed.id == request.id
        assert parsed.incoming_message().text == "hi"

    def test_parses_response(self):
        response = RpcResponse.success("msg-9", "ok")
        parsed = parse_payload(response.to_json())

        assert isinstance(parsed, RpcResponse)
        assert parsed.id == "msg-9"
        assert parsed.to_send_result().response == "ok"

    def test_parses_error_response(self):
        parsed = parse_payload(RpcResponse.failure(7, -32603, "boom").to_json())

        assert isinstance(parsed, RpcResponse)
        assert parsed.error["code"] == -32603

    @pytest.mark.parametrize("plaintext", [
        "not json",
        "[1, 2]",
        json.dumps({"jsonrpc": "2.0", "id": "x"}),
        json.dumps({"jsonrpc": "1.0", "method": "message/send", "id": "x"}),
        json.dumps({"jsonrpc": "2.0", "method": "message/send"}),
        json.dumps({"jsonrpc": "2.0", "id": "x", "result": {}, "error": {"code": 1, "message": "m"}}),
        json.dumps({"jsonrpc": "2.0", "id": "x", "error": {"message": "no code"}}),
        "[" * 100000,
    ])
    def test_rejects_invalid(self, plaintext):
        with pytest.raises(InvalidPayload):
            parse_payload(plaintext)
