"""Tests for wire models and result decoding."""

import json

import pytest

from productmcp.protocol.schema import (
    CallResult,
    ProtocolError,
    RequestEnvelope,
    ResponseEnvelope,
    ServerIdentity,
    StructuredResult,
    ToolDescriptor,
    decode_structured_result,
)


def reply(result, request_id=1):
    return json.dumps({"jsonrpc": "2.0", "id": request_id, "result": result})


class TestDecodeStructuredResult:
    """Tests for decode_structured_result."""

    def test_decodes_both_layers(self):
        """Test the JSON inside the text content becomes the result record."""
        raw = reply(CallResult.structured({"success": True, "total_price": 20000.0, "message": "ok"}).to_wire())
        result = decode_structured_result(raw)

        assert result.success is True
        assert result.message == "ok"
        assert result.number("total_price") == 20000.0
        assert result.is_error is False

    def test_error_result(self):
        """Test an error result keeps its error text and flag."""
        raw = reply(CallResult.structured(
            {"success": False, "error": "Product not found", "product_id": "9"}, is_error=True,
        ).to_wire())
        result = decode_structured_result(raw)

        assert result.success is False
        assert result.is_error is True
        assert result.display_text() == "Product not found"
        assert result.data["product_id"] == "9"

    def test_success_defaults_from_error_flag(self):
        """Test a record without success takes it from isError."""
        raw = reply(CallResult.structured({"message": "hm"}, is_error=True).to_wire())
        assert decode_structured_result(raw).success is False

    def test_plain_text_is_a_message(self):
        """Test non-JSON text is a successful plain message."""
        result = decode_structured_result(reply(CallResult.text("Available tools: ...").to_wire()))

        assert result.success is True
        assert result.message == "Available tools: ..."
        assert result.data == {"success": True, "message": "Available tools: ..."}

    def test_json_array_text_is_a_message(self):
        """Test JSON that is not an object is kept as text."""
        result = decode_structured_result(reply(CallResult.text("[1, 2]").to_wire()))
        assert result.message == "[1, 2]"

    @pytest.mark.parametrize("raw", [
        '{"jsonrpc": "2.0", "id": 1, "result": {"content": [{"type": "te',
        "[]",
        '{"jsonrpc": "2.0", "id": 1}',
        reply({"isError": False, "content": []}),
        reply({"content": "not a list"}),
    ])
    def test_malformed_replies(self, raw):
        """Test malformed envelopes raise ProtocolError carrying the raw line."""
        with pytest.raises(ProtocolError) as excinfo:
            decode_structured_result(raw)
        assert excinfo.value.raw == raw

    def test_bool_is_not_a_number(self):
        """Test number() refuses booleans and strings."""
        result = StructuredResult(data={"flag": True, "text": "5", "n": 3})

        assert result.number("flag") is None
        assert result.number("text") is None
        assert result.number("missing") is None
        assert result.number("n") == 3


class TestEnvelopes:
    """Tests for request and response envelopes."""

    def test_request_omits_missing_params(self):
        """Test params are left out when not given."""
        line = RequestEnvelope(id=2, method="tools/list").to_line()
        assert json.loads(line) == {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}

    def test_request_is_one_line(self):
        """Test non-ASCII arguments stay on a single line."""
        line = RequestEnvelope(id=1, method="tools/call", params={"name": "x", "arguments": {"q": "打三折\n"}}).to_line()
        assert "\n" not in line
        assert "打三折" in line

    def test_response_without_id(self):
        """Test a reply with a null id still parses."""
        envelope = ResponseEnvelope.from_line('{"jsonrpc": "2.0", "id": null, "result": {}}')
        assert envelope.id is None

    def test_protocol_error_truncates_raw(self):
        """Test long raw lines are shortened in the message."""
        error = ProtocolError("bad", raw="x" * 500)
        assert len(str(error)) < 300
        assert error.raw == "x" * 500


class TestToolDescriptor:
    """Tests for ToolDescriptor."""

    def test_wire_round_trip(self):
        """Test a descriptor read from the wire writes back the same keys."""
        wire = {
            "name": "get_price",
            "description": "Get a price",
            "inputSchema": {"type": "object", "properties": {"product_id": {"type": "string"}},
                            "required": ["product_id"]},
        }
        descriptor = ToolDescriptor(**wire)

        assert descriptor.to_wire() == wire
        assert descriptor.required_arguments() == ["product_id"]

    def test_function_tool_shape(self):
        """Test the chat-completion function shape reuses the input schema."""
        descriptor = ToolDescriptor(name="help", description="List tools\nmore")
        tool = descriptor.to_function_tool()

        assert tool["type"] == "function"
        assert tool["function"]["name"] == "help"
        assert tool["function"]["parameters"] == {"type": "object", "properties": {}}
        assert descriptor.summary() == "List tools"
        assert ToolDescriptor(name="bare").summary() == ""

    def test_identity_describe(self):
        """Test an unreported identity says so."""
        assert ServerIdentity(name="S", version="1").describe() == "S v1"
        assert ServerIdentity(reported=False).describe() == "unidentified server"
