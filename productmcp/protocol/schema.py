"""Wire models for the line-delimited JSON-RPC protocol and the decoded results."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

PROTOCOL_VERSION = "2024-11-05"
JSONRPC_VERSION = "2.0"


class ProtocolError(Exception):
    """A reply line that is not valid JSON or lacks an expected field."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw

    def __str__(self) -> str:
        base = super().__str__()
        if not self.raw:
            return base
        snippet = self.raw if len(self.raw) <= 200 else self.raw[:200] + "..."
        return f"{base} (raw: {snippet!r})"


# ── Tool advertisement ────────────────────────────────────────────────────


class ToolDescriptor(BaseModel):
    """A tool as advertised by ``tools/list``. Immutable once registered."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        alias="inputSchema",
    )

    def required_arguments(self) -> List[str]:
        return list(self.input_schema.get("required", []))

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)

    def to_function_tool(self) -> Dict[str, Any]:
        """Shape expected by OpenAI-style chat completion ``tools``."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }

    def summary(self) -> str:
        """First line of the description, for listings."""
        return self.description.split("\n")[0] if self.description else ""


# ── Call results ──────────────────────────────────────────────────────────


class ContentItem(BaseModel):
    type: str = "text"
    text: str = ""


class CallResult(BaseModel):
    """
    Result of ``tools/call``.

    Failures use the same shape with ``isError`` set; the text of the first
    content item is usually itself a JSON document (see ``StructuredResult``).
    """

    model_config = ConfigDict(populate_by_name=True)

    is_error: bool = Field(default=False, alias="isError")
    content: List[ContentItem] = Field(default_factory=list)

    @classmethod
    def text(cls, text: str, is_error: bool = False) -> "CallResult":
        return cls(is_error=is_error, content=[ContentItem(text=text)])

    @classmethod
    def structured(cls, payload: Dict[str, Any], is_error: bool = False) -> "CallResult":
        """Encode ``payload`` as JSON text content."""
        return cls.text(json.dumps(payload, ensure_ascii=False), is_error=is_error)

    def first_text(self) -> Optional[str]:
        for item in self.content:
            if item.text:
                return item.text
        return None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


# ── Envelopes ─────────────────────────────────────────────────────────────


class RequestEnvelope(BaseModel):
    """One request line. ``id`` is informational only, see ``ProtocolClient``."""

    jsonrpc: str = JSONRPC_VERSION
    id: int
    method: str
    params: Optional[Dict[str, Any]] = None

    def to_line(self) -> str:
        return json.dumps(self.model_dump(exclude_none=True), ensure_ascii=False)


class ResponseEnvelope(BaseModel):
    """One response line. Failures are carried inside ``result``."""

    jsonrpc: str = JSONRPC_VERSION
    id: Optional[int] = None
    result: Dict[str, Any] = Field(default_factory=dict)

    def to_line(self) -> str:
        return json.dumps(self.model_dump(), ensure_ascii=False)

    @classmethod
    def from_line(cls, raw: str) -> "ResponseEnvelope":
        """Parse a reply line, raising ``ProtocolError`` on anything unexpected."""
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ProtocolError(f"Response is not valid JSON: {exc}", raw=raw)
        if not isinstance(data, dict):
            raise ProtocolError("Response is not a JSON object", raw=raw)
        if "result" not in data:
            raise ProtocolError("Response has no result field", raw=raw)
        try:
            return cls(**data)
        except (TypeError, ValidationError) as exc:
            raise ProtocolError(f"Malformed response envelope: {exc}", raw=raw)


class ServerIdentity(BaseModel):
    """What ``initialize`` told us about the server; fields are best effort."""

    name: str = "unknown"
    version: str = "unknown"
    protocol_version: str = ""
    capabilities: Dict[str, Any] = Field(default_factory=dict)
    reported: bool = True  # False when the reply carried no serverInfo

    def describe(self) -> str:
        if not self.reported:
            return "unidentified server"
        return f"{self.name} v{self.version}"


# ── Orchestration values ──────────────────────────────────────────────────


class Invocation(BaseModel):
    """One tool call chosen by the translator."""

    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    parse_error: Optional[str] = None  # set when the translator's arguments were unusable


class StructuredResult(BaseModel):
    """
    A tool's decoded result record.

    ``data`` holds every field of the decoded record, including ``success``
    and ``message``; the typed attributes are conveniences over it.
    """

    success: bool = True
    message: Optional[str] = None
    error: Optional[str] = None
    is_error: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)

    def number(self, field: str) -> Optional[float]:
        """Return ``data[field]`` if it is a real number (bools excluded)."""
        value = self.data.get(field)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    def display_text(self) -> Optional[str]:
        return self.message or self.error


def decode_structured_result(raw: str) -> StructuredResult:
    """
    Decode a raw ``tools/call`` reply line into a ``StructuredResult``.

    Two layers are unwrapped: the response envelope (whose failure is a
    ``ProtocolError``) and the JSON document inside the first text content
    item. Text that is not a JSON object becomes ``{success: true, message:
    text}``.
    """
    envelope = ResponseEnvelope.from_line(raw)
    try:
        call = CallResult(**envelope.result)
    except (TypeError, ValidationError) as exc:
        raise ProtocolError(f"Result is not a tool call result: {exc}", raw=raw)

    text = call.first_text()
    if text is None:
        raise ProtocolError("Tool call result has no text content", raw=raw)

    try:
        record = json.loads(text)
    except ValueError:
        record = None

    if not isinstance(record, dict):
        return StructuredResult(
            success=True,
            message=text,
            is_error=call.is_error,
            data={"success": True, "message": text},
        )

    success = record.get("success", not call.is_error)
    message = record.get("message")
    error = record.get("error")
    return StructuredResult(
        success=bool(success),
        message=message if isinstance(message, str) else None,
        error=error if isinstance(error, str) else None,
        is_error=call.is_error,
        data=record,
    )
