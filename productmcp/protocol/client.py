"""Typed protocol client over a line transport: handshake, list tools, call tool."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from productmcp import __version__
from productmcp.protocol.schema import (
    PROTOCOL_VERSION,
    ProtocolError,
    RequestEnvelope,
    ResponseEnvelope,
    ServerIdentity,
    ToolDescriptor,
)
from productmcp.protocol.transport import LineTransport, TransportClosedError

logger = logging.getLogger(__name__)


class ProtocolClient:
    """
    Request/response client for the tool server.

    Each method sends exactly one line and waits for exactly one line.
    Replies are taken strictly in send order; the ``id`` of a reply is only
    compared with the request for a warning, never used to route it. That
    is correct only while one request is in flight, which the internal lock
    guarantees for callers sharing this instance.

    Transport faults (``TransportError`` subclasses) and malformed replies
    (``ProtocolError``) propagate to the caller as distinct exception types.
    """

    def __init__(
        self,
        transport: LineTransport,
        client_name: str = "productmcp-client",
        client_version: str = __version__,
        timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.client_name = client_name
        self.client_version = client_version
        self.timeout = timeout
        self._request_id = 0
        self._lock = threading.Lock()
        self._out_of_step = False

    # ── Exchange ──────────────────────────────────────────────────────────

    def _exchange(self, method: str, params: Optional[Dict[str, Any]] = None) -> Tuple[int, str]:
        """Send one request and return ``(request_id, raw_reply_line)``."""
        with self._lock:
            if self._out_of_step:
                # A late reply to the unanswered request would be read as ours.
                raise TransportClosedError("Client is unusable after an unanswered request")

            self._request_id += 1
            request = RequestEnvelope(id=self._request_id, method=method, params=params)
            logger.debug("-> %s id=%s", method, request.id)

            self.transport.send(request.to_line())
            try:
                raw = self.transport.receive_line(timeout=self.timeout)
            except BaseException:
                # Timeout or Ctrl+C: the reply may still arrive and would be
                # read as the answer to the next request.
                self._out_of_step = True
                raise
            if raw is None:
                raise TransportClosedError(f"Tool server closed the connection before answering {method}")

            logger.debug("<- %s id=%s (%d bytes)", method, request.id, len(raw))
            return request.id, raw

    def _request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Tuple[ResponseEnvelope, str]:
        request_id, raw = self._exchange(method, params)
        envelope = ResponseEnvelope.from_line(raw)
        if envelope.id is not None and envelope.id != request_id:
            logger.warning("Reply id %s does not match request id %s for %s", envelope.id, request_id, method)
        return envelope, raw

    # ── Operations ────────────────────────────────────────────────────────

    def handshake(self) -> ServerIdentity:
        """Send ``initialize`` and report who answered, as far as the reply says."""
        envelope, _ = self._request("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": self.client_name, "version": self.client_version},
        })
        result = envelope.result

        capabilities = result.get("capabilities")
        protocol_version = result.get("protocolVersion")
        common = {
            "protocol_version": protocol_version if isinstance(protocol_version, str) else "",
            "capabilities": capabilities if isinstance(capabilities, dict) else {},
        }

        info = result.get("serverInfo")
        if not isinstance(info, dict):
            logger.warning("initialize reply carried no serverInfo")
            return ServerIdentity(reported=False, **common)

        return ServerIdentity(
            name=str(info.get("name", "unknown")),
            version=str(info.get("version", "unknown")),
            **common,
        )

    def list_tools(self) -> List[ToolDescriptor]:
        """Send ``tools/list``; the reply must carry a ``tools`` array."""
        envelope, raw = self._request("tools/list")
        tools = envelope.result.get("tools")
        if not isinstance(tools, list):
            raise ProtocolError("tools/list reply has no tools array", raw=raw)

        descriptors: List[ToolDescriptor] = []
        for entry in tools:
            if not isinstance(entry, dict):
                logger.warning("Skipping tool entry that is not an object: %r", entry)
                continue
            try:
                descriptors.append(ToolDescriptor(**entry))
            except (TypeError, ValidationError) as exc:
                logger.warning("Skipping malformed tool entry %r: %s", entry.get("name"), exc)
        return descriptors

    def call_tool(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> str:
        """
        Send ``tools/call`` and return the reply line undecoded.

        A missing reply raises ``TransportClosedError``; an error-shaped
        result is still a normal return value.
        """
        _, raw = self._exchange("tools/call", {"name": name, "arguments": arguments or {}})
        return raw

    def close(self, timeout: Optional[float] = 5.0) -> Optional[int]:
        """Shut the transport down."""
        return self.transport.terminate(timeout=timeout)
