"""
Tool server runtime - one JSON request per input line, one JSON reply per output line.

The loop reads until its input is closed or ``stop()`` is called (the
signal handlers do that). A line that cannot be understood still gets
exactly one error-shaped reply; nothing a client sends can end the loop.
"""

from __future__ import annotations

import json
import logging
import signal
from typing import Any, Dict, Optional, TextIO

from productmcp import __version__
from productmcp.catalog.products import ProductTable
from productmcp.catalog.tools import ToolCatalog
from productmcp.protocol.schema import PROTOCOL_VERSION, CallResult, ResponseEnvelope
from productmcp.validation.config import CatalogConfig

logger = logging.getLogger(__name__)

SERVER_NAME = "Product Price Server"


def error_result(message: str, **fields: Any) -> Dict[str, Any]:
    """
    Error payload readable both as ``result.success`` and as a ``CallResult``.
    """
    payload: Dict[str, Any] = {"success": False, "error": message, "message": message}
    payload.update(fields)
    result = CallResult.structured(payload, is_error=True).to_wire()
    result.update(payload)
    return result


class ToolServer:
    """
    Dispatches protocol requests to a ``ToolCatalog``.

    Example:
        >>> server = ToolServer(catalog)
        >>> server.handle_line('{"jsonrpc": "2.0", "id": 1, "method": "tools/list"}').result["tools"]
    """

    def __init__(self, catalog: ToolCatalog, name: str = SERVER_NAME, version: str = __version__):
        self.catalog = catalog
        self.name = name
        self.version = version
        self._stopping = False

    # ── Dispatch ──────────────────────────────────────────────────────────

    def handle_line(self, line: str) -> ResponseEnvelope:
        """Turn one raw input line into exactly one response."""
        text = line.strip()
        if not text:
            return ResponseEnvelope(id=None, result=error_result("Empty request line"))

        try:
            request = json.loads(text)
        except ValueError as exc:
            logger.warning("Unparsable request line: %s", exc)
            return ResponseEnvelope(id=None, result=error_result(f"Parse error: {exc}"))

        if not isinstance(request, dict):
            return ResponseEnvelope(id=None, result=error_result("Request must be a JSON object"))

        request_id = request.get("id")
        if isinstance(request_id, bool) or not isinstance(request_id, int):
            if request_id is not None:
                logger.warning("Ignoring non-integer request id: %r", request_id)
            request_id = None

        method = request.get("method")
        if not isinstance(method, str) or not method:
            return ResponseEnvelope(id=request_id, result=error_result("Missing method"))

        logger.debug("Request %s: %s", request_id, method)
        return ResponseEnvelope(id=request_id, result=self.dispatch(method, request.get("params")))

    def dispatch(self, method: str, params: Any) -> Dict[str, Any]:
        if method == "initialize":
            return self._initialize(params)
        if method == "tools/list":
            return {"tools": [d.to_wire() for d in self.catalog.descriptors()]}
        if method == "tools/call":
            return self._call_tool(params)
        logger.warning("Unknown method: %s", method)
        return error_result(f"Unknown method: {method}", method=method)

    def _initialize(self, params: Any) -> Dict[str, Any]:
        if isinstance(params, dict):
            client = params.get("clientInfo") or {}
            if isinstance(client, dict):
                logger.info("Client connected: %s %s", client.get("name"), client.get("version"))
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": self.name, "version": self.version},
        }

    def _call_tool(self, params: Any) -> Dict[str, Any]:
        if not isinstance(params, dict):
            return CallResult.structured(
                {"success": False, "error": "tools/call requires params", "message": "tools/call requires params"},
                is_error=True,
            ).to_wire()

        name = params.get("name")
        if not isinstance(name, str):
            message = "tools/call params.name must be a string"
            return CallResult.structured(
                {"success": False, "error": message, "message": message, "field": "name"},
                is_error=True,
            ).to_wire()

        result = self.catalog.call(name, params.get("arguments"))
        return result.to_wire()

    # ── Loop ──────────────────────────────────────────────────────────────

    def serve(self, stdin: TextIO, stdout: TextIO) -> None:
        """Serve until end of input or ``stop()``."""
        logger.info("%s v%s serving %d tools", self.name, self.version, len(self.catalog))
        while not self._stopping:
            line = stdin.readline()
            if not line:
                logger.info("Input closed, shutting down")
                break

            try:
                response = self.handle_line(line)
            except Exception as exc:
                logger.exception("Request handling failed")
                response = ResponseEnvelope(id=None, result=error_result(f"Internal error: {exc}"))

            stdout.write(response.to_line() + "\n")
            stdout.flush()

    def stop(self) -> None:
        self._stopping = True


def install_signal_handlers(server: ToolServer) -> None:
    """Stop ``server`` and leave the process on SIGINT or SIGTERM."""

    def _handle(signum, frame):
        logger.info("Received signal %s, shutting down", signum)
        server.stop()
        raise SystemExit(0)

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def build_server(catalog_config: CatalogConfig, name: Optional[str] = None) -> ToolServer:
    """Build the product table, the catalog and the server from config."""
    products = ProductTable.from_config(catalog_config)
    catalog = ToolCatalog.build(products, catalog_config)
    return ToolServer(catalog, name=name or SERVER_NAME)
