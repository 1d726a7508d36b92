"""
productmcp protocol module.

Line-delimited JSON-RPC between the client and the tool server process:

    Orchestrator -> ProtocolClient -> ProcessTransport == pipe ==> ToolServer
"""

from productmcp.protocol.client import ProtocolClient
from productmcp.protocol.schema import (
    CallResult,
    Invocation,
    ProtocolError,
    ServerIdentity,
    StructuredResult,
    ToolDescriptor,
    decode_structured_result,
)
from productmcp.protocol.transport import (
    LineTransport,
    ProcessTransport,
    TransportClosedError,
    TransportError,
    TransportSpawnError,
    TransportTimeoutError,
)

__all__ = [
    "CallResult",
    "Invocation",
    "LineTransport",
    "ProcessTransport",
    "ProtocolClient",
    "ProtocolError",
    "ServerIdentity",
    "StructuredResult",
    "ToolDescriptor",
    "TransportClosedError",
    "TransportError",
    "TransportSpawnError",
    "TransportTimeoutError",
    "decode_structured_result",
]
