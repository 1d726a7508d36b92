"""
productmcp - Product price tools served over a stdio JSON-RPC pipe.

A small tool server runs as a child process and answers one JSON request
per line. The client side spawns it, asks a language model which tools to
call for a shopping question, runs those calls in order, and feeds the
total of one step into the discount of the next.

Architecture:
- catalog: immutable product table and tool handlers
- server: line-oriented request loop over stdin/stdout
- protocol: wire models, process transport, typed client
- core: orchestrator, translator, prompts
- cli: interactive shell and one-shot queries
"""

__version__ = "1.0.0"
__author__ = "productmcp contributors"
__license__ = "Apache-2.0"

from productmcp.catalog.products import Product, ProductTable
from productmcp.catalog.tools import ToolCatalog
from productmcp.core.orchestrator import Orchestrator, TurnResult
from productmcp.protocol.client import ProtocolClient
from productmcp.protocol.transport import ProcessTransport

__all__ = [
    "Product",
    "ProductTable",
    "ToolCatalog",
    "Orchestrator",
    "TurnResult",
    "ProtocolClient",
    "ProcessTransport",
    "__version__",
]
