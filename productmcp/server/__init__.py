"""
productmcp server module.

The tool server process: reads requests from stdin, answers on stdout.
"""

from productmcp.server.runtime import ToolServer, build_server

__all__ = ["ToolServer", "build_server"]
