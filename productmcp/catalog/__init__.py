"""
productmcp catalog module.

Immutable product table and the tool handlers built on top of it.
"""

from productmcp.catalog.products import Product, ProductTable
from productmcp.catalog.tools import ToolArgumentError, ToolCatalog, ToolEntry

__all__ = ["Product", "ProductTable", "ToolArgumentError", "ToolCatalog", "ToolEntry"]
