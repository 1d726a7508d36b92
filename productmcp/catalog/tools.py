"""
Tool catalog - the fixed set of tools the server advertises and dispatches.

Handlers are pure functions of their arguments, the product table and the
configured limits. Business-rule violations (unknown product, quantity out
of range) come back as error-shaped ``CallResult`` values; malformed
arguments raise ``ToolArgumentError``, which ``ToolCatalog.call`` turns into
the same error shape so no handler failure ever reaches the transport.

Discount convention: ``discount_percentage`` is the share of the original
price the customer still pays ("retain percentage"), so 80 means pay 80%
and save 20%. An older handler variant subtracted the percentage instead;
that formula is not supported.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from productmcp.catalog.products import ProductTable
from productmcp.protocol.schema import CallResult, ToolDescriptor
from productmcp.validation.config import CatalogConfig

logger = logging.getLogger(__name__)

Handler = Callable[[Dict[str, Any]], CallResult]


class ToolArgumentError(Exception):
    """Raised by a handler when an argument is missing or of the wrong kind."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


@dataclass(frozen=True)
class ToolEntry:
    """A registered tool: what we advertise plus the function that runs it."""

    descriptor: ToolDescriptor
    handler: Handler

    @property
    def name(self) -> str:
        return self.descriptor.name


def _error(message: str, **fields: Any) -> CallResult:
    payload = {"success": False, "error": message, "message": message}
    payload.update(fields)
    return CallResult.structured(payload, is_error=True)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_mapping(arguments: Any) -> Dict[str, Any]:
    if arguments is None:
        return {}
    if not isinstance(arguments, dict):
        raise ToolArgumentError("arguments", "arguments must be an object")
    return arguments


class ProductTools:
    """Handlers for the product tools, bound to one product table and limits."""

    def __init__(self, products: ProductTable, limits: CatalogConfig):
        self.products = products
        self.limits = limits

    # ── get_price ─────────────────────────────────────────────────────────

    def get_price(self, arguments: Dict[str, Any]) -> CallResult:
        arguments = _require_mapping(arguments)
        if "product_id" not in arguments:
            raise ToolArgumentError("product_id", "product_id is required")
        product_id = arguments["product_id"]
        if not isinstance(product_id, str):
            raise ToolArgumentError("product_id", "product_id must be a string")

        product = self.products.get(product_id)
        if product is None:
            return _error("Product not found", product_id=product_id)

        return CallResult.structured({
            "success": True,
            "product_id": product.id,
            "product_name": product.name,
            "price": product.price,
            "message": f"The price of {product.name} is ${product.price:.2f}",
        })

    # ── calculate_total ───────────────────────────────────────────────────

    def calculate_total(self, arguments: Dict[str, Any]) -> CallResult:
        arguments = _require_mapping(arguments)
        if "items" not in arguments:
            raise ToolArgumentError("items", "items is required")
        items = arguments["items"]
        if not isinstance(items, list):
            raise ToolArgumentError("items", "items must be an array")
        if not items:
            return _error("At least one item is required", field="items")

        # Validate every item before pricing any of them.
        lines = []
        for index, item in enumerate(items):
            where = f"items[{index}]"
            if not isinstance(item, dict):
                raise ToolArgumentError(where, "Invalid item format")

            product_id = item.get("product_id")
            if not isinstance(product_id, str):
                raise ToolArgumentError(f"{where}.product_id", "Invalid product ID format")
            product = self.products.get(product_id)
            if product is None:
                return _error(f"Product with ID {product_id} not found", product_id=product_id)

            quantity = item.get("quantity")
            if not _is_number(quantity):
                raise ToolArgumentError(f"{where}.quantity", "Invalid quantity format")
            if isinstance(quantity, float) and not quantity.is_integer():
                return _error("Quantity must be an integer", field=f"{where}.quantity", quantity=quantity)
            if quantity < self.limits.min_quantity:
                return _error(
                    f"Quantity must be at least {self.limits.min_quantity}",
                    field=f"{where}.quantity",
                    quantity=quantity,
                )
            if quantity > self.limits.max_quantity:
                return _error(
                    f"Quantity cannot exceed {self.limits.max_quantity}",
                    field=f"{where}.quantity",
                    quantity=quantity,
                )
            lines.append((product, int(quantity)))

        total = 0.0
        details: List[Dict[str, Any]] = []
        for product, quantity in lines:
            item_total = product.price * quantity
            total += item_total
            details.append({
                "product_id": product.id,
                "product_name": product.name,
                "price": product.price,
                "quantity": quantity,
                "item_total": item_total,
            })

        return CallResult.structured({
            "success": True,
            "total_price": total,
            "items": details,
            "item_count": len(details),
            "message": f"Total price is ${total:.2f}",
        })

    # ── apply_discount ────────────────────────────────────────────────────

    def apply_discount(self, arguments: Dict[str, Any]) -> CallResult:
        arguments = _require_mapping(arguments)
        for field in ("total_price", "discount_percentage"):
            if field not in arguments:
                raise ToolArgumentError(field, f"{field} is required")
            if not _is_number(arguments[field]):
                raise ToolArgumentError(field, f"{field} must be a number")

        total_price = float(arguments["total_price"])
        percentage = float(arguments["discount_percentage"])

        for field, value in (("total_price", total_price), ("discount_percentage", percentage)):
            if not math.isfinite(value):
                return _error(f"{field} must be a finite number", field=field)

        if total_price <= 0:
            return _error("total_price must be positive", field="total_price", total_price=total_price)

        floor, ceiling = self.limits.discount_floor, self.limits.discount_ceiling
        if not floor < percentage < ceiling:
            return _error(
                f"discount_percentage must be between {floor:g} and {ceiling:g} (exclusive)",
                field="discount_percentage",
                discount_percentage=percentage,
            )

        # Retain convention: the customer pays `percentage` percent.
        discounted = round(total_price * percentage / 100, 2)
        saved = round(total_price - discounted, 2)

        return CallResult.structured({
            "success": True,
            "original_price": total_price,
            "discount_percentage": percentage,
            "discounted_price": discounted,
            "saved_amount": saved,
            "message": (
                f"Original price: ${total_price:.2f}, After {percentage:.0f}% discount: "
                f"${discounted:.2f} (You save: ${saved:.2f})"
            ),
        })

    # ── help ──────────────────────────────────────────────────────────────

    def help(self, arguments: Dict[str, Any]) -> CallResult:
        return CallResult.text(self.help_text())

    def help_text(self) -> str:
        product_lines = "\n".join(
            f'- "{p.id}": {p.name} (${p.price:g})' for p in self.products
        )
        return (
            "Available tools:\n\n"
            "1. get_price - Get the price of a product by ID\n"
            "   Parameters: product_id (string)\n"
            '   Example: {"product_id": "1"}\n\n'
            "2. calculate_total - Calculate total price for multiple items\n"
            "   Parameters: items (array of {product_id, quantity})\n"
            f"   Quantity must be a whole number from {self.limits.min_quantity} "
            f"to {self.limits.max_quantity}\n"
            '   Example: {"items": [{"product_id": "1", "quantity": 2}]}\n\n'
            "3. apply_discount - Apply discount to a total price\n"
            "   Parameters: total_price (number), discount_percentage (number)\n"
            '   Example: {"total_price": 1000, "discount_percentage": 30}\n\n'
            f"Product IDs:\n{product_lines}\n\n"
            "Note: discount_percentage represents the percentage to keep "
            "(e.g., 30 for 30% of original price)"
        )

    # ── Descriptors ───────────────────────────────────────────────────────

    def entries(self) -> List[ToolEntry]:
        mapping = self.products.mapping_text()
        return [
            ToolEntry(
                ToolDescriptor(
                    name="help",
                    description="Show all supported operations and examples",
                    input_schema={"type": "object", "properties": {}},
                ),
                self.help,
            ),
            ToolEntry(
                ToolDescriptor(
                    name="get_price",
                    description=f"Get the price of a product by its ID.\nProduct mapping:\n{mapping}",
                    input_schema={
                        "type": "object",
                        "properties": {
                            "product_id": {
                                "type": "string",
                                "description": "The ID of the product to get the price of",
                            },
                        },
                        "required": ["product_id"],
                    },
                ),
                self.get_price,
            ),
            ToolEntry(
                ToolDescriptor(
                    name="calculate_total",
                    description=(
                        f"Calculate the total price for multiple items.\nProduct mapping:\n{mapping}"
                    ),
                    input_schema={
                        "type": "object",
                        "properties": {
                            "items": {
                                "type": "array",
                                "description": "Array of items with product_id and quantity",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "product_id": {
                                            "type": "string",
                                            "description": "The ID of the product",
                                        },
                                        "quantity": {
                                            "type": "integer",
                                            "description": "The quantity of the product",
                                            "minimum": self.limits.min_quantity,
                                            "maximum": self.limits.max_quantity,
                                        },
                                    },
                                    "required": ["product_id", "quantity"],
                                },
                            },
                        },
                        "required": ["items"],
                    },
                ),
                self.calculate_total,
            ),
            ToolEntry(
                ToolDescriptor(
                    name="apply_discount",
                    description=(
                        "Apply a discount to the total price.\n"
                        "discount_percentage is the percentage of the original price that is "
                        'still paid: "打8折" (80) means paying 80% and saving 20%, '
                        '"打3折" (30) means paying 30% and saving 70%.'
                    ),
                    input_schema={
                        "type": "object",
                        "properties": {
                            "total_price": {
                                "type": "number",
                                "description": "The total price to apply the discount to",
                            },
                            "discount_percentage": {
                                "type": "number",
                                "description": "The percentage to keep (e.g., 30 for 打3折, 80 for 打8折)",
                            },
                        },
                        "required": ["total_price", "discount_percentage"],
                    },
                ),
                self.apply_discount,
            ),
        ]


class ToolCatalog:
    """
    Registry of tools by name, built once and never mutated.

    Example:
        >>> catalog = ToolCatalog.build(products, CatalogConfig())
        >>> catalog.call("get_price", {"product_id": "1"}).is_error
        False
    """

    def __init__(self, entries: Iterable[ToolEntry]):
        by_name: Dict[str, ToolEntry] = {}
        for entry in entries:
            if entry.name in by_name:
                raise ValueError(f"Tool registered twice: {entry.name}")
            by_name[entry.name] = entry
        self._entries: Mapping[str, ToolEntry] = MappingProxyType(by_name)

    @classmethod
    def build(cls, products: ProductTable, limits: CatalogConfig) -> "ToolCatalog":
        return cls(ProductTools(products, limits).entries())

    def descriptors(self) -> List[ToolDescriptor]:
        return [entry.descriptor for entry in self._entries.values()]

    def get(self, name: str) -> Optional[ToolEntry]:
        return self._entries.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def call(self, name: str, arguments: Any) -> CallResult:
        """Run a tool by name. Always returns a ``CallResult``."""
        entry = self._entries.get(name)
        if entry is None:
            logger.warning("Unknown tool requested: %s", name)
            return _error(f"Unknown tool: {name}", tool=name)

        try:
            return entry.handler(arguments)
        except ToolArgumentError as exc:
            logger.info("Rejected %s arguments: %s (%s)", name, exc.message, exc.field)
            return _error(exc.message, field=exc.field, tool=name)
