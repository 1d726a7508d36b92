"""Immutable product table consulted by the tool handlers."""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from productmcp.validation.config import CatalogConfig


class Product(BaseModel):
    """A single product row."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    price: float


class ProductTable:
    """
    Read-only lookup of products by id.

    Built once at server start and handed to the tool catalog; nothing
    mutates it afterwards.
    """

    def __init__(self, products: Iterable[Product]):
        rows = tuple(products)
        by_id = {}
        for product in rows:
            if product.id in by_id:
                raise ValueError(f"Duplicate product id: {product.id}")
            by_id[product.id] = product
        self._rows: Tuple[Product, ...] = rows
        self._by_id: Mapping[str, Product] = MappingProxyType(by_id)

    @classmethod
    def from_config(cls, config: CatalogConfig) -> "ProductTable":
        return cls(Product(id=p.id, name=p.name, price=p.price) for p in config.products)

    def get(self, product_id: str) -> Optional[Product]:
        return self._by_id.get(product_id)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self._by_id

    def __iter__(self) -> Iterator[Product]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def mapping_text(self) -> str:
        """Product lines for tool descriptions, e.g. ``- Laptop -> ID: "1", Price: $1000.0``."""
        return "\n".join(f'- {p.name} -> ID: "{p.id}", Price: ${p.price:.1f}' for p in self._rows)
