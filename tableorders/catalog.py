"""
Product catalog lookup.

Catalog management lives elsewhere; the manager only needs to know whether a
product exists and can be sold right now.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Dict, Iterable, Optional

from pydantic import BaseModel


class Product(BaseModel):
    id: str
    name: str
    price: Decimal
    is_available: bool = True


class ProductCatalog(ABC):
    """Read-only view over the product catalog."""

    @abstractmethod
    def get_product(self, product_id: str) -> Optional[Product]:
        """Return the product, or None if it is unknown."""
        ...


class InMemoryCatalog(ProductCatalog):
    """Catalog backed by a dict, for seeding and tests."""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def add(self, product: Product) -> None:
        self._products[product.id] = product

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)
