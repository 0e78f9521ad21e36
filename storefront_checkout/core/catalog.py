"""Product catalog lookups used when adding to the cart or buying now."""
from typing import Dict, Iterable, List, Optional, Protocol

from storefront_checkout.domain.models import ProductSnapshot


class ProductCatalog(Protocol):
    """Interface for product lookups."""

    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        ...

    async def list_products(self) -> List[ProductSnapshot]:
        ...


class InMemoryProductCatalog:
    """Catalog held in memory, keyed by product id."""

    def __init__(self, products: Iterable[ProductSnapshot] = ()):
        self._products: Dict[str, ProductSnapshot] = {p.id: p for p in products}

    def add(self, product: ProductSnapshot) -> None:
        self._products[product.id] = product

    async def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        return self._products.get(product_id)

    async def list_products(self) -> List[ProductSnapshot]:
        return list(self._products.values())


def demo_products() -> List[ProductSnapshot]:
    """A handful of products for local development."""
    return [
        ProductSnapshot(id="1", name="Modern Minimalist Sofa", price="2000"),
        ProductSnapshot(id="2", name="Scandinavian Coffee Table", price="21999"),
        ProductSnapshot(id="3", name="Industrial Floor Lamp", price="600"),
        ProductSnapshot(id="4", name="Luxury Velvet Armchair", price="1000"),
        ProductSnapshot(id="5", name="Abstract Wall Art Set", price="650"),
        ProductSnapshot(id="6", name="Ceramic Table Lamp", price="700"),
    ]
