"""
Cart aggregate.

Maps product id to a line holding the product snapshot taken when the
product was first added, plus a quantity. The total is always derived from
the lines; there is no stored total that could drift.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog

from storefront_checkout.domain.models import OrderLine, ProductSnapshot, lines_total

logger = structlog.get_logger(__name__)


@dataclass
class CartLine:
    """A product in the cart. Quantity is always at least 1."""

    product: ProductSnapshot
    quantity: int

    @property
    def product_id(self) -> str:
        return self.product.id

    def to_order_line(self) -> OrderLine:
        return OrderLine.from_product(self.product, self.quantity)


class Cart:
    """
    Shopping cart for one owner.

    All operations are total: removing or updating an unknown product is a
    no-op rather than an error.
    """

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        self._lines: Dict[str, CartLine] = {}

    def add(self, product: ProductSnapshot, quantity: int = 1) -> Optional[CartLine]:
        """
        Add a product, accumulating quantity if it is already present.

        The snapshot captured by the first add is kept; later adds only
        change the quantity. A quantity below 1 adds nothing.
        """
        if quantity < 1:
            return self._lines.get(product.id)

        line = self._lines.get(product.id)
        if line is None:
            line = CartLine(product=product, quantity=quantity)
            self._lines[product.id] = line
        else:
            line.quantity += quantity

        logger.debug(
            "cart_item_added",
            owner_id=self.owner_id,
            product_id=product.id,
            quantity=line.quantity,
        )
        return line

    def remove(self, product_id: str) -> None:
        if self._lines.pop(product_id, None) is not None:
            logger.debug("cart_item_removed", owner_id=self.owner_id, product_id=product_id)

    def set_quantity(self, product_id: str, quantity: int) -> None:
        """Set a line's quantity directly; zero or less removes the line."""
        if quantity <= 0:
            self.remove(product_id)
            return

        line = self._lines.get(product_id)
        if line is not None:
            line.quantity = quantity

    def clear(self) -> None:
        self._lines.clear()
        logger.debug("cart_cleared", owner_id=self.owner_id)

    def total(self) -> Decimal:
        return lines_total(self.snapshot())

    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    def get(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def snapshot(self) -> Tuple[OrderLine, ...]:
        """Immutable copy of the current lines with prices locked."""
        return tuple(line.to_order_line() for line in self._lines.values())


class CartStore:
    """Carts keyed by owner id, created empty when first written to."""

    def __init__(self) -> None:
        self._carts: Dict[str, Cart] = {}

    def find(self, owner_id: str) -> Optional[Cart]:
        return self._carts.get(owner_id)

    def get(self, owner_id: str) -> Cart:
        cart = self._carts.get(owner_id)
        if cart is None:
            cart = Cart(owner_id)
            self._carts[owner_id] = cart
        return cart

    def prune_empty(self, keep: Iterable[str] = ()) -> List[str]:
        """Drop carts with no lines, except those owned by ``keep``."""
        keep = set(keep)
        empty = [
            owner_id
            for owner_id, cart in self._carts.items()
            if cart.is_empty and owner_id not in keep
        ]
        for owner_id in empty:
            del self._carts[owner_id]
        return empty

    def __len__(self) -> int:
        return len(self._carts)

    def __contains__(self, owner_id: object) -> bool:
        return owner_id in self._carts
