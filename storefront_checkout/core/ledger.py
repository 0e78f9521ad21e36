"""
Order ledger.

Append-only collection of placed orders. Orders are never removed and never
rewritten, except for their fulfillment status. Storage sits behind the
``OrderRepository`` protocol so the ledger runs the same against memory or a
SQL database.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Protocol

import structlog

from storefront_checkout.domain.exceptions import DuplicateOrderError, OrderNotFoundError
from storefront_checkout.domain.models import Order, OrderStatus

logger = structlog.get_logger(__name__)


class OrderRepository(Protocol):
    """Interface for order storage (memory, SQL, etc.)."""

    async def add(self, order: Order) -> None:
        """
        Store a new order.

        Must raise DuplicateOrderError if an order with the same id or the
        same transaction id exists.
        """
        ...

    async def get(self, order_id: str) -> Optional[Order]:
        ...

    async def get_by_transaction(self, transaction_id: str) -> Optional[Order]:
        ...

    async def list_for_user(self, user_id: Optional[str]) -> List[Order]:
        """Orders for a user, newest first."""
        ...

    async def set_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        """Update status; returns None when the order does not exist."""
        ...


class InMemoryOrderRepository:
    """Order storage in a dict. Insertion order breaks created_at ties."""

    def __init__(self) -> None:
        self._orders: Dict[str, Order] = {}
        self._by_transaction: Dict[str, str] = {}

    async def add(self, order: Order) -> None:
        if order.id in self._orders or order.transaction_id in self._by_transaction:
            raise DuplicateOrderError(order.id)
        self._orders[order.id] = order
        self._by_transaction[order.transaction_id] = order.id

    async def get(self, order_id: str) -> Optional[Order]:
        return self._orders.get(order_id)

    async def get_by_transaction(self, transaction_id: str) -> Optional[Order]:
        order_id = self._by_transaction.get(transaction_id)
        return self._orders.get(order_id) if order_id is not None else None

    async def list_for_user(self, user_id: Optional[str]) -> List[Order]:
        orders = [order for order in self._orders.values() if order.user_id == user_id]
        orders.reverse()
        return sorted(orders, key=lambda order: order.created_at, reverse=True)

    async def set_status(self, order_id: str, status: OrderStatus) -> Optional[Order]:
        order = self._orders.get(order_id)
        if order is None:
            return None
        updated = order.with_status(status)
        self._orders[order_id] = updated
        return updated

    def __len__(self) -> int:
        return len(self._orders)


class OrderLedger:
    """Append-only order ledger backed by an OrderRepository."""

    def __init__(self, repository: Optional[OrderRepository] = None):
        self.repository = repository if repository is not None else InMemoryOrderRepository()

    async def append(self, order: Order) -> Order:
        """
        Append a new order.

        Raises:
            DuplicateOrderError: If the order id or transaction id already exists
        """
        try:
            await self.repository.add(order)
        except DuplicateOrderError:
            logger.error("order_append_duplicate", order_id=order.id)
            raise

        logger.info(
            "order_appended",
            order_id=order.id,
            user_id=order.user_id,
            total=str(order.total),
            payment_method=order.payment_method.value,
        )
        return order

    async def get(self, order_id: str) -> Order:
        """
        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.repository.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def find_by_transaction(self, transaction_id: str) -> Optional[Order]:
        return await self.repository.get_by_transaction(transaction_id)

    async def list_for(self, user_id: Optional[str]) -> List[Order]:
        """All orders for a user (None for guest orders), newest first."""
        return await self.repository.list_for_user(user_id)

    async def update_status(self, order_id: str, status: OrderStatus) -> Order:
        """
        Change an order's fulfillment status.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        updated = await self.repository.set_status(order_id, OrderStatus(status))
        if updated is None:
            raise OrderNotFoundError(order_id)

        logger.info("order_status_updated", order_id=order_id, status=updated.status.value)
        return updated
