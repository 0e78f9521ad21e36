"""
One-shot latch guarding order creation.

A checkout may hear about the same successful payment more than once: the
in-process adapter result, a gateway webhook, a redelivered webhook. The
latch makes sure only the first of them writes the order while the write is
in flight. Claims are keyed by the checkout's order id; the transaction id
is recorded alongside so a second order cannot be built on a transaction
that another order is already being created from.

Claims are taken synchronously, before any await, so two coroutines
settling the same checkout cannot both pass the latch. A claim is dropped
as soon as its order is in the ledger; from then on the checkout's own
order and the ledger's unique transaction ids catch duplicates.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional

import structlog

from storefront_checkout.domain.models import Order

logger = structlog.get_logger(__name__)


class LatchError(Exception):
    """Raised when completing or waiting on a latch that was never claimed."""

    pass


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"
    # Same order already being written
    IN_PROGRESS = "in_progress"
    # Transaction id bound to a different order
    CONFLICT = "conflict"


@dataclass
class _Claim:
    order_id: str
    transaction_id: str
    done: asyncio.Event = field(default_factory=asyncio.Event)
    order: Optional[Order] = None


class OrderCreationLatch:
    """
    Tracks order writes in flight.

    Usage::

        status = latch.claim(order_id, transaction_id)
        if status is ClaimStatus.CLAIMED:
            try:
                await ledger.append(order)
            except Exception:
                latch.release(order_id)
                raise
            latch.complete(order)
        elif status is ClaimStatus.IN_PROGRESS:
            order = await latch.wait(order_id)
    """

    def __init__(self) -> None:
        self._by_order: Dict[str, _Claim] = {}
        self._by_transaction: Dict[str, _Claim] = {}

    def claim(self, order_id: str, transaction_id: str) -> ClaimStatus:
        """Try to claim the right to create the order for ``order_id``."""
        if order_id in self._by_order:
            logger.info("order_latch_in_progress", order_id=order_id, transaction_id=transaction_id)
            return ClaimStatus.IN_PROGRESS

        holder = self._by_transaction.get(transaction_id)
        if holder is not None:
            logger.warning(
                "order_latch_transaction_conflict",
                order_id=order_id,
                transaction_id=transaction_id,
                held_by=holder.order_id,
            )
            return ClaimStatus.CONFLICT

        claim = _Claim(order_id=order_id, transaction_id=transaction_id)
        self._by_order[order_id] = claim
        self._by_transaction[transaction_id] = claim
        logger.debug("order_latch_claimed", order_id=order_id, transaction_id=transaction_id)
        return ClaimStatus.CLAIMED

    def complete(self, order: Order) -> None:
        """Hand the written order to any waiters and drop the claim."""
        claim = self._pop(order.id)
        if claim is None:
            raise LatchError(f"No claim for order {order.id}")
        claim.order = order
        claim.done.set()

    def release(self, order_id: str) -> None:
        """
        Drop a claim whose order could not be written.

        Waiters are woken and see no order; a later settlement may claim again.
        """
        claim = self._pop(order_id)
        if claim is not None:
            claim.done.set()
            logger.warning(
                "order_latch_released",
                order_id=order_id,
                transaction_id=claim.transaction_id,
            )

    async def wait(self, order_id: str) -> Optional[Order]:
        """
        Wait for the claim holder to finish and return its order.

        Returns None if the claim was released without an order.

        Raises:
            LatchError: If the order has no claim in flight
        """
        claim = self._by_order.get(order_id)
        if claim is None:
            raise LatchError(f"No claim for order {order_id}")
        await claim.done.wait()
        return claim.order

    def __len__(self) -> int:
        return len(self._by_order)

    def _pop(self, order_id: str) -> Optional[_Claim]:
        claim = self._by_order.pop(order_id, None)
        if claim is not None:
            self._by_transaction.pop(claim.transaction_id, None)
        return claim
