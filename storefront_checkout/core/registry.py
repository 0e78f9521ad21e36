"""
Registry of checkout sessions.

Tracks live checkouts by id so HTTP requests and gateway webhooks can reach
the same orchestrator instance.
"""
import time
import uuid
from typing import Callable, Dict, List, Optional

import structlog

from storefront_checkout.core.orchestrator import CheckoutOrchestrator
from storefront_checkout.domain.exceptions import CheckoutNotFoundError

logger = structlog.get_logger(__name__)


class CheckoutRegistry:
    """Creates, looks up and retires checkout sessions."""

    def __init__(self) -> None:
        self.active_checkouts: Dict[str, CheckoutOrchestrator] = {}
        logger.info("checkout_registry_initialized")

    def create(self, factory: Callable[[str], CheckoutOrchestrator]) -> CheckoutOrchestrator:
        """
        Build and register a checkout.

        Args:
            factory: Called with a fresh checkout id
        """
        checkout = factory(str(uuid.uuid4()))
        self.active_checkouts[checkout.checkout_id] = checkout
        return checkout

    def get(self, checkout_id: str) -> CheckoutOrchestrator:
        """
        Raises:
            CheckoutNotFoundError: If the id is unknown
        """
        checkout = self.active_checkouts.get(checkout_id)
        if checkout is None:
            raise CheckoutNotFoundError(f"Checkout {checkout_id} not found")
        return checkout

    def find(self, checkout_id: str) -> Optional[CheckoutOrchestrator]:
        return self.active_checkouts.get(checkout_id)

    def find_by_order_id(self, order_id: str) -> Optional[CheckoutOrchestrator]:
        for checkout in self.active_checkouts.values():
            if checkout.order_id == order_id:
                return checkout
        return None

    def prune_finished(self, max_age_seconds: float = 0.0) -> List[str]:
        """
        Forget checkouts that reached a terminal state at least
        ``max_age_seconds`` ago. Recent ones stay so clients can still read
        the confirmation.
        """
        cutoff = time.monotonic() - max_age_seconds
        finished = [
            checkout_id
            for checkout_id, checkout in self.active_checkouts.items()
            if checkout.finished_at is not None and checkout.finished_at <= cutoff
        ]
        for checkout_id in finished:
            del self.active_checkouts[checkout_id]
        if finished:
            logger.info("checkouts_pruned", count=len(finished))
        return finished

    def get_active_checkouts_count(self) -> int:
        return len(self.active_checkouts)
