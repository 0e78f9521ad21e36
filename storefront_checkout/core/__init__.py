"""Checkout core: selector, orchestrator, ledger and supporting services."""
from .catalog import InMemoryProductCatalog, ProductCatalog
from .idempotency import OrderCreationLatch
from .ledger import InMemoryOrderRepository, OrderLedger, OrderRepository
from .orchestrator import CheckoutObserver, CheckoutOrchestrator, CheckoutState, NullObserver
from .registry import CheckoutRegistry
from .selector import PaymentMethodSelector

__all__ = [
    "CheckoutObserver",
    "CheckoutOrchestrator",
    "CheckoutRegistry",
    "CheckoutState",
    "InMemoryOrderRepository",
    "InMemoryProductCatalog",
    "NullObserver",
    "OrderCreationLatch",
    "OrderLedger",
    "OrderRepository",
    "PaymentMethodSelector",
    "ProductCatalog",
]
