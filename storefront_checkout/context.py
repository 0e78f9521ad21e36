"""
Application context.

Everything the HTTP host needs (catalog, carts, ledger, live checkouts,
payment adapters) is built once by ``build_context`` and passed around
explicitly instead of living in module globals.
"""
import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import structlog

from storefront_checkout.config import Settings
from storefront_checkout.core.catalog import InMemoryProductCatalog, ProductCatalog, demo_products
from storefront_checkout.core.idempotency import OrderCreationLatch
from storefront_checkout.core.ledger import OrderLedger, OrderRepository
from storefront_checkout.core.orchestrator import CheckoutObserver, CheckoutOrchestrator
from storefront_checkout.core.registry import CheckoutRegistry
from storefront_checkout.database.connection import Database
from storefront_checkout.database.repository import SqlAlchemyOrderRepository
from storefront_checkout.domain.cart import Cart, CartStore
from storefront_checkout.domain.models import OrderLine, PaymentMethod
from storefront_checkout.integrations.base import PaymentAdapter
from storefront_checkout.integrations.deferred_cash import DeferredCashAdapter
from storefront_checkout.integrations.direct_transfer import DirectTransferAdapter
from storefront_checkout.integrations.stripe_client import StripeClient
from storefront_checkout.integrations.stripe_gateway import StripeGatewayAdapter
from storefront_checkout.integrations.webhook_handler import WebhookHandler
from storefront_checkout.monitoring.health import HealthCheck
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


@dataclass
class AppContext:
    settings: Settings
    catalog: ProductCatalog
    carts: CartStore
    ledger: OrderLedger
    latch: OrderCreationLatch
    registry: CheckoutRegistry
    adapters: Dict[PaymentMethod, PaymentAdapter]
    webhook_handler: WebhookHandler
    health_check: HealthCheck
    database: Optional[Database] = None
    stripe_client: Optional[StripeClient] = None
    observer: Optional[CheckoutObserver] = None
    _housekeeping_task: Optional["asyncio.Task[Any]"] = field(default=None, repr=False)

    @property
    def direct_transfer(self) -> Optional[DirectTransferAdapter]:
        adapter = self.adapters.get(PaymentMethod.DIRECT_TRANSFER)
        return adapter if isinstance(adapter, DirectTransferAdapter) else None

    def new_checkout(
        self,
        user_id: Optional[str] = None,
        cart: Optional[Cart] = None,
        buy_now_lines: Optional[Tuple[OrderLine, ...]] = None,
    ) -> CheckoutOrchestrator:
        """Create and register a checkout for a cart or a buy-now purchase."""
        return self.registry.create(
            lambda checkout_id: CheckoutOrchestrator(
                checkout_id=checkout_id,
                settings=self.settings,
                adapters=self.adapters,
                ledger=self.ledger,
                latch=self.latch,
                user_id=user_id,
                cart=cart,
                buy_now_lines=buy_now_lines,
                observer=self.observer,
            )
        )

    def housekeeping(self) -> None:
        """Forget finished checkouts and empty carts that no checkout is using."""
        pruned = self.registry.prune_finished(self.settings.finished_checkout_retention_seconds)
        in_use = [
            checkout.cart.owner_id
            for checkout in self.registry.active_checkouts.values()
            if checkout.cart is not None and not checkout.state.is_terminal
        ]
        dropped_carts = self.carts.prune_empty(keep=in_use)
        metrics.set_active_checkouts(self.registry.get_active_checkouts_count())
        if pruned or dropped_carts:
            logger.info(
                "housekeeping_completed",
                checkouts_pruned=len(pruned),
                carts_pruned=len(dropped_carts),
            )

    async def _run_housekeeping(self) -> None:
        while True:
            await asyncio.sleep(self.settings.housekeeping_interval_seconds)
            try:
                self.housekeeping()
            except Exception:
                logger.exception("housekeeping_failed")

    async def startup(self) -> None:
        if self.database is not None:
            await self.database.init_db()
            logger.info("database_initialized")
        self._housekeeping_task = asyncio.ensure_future(self._run_housekeeping())

    async def shutdown(self) -> None:
        if self._housekeeping_task is not None:
            self._housekeeping_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._housekeeping_task
            self._housekeeping_task = None
        if self.database is not None:
            await self.database.close()
            logger.info("database_connections_closed")


def build_adapters(
    settings: Settings, stripe_client: Optional[StripeClient] = None
) -> Dict[PaymentMethod, PaymentAdapter]:
    """One adapter per payment method that can run with this configuration."""
    adapters: Dict[PaymentMethod, PaymentAdapter] = {
        PaymentMethod.DIRECT_TRANSFER: DirectTransferAdapter(
            payee_vpa=settings.upi_payee_vpa,
            payee_name=settings.upi_payee_name,
        ),
        PaymentMethod.DEFERRED_CASH: DeferredCashAdapter(),
    }
    if stripe_client is not None:
        adapters[PaymentMethod.GATEWAY_MEDIATED_TRANSFER] = StripeGatewayAdapter(
            stripe_client,
            poll_interval_seconds=settings.stripe_poll_interval_seconds,
        )
    else:
        logger.info("stripe_gateway_disabled", reason="no secret key configured")
    return adapters


def build_context(
    settings: Settings,
    catalog: Optional[ProductCatalog] = None,
    repository: Optional[OrderRepository] = None,
    adapters: Optional[Mapping[PaymentMethod, PaymentAdapter]] = None,
    observer: Optional[CheckoutObserver] = None,
) -> AppContext:
    """
    Wire up the application from settings.

    Orders go to the database when ``database_url`` is set and stay in memory
    otherwise. The Stripe gateway is only offered when a secret key is set.
    """
    database: Optional[Database] = None
    if repository is None and settings.database_url:
        database = Database(settings.database_url, echo=settings.database_echo)
        repository = SqlAlchemyOrderRepository(database)

    stripe_client = StripeClient(settings) if settings.stripe_enabled else None
    if adapters is None:
        adapters = build_adapters(settings, stripe_client)

    registry = CheckoutRegistry()
    context = AppContext(
        settings=settings,
        catalog=catalog if catalog is not None else InMemoryProductCatalog(demo_products()),
        carts=CartStore(),
        ledger=OrderLedger(repository),
        latch=OrderCreationLatch(),
        registry=registry,
        adapters=dict(adapters),
        webhook_handler=WebhookHandler(settings, registry),
        health_check=HealthCheck(database=database, stripe_client=stripe_client),
        database=database,
        stripe_client=stripe_client,
        observer=observer,
    )

    logger.info(
        "app_context_built",
        payment_methods=[m.value for m in context.adapters],
        persistent_orders=database is not None,
    )
    return context
