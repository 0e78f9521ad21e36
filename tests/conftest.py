"""
Pytest configuration and fixtures.
"""
import asyncio
from datetime import timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

import pytest

from storefront_checkout.config import Settings
from storefront_checkout.core.idempotency import OrderCreationLatch
from storefront_checkout.core.ledger import InMemoryOrderRepository, OrderLedger
from storefront_checkout.core.orchestrator import CheckoutOrchestrator
from storefront_checkout.domain.cart import Cart
from storefront_checkout.domain.models import (
    DeferredCashResult,
    FailureReason,
    Order,
    OrderLine,
    PaymentAction,
    PaymentMethod,
    PaymentResult,
    ProductSnapshot,
    lines_total,
    parse_shipping_info,
    utcnow,
)
from storefront_checkout.integrations.base import PaymentAdapter, PaymentRequest
from storefront_checkout.integrations.deferred_cash import DeferredCashAdapter
from storefront_checkout.integrations.direct_transfer import DirectTransferAdapter


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests that exercise several layers together")
    config.addinivalue_line("markers", "race: concurrent settlement scenarios")


class ScriptedAdapter(PaymentAdapter):
    """
    Adapter whose outcomes are scripted per call.

    Script steps: ``"success"``, a ``FailureReason``, or ``"block"`` (surface
    a client secret and wait until ``complete``/``cancel`` resolves it).
    """

    def __init__(self, method: PaymentMethod, script: Optional[List[Any]] = None, cancellable: bool = True):
        self.method = method
        self.script = list(script or [])
        self.cancellable = cancellable
        self.calls: List[PaymentRequest] = []
        self.cancel_calls: List[str] = []
        self._gate: Optional["asyncio.Future[PaymentResult]"] = None
        self._blocked_request: Optional[PaymentRequest] = None

    async def execute(self, request: PaymentRequest) -> PaymentResult:
        self.calls.append(request)
        step = self.script.pop(0) if self.script else "success"

        if step == "block":
            self._blocked_request = request
            self._gate = asyncio.get_running_loop().create_future()
            request.surface(
                PaymentAction(
                    method=self.method,
                    attempt_id=request.attempt_id,
                    kind="client_secret",
                    data={"client_secret": f"secret_{request.attempt_id}"},
                )
            )
            return await self._gate

        if step == "success":
            return self.succeeded(request, transaction_id=f"txn_{request.attempt_id}_{len(self.calls)}")

        return self.failed(request, step, step.value)

    def complete(self, success: bool = True) -> None:
        """Resolve a blocked call."""
        request = self._blocked_request
        if success:
            result = self.succeeded(request, transaction_id=f"txn_{request.attempt_id}_late")
        else:
            result = self.failed(request, FailureReason.DECLINED, "declined")
        self._gate.set_result(result)

    @property
    def blocked(self) -> bool:
        return self._gate is not None and not self._gate.done()

    async def cancel(self, order_ref: str) -> bool:
        self.cancel_calls.append(order_ref)
        if not self.cancellable:
            return False
        if self.blocked:
            self._gate.set_result(
                self.failed(self._blocked_request, FailureReason.CANCELLED, "Payment cancelled")
            )
        return True


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "_env_file": None,
        "currency": "INR",
        "log_json": False,
        "payment_timeout_seconds": 5.0,
        "payment_retry_delay_seconds": 0,
        "stripe_poll_interval_seconds": 0.01,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    """Test settings: no Stripe, no database, fast retries."""
    return make_settings()


@pytest.fixture
def lamp() -> ProductSnapshot:
    return ProductSnapshot(id="lamp", name="Industrial Floor Lamp", price=Decimal("100.00"))


@pytest.fixture
def sofa() -> ProductSnapshot:
    return ProductSnapshot(id="sofa", name="Modern Minimalist Sofa", price=Decimal("2000.00"))


@pytest.fixture
def cart(lamp: ProductSnapshot) -> Cart:
    """Cart worth 200: two lamps."""
    cart = Cart("user_123")
    cart.add(lamp, 2)
    return cart


@pytest.fixture
def shipping_data() -> Dict[str, str]:
    """Valid shipping form data, camelCase as sent by the storefront."""
    return {
        "fullName": "Asha Verma",
        "email": "Asha@Example.com",
        "phone": "9876543210",
        "address": "221 MG Road, Indiranagar",
        "city": "Bengaluru",
        "state": "Karnataka",
        "zipCode": "560038",
    }


@pytest.fixture
def ledger() -> OrderLedger:
    return OrderLedger(InMemoryOrderRepository())


@pytest.fixture
def latch() -> OrderCreationLatch:
    return OrderCreationLatch()


@pytest.fixture
def gateway() -> ScriptedAdapter:
    """Gateway-mediated adapter that blocks until resolved by the test."""
    return ScriptedAdapter(PaymentMethod.GATEWAY_MEDIATED_TRANSFER, script=["block"])


@pytest.fixture
def make_checkout(
    settings: Settings, ledger: OrderLedger, latch: OrderCreationLatch, gateway: ScriptedAdapter
) -> Callable[..., CheckoutOrchestrator]:
    """Factory for checkouts wired to the shared ledger and latch."""

    def _make(
        cart: Optional[Cart] = None,
        buy_now_lines: Optional[tuple[OrderLine, ...]] = None,
        adapters: Optional[Dict[PaymentMethod, PaymentAdapter]] = None,
        checkout_settings: Optional[Settings] = None,
        **kwargs: Any,
    ) -> CheckoutOrchestrator:
        if adapters is None:
            adapters = {
                PaymentMethod.DIRECT_TRANSFER: DirectTransferAdapter("shop@upi", "Shop"),
                PaymentMethod.GATEWAY_MEDIATED_TRANSFER: gateway,
                PaymentMethod.DEFERRED_CASH: DeferredCashAdapter(),
            }
        return CheckoutOrchestrator(
            checkout_id=kwargs.pop("checkout_id", "chk_test"),
            settings=checkout_settings or settings,
            adapters=adapters,
            ledger=ledger,
            latch=latch,
            cart=cart,
            buy_now_lines=buy_now_lines,
            user_id=kwargs.pop("user_id", "user_123"),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_order(shipping_data: Dict[str, str], lamp: ProductSnapshot) -> Callable[..., Order]:
    """Factory for placed orders paid in cash."""

    def _make(order_id: str = "ORD-1", user_id: Optional[str] = "user_123", **overrides: Any) -> Order:
        lines = (OrderLine.from_product(lamp, 2),)
        created_at = overrides.pop("created_at", utcnow())
        values: Dict[str, Any] = {
            "id": order_id,
            "user_id": user_id,
            "line_items": lines,
            "total": lines_total(lines),
            "currency": "INR",
            "shipping_info": parse_shipping_info(shipping_data),
            "payment_method": PaymentMethod.DEFERRED_CASH,
            "payment_result": DeferredCashResult(
                success=True,
                transaction_id=f"COD_{order_id}",
                amount=lines_total(lines),
                currency="INR",
            ),
            "transaction_id": f"COD_{order_id}",
            "created_at": created_at,
            "estimated_delivery": created_at + timedelta(days=5),
        }
        values.update(overrides)
        return Order(**values)

    return _make
