"""
Checkout orchestration.

A checkout moves through::

    ShippingInfoCapture -> PaymentMethodSelection -> PaymentExecution -> OrderConfirmation
            |                       |                        |
            +-----------------------+------------------------+----> Cancelled

Line items and the amount are locked on entry to PaymentMethodSelection.
Every payment attempt gets a new attempt id; a result is only accepted for
the current attempt, so a late answer from a superseded attempt can never
create an order. Order creation itself is guarded by a one-shot latch, so
duplicate success reports (adapter result plus webhook, redelivered
webhooks) produce a single order.

Payment failures are not exceptions here: they come back as failed
``PaymentResult``s and return the checkout to PaymentMethodSelection.
"""
from __future__ import annotations

import asyncio
import contextlib
import secrets
import time
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_result, stop_after_attempt, wait_fixed

from storefront_checkout.config import Settings
from storefront_checkout.core.idempotency import ClaimStatus, OrderCreationLatch
from storefront_checkout.core.ledger import OrderLedger
from storefront_checkout.core.selector import PaymentMethodSelector
from storefront_checkout.domain.cart import Cart
from storefront_checkout.domain.exceptions import (
    DuplicateOrderError,
    EmptyCheckoutError,
    InvalidTransitionError,
    OrderIntegrityError,
    PaymentMethodUnavailable,
)
from storefront_checkout.domain.models import (
    CheckoutSource,
    FailureReason,
    Order,
    OrderLine,
    PaymentAction,
    PaymentMethod,
    PaymentResult,
    ShippingInfo,
    lines_total,
    parse_shipping_info,
    utcnow,
)
from storefront_checkout.integrations.base import PaymentAdapter, PaymentRequest, failed_result
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class CheckoutState(str, Enum):
    SHIPPING_INFO_CAPTURE = "ShippingInfoCapture"
    PAYMENT_METHOD_SELECTION = "PaymentMethodSelection"
    PAYMENT_EXECUTION = "PaymentExecution"
    ORDER_CONFIRMATION = "OrderConfirmation"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (CheckoutState.ORDER_CONFIRMATION, CheckoutState.CANCELLED)


class CheckoutObserver(Protocol):
    """Callbacks a host can register to follow a checkout."""

    def on_state_changed(
        self, checkout: "CheckoutOrchestrator", previous: CheckoutState, current: CheckoutState
    ) -> None:
        ...

    def on_order_created(self, checkout: "CheckoutOrchestrator", order: Order) -> None:
        ...

    def on_payment_failed(self, checkout: "CheckoutOrchestrator", result: PaymentResult) -> None:
        ...

    def on_payment_action(self, checkout: "CheckoutOrchestrator", action: PaymentAction) -> None:
        ...


class NullObserver:
    """Observer that ignores every callback."""

    def on_state_changed(self, checkout: Any, previous: CheckoutState, current: CheckoutState) -> None:
        pass

    def on_order_created(self, checkout: Any, order: Order) -> None:
        pass

    def on_payment_failed(self, checkout: Any, result: PaymentResult) -> None:
        pass

    def on_payment_action(self, checkout: Any, action: PaymentAction) -> None:
        pass


def generate_order_id() -> str:
    return f"ORD-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


class CheckoutOrchestrator:
    """
    State machine for one checkout.

    Cart-sourced checkouts snapshot the cart when shipping is submitted and
    clear it once the order is placed. Buy-now checkouts carry their own
    line items and never touch the cart.
    """

    def __init__(
        self,
        checkout_id: str,
        settings: Settings,
        adapters: Mapping[PaymentMethod, PaymentAdapter],
        ledger: OrderLedger,
        latch: OrderCreationLatch,
        user_id: Optional[str] = None,
        cart: Optional[Cart] = None,
        buy_now_lines: Optional[Tuple[OrderLine, ...]] = None,
        observer: Optional[CheckoutObserver] = None,
    ):
        if (cart is None) == (buy_now_lines is None):
            raise ValueError("A checkout needs either a cart or buy-now line items")

        self.checkout_id = checkout_id
        self.settings = settings
        self.adapters = dict(adapters)
        self.ledger = ledger
        self.latch = latch
        self.user_id = user_id
        self.cart = cart
        self.source = CheckoutSource.CART if cart is not None else CheckoutSource.BUY_NOW
        self._buy_now_lines = tuple(buy_now_lines) if buy_now_lines is not None else None
        self.observer: CheckoutObserver = observer or NullObserver()

        self.selector = PaymentMethodSelector(
            enabled=[m for m in settings.enabled_payment_methods if m in self.adapters],
            deferred_cash_max_amount=settings.deferred_cash_max_amount,
        )

        self.order_id = generate_order_id()
        self.state = CheckoutState.SHIPPING_INFO_CAPTURE
        self.shipping_info: Optional[ShippingInfo] = None
        self.line_items: Tuple[OrderLine, ...] = ()
        self.amount: Optional[Decimal] = None
        self.order: Optional[Order] = None
        self.pending_action: Optional[PaymentAction] = None
        self.last_error: Optional[str] = None
        self.finished_at: Optional[float] = None

        self._attempt_seq = 0
        self._current_attempt: Optional[int] = None
        self._payment_task: Optional[asyncio.Future[PaymentResult]] = None
        self._action_ready: Optional[asyncio.Event] = None
        self._background: set[asyncio.Future[Any]] = set()

        logger.info(
            "checkout_created",
            checkout_id=checkout_id,
            order_id=self.order_id,
            user_id=user_id,
            source=self.source.value,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def current_attempt(self) -> Optional[int]:
        return self._current_attempt

    @property
    def selected_method(self) -> Optional[PaymentMethod]:
        return self.selector.selected

    def available_methods(self) -> List[PaymentMethod]:
        if self.amount is None:
            raise InvalidTransitionError("Shipping information must be submitted first")
        return self.selector.available_methods(self.amount)

    def view(self) -> Dict[str, Any]:
        """Serializable snapshot of the checkout."""
        return {
            "checkout_id": self.checkout_id,
            "order_id": self.order_id,
            "state": self.state.value,
            "source": self.source.value,
            "user_id": self.user_id,
            "shipping_info": self.shipping_info.model_dump() if self.shipping_info else None,
            "line_items": [line.model_dump(mode="json") for line in self.line_items],
            "amount": self.amount,
            "currency": self.settings.currency,
            "selected_method": self.selector.selected.value if self.selector.selected else None,
            "available_methods": (
                [m.value for m in self.available_methods()]
                if self.state is CheckoutState.PAYMENT_METHOD_SELECTION
                else []
            ),
            "attempt_id": self._current_attempt,
            "pending_action": self.pending_action.model_dump(mode="json") if self.pending_action else None,
            "error_message": self.last_error,
            "order": self.order.model_dump(mode="json") if self.order else None,
        }

    # ------------------------------------------------------------------
    # Shipping
    # ------------------------------------------------------------------

    def submit_shipping(self, data: Mapping[str, Any] | ShippingInfo) -> ShippingInfo:
        """
        Validate shipping details, lock line items and amount.

        Raises:
            InvalidTransitionError: Outside ShippingInfoCapture
            ShippingValidationError: Invalid input; nothing is changed
            EmptyCheckoutError: Nothing to pay for
        """
        self._require(CheckoutState.SHIPPING_INFO_CAPTURE, operation="submit_shipping")

        shipping_info = parse_shipping_info(data, default_country=self.settings.default_country)

        lines = self._buy_now_lines if self._buy_now_lines is not None else self.cart.snapshot()
        if not lines:
            raise EmptyCheckoutError("Nothing to check out")

        self.shipping_info = shipping_info
        self.line_items = lines
        self.amount = lines_total(lines)
        self.selector.reset()
        self.last_error = None

        logger.info(
            "shipping_info_submitted",
            checkout_id=self.checkout_id,
            line_count=len(lines),
            amount=str(self.amount),
        )
        self._transition(CheckoutState.PAYMENT_METHOD_SELECTION)
        return shipping_info

    # ------------------------------------------------------------------
    # Method selection
    # ------------------------------------------------------------------

    async def select_method(self, method: PaymentMethod) -> PaymentMethod:
        """
        Choose a payment method.

        While a payment is pending, switching cancels it first; its result,
        whenever it arrives, is discarded.

        Raises:
            InvalidTransitionError: Outside PaymentMethodSelection/PaymentExecution,
                or the pending payment completed before it could be cancelled
            PaymentMethodUnavailable: Method not offered
        """
        method = PaymentMethod(method)
        self._require(
            CheckoutState.PAYMENT_METHOD_SELECTION,
            CheckoutState.PAYMENT_EXECUTION,
            operation="select_method",
        )
        # Validate before touching the pending payment
        if method not in self.available_methods():
            raise PaymentMethodUnavailable(f"Payment method {method.value} is not available")

        if self.state is CheckoutState.PAYMENT_EXECUTION:
            if not await self._abandon_payment():
                if self.state is CheckoutState.ORDER_CONFIRMATION:
                    raise InvalidTransitionError("Payment completed before the method could be changed")
            if self.state is CheckoutState.PAYMENT_EXECUTION:
                self._transition(CheckoutState.PAYMENT_METHOD_SELECTION)

        selected = self.selector.select(method, self.amount)
        self.last_error = None
        logger.info("payment_method_selected", checkout_id=self.checkout_id, method=selected.value)
        return selected

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    async def pay(self) -> PaymentResult:
        """
        Run a payment attempt with the selected method and settle it.

        Cash on delivery settles immediately. Other methods move to
        PaymentExecution and wait for the adapter, bounded by the configured
        timeout, with one more try if the gateway was unavailable. A timed
        out payment the adapter cannot cancel is awaited to its outcome.

        Raises:
            InvalidTransitionError: Outside PaymentMethodSelection or no method selected
            OrderIntegrityError: The ledger already held this checkout's order
        """
        self._require(CheckoutState.PAYMENT_METHOD_SELECTION, operation="pay")
        method = self.selector.selected
        if method is None:
            raise InvalidTransitionError("Select a payment method first")

        self._attempt_seq += 1
        attempt_id = self._attempt_seq
        self._current_attempt = attempt_id
        self.pending_action = None
        self.last_error = None

        adapter = self.adapters[method]
        request = PaymentRequest(
            amount=self.amount,
            currency=self.settings.currency,
            order_ref=self.order_id,
            attempt_id=attempt_id,
            customer=self.shipping_info.customer(),
            metadata={"checkout_id": self.checkout_id},
            on_action=self._on_action,
        )

        logger.info(
            "payment_attempt_started",
            checkout_id=self.checkout_id,
            attempt_id=attempt_id,
            method=method.value,
            amount=str(self.amount),
        )

        if method is PaymentMethod.DEFERRED_CASH:
            result = await adapter.execute(request)
            await self.settle(attempt_id, result)
            return result

        self._transition(CheckoutState.PAYMENT_EXECUTION)
        task = asyncio.ensure_future(self._run_attempt(adapter, request))
        self._payment_task = task
        # The attempt keeps running if the caller goes away
        return await asyncio.shield(task)

    async def start_payment(self) -> None:
        """
        Begin a payment and return as soon as the customer has something to
        act on (a UPI intent, a client secret) or the attempt has settled.

        Raises:
            Same as ``pay``, when raised before the payment goes pending
        """
        self._action_ready = asyncio.Event()
        pay_task = asyncio.ensure_future(self.pay())
        waiter = asyncio.ensure_future(self._action_ready.wait())

        try:
            await asyncio.wait({pay_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()

        if pay_task.done():
            pay_task.result()
        else:
            self._background.add(pay_task)
            pay_task.add_done_callback(self._background_done)

    async def wait_for_settlement(self) -> Optional[PaymentResult]:
        """Wait for the most recent payment attempt to finish, if there is one."""
        if self._payment_task is None:
            return None
        return await asyncio.shield(self._payment_task)

    async def settle(self, attempt_id: int, result: PaymentResult) -> Optional[Order]:
        """
        Apply the outcome of a payment attempt.

        Used by ``pay`` and by external reports (gateway webhooks, transfer
        confirmations).

        Returns:
            The order for a successful settlement (the existing one for a
            duplicate), otherwise None

        Raises:
            OrderIntegrityError: The ledger already held this checkout's order
        """
        if attempt_id != self._current_attempt:
            logger.warning(
                "stale_payment_result_discarded",
                checkout_id=self.checkout_id,
                attempt_id=attempt_id,
                current_attempt=self._current_attempt,
                method=result.method,
                success=result.success,
            )
            metrics.record_stale_result(result.method)
            return None

        if result.success:
            return await self._commit_order(attempt_id, result)

        self._apply_failure(attempt_id, result)
        return None

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def back(self) -> CheckoutState:
        """
        Step back one state.

        From PaymentExecution the pending payment is cancelled first. If it
        can no longer be cancelled, its outcome is awaited and honoured, so
        the checkout may end up in OrderConfirmation.

        Raises:
            InvalidTransitionError: From a terminal state
        """
        if self.state is CheckoutState.SHIPPING_INFO_CAPTURE:
            self._transition(CheckoutState.CANCELLED)
        elif self.state is CheckoutState.PAYMENT_METHOD_SELECTION:
            self.selector.reset()
            self.last_error = None
            self._transition(CheckoutState.SHIPPING_INFO_CAPTURE)
        elif self.state is CheckoutState.PAYMENT_EXECUTION:
            await self._abandon_payment()
            if self.state is CheckoutState.PAYMENT_EXECUTION:
                self._transition(CheckoutState.PAYMENT_METHOD_SELECTION)
        else:
            raise InvalidTransitionError(f"Cannot go back from {self.state.value}")
        return self.state

    async def cancel(self) -> CheckoutState:
        """
        Abandon the checkout.

        A pending payment is cancelled the same way as in ``back``; one that
        completes anyway still produces its order.

        Raises:
            InvalidTransitionError: From a terminal state
        """
        if self.state.is_terminal:
            raise InvalidTransitionError(f"Cannot cancel from {self.state.value}")

        if self.state is CheckoutState.PAYMENT_EXECUTION:
            await self._abandon_payment()

        if not self.state.is_terminal:
            self._current_attempt = None
            self.pending_action = None
            self._transition(CheckoutState.CANCELLED)
        return self.state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, *states: CheckoutState, operation: str) -> None:
        if self.state not in states:
            raise InvalidTransitionError(f"Cannot {operation} in state {self.state.value}")

    def _transition(self, to_state: CheckoutState) -> None:
        previous = self.state
        self.state = to_state
        if to_state.is_terminal:
            self.finished_at = time.monotonic()
        logger.info(
            "checkout_state_changed",
            checkout_id=self.checkout_id,
            from_state=previous.value,
            to_state=to_state.value,
        )
        metrics.record_transition(previous.value, to_state.value)
        self._notify("on_state_changed", previous, to_state)

    def _notify(self, hook: str, *args: Any) -> None:
        try:
            getattr(self.observer, hook)(self, *args)
        except Exception:
            logger.exception("checkout_observer_failed", checkout_id=self.checkout_id, hook=hook)

    def _wake(self) -> None:
        if self._action_ready is not None:
            self._action_ready.set()

    def _on_action(self, action: PaymentAction) -> None:
        if action.attempt_id != self._current_attempt:
            return
        self.pending_action = action
        logger.info(
            "payment_action_required",
            checkout_id=self.checkout_id,
            attempt_id=action.attempt_id,
            kind=action.kind,
        )
        self._notify("on_payment_action", action)
        self._wake()

    def _background_done(self, task: "asyncio.Future[Any]") -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "background_payment_failed",
                checkout_id=self.checkout_id,
                error=str(task.exception()),
            )

    async def _run_attempt(self, adapter: PaymentAdapter, request: PaymentRequest) -> PaymentResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.payment_max_attempts),
            wait=wait_fixed(self.settings.payment_retry_delay_seconds),
            retry=retry_if_result(
                lambda r: r.failure_reason is FailureReason.GATEWAY_UNAVAILABLE
                and request.attempt_id == self._current_attempt
            ),
            before_sleep=self._log_retry,
            retry_error_callback=lambda state: state.outcome.result(),
        )
        result = await retrying(self._execute_once, adapter, request)
        await self.settle(request.attempt_id, result)
        return result

    def _log_retry(self, retry_state: RetryCallState) -> None:
        adapter = retry_state.args[0]
        request = retry_state.args[1]
        logger.warning(
            "payment_gateway_unavailable_retrying",
            checkout_id=self.checkout_id,
            attempt_id=request.attempt_id,
            try_number=retry_state.attempt_number,
        )
        metrics.record_payment_retry(adapter.method.value)

    async def _execute_once(self, adapter: PaymentAdapter, request: PaymentRequest) -> PaymentResult:
        started = time.monotonic()
        task = asyncio.ensure_future(adapter.execute(request))
        done, _ = await asyncio.wait({task}, timeout=self.settings.payment_timeout_seconds)

        if task in done:
            result = task.result()
        else:
            logger.warning(
                "payment_attempt_timed_out",
                checkout_id=self.checkout_id,
                attempt_id=request.attempt_id,
                timeout_seconds=self.settings.payment_timeout_seconds,
            )
            cancelled = await adapter.cancel(request.order_ref)
            if not cancelled:
                # The charge may still go through; the attempt stays current
                logger.warning(
                    "payment_not_cancellable_awaiting_outcome",
                    checkout_id=self.checkout_id,
                    attempt_id=request.attempt_id,
                )
                result = await task
            elif task.done() and not task.cancelled() and task.result().success:
                # Completed while being cancelled
                result = task.result()
            else:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                result = failed_result(
                    adapter.method,
                    request,
                    FailureReason.TIMED_OUT,
                    "Payment timed out",
                )

        outcome = "succeeded" if result.success else result.failure_reason.value
        metrics.record_payment_attempt(adapter.method.value, outcome, time.monotonic() - started)
        return result

    async def _abandon_payment(self) -> bool:
        """
        Cancel the pending payment with its adapter and fence it out.

        Returns:
            bool: True if the attempt was fenced; False if it could not be
            cancelled and its settlement was awaited instead
        """
        attempt_id = self._current_attempt
        method = self.selector.selected
        cancelled = True
        if attempt_id is not None and method is not None:
            cancelled = await self.adapters[method].cancel(self.order_id)

        if cancelled and self.state is CheckoutState.PAYMENT_EXECUTION:
            logger.info("payment_attempt_abandoned", checkout_id=self.checkout_id, attempt_id=attempt_id)
            self._current_attempt = None
            self.pending_action = None
            return True

        if not cancelled:
            logger.warning(
                "payment_not_cancellable_awaiting_settlement",
                checkout_id=self.checkout_id,
                attempt_id=attempt_id,
            )
            if self._payment_task is not None:
                await asyncio.shield(self._payment_task)
        return False

    def _apply_failure(self, attempt_id: int, result: PaymentResult) -> None:
        if self.state not in (CheckoutState.PAYMENT_EXECUTION, CheckoutState.PAYMENT_METHOD_SELECTION):
            logger.info(
                "payment_failure_ignored",
                checkout_id=self.checkout_id,
                attempt_id=attempt_id,
                state=self.state.value,
            )
            return

        self._current_attempt = None
        self.pending_action = None
        self.selector.record_result(result)
        self.last_error = result.error_message

        logger.info(
            "payment_failed",
            checkout_id=self.checkout_id,
            attempt_id=attempt_id,
            method=result.method,
            reason=result.failure_reason.value if result.failure_reason else None,
            error=result.error_message,
        )
        if self.state is CheckoutState.PAYMENT_EXECUTION:
            self._transition(CheckoutState.PAYMENT_METHOD_SELECTION)
        self._notify("on_payment_failed", result)
        self._wake()

    def _reject_reused_transaction(self, attempt_id: int, result: PaymentResult, held_by: str) -> None:
        logger.error(
            "payment_transaction_already_used",
            checkout_id=self.checkout_id,
            order_id=self.order_id,
            transaction_id=result.transaction_id,
            held_by=held_by,
        )
        self._apply_failure(
            attempt_id,
            result.model_copy(
                update={
                    "success": False,
                    "failure_reason": FailureReason.DUPLICATE_TRANSACTION,
                    "error_message": "This payment reference is already linked to another order",
                }
            ),
        )

    def _absorb_duplicate(self, result: PaymentResult, order: Optional[Order]) -> Optional[Order]:
        metrics.record_duplicate_settlement()
        logger.info(
            "duplicate_payment_success_absorbed",
            checkout_id=self.checkout_id,
            order_id=self.order_id,
            transaction_id=result.transaction_id,
        )
        return order

    async def _commit_order(self, attempt_id: int, result: PaymentResult) -> Optional[Order]:
        if self.order is not None:
            return self._absorb_duplicate(result, self.order)

        status = self.latch.claim(self.order_id, result.transaction_id)
        if status is ClaimStatus.IN_PROGRESS:
            return self._absorb_duplicate(result, await self.latch.wait(self.order_id))
        if status is ClaimStatus.CONFLICT:
            self._reject_reused_transaction(attempt_id, result, held_by="order in progress")
            return None

        try:
            existing = await self.ledger.find_by_transaction(result.transaction_id)
        except Exception:
            self.latch.release(self.order_id)
            raise
        if existing is not None and existing.id != self.order_id:
            self.latch.release(self.order_id)
            self._reject_reused_transaction(attempt_id, result, held_by=existing.id)
            return None

        created_at = utcnow()
        order = Order(
            id=self.order_id,
            user_id=self.user_id,
            line_items=self.line_items,
            total=self.amount,
            currency=self.settings.currency,
            shipping_info=self.shipping_info,
            payment_method=PaymentMethod(result.method),
            payment_result=result,
            transaction_id=result.transaction_id,
            source=self.source,
            created_at=created_at,
            estimated_delivery=created_at + timedelta(days=self.settings.estimated_delivery_days),
        )

        try:
            await self.ledger.append(order)
        except DuplicateOrderError as e:
            self.latch.release(self.order_id)
            logger.critical(
                "order_integrity_violation",
                checkout_id=self.checkout_id,
                order_id=self.order_id,
                transaction_id=result.transaction_id,
            )
            metrics.record_integrity_error()
            raise OrderIntegrityError(f"Order {self.order_id} was already in the ledger") from e
        except Exception:
            self.latch.release(self.order_id)
            raise

        self.order = order
        self.latch.complete(order)
        self.pending_action = None
        self.last_error = None
        self.selector.record_result(result)

        if self.source is CheckoutSource.CART and self.cart is not None:
            self.cart.clear()

        metrics.record_order_created(order.payment_method.value, self.source.value)
        self._transition(CheckoutState.ORDER_CONFIRMATION)
        self._notify("on_order_created", order)
        self._wake()
        return order
