"""
Tests for Stripe webhook handling.
"""
import hashlib
import hmac
import json
import time
from typing import Any, Dict

import pytest
import pytest_asyncio

from conftest import make_settings
from storefront_checkout.core.orchestrator import CheckoutState
from storefront_checkout.core.registry import CheckoutRegistry
from storefront_checkout.domain.models import FailureReason, PaymentMethod
from storefront_checkout.integrations.webhook_handler import WebhookError, WebhookHandler

WEBHOOK_SECRET = "whsec_test_secret"


def _sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


def _event(event_type: str, checkout_id: str, attempt_id: int, event_id: str = "evt_1", **intent: Any) -> Dict[str, Any]:
    payment_intent = {
        "id": "pi_test_123",
        "object": "payment_intent",
        "amount": 20000,
        "currency": "inr",
        "metadata": {"checkout_id": checkout_id, "attempt_id": str(attempt_id), "order_id": "ORD-1"},
    }
    payment_intent.update(intent)
    return {"id": event_id, "type": event_type, "data": {"object": payment_intent}}


@pytest.fixture
def registry():
    return CheckoutRegistry()


@pytest.fixture
def handler(registry):
    return WebhookHandler(make_settings(stripe_webhook_secret=WEBHOOK_SECRET), registry)


@pytest_asyncio.fixture
async def pending_checkout(registry, make_checkout, cart, shipping_data, gateway):
    checkout = registry.create(lambda checkout_id: make_checkout(cart=cart, checkout_id=checkout_id))
    checkout.submit_shipping(shipping_data)
    await checkout.select_method(PaymentMethod.GATEWAY_MEDIATED_TRANSFER)
    await checkout.start_payment()
    yield checkout
    if gateway.blocked:
        gateway.complete(success=False)
    await checkout.wait_for_settlement()


@pytest.mark.unit
class TestSignatureVerification:
    """Tests for webhook signature checks."""

    def test_valid_signature(self, handler):
        payload = json.dumps({"id": "evt_1", "object": "event", "type": "payment_intent.succeeded", "data": {"object": {}}})

        event = handler.verify_signature(payload.encode("utf-8"), _sign(payload))

        assert event.id == "evt_1"
        assert event["type"] == "payment_intent.succeeded"

    def test_invalid_signature(self, handler):
        payload = json.dumps({"id": "evt_1", "object": "event", "type": "payment_intent.succeeded"})

        with pytest.raises(WebhookError):
            handler.verify_signature(payload.encode("utf-8"), _sign(payload, secret="whsec_other"))

    def test_malformed_payload(self, handler):
        payload = "not json"

        with pytest.raises(WebhookError):
            handler.verify_signature(payload.encode("utf-8"), _sign(payload))

    def test_missing_secret(self, registry):
        handler = WebhookHandler(make_settings(), registry)

        with pytest.raises(WebhookError):
            handler.verify_signature(b"{}", "t=1,v1=abc")


@pytest.mark.unit
class TestProcessEvent:
    """Tests for event routing and deduplication."""

    @pytest.mark.asyncio
    async def test_unhandled_event_type(self, handler):
        result = await handler.process_event({"id": "evt_9", "type": "charge.refunded", "data": {"object": {}}})

        assert result["status"] == "no_handler"
        assert handler.is_event_processed("evt_9")

    @pytest.mark.asyncio
    async def test_unknown_checkout_is_not_settled(self, handler):
        result = await handler.process_event(_event("payment_intent.succeeded", "chk_missing", 1))

        assert result["status"] == "success"
        assert result["result"]["settled"] is False

    @pytest.mark.asyncio
    async def test_duplicate_event_is_skipped(self, handler):
        event = _event("payment_intent.succeeded", "chk_missing", 1)
        await handler.process_event(event)

        result = await handler.process_event(event)

        assert result["status"] == "duplicate"

    @pytest.mark.asyncio
    async def test_handler_failure_is_wrapped(self, handler):
        async def broken(payment_intent):
            raise RuntimeError("boom")

        handler.register_handler("payment_intent.succeeded", broken)

        with pytest.raises(WebhookError):
            await handler.process_event(_event("payment_intent.succeeded", "chk_1", 1))

        assert not handler.is_event_processed("evt_1")

    def test_remembered_events_are_bounded(self, registry):
        handler = WebhookHandler(make_settings(), registry, max_remembered_events=2)

        for event_id in ("evt_1", "evt_2", "evt_3"):
            handler.mark_event_processed(event_id)

        assert not handler.is_event_processed("evt_1")
        assert handler.is_event_processed("evt_3")


@pytest.mark.integration
class TestWebhookSettlement:
    """Webhooks settling live checkouts."""

    @pytest.mark.asyncio
    async def test_succeeded_creates_order(self, handler, pending_checkout, ledger):
        event = _event(
            "payment_intent.succeeded",
            pending_checkout.checkout_id,
            pending_checkout.current_attempt,
            latest_charge="ch_1",
        )

        result = await handler.process_event(event)

        assert result["result"]["settled"] is True
        assert result["result"]["order_id"] == pending_checkout.order_id
        assert pending_checkout.state is CheckoutState.ORDER_CONFIRMATION
        assert pending_checkout.order.transaction_id == "pi_test_123"
        assert pending_checkout.order.payment_result.gateway_payment_id == "ch_1"
        assert len(await ledger.list_for("user_123")) == 1

    @pytest.mark.asyncio
    async def test_redelivered_success_is_absorbed(self, handler, pending_checkout, ledger):
        first = _event("payment_intent.succeeded", pending_checkout.checkout_id, 1, event_id="evt_1")
        second = _event("payment_intent.succeeded", pending_checkout.checkout_id, 1, event_id="evt_2")

        await handler.process_event(first)
        result = await handler.process_event(second)

        assert result["result"]["order_id"] == pending_checkout.order_id
        assert len(await ledger.list_for("user_123")) == 1

    @pytest.mark.asyncio
    async def test_payment_failed_returns_to_selection(self, handler, pending_checkout):
        event = _event(
            "payment_intent.payment_failed",
            pending_checkout.checkout_id,
            pending_checkout.current_attempt,
            last_payment_error={"message": "Your card has insufficient funds."},
        )

        result = await handler.process_event(event)

        assert result["result"]["error"] == "Your card has insufficient funds."
        assert pending_checkout.state is CheckoutState.PAYMENT_METHOD_SELECTION
        assert pending_checkout.last_error == "Your card has insufficient funds."
        assert pending_checkout.order is None

    @pytest.mark.asyncio
    async def test_canceled(self, handler, pending_checkout):
        event = _event("payment_intent.canceled", pending_checkout.checkout_id, pending_checkout.current_attempt)

        await handler.process_event(event)

        assert pending_checkout.state is CheckoutState.PAYMENT_METHOD_SELECTION
        assert pending_checkout.selector.result.failure_reason is FailureReason.CANCELLED

    @pytest.mark.asyncio
    async def test_stale_attempt_is_ignored(self, handler, pending_checkout, ledger):
        event = _event("payment_intent.succeeded", pending_checkout.checkout_id, pending_checkout.current_attempt + 1)

        result = await handler.process_event(event)

        assert result["result"]["settled"] is False
        assert pending_checkout.state is CheckoutState.PAYMENT_EXECUTION
        assert await ledger.list_for("user_123") == []

    @pytest.mark.asyncio
    async def test_checkout_found_by_order_id(self, handler, pending_checkout):
        event = _event("payment_intent.succeeded", "", pending_checkout.current_attempt)
        event["data"]["object"]["metadata"] = {
            "order_id": pending_checkout.order_id,
            "attempt_id": str(pending_checkout.current_attempt),
        }

        result = await handler.process_event(event)

        assert result["result"]["settled"] is True
        assert pending_checkout.state is CheckoutState.ORDER_CONFIRMATION
