"""
Stripe webhook handler with signature verification and event deduplication.

PaymentIntent events are routed back to the checkout that created the
intent (``checkout_id``, ``order_id`` and ``attempt_id`` travel in the intent
metadata) and settled there. Redelivered events are dropped by event id; a
webhook that races the adapter's own poll is absorbed by the checkout.
"""
from collections import OrderedDict
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional

import stripe
import structlog

from storefront_checkout.config import Settings
from storefront_checkout.domain.models import FailureReason, GatewayTransferResult
from storefront_checkout.monitoring.metrics import metrics

if TYPE_CHECKING:
    from storefront_checkout.core.orchestrator import CheckoutOrchestrator
    from storefront_checkout.core.registry import CheckoutRegistry

logger = structlog.get_logger(__name__)

EventHandler = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class WebhookError(Exception):
    """Raised when webhook processing fails."""

    pass


class WebhookHandler:
    """
    Handles Stripe webhook events.

    Features:
    - Signature verification using the webhook signing secret
    - Event deduplication by event id (bounded, in memory)
    - Event type routing to registered handlers
    """

    def __init__(self, settings: Settings, registry: "CheckoutRegistry", max_remembered_events: int = 10_000):
        self.settings = settings
        self.registry = registry
        self.max_remembered_events = max_remembered_events
        self.event_handlers: Dict[str, EventHandler] = {}
        self._processed: "OrderedDict[str, None]" = OrderedDict()

        self.register_handler("payment_intent.succeeded", self.handle_payment_intent_succeeded)
        self.register_handler("payment_intent.payment_failed", self.handle_payment_intent_payment_failed)
        self.register_handler("payment_intent.canceled", self.handle_payment_intent_canceled)

        logger.info("webhook_handler_initialized")

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        self.event_handlers[event_type] = handler
        logger.debug("webhook_handler_registered", event_type=event_type)

    def verify_signature(self, payload: bytes, signature: str, secret: Optional[str] = None) -> stripe.Event:
        """
        Verify webhook signature and construct event.

        Raises:
            WebhookError: If signature verification fails
        """
        webhook_secret = secret or self.settings.stripe_webhook_secret
        if not webhook_secret:
            raise WebhookError("Webhook signing secret is not configured")

        try:
            event = stripe.Webhook.construct_event(
                payload=payload,
                sig_header=signature,
                secret=webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.error("webhook_signature_verification_failed", error=str(e))
            raise WebhookError(f"Invalid webhook signature: {str(e)}") from e
        except ValueError as e:
            logger.error("webhook_payload_invalid", error=str(e))
            raise WebhookError(f"Invalid webhook payload: {str(e)}") from e

        logger.info("webhook_signature_verified", event_id=event.id, event_type=event.type)
        return event

    def is_event_processed(self, event_id: str) -> bool:
        return event_id in self._processed

    def mark_event_processed(self, event_id: str) -> None:
        self._processed[event_id] = None
        while len(self._processed) > self.max_remembered_events:
            self._processed.popitem(last=False)

    async def process_event(self, event: Any) -> Dict[str, Any]:
        """
        Process a verified webhook event.

        Raises:
            WebhookError: If the handler fails
        """
        event_id = event["id"]
        event_type = event["type"]
        event_data = event["data"]["object"]

        logger.info("processing_webhook_event", event_id=event_id, event_type=event_type)

        if self.is_event_processed(event_id):
            logger.info("webhook_event_already_processed", event_id=event_id, event_type=event_type)
            metrics.record_webhook_event(event_type, "duplicate")
            return {
                "status": "duplicate",
                "event_id": event_id,
                "message": "Event already processed",
            }

        handler = self.event_handlers.get(event_type)
        if handler is None:
            logger.info("webhook_no_handler", event_id=event_id, event_type=event_type)
            self.mark_event_processed(event_id)
            metrics.record_webhook_event(event_type, "ignored")
            return {
                "status": "no_handler",
                "event_id": event_id,
                "event_type": event_type,
            }

        try:
            result = await handler(event_data)
        except Exception as e:
            logger.error(
                "webhook_event_processing_failed",
                event_id=event_id,
                event_type=event_type,
                error=str(e),
            )
            metrics.record_webhook_event(event_type, "failed")
            raise WebhookError(f"Failed to process event {event_id}: {str(e)}") from e

        self.mark_event_processed(event_id)
        metrics.record_webhook_event(event_type, "success")
        logger.info("webhook_event_processed_successfully", event_id=event_id, event_type=event_type)

        return {
            "status": "success",
            "event_id": event_id,
            "event_type": event_type,
            "result": result,
        }

    def _checkout_for(self, payment_intent: Dict[str, Any]) -> tuple[Optional["CheckoutOrchestrator"], Optional[int]]:
        metadata = payment_intent.get("metadata") or {}
        checkout_id = metadata.get("checkout_id")
        order_id = metadata.get("order_id")
        attempt_id = metadata.get("attempt_id")
        if not (checkout_id or order_id) or attempt_id is None:
            return None, None

        if checkout_id:
            checkout = self.registry.find(checkout_id)
        else:
            checkout = self.registry.find_by_order_id(order_id)
        if checkout is None:
            logger.warning(
                "webhook_checkout_not_found",
                checkout_id=checkout_id,
                order_id=order_id,
                payment_intent_id=payment_intent.get("id"),
            )
            return None, None
        return checkout, int(attempt_id)

    @staticmethod
    def _amount(payment_intent: Dict[str, Any]) -> Decimal:
        return Decimal(payment_intent["amount"]) / 100

    async def handle_payment_intent_succeeded(self, payment_intent: Dict[str, Any]) -> Dict[str, Any]:
        payment_intent_id = payment_intent["id"]
        checkout, attempt_id = self._checkout_for(payment_intent)
        if checkout is None:
            return {"payment_intent_id": payment_intent_id, "settled": False}

        result = GatewayTransferResult(
            success=True,
            transaction_id=payment_intent_id,
            amount=self._amount(payment_intent),
            currency=str(payment_intent["currency"]).upper(),
            attempt_id=attempt_id,
            gateway_payment_id=payment_intent.get("latest_charge") or payment_intent_id,
        )
        order = await checkout.settle(attempt_id, result)

        return {
            "payment_intent_id": payment_intent_id,
            "checkout_id": checkout.checkout_id,
            "settled": order is not None,
            "order_id": order.id if order else None,
        }

    async def handle_payment_intent_payment_failed(self, payment_intent: Dict[str, Any]) -> Dict[str, Any]:
        last_error = payment_intent.get("last_payment_error") or {}
        return await self._settle_failure(
            payment_intent,
            FailureReason.DECLINED,
            last_error.get("message") or "Payment declined",
        )

    async def handle_payment_intent_canceled(self, payment_intent: Dict[str, Any]) -> Dict[str, Any]:
        return await self._settle_failure(payment_intent, FailureReason.CANCELLED, "Payment cancelled")

    async def _settle_failure(
        self, payment_intent: Dict[str, Any], reason: FailureReason, message: str
    ) -> Dict[str, Any]:
        payment_intent_id = payment_intent["id"]
        checkout, attempt_id = self._checkout_for(payment_intent)
        if checkout is None:
            return {"payment_intent_id": payment_intent_id, "settled": False}

        result = GatewayTransferResult(
            success=False,
            transaction_id=payment_intent_id,
            amount=self._amount(payment_intent),
            currency=str(payment_intent["currency"]).upper(),
            attempt_id=attempt_id,
            error_message=message,
            failure_reason=reason,
            gateway_payment_id=payment_intent_id,
        )
        await checkout.settle(attempt_id, result)

        return {
            "payment_intent_id": payment_intent_id,
            "checkout_id": checkout.checkout_id,
            "error": message,
        }
