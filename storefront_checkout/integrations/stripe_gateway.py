"""
Gateway-mediated transfer through Stripe PaymentIntents.

Flow:
1. Create a PaymentIntent for the locked amount, keyed ``order_ref:attempt_id``
2. Hand the client secret to the customer's browser (Stripe.js collects the card)
3. Poll the intent until it reaches a terminal status

Webhooks may report the same outcome first; the orchestrator's latch makes
the second report a no-op.
"""
import asyncio
from typing import Dict, Optional

import stripe
import structlog

from storefront_checkout.domain.models import (
    FailureReason,
    PaymentAction,
    PaymentMethod,
    PaymentResult,
    to_minor_units,
)
from storefront_checkout.integrations.base import PaymentAdapter, PaymentRequest
from storefront_checkout.integrations.stripe_client import StripeClient, StripeGatewayError

logger = structlog.get_logger(__name__)


class StripeGatewayAdapter(PaymentAdapter):
    """Card payments collected by Stripe."""

    method = PaymentMethod.GATEWAY_MEDIATED_TRANSFER

    def __init__(self, client: StripeClient, poll_interval_seconds: float = 2.0):
        self.client = client
        self.poll_interval_seconds = poll_interval_seconds
        # order_ref -> id of the intent currently being polled
        self._intents: Dict[str, str] = {}

    @staticmethod
    def idempotency_key(request: PaymentRequest) -> str:
        return f"{request.order_ref}:{request.attempt_id}"

    async def execute(self, request: PaymentRequest) -> PaymentResult:
        metadata = {
            **request.metadata,
            "order_id": request.order_ref,
            "attempt_id": str(request.attempt_id),
        }

        try:
            intent = await self.client.create_payment_intent(
                amount_minor=to_minor_units(request.amount),
                currency=request.currency,
                idempotency_key=self.idempotency_key(request),
                metadata=metadata,
            )
        except StripeGatewayError as e:
            return self._from_error(request, e)

        self._intents[request.order_ref] = intent.id
        request.surface(
            PaymentAction(
                method=self.method,
                attempt_id=request.attempt_id,
                kind="client_secret",
                data={"client_secret": intent.client_secret, "payment_intent_id": intent.id},
            )
        )

        try:
            while True:
                result = self.interpret(intent, request)
                if result is not None:
                    return result

                await asyncio.sleep(self.poll_interval_seconds)
                try:
                    intent = await self.client.retrieve_payment_intent(intent.id)
                except StripeGatewayError as e:
                    return self._from_error(request, e, gateway_payment_id=intent.id)
        finally:
            if self._intents.get(request.order_ref) == intent.id:
                del self._intents[request.order_ref]

    def interpret(self, intent: stripe.PaymentIntent, request: PaymentRequest) -> Optional[PaymentResult]:
        """Map a PaymentIntent to a result, or None while it is still in progress."""
        status = intent.status

        if status == "succeeded":
            logger.info("stripe_payment_succeeded", payment_intent_id=intent.id)
            return self.succeeded(
                request,
                transaction_id=intent.id,
                gateway_payment_id=getattr(intent, "latest_charge", None) or intent.id,
            )

        if status == "canceled":
            return self.failed(
                request,
                FailureReason.CANCELLED,
                "Payment cancelled",
                transaction_id=intent.id,
                gateway_payment_id=intent.id,
            )

        last_error = getattr(intent, "last_payment_error", None)
        if status == "requires_payment_method" and last_error:
            message = getattr(last_error, "message", None) or "Payment declined"
            logger.info(
                "stripe_payment_declined",
                payment_intent_id=intent.id,
                decline_code=getattr(last_error, "decline_code", None),
            )
            return self.failed(
                request,
                FailureReason.DECLINED,
                message,
                transaction_id=intent.id,
                gateway_payment_id=intent.id,
            )

        return None

    async def cancel(self, order_ref: str) -> bool:
        intent_id = self._intents.get(order_ref)
        if intent_id is None:
            return True

        try:
            await self.client.cancel_payment_intent(intent_id)
            return True
        except StripeGatewayError as e:
            # The intent may have succeeded or be processing; its outcome
            # has to be awaited.
            logger.warning(
                "stripe_cancel_refused",
                payment_intent_id=intent_id,
                error=str(e),
            )
            return False

    def _from_error(
        self,
        request: PaymentRequest,
        error: StripeGatewayError,
        gateway_payment_id: Optional[str] = None,
    ) -> PaymentResult:
        reason = FailureReason.DECLINED if error.is_permanent else FailureReason.GATEWAY_UNAVAILABLE
        message = str(error) if error.is_permanent else "Payment gateway is unavailable, please try again"
        return self.failed(
            request,
            reason,
            message,
            transaction_id=gateway_payment_id or "",
            gateway_payment_id=gateway_payment_id,
        )
