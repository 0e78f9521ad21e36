"""
Stripe API client with error classification and a circuit breaker.

The Stripe SDK is synchronous; every call runs in a worker thread so the
event loop is never blocked. Network retries are left to the SDK
(``stripe.max_network_retries``), which reuses the idempotency key on each
try. Nothing here retries on top of that.
"""
import asyncio
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple, Type

import stripe
import structlog

from storefront_checkout.config import Settings
from storefront_checkout.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class StripeErrorType(Enum):
    """Classification of Stripe errors."""

    TRANSIENT = "transient"  # gateway unavailable, worth trying again later
    PERMANENT = "permanent"  # the request or the card was refused
    RATE_LIMIT = "rate_limit"


class StripeGatewayError(Exception):
    """Base exception for Stripe-related errors."""

    def __init__(
        self,
        message: str,
        error_type: StripeErrorType,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.error_type = error_type
        self.original_error = original_error

    @property
    def is_permanent(self) -> bool:
        return self.error_type is StripeErrorType.PERMANENT


class CircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Stops sending requests for ``timeout`` seconds once ``failure_threshold``
    consecutive calls have failed. Exceptions listed in ``excluded`` (card
    declines, invalid requests) mean Stripe answered, so they do not count as
    failures.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
        excluded: Tuple[Type[BaseException], ...] = (),
    ):
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.excluded = excluded
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """
        Run a blocking function in a worker thread under breaker protection.

        Raises:
            StripeGatewayError: If circuit is open
        """
        if self.state == "open":
            if self.last_failure_time and time.time() - self.last_failure_time > self.timeout:
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise StripeGatewayError("Circuit breaker is open", StripeErrorType.TRANSIENT)

        try:
            result = await asyncio.to_thread(func, *args, **kwargs)
        except self.excluded:
            self.on_success()
            raise
        except Exception:
            self.on_failure()
            raise

        self.on_success()
        return result

    def on_success(self) -> None:
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning("circuit_breaker_opened", failure_count=self.failure_count)

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)


class StripeClient:
    """Async wrapper for the Stripe API."""

    def __init__(self, settings: Settings, circuit_breaker: Optional[CircuitBreaker] = None):
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = settings.stripe_api_version
        stripe.max_network_retries = settings.stripe_max_network_retries
        self.settings = settings
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            excluded=(stripe.CardError, stripe.InvalidRequestError)
        )

        logger.info(
            "stripe_client_initialized",
            api_version=stripe.api_version,
            test_mode=settings.is_test_mode,
        )

    @staticmethod
    def _classify_error(error: stripe.StripeError) -> StripeErrorType:
        if isinstance(error, stripe.RateLimitError):
            return StripeErrorType.RATE_LIMIT
        elif isinstance(error, (stripe.APIConnectionError, stripe.APIError)):
            return StripeErrorType.TRANSIENT
        elif isinstance(
            error,
            (
                stripe.CardError,
                stripe.InvalidRequestError,
                stripe.AuthenticationError,
                stripe.PermissionError,
            ),
        ):
            return StripeErrorType.PERMANENT
        else:
            # Unknown errors are treated as transient
            return StripeErrorType.TRANSIENT

    def _handle_stripe_error(self, error: stripe.StripeError) -> StripeGatewayError:
        error_type = self._classify_error(error)

        logger.error(
            "stripe_api_error",
            error_type=error_type.value,
            error_code=getattr(error, "code", None),
            error_message=str(error),
        )
        metrics.record_stripe_api_error(error_type.value)

        return StripeGatewayError(
            message=getattr(error, "user_message", None) or str(error),
            error_type=error_type,
            original_error=error,
        )

    async def create_payment_intent(
        self,
        amount_minor: int,
        currency: str,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> stripe.PaymentIntent:
        """
        Create a PaymentIntent.

        Args:
            amount_minor: Amount in the currency's minor unit (paise, cents)
            currency: Currency code
            idempotency_key: Replays of the same key return the same intent
            metadata: Stored on the intent and echoed back in webhooks

        Raises:
            StripeGatewayError: If creation fails
        """
        logger.info(
            "creating_payment_intent",
            amount_minor=amount_minor,
            currency=currency,
            idempotency_key=idempotency_key,
        )

        try:
            payment_intent = await self.circuit_breaker.call(
                stripe.PaymentIntent.create,
                amount=amount_minor,
                currency=currency.lower(),
                idempotency_key=idempotency_key,
                metadata=metadata or {},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            raise self._handle_stripe_error(e) from e

        logger.info(
            "payment_intent_created",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return payment_intent

    async def retrieve_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        try:
            return await self.circuit_breaker.call(stripe.PaymentIntent.retrieve, payment_intent_id)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(e) from e

    async def cancel_payment_intent(self, payment_intent_id: str) -> stripe.PaymentIntent:
        """
        Cancel a PaymentIntent that has not been captured.

        Raises:
            StripeGatewayError: If Stripe refuses (e.g. the intent already succeeded)
        """
        logger.info("cancelling_payment_intent", payment_intent_id=payment_intent_id)

        try:
            payment_intent = await self.circuit_breaker.call(
                stripe.PaymentIntent.cancel, payment_intent_id
            )
        except stripe.StripeError as e:
            raise self._handle_stripe_error(e) from e

        logger.info(
            "payment_intent_cancelled",
            payment_intent_id=payment_intent.id,
            status=payment_intent.status,
        )
        return payment_intent

    async def ping(self) -> None:
        """Cheapest authenticated call, used by health checks."""
        try:
            await self.circuit_breaker.call(stripe.PaymentIntent.list, limit=1)
        except stripe.StripeError as e:
            raise self._handle_stripe_error(e) from e
