"""Payment execution adapters and external gateway integrations."""
from .base import PaymentAdapter, PaymentRequest
from .deferred_cash import DeferredCashAdapter
from .direct_transfer import DirectTransferAdapter
from .stripe_client import CircuitBreaker, StripeClient, StripeErrorType, StripeGatewayError
from .stripe_gateway import StripeGatewayAdapter
from .webhook_handler import WebhookError, WebhookHandler

__all__ = [
    "CircuitBreaker",
    "DeferredCashAdapter",
    "DirectTransferAdapter",
    "PaymentAdapter",
    "PaymentRequest",
    "StripeClient",
    "StripeErrorType",
    "StripeGatewayAdapter",
    "StripeGatewayError",
    "WebhookError",
    "WebhookHandler",
]
