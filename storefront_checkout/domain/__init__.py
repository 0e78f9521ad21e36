"""
Domain layer: value objects, the cart aggregate and the checkout errors.

No infrastructure imports live here, so the rules can be tested without a
database, a gateway or an HTTP server.
"""
from .cart import Cart, CartLine, CartStore
from .exceptions import (
    CheckoutError,
    CheckoutNotFoundError,
    DuplicateOrderError,
    EmptyCheckoutError,
    InvalidTransitionError,
    LedgerError,
    OrderIntegrityError,
    OrderNotFoundError,
    PaymentConfirmationError,
    PaymentMethodUnavailable,
    ShippingValidationError,
)
from .models import (
    CheckoutSource,
    CustomerInfo,
    DeferredCashResult,
    DirectTransferResult,
    FailureReason,
    GatewayTransferResult,
    Order,
    OrderLine,
    OrderStatus,
    PaymentAction,
    PaymentMethod,
    PaymentResult,
    ProductSnapshot,
    ShippingInfo,
    parse_shipping_info,
)

__all__ = [
    "Cart",
    "CartLine",
    "CartStore",
    "CheckoutError",
    "CheckoutNotFoundError",
    "CheckoutSource",
    "CustomerInfo",
    "DeferredCashResult",
    "DirectTransferResult",
    "DuplicateOrderError",
    "EmptyCheckoutError",
    "FailureReason",
    "GatewayTransferResult",
    "InvalidTransitionError",
    "LedgerError",
    "Order",
    "OrderIntegrityError",
    "OrderLine",
    "OrderNotFoundError",
    "OrderStatus",
    "PaymentAction",
    "PaymentConfirmationError",
    "PaymentMethod",
    "PaymentMethodUnavailable",
    "PaymentResult",
    "ProductSnapshot",
    "ShippingInfo",
    "ShippingValidationError",
    "parse_shipping_info",
]
