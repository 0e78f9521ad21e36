"""Exception hierarchy for checkout, ledger and cart operations."""
from typing import Dict


class CheckoutError(Exception):
    """Base exception for checkout errors."""

    pass


class ShippingValidationError(CheckoutError):
    """
    Raised when submitted shipping information fails validation.

    Carries one human-readable message per offending field so the host
    can render them inline next to the form.
    """

    def __init__(self, field_errors: Dict[str, str]):
        self.field_errors = dict(field_errors)
        fields = ", ".join(sorted(self.field_errors))
        super().__init__(f"Invalid shipping information: {fields}")


class InvalidTransitionError(CheckoutError):
    """Raised when an operation is not allowed in the current checkout state."""

    pass


class EmptyCheckoutError(CheckoutError):
    """Raised when a checkout has no line items to pay for."""

    pass


class PaymentMethodUnavailable(CheckoutError):
    """Raised when selecting a payment method that is not enabled."""

    pass


class CheckoutNotFoundError(CheckoutError):
    """Raised when a checkout session id is unknown."""

    pass


class LedgerError(Exception):
    """Base exception for order ledger errors."""

    pass


class DuplicateOrderError(LedgerError):
    """Raised when appending an order whose id already exists."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} already exists")


class OrderNotFoundError(LedgerError):
    """Raised when an order id is unknown to the ledger."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class OrderIntegrityError(CheckoutError):
    """
    Raised when the ledger reports a duplicate order for a checkout.

    This means the order-creation latch was bypassed. It is fatal for the
    checkout and must be investigated, never retried.
    """

    pass


class PaymentConfirmationError(CheckoutError):
    """Raised when a customer-supplied transfer confirmation is rejected."""

    pass
