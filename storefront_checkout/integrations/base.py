"""
Payment execution adapter contract.

Every payment mechanism is wrapped in an adapter that turns its outcome into
a ``PaymentResult``. Adapters never raise for payment failures (declines,
cancellations, gateway outages come back as failed results) and never retry
on their own; retry policy belongs to the checkout orchestrator.
"""
import secrets
import string
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, ClassVar, Dict, Optional, Type

from storefront_checkout.domain.models import (
    CustomerInfo,
    DeferredCashResult,
    DirectTransferResult,
    FailureReason,
    GatewayTransferResult,
    PaymentAction,
    PaymentMethod,
    PaymentResult,
)

_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_id(prefix: str) -> str:
    """``<PREFIX>_<epoch millis>_<6 random chars>``"""
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(6))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


@dataclass(frozen=True)
class PaymentRequest:
    """Everything an adapter needs to run one payment attempt."""

    amount: Decimal
    currency: str
    order_ref: str
    attempt_id: int
    customer: CustomerInfo
    metadata: Dict[str, str] = field(default_factory=dict)
    on_action: Optional[Callable[[PaymentAction], None]] = None

    def surface(self, action: PaymentAction) -> None:
        """Hand the customer's next step back to whoever is driving the checkout."""
        if self.on_action is not None:
            self.on_action(action)


class PaymentAdapter(ABC):
    """Base class for payment execution adapters."""

    method: ClassVar[PaymentMethod]

    @abstractmethod
    async def execute(self, request: PaymentRequest) -> PaymentResult:
        """Run one payment attempt and return its normalized result."""
        ...

    async def cancel(self, order_ref: str) -> bool:
        """
        Cancel the in-flight payment for an order.

        Returns:
            bool: True if no charge will happen, False if the payment can no
            longer be stopped and its outcome must be awaited
        """
        return True

    def succeeded(self, request: PaymentRequest, transaction_id: str, **extra: Any) -> PaymentResult:
        return _RESULT_TYPES[self.method](
            success=True,
            transaction_id=transaction_id,
            amount=request.amount,
            currency=request.currency,
            attempt_id=request.attempt_id,
            **extra,
        )

    def failed(
        self,
        request: PaymentRequest,
        reason: FailureReason,
        message: str,
        transaction_id: str = "",
        **extra: Any,
    ) -> PaymentResult:
        return failed_result(
            self.method,
            request,
            reason,
            message,
            transaction_id=transaction_id,
            **extra,
        )


_RESULT_TYPES: Dict[PaymentMethod, Type[Any]] = {
    PaymentMethod.DIRECT_TRANSFER: DirectTransferResult,
    PaymentMethod.GATEWAY_MEDIATED_TRANSFER: GatewayTransferResult,
    PaymentMethod.DEFERRED_CASH: DeferredCashResult,
}


def failed_result(
    method: PaymentMethod,
    request: PaymentRequest,
    reason: FailureReason,
    message: str,
    transaction_id: str = "",
    **extra: Any,
) -> PaymentResult:
    """Build a failed result of the right variant for a method."""
    return _RESULT_TYPES[method](
        success=False,
        transaction_id=transaction_id or f"{request.order_ref}:{request.attempt_id}",
        amount=request.amount,
        currency=request.currency,
        attempt_id=request.attempt_id,
        error_message=message,
        failure_reason=reason,
        **extra,
    )
