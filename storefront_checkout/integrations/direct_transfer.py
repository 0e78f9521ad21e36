"""
Direct bank transfer over a UPI intent.

The adapter builds a ``upi://pay`` URI for the merchant's payee address and
hands it to the customer, then waits. There is no gateway to ask whether the
money arrived: the host confirms the transfer with the 12-digit UPI
transaction reference the customer reports, or rejects it.
"""
import asyncio
import re
import time
from typing import Dict, Optional, Tuple
from urllib.parse import quote, urlencode

import structlog

from storefront_checkout.domain.exceptions import PaymentConfirmationError
from storefront_checkout.domain.models import FailureReason, PaymentAction, PaymentMethod, PaymentResult
from storefront_checkout.integrations.base import PaymentAdapter, PaymentRequest

logger = structlog.get_logger(__name__)

_REFERENCE_PATTERN = re.compile(r"^\d{12}$")

# (outcome, detail) where outcome is "confirmed", "rejected" or "cancelled"
_Resolution = Tuple[str, str]


def build_upi_intent(
    payee_vpa: str,
    payee_name: str,
    amount: str,
    currency: str,
    transaction_ref: str,
    order_ref: str,
) -> str:
    """Build a UPI deep link understood by UPI apps."""
    params = {
        "pa": payee_vpa,
        "pn": payee_name,
        "tid": transaction_ref,
        "tr": order_ref,
        "tn": f"Payment for order {order_ref}",
        "am": amount,
        "cu": currency,
    }
    return "upi://pay?" + urlencode(params, quote_via=quote)


class DirectTransferAdapter(PaymentAdapter):
    """UPI intent transfer confirmed by the customer."""

    method = PaymentMethod.DIRECT_TRANSFER

    def __init__(self, payee_vpa: str, payee_name: str):
        self.payee_vpa = payee_vpa
        self.payee_name = payee_name
        self._pending: Dict[str, "asyncio.Future[_Resolution]"] = {}

    async def execute(self, request: PaymentRequest) -> PaymentResult:
        transaction_ref = f"TXN{int(time.time() * 1000)}"
        intent_uri = build_upi_intent(
            payee_vpa=self.payee_vpa,
            payee_name=self.payee_name,
            amount=f"{request.amount:.2f}",
            currency=request.currency,
            transaction_ref=transaction_ref,
            order_ref=request.order_ref,
        )

        previous = self._pending.pop(request.order_ref, None)
        if previous is not None and not previous.done():
            previous.set_result(("cancelled", "Superseded by a new payment attempt"))

        future: "asyncio.Future[_Resolution]" = asyncio.get_running_loop().create_future()
        self._pending[request.order_ref] = future

        logger.info(
            "upi_intent_created",
            order_ref=request.order_ref,
            attempt_id=request.attempt_id,
            transaction_ref=transaction_ref,
        )
        request.surface(
            PaymentAction(
                method=self.method,
                attempt_id=request.attempt_id,
                kind="upi_intent",
                data={"intent_uri": intent_uri, "transaction_ref": transaction_ref},
            )
        )

        try:
            outcome, detail = await future
        finally:
            if self._pending.get(request.order_ref) is future:
                del self._pending[request.order_ref]

        if outcome == "confirmed":
            logger.info("upi_transfer_confirmed", order_ref=request.order_ref, reference=detail)
            return self.succeeded(
                request,
                transaction_id=detail,
                payee_vpa=self.payee_vpa,
                transfer_reference=detail,
            )

        reason = FailureReason.DECLINED if outcome == "rejected" else FailureReason.CANCELLED
        logger.info("upi_transfer_not_completed", order_ref=request.order_ref, outcome=outcome)
        return self.failed(
            request,
            reason,
            detail,
            transaction_id=transaction_ref,
            payee_vpa=self.payee_vpa,
        )

    def is_pending(self, order_ref: str) -> bool:
        return order_ref in self._pending

    def confirm(self, order_ref: str, reference: str) -> None:
        """
        Confirm a transfer with the customer's UPI transaction reference.

        Raises:
            PaymentConfirmationError: If the reference is malformed or no
                transfer is awaiting confirmation
        """
        reference = reference.strip()
        if not _REFERENCE_PATTERN.match(reference):
            raise PaymentConfirmationError("UPI transaction reference must be 12 digits")
        self._resolve(order_ref, ("confirmed", reference))

    def reject(self, order_ref: str, reason: Optional[str] = None) -> None:
        """
        Mark a transfer as failed.

        Raises:
            PaymentConfirmationError: If no transfer is awaiting confirmation
        """
        self._resolve(order_ref, ("rejected", reason or "Payment failed"))

    async def cancel(self, order_ref: str) -> bool:
        future = self._pending.get(order_ref)
        if future is not None and not future.done():
            future.set_result(("cancelled", "Payment cancelled by user"))
            logger.info("upi_transfer_cancelled", order_ref=order_ref)
        return True

    def _resolve(self, order_ref: str, resolution: _Resolution) -> None:
        future = self._pending.get(order_ref)
        if future is None or future.done():
            raise PaymentConfirmationError(f"No transfer awaiting confirmation for order {order_ref}")
        future.set_result(resolution)
