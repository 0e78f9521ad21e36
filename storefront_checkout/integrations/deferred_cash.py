"""Cash on delivery."""
import structlog

from storefront_checkout.domain.models import PaymentMethod, PaymentResult
from storefront_checkout.integrations.base import PaymentAdapter, PaymentRequest, generate_transaction_id

logger = structlog.get_logger(__name__)


class DeferredCashAdapter(PaymentAdapter):
    """Always succeeds; the money is collected by the courier."""

    method = PaymentMethod.DEFERRED_CASH

    async def execute(self, request: PaymentRequest) -> PaymentResult:
        transaction_id = generate_transaction_id("COD")
        logger.info(
            "cash_on_delivery_accepted",
            order_ref=request.order_ref,
            transaction_id=transaction_id,
            amount=str(request.amount),
        )
        return self.succeeded(request, transaction_id=transaction_id)
