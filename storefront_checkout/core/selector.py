"""Payment method selection for a single checkout."""
from decimal import Decimal
from typing import Iterable, List, Optional

import structlog

from storefront_checkout.domain.exceptions import PaymentMethodUnavailable
from storefront_checkout.domain.models import PaymentMethod, PaymentResult

logger = structlog.get_logger(__name__)


class PaymentMethodSelector:
    """
    Holds the chosen payment method and the latest result recorded for it.

    Which methods are offered is decided by configuration: the enabled set,
    plus an optional cap above which cash on delivery is withheld.
    """

    def __init__(
        self,
        enabled: Iterable[PaymentMethod],
        deferred_cash_max_amount: Optional[Decimal] = None,
    ):
        self.enabled = frozenset(enabled)
        self.deferred_cash_max_amount = deferred_cash_max_amount
        self._selected: Optional[PaymentMethod] = None
        self._result: Optional[PaymentResult] = None

    def available_methods(self, amount: Decimal) -> List[PaymentMethod]:
        """Enabled methods for an amount, in declaration order."""
        methods = []
        for method in PaymentMethod:
            if method not in self.enabled:
                continue
            if (
                method is PaymentMethod.DEFERRED_CASH
                and self.deferred_cash_max_amount is not None
                and amount > self.deferred_cash_max_amount
            ):
                continue
            methods.append(method)
        return methods

    def select(self, method: PaymentMethod, amount: Decimal) -> PaymentMethod:
        """
        Record the chosen method.

        Choosing a different method than before drops the result recorded
        for the previous one.

        Raises:
            PaymentMethodUnavailable: If the method is not offered for this amount
        """
        method = PaymentMethod(method)
        if method not in self.available_methods(amount):
            raise PaymentMethodUnavailable(f"Payment method {method.value} is not available")

        if method is not self._selected:
            if self._result is not None:
                logger.info(
                    "payment_result_invalidated",
                    previous_method=self._selected.value if self._selected else None,
                    method=method.value,
                )
            self._result = None

        self._selected = method
        return method

    def record_result(self, result: PaymentResult) -> bool:
        """Keep a result if it belongs to the selected method."""
        if self._selected is None or result.method != self._selected.value:
            logger.warning(
                "payment_result_ignored",
                result_method=result.method,
                selected=self._selected.value if self._selected else None,
            )
            return False
        self._result = result
        return True

    @property
    def selected(self) -> Optional[PaymentMethod]:
        return self._selected

    @property
    def result(self) -> Optional[PaymentResult]:
        return self._result

    def reset(self) -> None:
        self._selected = None
        self._result = None
