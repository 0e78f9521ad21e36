"""
Tests for PaymentMethodSelector.
"""
from decimal import Decimal

import pytest

from storefront_checkout.core.selector import PaymentMethodSelector
from storefront_checkout.domain.exceptions import PaymentMethodUnavailable
from storefront_checkout.domain.models import (
    DeferredCashResult,
    FailureReason,
    GatewayTransferResult,
    PaymentMethod,
)


def _gateway_failure() -> GatewayTransferResult:
    return GatewayTransferResult(
        success=False,
        transaction_id="pi_1",
        amount=Decimal("200"),
        currency="INR",
        error_message="declined",
        failure_reason=FailureReason.DECLINED,
    )


@pytest.mark.unit
class TestPaymentMethodSelector:
    """Tests for method availability and selection."""

    def test_available_methods_in_declaration_order(self):
        selector = PaymentMethodSelector(
            enabled=[PaymentMethod.DEFERRED_CASH, PaymentMethod.DIRECT_TRANSFER]
        )

        assert selector.available_methods(Decimal("100")) == [
            PaymentMethod.DIRECT_TRANSFER,
            PaymentMethod.DEFERRED_CASH,
        ]

    def test_deferred_cash_withheld_above_cap(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod), deferred_cash_max_amount=Decimal("500"))

        assert PaymentMethod.DEFERRED_CASH in selector.available_methods(Decimal("500"))
        assert PaymentMethod.DEFERRED_CASH not in selector.available_methods(Decimal("500.01"))

    def test_select_enabled_method(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod))

        selected = selector.select(PaymentMethod.DIRECT_TRANSFER, Decimal("100"))

        assert selected is PaymentMethod.DIRECT_TRANSFER
        assert selector.selected is PaymentMethod.DIRECT_TRANSFER

    def test_select_accepts_wire_value(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod))

        assert selector.select("DeferredCash", Decimal("100")) is PaymentMethod.DEFERRED_CASH

    def test_select_disabled_method_raises(self):
        selector = PaymentMethodSelector(enabled=[PaymentMethod.DEFERRED_CASH])

        with pytest.raises(PaymentMethodUnavailable):
            selector.select(PaymentMethod.GATEWAY_MEDIATED_TRANSFER, Decimal("100"))

        assert selector.selected is None

    def test_select_over_cap_raises(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod), deferred_cash_max_amount=Decimal("50"))

        with pytest.raises(PaymentMethodUnavailable):
            selector.select(PaymentMethod.DEFERRED_CASH, Decimal("100"))

    def test_switching_method_drops_result(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod))
        selector.select(PaymentMethod.GATEWAY_MEDIATED_TRANSFER, Decimal("200"))
        assert selector.record_result(_gateway_failure())

        selector.select(PaymentMethod.DIRECT_TRANSFER, Decimal("200"))

        assert selector.result is None

    def test_reselecting_same_method_keeps_result(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod))
        selector.select(PaymentMethod.GATEWAY_MEDIATED_TRANSFER, Decimal("200"))
        result = _gateway_failure()
        selector.record_result(result)

        selector.select(PaymentMethod.GATEWAY_MEDIATED_TRANSFER, Decimal("200"))

        assert selector.result == result

    def test_result_for_other_method_is_ignored(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod))
        selector.select(PaymentMethod.DIRECT_TRANSFER, Decimal("200"))
        result = DeferredCashResult(
            success=True, transaction_id="COD_1", amount=Decimal("200"), currency="INR"
        )

        assert selector.record_result(result) is False
        assert selector.result is None

    def test_result_without_selection_is_ignored(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod))

        assert selector.record_result(_gateway_failure()) is False

    def test_reset(self):
        selector = PaymentMethodSelector(enabled=list(PaymentMethod))
        selector.select(PaymentMethod.GATEWAY_MEDIATED_TRANSFER, Decimal("200"))
        selector.record_result(_gateway_failure())

        selector.reset()

        assert selector.selected is None
        assert selector.result is None
