"""
Tests for the direct transfer and cash on delivery adapters.
"""
import asyncio
import re
from decimal import Decimal
from typing import List

import pytest

from storefront_checkout.domain.exceptions import PaymentConfirmationError
from storefront_checkout.domain.models import (
    CustomerInfo,
    DeferredCashResult,
    DirectTransferResult,
    FailureReason,
    PaymentAction,
)
from storefront_checkout.integrations.base import PaymentRequest, generate_transaction_id
from storefront_checkout.integrations.deferred_cash import DeferredCashAdapter
from storefront_checkout.integrations.direct_transfer import DirectTransferAdapter, build_upi_intent


@pytest.fixture
def actions() -> List[PaymentAction]:
    return []


@pytest.fixture
def request_factory(actions):
    def _make(attempt_id: int = 1, order_ref: str = "ORD-1") -> PaymentRequest:
        return PaymentRequest(
            amount=Decimal("200"),
            currency="INR",
            order_ref=order_ref,
            attempt_id=attempt_id,
            customer=CustomerInfo(name="Asha Verma", email="asha@example.com", phone="9876543210"),
            on_action=actions.append,
        )

    return _make


@pytest.mark.unit
class TestGenerateTransactionId:
    def test_format(self):
        assert re.match(r"^COD_\d{13}_[A-Z0-9]{6}$", generate_transaction_id("COD"))

    def test_unique(self):
        assert len({generate_transaction_id("COD") for _ in range(100)}) == 100


@pytest.mark.unit
class TestBuildUpiIntent:
    def test_intent_uri(self):
        uri = build_upi_intent(
            payee_vpa="shop@upi",
            payee_name="Corner Shop",
            amount="200.00",
            currency="INR",
            transaction_ref="TXN1",
            order_ref="ORD-1",
        )

        assert uri == (
            "upi://pay?pa=shop%40upi&pn=Corner%20Shop&tid=TXN1&tr=ORD-1"
            "&tn=Payment%20for%20order%20ORD-1&am=200.00&cu=INR"
        )


@pytest.mark.unit
class TestDirectTransferAdapter:
    """Tests for UPI intent transfers."""

    @pytest.mark.asyncio
    async def test_surfaces_intent_and_waits(self, request_factory, actions):
        adapter = DirectTransferAdapter("shop@upi", "Shop")

        task = asyncio.ensure_future(adapter.execute(request_factory()))
        await asyncio.sleep(0)

        assert not task.done()
        assert adapter.is_pending("ORD-1")
        assert len(actions) == 1
        assert actions[0].kind == "upi_intent"
        assert actions[0].attempt_id == 1
        assert "am=200.00" in actions[0].data["intent_uri"]
        assert actions[0].data["transaction_ref"].startswith("TXN")

        adapter.confirm("ORD-1", "123456789012")
        result = await task

        assert isinstance(result, DirectTransferResult)
        assert result.success
        assert result.transaction_id == "123456789012"
        assert result.payee_vpa == "shop@upi"
        assert result.amount == Decimal("200.00")
        assert not adapter.is_pending("ORD-1")

    @pytest.mark.asyncio
    async def test_reject(self, request_factory):
        adapter = DirectTransferAdapter("shop@upi", "Shop")
        task = asyncio.ensure_future(adapter.execute(request_factory()))
        await asyncio.sleep(0)

        adapter.reject("ORD-1", "Customer reported a failed transfer")
        result = await task

        assert not result.success
        assert result.failure_reason is FailureReason.DECLINED
        assert result.error_message == "Customer reported a failed transfer"

    @pytest.mark.asyncio
    async def test_cancel(self, request_factory):
        adapter = DirectTransferAdapter("shop@upi", "Shop")
        task = asyncio.ensure_future(adapter.execute(request_factory()))
        await asyncio.sleep(0)

        assert await adapter.cancel("ORD-1") is True
        result = await task

        assert result.failure_reason is FailureReason.CANCELLED
        assert result.error_message == "Payment cancelled by user"

    @pytest.mark.asyncio
    async def test_cancel_without_pending_transfer(self):
        adapter = DirectTransferAdapter("shop@upi", "Shop")

        assert await adapter.cancel("ORD-1") is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reference", ["12345", "12345678901a", "1234567890123"])
    async def test_confirm_rejects_malformed_reference(self, request_factory, reference):
        adapter = DirectTransferAdapter("shop@upi", "Shop")
        task = asyncio.ensure_future(adapter.execute(request_factory()))
        await asyncio.sleep(0)

        with pytest.raises(PaymentConfirmationError):
            adapter.confirm("ORD-1", reference)

        assert adapter.is_pending("ORD-1")
        await adapter.cancel("ORD-1")
        await task

    def test_confirm_without_pending_transfer(self):
        adapter = DirectTransferAdapter("shop@upi", "Shop")

        with pytest.raises(PaymentConfirmationError):
            adapter.confirm("ORD-1", "123456789012")

    @pytest.mark.asyncio
    async def test_new_attempt_supersedes_old(self, request_factory):
        adapter = DirectTransferAdapter("shop@upi", "Shop")
        first = asyncio.ensure_future(adapter.execute(request_factory(attempt_id=1)))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(adapter.execute(request_factory(attempt_id=2)))
        await asyncio.sleep(0)

        old = await first
        assert old.failure_reason is FailureReason.CANCELLED
        assert adapter.is_pending("ORD-1")

        adapter.confirm("ORD-1", "123456789012")
        new = await second
        assert new.success
        assert new.attempt_id == 2


@pytest.mark.unit
class TestDeferredCashAdapter:
    @pytest.mark.asyncio
    async def test_always_succeeds(self, request_factory, actions):
        result = await DeferredCashAdapter().execute(request_factory())

        assert isinstance(result, DeferredCashResult)
        assert result.success
        assert result.amount == Decimal("200.00")
        assert result.transaction_id.startswith("COD_")
        assert actions == []
