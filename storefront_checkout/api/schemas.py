"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from storefront_checkout.domain.cart import Cart
from storefront_checkout.domain.models import (
    CheckoutSource,
    Order,
    OrderStatus,
    PaymentMethod,
    ProductSnapshot,
)


class ProductResponse(BaseModel):
    """Response schema for a catalog product."""

    id: str
    name: str
    price: Decimal
    images: List[str] = Field(default_factory=list)

    @classmethod
    def from_product(cls, product: ProductSnapshot) -> "ProductResponse":
        return cls(id=product.id, name=product.name, price=product.price, images=list(product.images))


class AddCartItemRequest(BaseModel):
    """Request schema for adding a product to a cart."""

    product_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1, description="Quantity to add")

    model_config = {"json_schema_extra": {"examples": [{"product_id": "1", "quantity": 2}]}}


class SetQuantityRequest(BaseModel):
    """Request schema for setting a cart line's quantity; zero or less removes it."""

    quantity: int


class CartLineResponse(BaseModel):
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    images: List[str] = Field(default_factory=list)


class CartResponse(BaseModel):
    """Response schema for a cart."""

    owner_id: str
    items: List[CartLineResponse]
    item_count: int
    total: Decimal
    currency: str

    @classmethod
    def from_cart(cls, cart: Cart, currency: str) -> "CartResponse":
        items = [
            CartLineResponse(
                product_id=line.product_id,
                name=line.name,
                unit_price=line.unit_price,
                quantity=line.quantity,
                line_total=line.line_total,
                images=list(line.images),
            )
            for line in cart.snapshot()
        ]
        return cls(
            owner_id=cart.owner_id,
            items=items,
            item_count=cart.item_count(),
            total=cart.total(),
            currency=currency,
        )


class CreateCheckoutRequest(BaseModel):
    """
    Request schema for starting a checkout.

    ``cart`` checks out the cart of ``cart_owner_id`` (the caller's own cart
    when omitted; anonymous callers name a ``guest-`` cart). ``buy_now``
    checks out a single product without touching any cart.
    """

    source: CheckoutSource = CheckoutSource.CART
    cart_owner_id: Optional[str] = None
    product_id: Optional[str] = None
    quantity: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def validate_source(self) -> "CreateCheckoutRequest":
        if self.source is CheckoutSource.BUY_NOW and not self.product_id:
            raise ValueError("product_id is required for buy-now checkout")
        return self

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"source": "cart", "cart_owner_id": "user_123"},
                {"source": "buy_now", "product_id": "3", "quantity": 1},
            ]
        }
    }


class SelectMethodRequest(BaseModel):
    method: PaymentMethod


class PayRequest(BaseModel):
    """
    Request schema for starting a payment.

    By default the call returns as soon as the customer has something to act
    on (``pending_action``); ``wait`` blocks until the attempt settles.
    """

    wait: bool = False


class TransferConfirmationRequest(BaseModel):
    """Customer's report on a UPI transfer."""

    confirmed: bool = True
    reference: Optional[str] = Field(default=None, description="12-digit UPI transaction reference")
    reason: Optional[str] = None

    @model_validator(mode="after")
    def validate_reference(self) -> "TransferConfirmationRequest":
        if self.confirmed and not self.reference:
            raise ValueError("reference is required to confirm a transfer")
        return self


class PaymentMethodsResponse(BaseModel):
    methods: List[PaymentMethod]
    amount: Decimal
    currency: str


class CheckoutResponse(BaseModel):
    """Response schema for a checkout session."""

    checkout_id: str
    order_id: str
    state: str
    source: CheckoutSource
    user_id: Optional[str] = None
    shipping_info: Optional[Dict[str, Any]] = None
    line_items: List[Dict[str, Any]] = Field(default_factory=list)
    amount: Optional[Decimal] = None
    currency: str
    selected_method: Optional[PaymentMethod] = None
    available_methods: List[PaymentMethod] = Field(default_factory=list)
    attempt_id: Optional[int] = None
    pending_action: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    order: Optional[Dict[str, Any]] = None


class OrderLineResponse(BaseModel):
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    images: List[str] = Field(default_factory=list)


class OrderResponse(BaseModel):
    """Response schema for a placed order."""

    id: str
    user_id: Optional[str] = None
    status: OrderStatus
    line_items: List[OrderLineResponse]
    total: Decimal
    currency: str
    payment_method: PaymentMethod
    transaction_id: str
    source: CheckoutSource
    shipping_info: Dict[str, Any]
    payment_result: Dict[str, Any]
    created_at: datetime
    estimated_delivery: datetime

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            user_id=order.user_id,
            status=order.status,
            line_items=[
                OrderLineResponse(
                    product_id=line.product_id,
                    name=line.name,
                    unit_price=line.unit_price,
                    quantity=line.quantity,
                    line_total=line.line_total,
                    images=list(line.images),
                )
                for line in order.line_items
            ],
            total=order.total,
            currency=order.currency,
            payment_method=order.payment_method,
            transaction_id=order.transaction_id,
            source=order.source,
            shipping_info=order.shipping_info.model_dump(),
            payment_result=order.payment_result.model_dump(mode="json"),
            created_at=order.created_at,
            estimated_delivery=order.estimated_delivery,
        )


class UpdateOrderStatusRequest(BaseModel):
    status: OrderStatus


class WebhookResponse(BaseModel):
    """Response schema for webhook processing."""

    status: str = Field(..., description="Processing status")
    event_id: str = Field(..., description="Stripe event ID")
    event_type: Optional[str] = Field(default=None, description="Event type")
    message: Optional[str] = Field(default=None, description="Status message")
    result: Optional[Dict[str, Any]] = Field(default=None, description="Handler result")


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual check results")
    message: Optional[str] = Field(default=None, description="Status message")
