"""
Checkout value objects.

Everything here is immutable once constructed. Prices are locked into
these objects when a product is added to the cart and again when a checkout
snapshots its line items, so nothing downstream ever re-reads a live price.

Payment results are a tagged union keyed by ``method``: each payment
mechanism has its own result variant carrying the fields only it produces,
and consumers dispatch on the variant type instead of probing optional
fields.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Tuple, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel, to_snake

from storefront_checkout.domain.exceptions import ShippingValidationError

TWO_PLACES = Decimal("0.01")


def quantize_money(value: Decimal | int | float | str) -> Decimal:
    """Round a money amount to two decimal places."""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Convert a money amount to integer minor units (paise, cents)."""
    return int((quantize_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentMethod(str, Enum):
    """Closed set of payment strategies offered at checkout."""

    DIRECT_TRANSFER = "DirectTransfer"
    GATEWAY_MEDIATED_TRANSFER = "GatewayMediatedTransfer"
    DEFERRED_CASH = "DeferredCash"


class FailureReason(str, Enum):
    """Why a payment attempt did not succeed."""

    DECLINED = "declined"
    CANCELLED = "cancelled"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    TIMED_OUT = "timed_out"
    DUPLICATE_TRANSACTION = "duplicate_transaction"


class OrderStatus(str, Enum):
    """Fulfillment status; the only mutable field of an order."""

    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class CheckoutSource(str, Enum):
    """Where a checkout's line items came from."""

    CART = "cart"
    BUY_NOW = "buy_now"


class ProductSnapshot(BaseModel):
    """Product data captured when the product enters a cart or checkout."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    price: Decimal = Field(..., ge=0)
    images: Tuple[str, ...] = ()

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal) -> Decimal:
        return quantize_money(v)


class OrderLine(BaseModel):
    """A line item with its price locked at snapshot time."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    unit_price: Decimal = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    images: Tuple[str, ...] = ()

    @field_validator("unit_price")
    @classmethod
    def validate_unit_price(cls, v: Decimal) -> Decimal:
        return quantize_money(v)

    @property
    def line_total(self) -> Decimal:
        return quantize_money(self.unit_price * self.quantity)

    @classmethod
    def from_product(cls, product: ProductSnapshot, quantity: int) -> "OrderLine":
        return cls(
            product_id=product.id,
            name=product.name,
            unit_price=product.price,
            quantity=quantity,
            images=product.images,
        )


def lines_total(lines: Tuple[OrderLine, ...]) -> Decimal:
    """Sum of price x quantity over line items."""
    return quantize_money(sum((line.line_total for line in lines), Decimal("0")))


# Messages shown when a shipping field is missing or too short.
_REQUIRED_MESSAGES = {
    "full_name": "Full name is required",
    "email": "Valid email address is required",
    "phone": "Valid phone number is required",
    "address": "Complete address is required",
    "city": "City is required",
    "state": "State is required",
    "postal_code": "ZIP code is required",
    "country": "Country is required",
}

_FIELD_ALIASES = {"zip": "postal_code", "zip_code": "postal_code"}

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _require_length(value: str, minimum: int, field: str) -> str:
    if len(value) < minimum:
        raise ValueError(_REQUIRED_MESSAGES[field])
    return value


class ShippingInfo(BaseModel):
    """
    Delivery and contact details captured in the first checkout step.

    Accepts snake_case or camelCase keys; the postal code also accepts
    ``zip`` and ``zipCode``.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    full_name: str
    email: str
    phone: str
    address: str
    city: str
    state: str
    postal_code: str = Field(
        ...,
        validation_alias=AliasChoices("postal_code", "postalCode", "zip", "zipCode"),
    )
    country: str = "India"

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: str) -> str:
        return _require_length(v, 2, "full_name")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not _EMAIL_PATTERN.match(v):
            raise ValueError(_REQUIRED_MESSAGES["email"])
        return v.lower()

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not v.isdigit():
            raise ValueError("Phone number must contain only digits")
        return _require_length(v, 10, "phone")

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        return _require_length(v, 10, "address")

    @field_validator("city", "state")
    @classmethod
    def validate_region(cls, v: str, info: ValidationInfo) -> str:
        return _require_length(v, 1, info.field_name)

    @field_validator("postal_code")
    @classmethod
    def validate_postal_code(cls, v: str) -> str:
        return _require_length(v, 5, "postal_code")

    @field_validator("country")
    @classmethod
    def validate_country(cls, v: str) -> str:
        return _require_length(v, 1, "country")

    def customer(self) -> "CustomerInfo":
        return CustomerInfo(name=self.full_name, email=self.email, phone=self.phone)


def _field_name(loc: Tuple[Any, ...]) -> str:
    if not loc:
        return "__root__"
    name = to_snake(str(loc[0]))
    return _FIELD_ALIASES.get(name, name)


def parse_shipping_info(
    data: Mapping[str, Any] | ShippingInfo, default_country: str = "India"
) -> ShippingInfo:
    """
    Validate raw shipping form data.

    Raises:
        ShippingValidationError: with one message per invalid field
    """
    if isinstance(data, ShippingInfo):
        return data

    payload = dict(data)
    if not payload.get("country"):
        payload["country"] = default_country

    try:
        return ShippingInfo.model_validate(payload)
    except ValidationError as e:
        field_errors: Dict[str, str] = {}
        for error in e.errors():
            field = _field_name(error["loc"])
            if field in field_errors:
                continue
            if error["type"] == "value_error":
                field_errors[field] = str(error["ctx"]["error"])
            else:
                field_errors[field] = _REQUIRED_MESSAGES.get(field, error["msg"])
        raise ShippingValidationError(field_errors) from e


class CustomerInfo(BaseModel):
    """Contact details handed to payment adapters."""

    model_config = ConfigDict(frozen=True)

    name: str
    email: str
    phone: str


class _PaymentResultBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    transaction_id: str
    amount: Decimal
    currency: str
    attempt_id: int = 0
    timestamp: datetime = Field(default_factory=utcnow)
    error_message: Optional[str] = None
    failure_reason: Optional[FailureReason] = None

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: Decimal) -> Decimal:
        return quantize_money(v)

    @model_validator(mode="after")
    def validate_outcome(self) -> "_PaymentResultBase":
        if self.success and self.failure_reason is not None:
            raise ValueError("A successful payment cannot carry a failure reason")
        if not self.success and (not self.error_message or self.failure_reason is None):
            raise ValueError("A failed payment needs an error message and a failure reason")
        return self


class DirectTransferResult(_PaymentResultBase):
    """Outcome of a UPI intent transfer confirmed by the customer."""

    method: Literal["DirectTransfer"] = "DirectTransfer"
    payee_vpa: Optional[str] = None
    transfer_reference: Optional[str] = None


class GatewayTransferResult(_PaymentResultBase):
    """Outcome of a payment mediated by an external gateway."""

    method: Literal["GatewayMediatedTransfer"] = "GatewayMediatedTransfer"
    gateway: str = "stripe"
    gateway_payment_id: Optional[str] = None


class DeferredCashResult(_PaymentResultBase):
    """Cash on delivery: nothing is collected at order time."""

    method: Literal["DeferredCash"] = "DeferredCash"


PaymentResult = Annotated[
    Union[DirectTransferResult, GatewayTransferResult, DeferredCashResult],
    Field(discriminator="method"),
]


class Order(BaseModel):
    """A placed order. Only ``status`` may change after creation."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: Optional[str] = None
    line_items: Tuple[OrderLine, ...]
    total: Decimal
    currency: str
    status: OrderStatus = OrderStatus.CONFIRMED
    shipping_info: ShippingInfo
    payment_method: PaymentMethod
    payment_result: PaymentResult
    transaction_id: str
    source: CheckoutSource = CheckoutSource.CART
    created_at: datetime = Field(default_factory=utcnow)
    estimated_delivery: datetime

    @field_validator("total")
    @classmethod
    def validate_total(cls, v: Decimal) -> Decimal:
        return quantize_money(v)

    @model_validator(mode="after")
    def validate_total_matches_lines(self) -> "Order":
        if not self.line_items:
            raise ValueError("An order needs at least one line item")
        if self.total != lines_total(self.line_items):
            raise ValueError(
                f"Order total {self.total} does not match line items {lines_total(self.line_items)}"
            )
        return self

    def with_status(self, status: OrderStatus) -> "Order":
        return self.model_copy(update={"status": status})


class PaymentAction(BaseModel):
    """
    Next step the customer must take for a pending payment.

    ``upi_intent`` carries the ``upi://pay`` URI to open in a UPI app;
    ``client_secret`` carries what a gateway's client SDK needs to collect
    card details.
    """

    model_config = ConfigDict(frozen=True)

    method: PaymentMethod
    attempt_id: int
    kind: Literal["upi_intent", "client_secret"]
    data: Dict[str, str] = Field(default_factory=dict)
