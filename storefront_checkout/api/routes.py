"""
API routes for the storefront checkout.

Checkout, cart and ledger errors are raised as domain exceptions and mapped
to HTTP responses by the handlers registered in ``main``.
"""
from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from storefront_checkout.context import AppContext
from storefront_checkout.core.orchestrator import CheckoutOrchestrator, CheckoutState
from storefront_checkout.domain.cart import Cart
from storefront_checkout.domain.exceptions import InvalidTransitionError
from storefront_checkout.domain.models import CheckoutSource, OrderLine, PaymentMethod
from storefront_checkout.integrations.webhook_handler import WebhookError

from .dependencies import authorize_cart_owner, get_cart_owner, get_checkout, get_context, get_user_id
from .schemas import (
    AddCartItemRequest,
    CartResponse,
    CheckoutResponse,
    CreateCheckoutRequest,
    HealthCheckResponse,
    OrderResponse,
    PayRequest,
    PaymentMethodsResponse,
    ProductResponse,
    SelectMethodRequest,
    SetQuantityRequest,
    TransferConfirmationRequest,
    UpdateOrderStatusRequest,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# Create routers
product_router = APIRouter(prefix="/products", tags=["products"])
cart_router = APIRouter(prefix="/carts", tags=["carts"])
checkout_router = APIRouter(prefix="/checkouts", tags=["checkouts"])
order_router = APIRouter(tags=["orders"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
monitoring_router = APIRouter(tags=["monitoring"])


async def _product_or_404(context: AppContext, product_id: str) -> Any:
    product = await context.catalog.get_product(product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Product {product_id} not found")
    return product


def _existing_cart(context: AppContext, owner_id: str) -> Cart:
    # Reads never create carts
    return context.carts.find(owner_id) or Cart(owner_id)


# ----------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------


@product_router.get("", response_model=List[ProductResponse], summary="List products")
async def list_products(context: AppContext = Depends(get_context)) -> List[ProductResponse]:
    products = await context.catalog.list_products()
    return [ProductResponse.from_product(p) for p in products]


@product_router.get("/{product_id}", response_model=ProductResponse, summary="Get a product")
async def get_product(product_id: str, context: AppContext = Depends(get_context)) -> ProductResponse:
    return ProductResponse.from_product(await _product_or_404(context, product_id))


# ----------------------------------------------------------------------
# Carts
# ----------------------------------------------------------------------


@cart_router.get("/{owner_id}", response_model=CartResponse, summary="Get a cart")
async def get_cart(
    owner_id: str = Depends(get_cart_owner), context: AppContext = Depends(get_context)
) -> CartResponse:
    return CartResponse.from_cart(_existing_cart(context, owner_id), context.settings.currency)


@cart_router.delete("/{owner_id}", response_model=CartResponse, summary="Empty a cart")
async def clear_cart(
    owner_id: str = Depends(get_cart_owner), context: AppContext = Depends(get_context)
) -> CartResponse:
    cart = _existing_cart(context, owner_id)
    cart.clear()
    return CartResponse.from_cart(cart, context.settings.currency)


@cart_router.post("/{owner_id}/items", response_model=CartResponse, summary="Add a product to a cart")
async def add_cart_item(
    request: AddCartItemRequest,
    owner_id: str = Depends(get_cart_owner),
    context: AppContext = Depends(get_context),
) -> CartResponse:
    product = await _product_or_404(context, request.product_id)
    cart = context.carts.get(owner_id)
    cart.add(product, request.quantity)
    return CartResponse.from_cart(cart, context.settings.currency)


@cart_router.put(
    "/{owner_id}/items/{product_id}",
    response_model=CartResponse,
    summary="Set a cart line's quantity",
)
async def set_cart_item_quantity(
    product_id: str,
    request: SetQuantityRequest,
    owner_id: str = Depends(get_cart_owner),
    context: AppContext = Depends(get_context),
) -> CartResponse:
    cart = _existing_cart(context, owner_id)
    cart.set_quantity(product_id, request.quantity)
    return CartResponse.from_cart(cart, context.settings.currency)


@cart_router.delete(
    "/{owner_id}/items/{product_id}",
    response_model=CartResponse,
    summary="Remove a product from a cart",
)
async def remove_cart_item(
    product_id: str,
    owner_id: str = Depends(get_cart_owner),
    context: AppContext = Depends(get_context),
) -> CartResponse:
    cart = _existing_cart(context, owner_id)
    cart.remove(product_id)
    return CartResponse.from_cart(cart, context.settings.currency)


# ----------------------------------------------------------------------
# Checkouts
# ----------------------------------------------------------------------


@checkout_router.post(
    "",
    response_model=CheckoutResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start a checkout",
)
async def create_checkout(
    request: CreateCheckoutRequest,
    user_id: Optional[str] = Depends(get_user_id),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    if request.source is CheckoutSource.BUY_NOW:
        product = await _product_or_404(context, request.product_id)
        checkout = context.new_checkout(
            user_id=user_id,
            buy_now_lines=(OrderLine.from_product(product, request.quantity),),
        )
    else:
        owner_id = request.cart_owner_id or user_id
        if not owner_id:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="cart_owner_id is required for guest cart checkout",
            )
        authorize_cart_owner(owner_id, user_id)
        checkout = context.new_checkout(user_id=user_id, cart=context.carts.get(owner_id))

    logger.info(
        "api_checkout_created",
        checkout_id=checkout.checkout_id,
        source=checkout.source.value,
        user_id=user_id,
    )
    return checkout.view()


@checkout_router.get("/{checkout_id}", response_model=CheckoutResponse, summary="Get a checkout")
async def get_checkout_view(checkout: CheckoutOrchestrator = Depends(get_checkout)) -> Dict[str, Any]:
    return checkout.view()


@checkout_router.post(
    "/{checkout_id}/shipping",
    response_model=CheckoutResponse,
    summary="Submit shipping information",
)
async def submit_shipping(
    payload: Dict[str, Any],
    checkout: CheckoutOrchestrator = Depends(get_checkout),
) -> Dict[str, Any]:
    checkout.submit_shipping(payload)
    return checkout.view()


@checkout_router.get(
    "/{checkout_id}/payment-methods",
    response_model=PaymentMethodsResponse,
    summary="List payment methods offered for this checkout",
)
async def list_payment_methods(checkout: CheckoutOrchestrator = Depends(get_checkout)) -> Dict[str, Any]:
    return {
        "methods": checkout.available_methods(),
        "amount": checkout.amount,
        "currency": checkout.settings.currency,
    }


@checkout_router.post(
    "/{checkout_id}/payment-method",
    response_model=CheckoutResponse,
    summary="Select a payment method",
)
async def select_payment_method(
    request: SelectMethodRequest,
    checkout: CheckoutOrchestrator = Depends(get_checkout),
) -> Dict[str, Any]:
    await checkout.select_method(request.method)
    return checkout.view()


@checkout_router.post(
    "/{checkout_id}/payment",
    response_model=CheckoutResponse,
    summary="Pay with the selected method",
)
async def pay(
    request: Optional[PayRequest] = None,
    checkout: CheckoutOrchestrator = Depends(get_checkout),
) -> Dict[str, Any]:
    if request is not None and request.wait:
        await checkout.pay()
    else:
        await checkout.start_payment()
    return checkout.view()


@checkout_router.post(
    "/{checkout_id}/transfer-confirmation",
    response_model=CheckoutResponse,
    summary="Confirm or reject a pending UPI transfer",
)
async def confirm_transfer(
    request: TransferConfirmationRequest,
    checkout: CheckoutOrchestrator = Depends(get_checkout),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    adapter = context.direct_transfer
    if (
        adapter is None
        or checkout.state is not CheckoutState.PAYMENT_EXECUTION
        or checkout.selected_method is not PaymentMethod.DIRECT_TRANSFER
        or not adapter.is_pending(checkout.order_id)
    ):
        raise InvalidTransitionError("No UPI transfer is awaiting confirmation")

    if request.confirmed:
        adapter.confirm(checkout.order_id, request.reference)
    else:
        adapter.reject(checkout.order_id, request.reason)

    await checkout.wait_for_settlement()
    return checkout.view()


@checkout_router.post("/{checkout_id}/back", response_model=CheckoutResponse, summary="Go back one step")
async def go_back(checkout: CheckoutOrchestrator = Depends(get_checkout)) -> Dict[str, Any]:
    await checkout.back()
    return checkout.view()


@checkout_router.post("/{checkout_id}/cancel", response_model=CheckoutResponse, summary="Cancel the checkout")
async def cancel_checkout(checkout: CheckoutOrchestrator = Depends(get_checkout)) -> Dict[str, Any]:
    await checkout.cancel()
    return checkout.view()


# ----------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------


@order_router.get(
    "/users/{user_id}/orders",
    response_model=List[OrderResponse],
    summary="List a user's orders, newest first",
)
async def list_orders(user_id: str, context: AppContext = Depends(get_context)) -> List[OrderResponse]:
    orders = await context.ledger.list_for(user_id)
    return [OrderResponse.from_order(order) for order in orders]


@order_router.get("/orders/{order_id}", response_model=OrderResponse, summary="Get an order")
async def get_order(order_id: str, context: AppContext = Depends(get_context)) -> OrderResponse:
    return OrderResponse.from_order(await context.ledger.get(order_id))


@order_router.patch("/orders/{order_id}/status", response_model=OrderResponse, summary="Update order status")
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    context: AppContext = Depends(get_context),
) -> OrderResponse:
    order = await context.ledger.update_status(order_id, request.status)
    return OrderResponse.from_order(order)


# ----------------------------------------------------------------------
# Webhooks
# ----------------------------------------------------------------------


@webhook_router.post(
    "/stripe",
    response_model=WebhookResponse,
    summary="Stripe webhook endpoint",
    description="Handle Stripe webhook events",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
    context: AppContext = Depends(get_context),
) -> Dict[str, Any]:
    """Verify the signature, then settle the checkout the event belongs to."""
    webhook_handler = context.webhook_handler
    try:
        body = await request.body()
        event = webhook_handler.verify_signature(body, stripe_signature)
        return await webhook_handler.process_event(event)

    except WebhookError as e:
        logger.error("api_webhook_error", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e


# ----------------------------------------------------------------------
# Monitoring
# ----------------------------------------------------------------------


@monitoring_router.get("/health", response_model=HealthCheckResponse, summary="Health check")
async def health(context: AppContext = Depends(get_context)) -> Dict[str, Any]:
    return await context.health_check.check_all()


@monitoring_router.get("/health/live", response_model=HealthCheckResponse, summary="Liveness probe")
async def liveness(context: AppContext = Depends(get_context)) -> Dict[str, Any]:
    return await context.health_check.liveness()


@monitoring_router.get("/health/ready", response_model=HealthCheckResponse, summary="Readiness probe")
async def readiness(context: AppContext = Depends(get_context)) -> Dict[str, Any]:
    result = await context.health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
