"""FastAPI dependencies: application context and caller identity."""
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from storefront_checkout.context import AppContext
from storefront_checkout.core.orchestrator import CheckoutOrchestrator
from storefront_checkout.domain.exceptions import CheckoutNotFoundError


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
    context: AppContext = Depends(get_context),
) -> Optional[str]:
    """
    Caller identity from the ``X-User-ID`` header.

    Anonymous callers are allowed only when guest checkout is enabled.
    """
    user_id = x_user_id.strip() if x_user_id else None
    if not user_id and not context.settings.allow_guest_checkout:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Sign in to continue",
        )
    return user_id or None


def get_checkout(
    checkout_id: str,
    user_id: Optional[str] = Depends(get_user_id),
    context: AppContext = Depends(get_context),
) -> CheckoutOrchestrator:
    """
    Look up a checkout owned by the caller.

    Raises:
        CheckoutNotFoundError: Unknown id, or a checkout belonging to another user
    """
    checkout = context.registry.get(checkout_id)
    if checkout.user_id is not None and checkout.user_id != user_id:
        raise CheckoutNotFoundError(f"Checkout {checkout_id} not found")
    return checkout


# Carts of anonymous shoppers are addressed by ids with this prefix
GUEST_CART_PREFIX = "guest-"


def authorize_cart_owner(owner_id: str, user_id: Optional[str]) -> None:
    """
    Signed-in callers may only use their own cart; anonymous callers may
    only use guest carts.

    Raises:
        HTTPException: 403 for someone else's cart
    """
    if user_id is not None:
        allowed = owner_id == user_id
    else:
        allowed = owner_id.startswith(GUEST_CART_PREFIX)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cart belongs to another user",
        )


def get_cart_owner(owner_id: str, user_id: Optional[str] = Depends(get_user_id)) -> str:
    authorize_cart_owner(owner_id, user_id)
    return owner_id
