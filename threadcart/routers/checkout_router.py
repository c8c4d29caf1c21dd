from typing import Dict

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import get_cart_owner, get_current_user
from ..cart import CartStore, user_cart_key
from ..checkout import place_order, quote_cart
from ..database import get_db
from ..invoice import queue_invoice_email
from ..messaging import emit_order_event
from ..notifications import queue_order_alert

router = APIRouter(prefix="/checkout", tags=["Checkout"])


@router.post("/quote", response_model=schemas.QuoteOut)
def quote(
    payload: schemas.QuoteRequest,
    owner_key: str = Depends(get_cart_owner),
    db: Session = Depends(get_db),
):
    """Price the cart. Without a pincode shipping is left as null."""
    return quote_cart(db, CartStore(db, owner_key), payload.pincode)


@router.post("/orders", response_model=schemas.OrderOut, status_code=status.HTTP_201_CREATED)
def create_order(
    payload: schemas.PlaceOrderRequest,
    background_tasks: BackgroundTasks,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Turn the signed-in user's cart into a pending order.

    All lines are taken from stock or none are. A 409 ``price_changed``
    means the cart prices were refreshed and the shopper should confirm again.
    """
    store = CartStore(db, user_cart_key(current_user["id"]))
    order = place_order(
        db,
        store,
        user_id=current_user["id"],
        shipping_address=payload.shipping_address.model_dump(),
        payment_method=payload.payment_method.value,
        billing_address=payload.billing_address.model_dump() if payload.billing_address else None,
        gst_number=payload.gst_number,
    )

    emit_order_event("order.created", order)
    queue_order_alert(background_tasks, order)
    if current_user.get("email"):
        queue_invoice_email(background_tasks, order, current_user["email"])
    return order
