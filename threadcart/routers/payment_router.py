import json
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from .. import lifecycle, schemas
from ..auth import get_current_user
from ..config import STRIPE_CURRENCY, STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from ..database import get_db
from ..errors import NotFound, Unauthorized, ValidationError
from ..payment_consumer import apply_payment_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

# Stripe event type -> PaymentEvent status
INTENT_EVENTS = {
    "payment_intent.succeeded": "succeeded",
    "payment_intent.payment_failed": "failed",
}

GATEWAY_METHODS = {schemas.PaymentMethod.CARD.value}


def _stripe_required() -> None:
    if not STRIPE_SECRET_KEY:
        raise HTTPException(
            status_code=500,
            detail="Stripe is not configured. Set STRIPE_SECRET_KEY.",
        )
    stripe.api_key = STRIPE_SECRET_KEY


def _to_minor_units(amount) -> int:
    # rupees -> paise
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def payment_event_from_stripe(event: dict) -> Optional[schemas.PaymentEvent]:
    """Translate a PaymentIntent event; None for events that carry no order."""
    outcome = INTENT_EVENTS.get(event.get("type"))
    if outcome is None:
        return None
    intent = (event.get("data") or {}).get("object") or {}
    order_id = (intent.get("metadata") or {}).get("order_id")
    if not order_id:
        return None

    amount = None
    amount_received = intent.get("amount_received")
    if outcome == "succeeded" and isinstance(amount_received, int):
        amount = Decimal(amount_received) / 100
    return schemas.PaymentEvent(order_id=order_id, payment_id=intent.get("id"), status=outcome, amount=amount)


@router.post("/intent", response_model=schemas.PaymentIntentOut, status_code=status.HTTP_201_CREATED)
def create_payment_intent(
    payload: schemas.PaymentIntentRequest,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Create a Stripe PaymentIntent for one of the caller's unpaid card orders.

    The order id travels in the intent metadata and comes back with the
    webhook, which is what marks the order paid.
    """
    order = lifecycle.get_order(db, payload.order_id)
    if order is None or order.user_id != str(current_user["id"]):
        raise NotFound("order", payload.order_id)
    if order.payment_method not in GATEWAY_METHODS:
        raise ValidationError("Order is not paid online", payment_method=order.payment_method)
    if order.status != lifecycle.PENDING or order.payment_status not in ("unpaid", "failed"):
        raise ValidationError(
            "Order is not awaiting payment",
            status=order.status,
            payment_status=order.payment_status,
        )

    _stripe_required()
    intent = stripe.PaymentIntent.create(
        amount=_to_minor_units(order.grand_total),
        currency=STRIPE_CURRENCY,
        automatic_payment_methods={"enabled": True},
        metadata={
            "order_id": str(order.id),
            "order_number": order.order_number,
            "user_id": str(current_user["id"]),
            "user_email": str(current_user.get("email") or ""),
        },
        description=f"Order {order.order_number}",
    )
    logger.info("payment intent %s created for order %s", intent.id, order.order_number)
    return {
        "order_id": order.id,
        "payment_intent_id": intent.id,
        "client_secret": intent.client_secret,
        "amount": order.grand_total,
        "currency": STRIPE_CURRENCY,
    }


async def _verified_event(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
) -> dict:
    if not STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=500, detail="STRIPE_WEBHOOK_SECRET is not configured")
    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    payload = (await request.body()).decode("utf-8")
    try:
        stripe.WebhookSignature.verify_header(
            payload,
            stripe_signature,
            STRIPE_WEBHOOK_SECRET,
            stripe.Webhook.DEFAULT_TOLERANCE,
        )
    except stripe.SignatureVerificationError:
        logger.warning("payment webhook with bad signature rejected")
        raise Unauthorized("Invalid payment signature")
    try:
        event = json.loads(payload)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Event must be a JSON object")
    return event


@router.post("/webhook")
def payment_webhook(event: dict = Depends(_verified_event), db: Session = Depends(get_db)):
    """Stripe callback. Deliveries may repeat; replays are acknowledged without effect."""
    try:
        payment = payment_event_from_stripe(event)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    if payment is None:
        # Always acknowledge events we do not act on.
        return {"received": True, "applied": False}

    order, applied = apply_payment_event(db, payment.model_dump())
    return {
        "received": True,
        "order_id": order.id,
        "applied": applied,
        "status": order.status,
        "payment_status": order.payment_status,
    }
