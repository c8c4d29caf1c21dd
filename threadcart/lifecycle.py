"""Order lifecycle: status transitions, payment callbacks, cancellation.

Fulfilment status and payment status move independently. Every write is a
conditional UPDATE on the status the caller last saw, so a duplicated
gateway callback or two admins clicking at once cannot apply a transition
twice.
"""
from __future__ import annotations

import datetime as dt
import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import crud
from .checkout import to_money
from .errors import InvalidTransition, NotFound, ValidationError
from .models import Order, utcnow
from .schemas import OrderStatus, PaymentStatus

logger = logging.getLogger(__name__)

PENDING = OrderStatus.PENDING.value
PAID = OrderStatus.PAID.value
PROCESSING = OrderStatus.PROCESSING.value
SHIPPED = OrderStatus.SHIPPED.value
OUT_FOR_DELIVERY = OrderStatus.OUT_FOR_DELIVERY.value
DELIVERED = OrderStatus.DELIVERED.value
CANCELLED = OrderStatus.CANCELLED.value
REFUNDED = OrderStatus.REFUNDED.value

ALLOWED_TRANSITIONS: Dict[str, set] = {
    PENDING: {PAID, PROCESSING, CANCELLED},
    PAID: {PROCESSING, CANCELLED, REFUNDED},
    PROCESSING: {SHIPPED, CANCELLED, REFUNDED},
    SHIPPED: {OUT_FOR_DELIVERY, DELIVERED, CANCELLED, REFUNDED},
    OUT_FOR_DELIVERY: {DELIVERED, CANCELLED, REFUNDED},
    DELIVERED: {REFUNDED},
    CANCELLED: {REFUNDED},
    REFUNDED: set(),
}

# statuses in which the order's units are still counted out of stock
STOCK_HOLDING = {PENDING, PAID, PROCESSING}

# pending → processing without a gateway payment
OFFLINE_PAYMENT_METHODS = {"cod", "bank_transfer"}

CUSTOMER_CANCELLABLE = {PENDING, PAID}

PAYMENT_TRANSITIONS: Dict[str, set] = {
    PaymentStatus.UNPAID.value: {PaymentStatus.PAID.value, PaymentStatus.FAILED.value},
    PaymentStatus.FAILED.value: {PaymentStatus.PAID.value, PaymentStatus.UNPAID.value},
    PaymentStatus.PAID.value: {PaymentStatus.REFUNDED.value},
    PaymentStatus.REFUNDED.value: set(),
}

TRACKING_FLOW = [PENDING, PAID, PROCESSING, SHIPPED, OUT_FOR_DELIVERY, DELIVERED]


# -----------------------------
# Queries
# -----------------------------

def get_order(db: Session, order_id: int) -> Optional[Order]:
    return db.query(Order).filter(Order.id == order_id).first()


def require_order(db: Session, order_id: int) -> Order:
    order = get_order(db, order_id)
    if order is None:
        raise NotFound("order", order_id)
    return order


def get_orders(db: Session, skip: int = 0, limit: int = 100, status: Optional[str] = None) -> List[Order]:
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).offset(skip).limit(limit).all()


def get_order_count(db: Session, status: Optional[str] = None) -> int:
    query = db.query(Order)
    if status:
        query = query.filter(Order.status == status)
    return query.count()


def get_orders_by_user(db: Session, user_id: str, skip: int = 0, limit: int = 100) -> List[Order]:
    return (
        db.query(Order)
        .filter(Order.user_id == str(user_id))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def get_user_order_count(db: Session, user_id: str) -> int:
    return db.query(Order).filter(Order.user_id == str(user_id)).count()


def status_counts(db: Session) -> dict:
    by_status = {s.value: 0 for s in OrderStatus}
    for status, count in db.query(Order.status, func.count(Order.id)).group_by(Order.status):
        by_status[status] = count
    by_payment = {s.value: 0 for s in PaymentStatus}
    for status, count in db.query(Order.payment_status, func.count(Order.id)).group_by(Order.payment_status):
        by_payment[status] = count
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_payment_status": by_payment,
    }


# -----------------------------
# Fulfilment status
# -----------------------------

def _restore_order_stock(db: Session, order: Order) -> None:
    for item in order.items:
        if not crud.restore_stock(db, item.product_id, item.quantity):
            # product deleted since the order was placed; nothing to put back
            logger.warning("order %s: product %s gone, stock not restored", order.id, item.product_id)


def transition(
    db: Session,
    order_id: int,
    new_status: str,
    expected_status: Optional[str] = None,
) -> Order:
    """Move an order to ``new_status`` (admin-triggered transitions).

    ``pending → paid`` is reserved for ``record_payment``. Cancelling or
    refunding an order that still holds stock puts the units back.
    """
    order = require_order(db, order_id)
    current = order.status

    if expected_status is not None and expected_status != current:
        raise InvalidTransition(order_id, current, new_status)
    if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransition(order_id, current, new_status)
    if current == PENDING and new_status == PAID:
        raise InvalidTransition(order_id, current, new_status)
    if current == PENDING and new_status == PROCESSING and order.payment_method not in OFFLINE_PAYMENT_METHODS:
        raise InvalidTransition(order_id, current, new_status)
    if new_status == REFUNDED and order.payment_status != PaymentStatus.PAID.value:
        raise ValidationError("Only paid orders can be refunded", payment_status=order.payment_status)

    now = utcnow()
    values = {
        Order.status: new_status,
        getattr(Order, f"{new_status}_at"): now,
        Order.updated_at: now,
    }
    query = db.query(Order).filter(Order.id == order_id, Order.status == current)
    if new_status == REFUNDED:
        query = query.filter(Order.payment_status == PaymentStatus.PAID.value)
        values[Order.payment_status] = PaymentStatus.REFUNDED.value

    try:
        updated = query.update(values, synchronize_session=False)
        if updated != 1:
            db.rollback()
            db.refresh(order)
            raise InvalidTransition(order_id, order.status, new_status)
        if new_status in (CANCELLED, REFUNDED) and current in STOCK_HOLDING:
            _restore_order_stock(db, order)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("order %s: %s -> %s", order.order_number, current, new_status)
    return order


def cancel_by_customer(db: Session, order_id: int, user_id: str) -> Order:
    order = get_order(db, order_id)
    if order is None or order.user_id != str(user_id):
        raise NotFound("order", order_id)
    if order.status not in CUSTOMER_CANCELLABLE:
        raise InvalidTransition(order_id, order.status, CANCELLED)
    return transition(db, order_id, CANCELLED, expected_status=order.status)


def refund(db: Session, order_id: int) -> Order:
    return transition(db, order_id, REFUNDED)


# -----------------------------
# Payment status
# -----------------------------

def record_payment(
    db: Session,
    order_id: int,
    payment_id: str,
    succeeded: bool,
    amount=None,
) -> Tuple[Order, bool]:
    """Apply a payment gateway callback. Safe to call any number of times.

    Returns ``(order, applied)``; ``applied`` is False for a replay. Stock is
    never touched here: it was taken when the order was placed.
    """
    order = require_order(db, order_id)
    if amount is not None and to_money(amount) != to_money(order.grand_total):
        raise ValidationError(
            "Payment amount does not match order total",
            expected=to_money(order.grand_total),
            received=to_money(amount),
        )

    now = utcnow()
    settleable = [PaymentStatus.UNPAID.value, PaymentStatus.FAILED.value]

    if not succeeded:
        updated = (
            db.query(Order)
            .filter(Order.id == order_id, Order.payment_status == PaymentStatus.UNPAID.value)
            .update(
                {Order.payment_status: PaymentStatus.FAILED.value, Order.updated_at: now},
                synchronize_session=False,
            )
        )
        db.commit()
        db.refresh(order)
        return order, updated == 1

    updated = (
        db.query(Order)
        .filter(
            Order.id == order_id,
            Order.status == PENDING,
            Order.payment_status.in_(settleable),
        )
        .update(
            {
                Order.status: PAID,
                Order.payment_status: PaymentStatus.PAID.value,
                Order.payment_id: payment_id,
                Order.paid_at: now,
                Order.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    if updated == 1:
        db.commit()
        db.refresh(order)
        logger.info("order %s paid (payment %s)", order.order_number, payment_id)
        return order, True

    db.refresh(order)
    if order.payment_status in (PaymentStatus.PAID.value, PaymentStatus.REFUNDED.value):
        if order.payment_id != payment_id:
            logger.warning(
                "order %s already settled (%s), ignoring payment %s",
                order.order_number,
                order.payment_id or "marked paid by admin",
                payment_id,
            )
        return order, False

    # order moved on without a gateway payment (cancelled, or offline flow);
    # keep the money on record so it can be refunded
    updated = (
        db.query(Order)
        .filter(Order.id == order_id, Order.payment_status.in_(settleable))
        .update(
            {
                Order.payment_status: PaymentStatus.PAID.value,
                Order.payment_id: payment_id,
                Order.paid_at: now,
                Order.updated_at: now,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    db.refresh(order)
    if order.status == CANCELLED:
        logger.warning("payment %s received for cancelled order %s; refund required", payment_id, order.order_number)
    return order, updated == 1


def update_payment_status(db: Session, order_id: int, payment_status: str) -> Order:
    """Admin override, e.g. cash collected on delivery.

    Marking a pending order paid moves it to ``paid`` as a gateway payment
    would. Refunds go through ``refund`` so status and stock follow.
    """
    order = require_order(db, order_id)
    current = order.payment_status
    if payment_status not in PAYMENT_TRANSITIONS.get(current, set()):
        raise InvalidTransition(order_id, current, payment_status)
    if payment_status == PaymentStatus.REFUNDED.value:
        return refund(db, order_id)

    now = utcnow()
    values = {Order.payment_status: payment_status, Order.updated_at: now}
    query = db.query(Order).filter(Order.id == order_id, Order.payment_status == current)
    if payment_status == PaymentStatus.PAID.value:
        values[Order.paid_at] = now
        if order.status == PENDING:
            values[Order.status] = PAID
            query = query.filter(Order.status == PENDING)
    updated = query.update(values, synchronize_session=False)
    db.commit()
    db.refresh(order)
    if updated != 1:
        raise InvalidTransition(order_id, order.payment_status, payment_status)
    logger.info("order %s payment %s -> %s (admin)", order.order_number, current, payment_status)
    return order


def update_notes(db: Session, order_id: int, notes: Optional[str]) -> Order:
    order = require_order(db, order_id)
    order.notes = notes or None
    db.commit()
    db.refresh(order)
    return order


def delete_order(db: Session, order_id: int) -> Optional[Order]:
    """Hard delete. Units still held by the order go back on the shelf."""
    order = get_order(db, order_id)
    if not order:
        return None
    order_number = order.order_number
    try:
        if order.status in STOCK_HOLDING:
            _restore_order_stock(db, order)
        db.delete(order)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("order %s deleted", order_number)
    return order


# -----------------------------
# Tracking
# -----------------------------

def tracking(db: Session, order: Order) -> dict:
    current = order.status
    rank = TRACKING_FLOW.index(current) if current in TRACKING_FLOW else -1

    history = []
    for index, status in enumerate(TRACKING_FLOW):
        timestamp = order.created_at if status == PENDING else getattr(order, f"{status}_at")
        history.append(
            {
                "status": status,
                "timestamp": timestamp,
                "is_current": status == current,
                "is_completed": index <= rank if rank >= 0 else timestamp is not None,
            }
        )

    estimated = None
    if current not in (DELIVERED, CANCELLED, REFUNDED):
        rate = crud.get_pincode(db, (order.shipping_address or {}).get("postal_code", ""))
        if rate is not None and order.created_at is not None:
            estimated = order.created_at + dt.timedelta(days=rate.delivery_days)

    return {
        "order_number": order.order_number,
        "current_status": current,
        "history": history,
        "estimated_delivery": estimated,
    }
