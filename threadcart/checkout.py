"""Checkout: price computation and the atomic cart → order commit."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from . import crud
from .cart import CartStore
from .config import GST_RATE, ORDER_NUMBER_PREFIX
from .errors import InsufficientStock, NotFound, PriceChanged, ValidationError
from .models import Order, OrderItem, Product

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    # None means "not computed yet"; Decimal("0.00") means free shipping
    shipping: Optional[Decimal]
    total: Decimal

    def as_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping": self.shipping,
            "total": self.total,
        }


def price_lines(lines: Iterable[Tuple[Decimal, int]], shipping: Optional[Decimal] = None) -> Totals:
    """Totals for ``(unit_price, quantity)`` pairs plus an optional shipping charge."""
    subtotal = to_money(sum((Decimal(str(price)) * qty for price, qty in lines), Decimal("0")))
    tax = to_money(subtotal * GST_RATE)
    if shipping is not None:
        shipping = to_money(shipping)
    total = subtotal + tax + (shipping if shipping is not None else Decimal("0"))
    return Totals(subtotal=subtotal, tax=tax, shipping=shipping, total=to_money(total))


def compute_totals(db: Session, lines: Mapping[int, int], pincode: Optional[str] = None) -> Totals:
    """Totals for ``{product_id: quantity}`` at the current catalog prices.

    Shipping is looked up by ``pincode`` and raises ``UnserviceableArea`` when
    the pincode is missing from the rate table or inactive. Without a pincode
    shipping stays ``None``.
    """
    priced: List[Tuple[Decimal, int]] = []
    for product_id, quantity in lines.items():
        product = crud.get_product(db, product_id)
        if product is None:
            raise NotFound("product", product_id)
        priced.append((product.price, quantity))

    shipping = None
    if pincode is not None:
        shipping = crud.get_shipping_rate(db, pincode).shipping_charge
    return price_lines(priced, shipping)


def cart_lines(store: CartStore) -> List[Dict[str, Any]]:
    lines = []
    for item in store.items():
        product = item.product
        if product is None:
            continue
        lines.append(
            {
                "product_id": product.id,
                "name": product.name,
                "image_url": product.image_url or [],
                "unit_price": to_money(product.price),
                "quantity": item.quantity,
                "line_total": to_money(Decimal(str(product.price)) * item.quantity),
                "available": product.quantity,
            }
        )
    return lines


def cart_summary(store: CartStore) -> Dict[str, Any]:
    lines = cart_lines(store)
    totals = price_lines((line["unit_price"], line["quantity"]) for line in lines)
    return {
        "items": lines,
        "item_count": len(lines),
        "total_quantity": sum(line["quantity"] for line in lines),
        "totals": totals.as_dict(),
    }


def quote_cart(db: Session, store: CartStore, pincode: Optional[str] = None) -> Dict[str, Any]:
    """Price the cart for display and remember the prices the shopper saw."""
    store.acknowledge_prices()
    lines = cart_lines(store)
    totals = compute_totals(db, {line["product_id"]: line["quantity"] for line in lines}, pincode)
    delivery_days = None
    if pincode is not None:
        delivery_days = crud.get_shipping_rate(db, pincode).delivery_days
    return {"items": lines, "totals": totals.as_dict(), "delivery_days": delivery_days}


def make_order_number(order: Order) -> str:
    return f"{ORDER_NUMBER_PREFIX}{order.created_at:%Y%m%d}-{order.id:06d}"


def place_order(
    db: Session,
    store: CartStore,
    user_id: str,
    shipping_address: Dict[str, Any],
    payment_method: str,
    billing_address: Optional[Dict[str, Any]] = None,
    gst_number: Optional[str] = None,
) -> Order:
    """Turn the cart into an order in a single transaction.

    Stock is taken line by line with conditional updates in product id
    order. If any line cannot be covered the transaction rolls back, so no
    stock is decremented and no order row remains.
    """
    items = store.items()
    if not items:
        raise ValidationError("Your cart is empty")

    rate = crud.get_shipping_rate(db, shipping_address["postal_code"])

    changes = []
    for item in items:
        product = item.product
        if product is None:
            raise NotFound("product", item.product_id)
        if to_money(item.unit_price_snapshot) != to_money(product.price):
            changes.append(
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "old_price": to_money(item.unit_price_snapshot),
                    "new_price": to_money(product.price),
                }
            )
    if changes:
        # shopper reconfirms against the refreshed prices
        store.acknowledge_prices()
        raise PriceChanged(changes)

    lines = sorted(
        ((item.product_id, item.product.name, to_money(item.product.price), item.quantity) for item in items),
        key=lambda line: line[0],
    )

    try:
        for product_id, _, _, quantity in lines:
            if not crud.try_decrement_stock(db, product_id, quantity):
                available = db.query(Product.quantity).filter(Product.id == product_id).scalar()
                if available is None:
                    raise NotFound("product", product_id)
                raise InsufficientStock(product_id, requested=quantity, available=available)

        totals = price_lines(((price, qty) for _, _, price, qty in lines), rate.shipping_charge)
        order = Order(
            user_id=str(user_id),
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping_charge=totals.shipping,
            grand_total=totals.total,
            gst_number=gst_number,
            status="pending",
            payment_method=payment_method,
            payment_status="unpaid",
            shipping_address=shipping_address,
            billing_address=billing_address,
        )
        db.add(order)
        db.flush()
        order.order_number = make_order_number(order)

        for product_id, name, price, quantity in lines:
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=product_id,
                    product_name=name,
                    quantity=quantity,
                    price_at_purchase=price,
                )
            )
        for item in items:
            db.delete(item)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info("order %s placed by user %s total=%s", order.order_number, user_id, order.grand_total)
    return order
