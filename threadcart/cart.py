"""Server-side cart store.

A cart belongs to an *owner key*: ``user:<id>`` once the shopper is signed in,
``session:<token>`` for an anonymous browser session. Each mutation re-reads
the product row, so the stock check always runs against the latest figure and
the remembered unit price is the one the shopper is looking at.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from .errors import NotFound, OutOfStock, ValidationError
from .models import Cart, CartItem, Product

logger = logging.getLogger(__name__)

USER_PREFIX = "user:"
SESSION_PREFIX = "session:"


def user_cart_key(user_id: str) -> str:
    return f"{USER_PREFIX}{user_id}"


def session_cart_key(token: str) -> str:
    token = (token or "").strip()
    if not token:
        raise ValidationError("cart session token is required")
    return f"{SESSION_PREFIX}{token}"


class CartStore:
    def __init__(self, db: Session, owner_key: str) -> None:
        self.db = db
        self.owner_key = owner_key

    # -- lookups --------------------------------------------------------

    def cart(self) -> Optional[Cart]:
        return self.db.query(Cart).filter(Cart.owner_key == self.owner_key).first()

    def _get_or_create(self) -> Cart:
        cart = self.cart()
        if cart is None:
            cart = Cart(owner_key=self.owner_key)
            self.db.add(cart)
            self.db.flush()
        return cart

    def _item(self, product_id: int) -> Optional[CartItem]:
        cart = self.cart()
        if cart is None:
            return None
        return (
            self.db.query(CartItem)
            .filter(CartItem.cart_id == cart.id, CartItem.product_id == product_id)
            .first()
        )

    def _fresh_product(self, product_id: int) -> Product:
        product = (
            self.db.query(Product)
            .populate_existing()
            .filter(Product.id == product_id)
            .first()
        )
        if product is None:
            raise NotFound("product", product_id)
        return product

    def items(self) -> List[CartItem]:
        cart = self.cart()
        return list(cart.items) if cart else []

    def get_quantity(self, product_id: int) -> int:
        item = self._item(product_id)
        return item.quantity if item else 0

    def is_in_cart(self, product_id: int) -> bool:
        return self._item(product_id) is not None

    def total_item_count(self) -> int:
        """Sum of quantities across lines (the cart badge)."""
        return sum(i.quantity for i in self.items())

    def distinct_item_count(self) -> int:
        return len(self.items())

    # -- mutations ------------------------------------------------------

    def add_item(self, product_id: int, quantity: int) -> CartItem:
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0", field="quantity")

        product = self._fresh_product(product_id)
        existing = self._item(product_id)
        already = existing.quantity if existing else 0
        available = product.quantity - already
        if quantity > available:
            raise OutOfStock(product_id, available=max(available, 0), requested=quantity)

        if existing is None:
            cart = self._get_or_create()
            existing = CartItem(
                cart_id=cart.id,
                product_id=product_id,
                quantity=quantity,
                unit_price_snapshot=product.price,
            )
            self.db.add(existing)
        else:
            existing.quantity = already + quantity
            existing.unit_price_snapshot = product.price

        self.db.commit()
        self.db.refresh(existing)
        return existing

    def set_quantity(self, product_id: int, quantity: int) -> Optional[CartItem]:
        """Absolute set; 0 removes the line."""
        if quantity < 0:
            raise ValidationError("Quantity must be >= 0", field="quantity")
        if quantity == 0:
            self.remove_item(product_id)
            return None

        existing = self._item(product_id)
        if existing is None:
            raise NotFound("cart item", product_id)

        product = self._fresh_product(product_id)
        if quantity > product.quantity:
            raise OutOfStock(product_id, available=product.quantity, requested=quantity)

        existing.quantity = quantity
        existing.unit_price_snapshot = product.price
        self.db.commit()
        self.db.refresh(existing)
        return existing

    def remove_item(self, product_id: int) -> bool:
        existing = self._item(product_id)
        if existing is None:
            return False
        self.db.delete(existing)
        self.db.commit()
        return True

    def clear(self) -> None:
        cart = self.cart()
        if cart is None:
            return
        for item in list(cart.items):
            self.db.delete(item)
        self.db.commit()

    def acknowledge_prices(self) -> None:
        """Record the current catalog prices as the ones shown to the shopper."""
        changed = False
        for item in self.items():
            if item.product is not None and item.unit_price_snapshot != item.product.price:
                item.unit_price_snapshot = item.product.price
                changed = True
        if changed:
            self.db.commit()

    def validate(self) -> List[Dict[str, Any]]:
        """Report lines that would fail at checkout, without changing anything."""
        issues: List[Dict[str, Any]] = []
        for item in self.items():
            product = item.product
            if product is None:
                issues.append(
                    {
                        "product_id": item.product_id,
                        "product_name": f"#{item.product_id}",
                        "issue_type": "product_deleted",
                        "message": "This product is no longer available",
                        "current_quantity": item.quantity,
                    }
                )
                continue
            if product.quantity <= 0:
                issues.append(
                    {
                        "product_id": product.id,
                        "product_name": product.name,
                        "issue_type": "out_of_stock",
                        "message": "Product is out of stock",
                        "current_quantity": item.quantity,
                        "available_quantity": 0,
                    }
                )
            elif item.quantity > product.quantity:
                issues.append(
                    {
                        "product_id": product.id,
                        "product_name": product.name,
                        "issue_type": "insufficient_stock",
                        "message": f"Only {product.quantity} units available in stock",
                        "current_quantity": item.quantity,
                        "available_quantity": product.quantity,
                    }
                )
            if item.unit_price_snapshot != product.price:
                issues.append(
                    {
                        "product_id": product.id,
                        "product_name": product.name,
                        "issue_type": "price_changed",
                        "message": "Price has changed since it was added to your cart",
                        "old_price": item.unit_price_snapshot,
                        "new_price": product.price,
                    }
                )
        return issues


def merge_session_cart(db: Session, session_token: str, user_id: str) -> Tuple[int, List[Dict[str, Any]]]:
    """Fold an anonymous session cart into the user's cart on login.

    Lines already in the user's cart keep the user's quantity. Lines only in
    the session cart move over when they fit the on-hand stock and are
    reported as skipped otherwise. The session cart is deleted afterwards.
    """
    session_store = CartStore(db, session_cart_key(session_token))
    session_cart = session_store.cart()
    if session_cart is None:
        return 0, []

    user_store = CartStore(db, user_cart_key(user_id))
    user_cart = user_store._get_or_create()
    existing = {i.product_id for i in user_cart.items}

    merged = 0
    skipped: List[Dict[str, Any]] = []
    for item in list(session_cart.items):
        if item.product_id in existing:
            continue
        product = item.product
        if product is None:
            skipped.append(
                {
                    "product_id": item.product_id,
                    "product_name": f"#{item.product_id}",
                    "issue_type": "product_deleted",
                    "message": "This product is no longer available",
                }
            )
            continue
        if item.quantity > product.quantity:
            skipped.append(
                {
                    "product_id": product.id,
                    "product_name": product.name,
                    "issue_type": "out_of_stock" if product.quantity <= 0 else "insufficient_stock",
                    "message": f"Only {product.quantity} units available in stock",
                    "current_quantity": item.quantity,
                    "available_quantity": product.quantity,
                }
            )
            continue
        db.add(
            CartItem(
                cart_id=user_cart.id,
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price_snapshot=item.unit_price_snapshot,
            )
        )
        merged += 1

    db.delete(session_cart)
    db.commit()
    logger.info("merged session cart into user %s: merged=%d skipped=%d", user_id, merged, len(skipped))
    return merged, skipped
