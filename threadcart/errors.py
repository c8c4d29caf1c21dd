"""Domain errors raised by the cart, checkout and order modules.

Every error carries a machine readable ``code``, the HTTP status the API
answers with and any extra fields the client needs to recover (available
stock, changed prices, ...). Routers let them propagate; ``main.py`` renders
them in one place.
"""
from __future__ import annotations

from typing import Any


class StoreError(ValueError):
    code = "store_error"
    status_code = 400

    def __init__(self, message: str, **fields: Any) -> None:
        super().__init__(message)
        self.message = message
        self.fields = fields

    def to_detail(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.fields}


class OutOfStock(StoreError):
    """Cart-time: the requested quantity does not fit the on-hand stock."""

    code = "out_of_stock"
    status_code = 409

    def __init__(self, product_id: int, available: int, requested: int) -> None:
        super().__init__(
            f"Only {available} units available in stock",
            product_id=product_id,
            available=available,
            requested=requested,
        )


class InsufficientStock(StoreError):
    """Checkout-time: the conditional stock decrement affected no row."""

    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: int, requested: int, available: int | None = None) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}",
            product_id=product_id,
            requested=requested,
            available=available,
        )


class UnserviceableArea(StoreError):
    code = "unserviceable_area"
    status_code = 422

    def __init__(self, pincode: str) -> None:
        super().__init__("Sorry, we do not deliver to this pincode yet", pincode=pincode)


class PriceChanged(StoreError):
    code = "price_changed"
    status_code = 409

    def __init__(self, changes: list[dict[str, Any]]) -> None:
        super().__init__("Prices changed since you last reviewed your cart", changes=changes)


class Unauthorized(StoreError):
    code = "unauthorized"
    status_code = 403


class NotFound(StoreError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} {entity_id} not found", entity=entity, id=entity_id)


class ValidationError(StoreError):
    code = "validation_error"
    status_code = 400


class InvalidTransition(StoreError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, order_id: int, current: str, requested: str) -> None:
        super().__init__(
            f"Order {order_id} cannot move from '{current}' to '{requested}'",
            order_id=order_id,
            current=current,
            requested=requested,
        )
