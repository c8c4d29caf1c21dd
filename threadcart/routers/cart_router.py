from typing import Dict

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.orm import Session

from .. import schemas
from ..auth import get_cart_owner, get_current_user
from ..cart import CartStore, merge_session_cart, user_cart_key
from ..checkout import cart_summary
from ..database import get_db

router = APIRouter(prefix="/cart", tags=["Cart"])


def _store(owner_key: str = Depends(get_cart_owner), db: Session = Depends(get_db)) -> CartStore:
    return CartStore(db, owner_key)


@router.get("/", response_model=schemas.CartOut)
def get_cart(store: CartStore = Depends(_store)):
    return cart_summary(store)


@router.get("/count")
def get_cart_count(store: CartStore = Depends(_store)):
    return {
        "total_quantity": store.total_item_count(),
        "item_count": store.distinct_item_count(),
    }


@router.get("/items/{product_id}")
def get_cart_item(product_id: int, store: CartStore = Depends(_store)):
    return {
        "product_id": product_id,
        "in_cart": store.is_in_cart(product_id),
        "quantity": store.get_quantity(product_id),
    }


@router.post("/items", response_model=schemas.CartOut, status_code=status.HTTP_201_CREATED)
def add_to_cart(payload: schemas.CartItemIn, store: CartStore = Depends(_store)):
    store.add_item(payload.product_id, payload.quantity)
    return cart_summary(store)


@router.put("/items/{product_id}", response_model=schemas.CartOut)
def set_cart_quantity(product_id: int, payload: schemas.CartQuantityIn, store: CartStore = Depends(_store)):
    store.set_quantity(product_id, payload.quantity)
    return cart_summary(store)


@router.delete("/items/{product_id}", response_model=schemas.CartOut)
def remove_from_cart(product_id: int, store: CartStore = Depends(_store)):
    store.remove_item(product_id)
    return cart_summary(store)


@router.delete("/", status_code=status.HTTP_204_NO_CONTENT)
def clear_cart(store: CartStore = Depends(_store)):
    store.clear()


@router.get("/validate", response_model=schemas.CartValidationOut)
def validate_cart(store: CartStore = Depends(_store)):
    issues = store.validate()
    return {"is_valid": not issues, "issues": issues}


@router.post("/merge", response_model=schemas.CartMergeOut)
def merge_cart(
    x_cart_session: str = Header(..., description="Token of the anonymous cart to merge"),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Call right after sign-in to carry the anonymous cart over."""
    merged, skipped = merge_session_cart(db, x_cart_session, current_user["id"])
    store = CartStore(db, user_cart_key(current_user["id"]))
    return {"merged_count": merged, "skipped": skipped, "cart": cart_summary(store)}
