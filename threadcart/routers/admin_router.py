from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import crud, lifecycle, schemas
from ..auth import get_current_admin
from ..database import get_db
from ..messaging import emit_order_event

router = APIRouter(prefix="/admin", tags=["Admin"])


def _not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


def _conflict(db: Session, detail: str) -> HTTPException:
    # DB-level unique constraint (race conditions)
    db.rollback()
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=detail)


# -----------------------------
# Categories
# -----------------------------

@router.get("/categories", response_model=List[schemas.CategoryOut])
def list_categories(current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    return crud.get_categories(db)


@router.post("/categories", response_model=schemas.CategoryOut, status_code=status.HTTP_201_CREATED)
def create_category(
    payload: schemas.CategoryCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    try:
        return crud.create_category(db, payload.model_dump())
    except IntegrityError:
        raise _conflict(db, "Category name already exists")


@router.patch("/categories/{category_id}", response_model=schemas.CategoryOut)
def update_category(
    category_id: int,
    payload: schemas.CategoryUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    try:
        category = crud.update_category(db, category_id, payload.model_dump(exclude_unset=True))
    except IntegrityError:
        raise _conflict(db, "Category name already exists")
    if not category:
        raise _not_found("Category")
    return category


@router.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_category(category_id: int, current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    """Removes the category with its subcategories and their products."""
    if not crud.delete_category(db, category_id):
        raise _not_found("Category")


# -----------------------------
# Subcategories
# -----------------------------

@router.get("/subcategories", response_model=List[schemas.SubCategoryOut])
def list_subcategories(
    category_id: Optional[int] = Query(None, gt=0),
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return crud.get_subcategories(db, category_id=category_id)


@router.post("/subcategories", response_model=schemas.SubCategoryOut, status_code=status.HTTP_201_CREATED)
def create_subcategory(
    payload: schemas.SubCategoryCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return crud.create_subcategory(db, payload.model_dump())


@router.patch("/subcategories/{subcategory_id}", response_model=schemas.SubCategoryOut)
def update_subcategory(
    subcategory_id: int,
    payload: schemas.SubCategoryUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    subcategory = crud.update_subcategory(db, subcategory_id, payload.model_dump(exclude_unset=True))
    if not subcategory:
        raise _not_found("Subcategory")
    return subcategory


@router.delete("/subcategories/{subcategory_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_subcategory(
    subcategory_id: int,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    if not crud.delete_subcategory(db, subcategory_id):
        raise _not_found("Subcategory")


# -----------------------------
# Products
# -----------------------------

@router.get("/products", response_model=List[schemas.ProductOut])
def list_products(
    sub_cat_id: Optional[int] = Query(None, gt=0),
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return crud.get_products(db, sub_cat_id=sub_cat_id, search=search, skip=skip, limit=limit)


@router.post("/products", response_model=schemas.ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(
    payload: schemas.ProductCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    try:
        return crud.create_product(db, payload.model_dump())
    except IntegrityError:
        raise _conflict(db, "Product conflicts with an existing one")


@router.patch("/products/{product_id}", response_model=schemas.ProductOut)
def update_product(
    product_id: int,
    payload: schemas.ProductUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Partial edit. ``quantity`` replaces the on-hand figure."""
    try:
        product = crud.update_product(db, product_id, payload.model_dump(exclude_unset=True))
    except IntegrityError:
        raise _conflict(db, "Product conflicts with an existing one")
    if not product:
        raise _not_found("Product")
    return product


@router.delete("/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_product(product_id: int, current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    if not crud.delete_product(db, product_id):
        raise _not_found("Product")


# -----------------------------
# Pincodes
# -----------------------------

@router.get("/pincodes", response_model=List[schemas.PincodeOut])
def list_pincodes(current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    return crud.get_pincodes(db)


@router.post("/pincodes", response_model=schemas.PincodeOut, status_code=status.HTTP_201_CREATED)
def create_pincode(
    payload: schemas.PincodeCreate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return crud.create_pincode(db, payload.model_dump())


@router.patch("/pincodes/{pincode}", response_model=schemas.PincodeOut)
def update_pincode(
    pincode: str,
    payload: schemas.PincodeUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    db_pin = crud.update_pincode(db, pincode, payload.model_dump(exclude_unset=True))
    if not db_pin:
        raise _not_found("Pincode")
    return db_pin


@router.delete("/pincodes/{pincode}", status_code=status.HTTP_204_NO_CONTENT)
def delete_pincode(pincode: str, current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    if not crud.delete_pincode(db, pincode):
        raise _not_found("Pincode")


# -----------------------------
# Contact submissions
# -----------------------------

@router.get("/contacts", response_model=List[schemas.ContactOut])
def list_contacts(
    status_filter: Optional[schemas.ContactStatus] = Query(None, alias="status"),
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return crud.get_contact_submissions(db, status=status_filter.value if status_filter else None)


@router.patch("/contacts/{submission_id}/status", response_model=schemas.ContactOut)
def update_contact_status(
    submission_id: int,
    payload: schemas.ContactStatusUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    submission = crud.update_contact_status(db, submission_id, payload.status.value)
    if not submission:
        raise _not_found("Contact submission")
    return submission


@router.delete("/contacts/{submission_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_contact(submission_id: int, current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    if not crud.delete_contact_submission(db, submission_id):
        raise _not_found("Contact submission")


# -----------------------------
# Quote requests
# -----------------------------

@router.get("/quotes", response_model=List[schemas.QuoteRequestOut])
def list_quote_requests(
    status_filter: Optional[schemas.QuoteStatus] = Query(None, alias="status"),
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return crud.get_quote_requests(db, status=status_filter.value if status_filter else None)


@router.patch("/quotes/{quote_id}/status", response_model=schemas.QuoteRequestOut)
def update_quote_status(
    quote_id: int,
    payload: schemas.QuoteRequestStatusUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    quote = crud.update_quote_status(db, quote_id, payload.status.value)
    if not quote:
        raise _not_found("Quote request")
    return quote


@router.delete("/quotes/{quote_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_quote_request(quote_id: int, current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    if not crud.delete_quote_request(db, quote_id):
        raise _not_found("Quote request")


# -----------------------------
# Orders
# -----------------------------

@router.get("/orders", response_model=schemas.OrderListResponse)
def list_orders(
    status_filter: Optional[schemas.OrderStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    wanted = status_filter.value if status_filter else None
    return {
        "orders": lifecycle.get_orders(db, skip=skip, limit=limit, status=wanted),
        "total": lifecycle.get_order_count(db, status=wanted),
        "skip": skip,
        "limit": limit,
    }


@router.get("/orders/stats", response_model=schemas.StatusCountsOut)
def order_stats(current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    return lifecycle.status_counts(db)


@router.get("/orders/{order_id}", response_model=schemas.OrderOut)
def get_order(order_id: int, current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    return lifecycle.require_order(db, order_id)


@router.patch("/orders/{order_id}/status", response_model=schemas.OrderOut)
def update_order_status(
    order_id: int,
    payload: schemas.OrderStatusUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    """Move the order along. Send ``expected_status`` to guard against a concurrent edit."""
    order = lifecycle.transition(
        db,
        order_id,
        payload.status.value,
        expected_status=payload.expected_status.value if payload.expected_status else None,
    )
    if order.status == lifecycle.CANCELLED:
        emit_order_event("order.cancelled", order, cancelled_by="admin")
    else:
        emit_order_event("order.status_changed", order)
    return order


@router.patch("/orders/{order_id}/payment-status", response_model=schemas.OrderOut)
def update_payment_status(
    order_id: int,
    payload: schemas.PaymentStatusUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return lifecycle.update_payment_status(db, order_id, payload.payment_status.value)


@router.patch("/orders/{order_id}/notes", response_model=schemas.OrderOut)
def update_order_notes(
    order_id: int,
    payload: schemas.OrderNotesUpdate,
    current_admin: Dict = Depends(get_current_admin),
    db: Session = Depends(get_db),
):
    return lifecycle.update_notes(db, order_id, payload.notes)


@router.post("/orders/{order_id}/refund", response_model=schemas.OrderOut)
def refund_order(order_id: int, current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    order = lifecycle.refund(db, order_id)
    emit_order_event("order.status_changed", order)
    return order


@router.delete("/orders/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_order(order_id: int, current_admin: Dict = Depends(get_current_admin), db: Session = Depends(get_db)):
    """Hard delete; units still held by the order are returned to stock."""
    if not lifecycle.delete_order(db, order_id):
        raise _not_found("Order")
