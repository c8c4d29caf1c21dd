from typing import Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from fastapi.responses import PlainTextResponse, Response
from sqlalchemy.orm import Session

from .. import lifecycle, schemas
from ..auth import get_current_user, is_admin
from ..database import get_db
from ..errors import NotFound
from ..invoice import queue_invoice_email, render_invoice, render_invoice_pdf
from ..messaging import emit_order_event
from ..models import Order

router = APIRouter(prefix="/orders", tags=["Orders"])


def _own_order(db: Session, order_id: int, current_user: Dict) -> Order:
    order = lifecycle.get_order(db, order_id)
    # other users' orders look exactly like missing ones
    if order is None or (order.user_id != current_user["id"] and not is_admin(current_user)):
        raise NotFound("order", order_id)
    return order


@router.get("/me", response_model=schemas.OrderListResponse)
def get_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    user_id = current_user["id"]
    return {
        "orders": lifecycle.get_orders_by_user(db, user_id, skip=skip, limit=limit),
        "total": lifecycle.get_user_order_count(db, user_id),
        "skip": skip,
        "limit": limit,
    }


@router.get("/{order_id}", response_model=schemas.OrderOut)
def get_order(order_id: int, current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    return _own_order(db, order_id, current_user)


@router.post("/{order_id}/cancel", response_model=schemas.OrderOut)
def cancel_order(order_id: int, current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    """Shoppers may cancel until the order starts processing."""
    _own_order(db, order_id, current_user)
    order = lifecycle.cancel_by_customer(db, order_id, current_user["id"])
    emit_order_event("order.cancelled", order, cancelled_by="customer")
    return order


@router.get("/{order_id}/tracking", response_model=schemas.TrackingOut)
def track_order(order_id: int, current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    order = _own_order(db, order_id, current_user)
    return lifecycle.tracking(db, order)


@router.get("/{order_id}/invoice", response_class=PlainTextResponse)
def get_invoice(order_id: int, current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    order = _own_order(db, order_id, current_user)
    return PlainTextResponse(
        render_invoice(order),
        headers={"Content-Disposition": f'inline; filename="invoice-{order.order_number}.txt"'},
    )


@router.get("/{order_id}/invoice.pdf")
def download_invoice_pdf(order_id: int, current_user: Dict = Depends(get_current_user), db: Session = Depends(get_db)):
    order = _own_order(db, order_id, current_user)
    return Response(
        render_invoice_pdf(order),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="invoice-{order.order_number}.pdf"'},
    )


@router.post("/{order_id}/invoice/email", status_code=202)
def email_invoice(
    order_id: int,
    payload: schemas.InvoiceEmailRequest,
    background_tasks: BackgroundTasks,
    current_user: Dict = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    order = _own_order(db, order_id, current_user)
    queued = queue_invoice_email(background_tasks, order, payload.email)
    return {"queued": queued, "email": payload.email}
