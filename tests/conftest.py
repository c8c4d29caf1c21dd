import hashlib
import hmac
import json
import os
import time

# must be set before threadcart is imported: config is read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RABBITMQ_URL"] = ""
os.environ["INVOICE_EMAIL_ENABLED"] = "false"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["ADMIN_NOTIFICATION_EMAILS"] = ""
os.environ["ADMIN_EMAILS"] = "owner@threadcart.in"

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from threadcart import auth
from threadcart import crud
from threadcart.cart import CartStore, user_cart_key
from threadcart.checkout import place_order
from threadcart.database import SessionLocal, engine
from threadcart.main import app
from threadcart.models import Base, Product

CUSTOMER = {"id": "user-1", "email": "asha@example.com", "is_admin": False}
OTHER_CUSTOMER = {"id": "user-2", "email": "ravi@example.com", "is_admin": False}
ADMIN = {"id": "admin-1", "email": "admin@threadcart.in", "is_admin": True}

TOKENS = {
    "customer-token": CUSTOMER,
    "other-token": OTHER_CUSTOMER,
    "admin-token": ADMIN,
}

CUSTOMER_HEADERS = {"Authorization": "Bearer customer-token"}
OTHER_HEADERS = {"Authorization": "Bearer other-token"}
ADMIN_HEADERS = {"Authorization": "Bearer admin-token"}

ADDRESS = {
    "full_name": "Asha Patel",
    "phone": "9876543210",
    "address_line1": "12 Marine Drive",
    "address_line2": None,
    "city": "Mumbai",
    "state": "Maharashtra",
    "postal_code": "400001",
    "country": "India",
}


def _fake_resolve_token(token):
    user = TOKENS.get(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return dict(user)


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(auth, "resolve_token", _fake_resolve_token)
    return TestClient(app)


@pytest.fixture
def catalog(db):
    """M8 hardware on the shelf and a few delivery pincodes."""
    category = crud.create_category(db, {"name": "Bolts & Nuts", "sort_number": 1})
    subcategory = crud.create_subcategory(db, {"name": "Hex", "category_id": category.id})
    bolt = crud.create_product(
        db,
        {
            "name": "M8 Hex Bolt",
            "price": Decimal("50.00"),
            "quantity": 10,
            "sub_cat_id": subcategory.id,
            "material": "Stainless Steel",
            "grade": "A2-70",
            "coating": "Plain",
            "part_number": "HB-M8-40",
        },
    )
    nut = crud.create_product(
        db,
        {
            "name": "M8 Hex Nut",
            "price": Decimal("5.50"),
            "quantity": 20,
            "sub_cat_id": subcategory.id,
            "material": "Carbon Steel",
            "grade": "8",
            "coating": "Zinc Plated",
            "part_number": "HN-M8",
        },
    )
    free = crud.create_pincode(
        db,
        {"pincode": "400001", "city": "Mumbai", "state": "Maharashtra", "delivery_days": 2, "shipping_charge": Decimal("0")},
    )
    paid = crud.create_pincode(
        db,
        {"pincode": "560001", "city": "Bengaluru", "state": "Karnataka", "delivery_days": 4, "shipping_charge": Decimal("99")},
    )
    inactive = crud.create_pincode(
        db,
        {"pincode": "110001", "city": "New Delhi", "state": "Delhi", "delivery_days": 3, "is_active": False},
    )
    return SimpleNamespace(
        category=category,
        subcategory=subcategory,
        bolt=bolt,
        nut=nut,
        free_pincode=free,
        paid_pincode=paid,
        inactive_pincode=inactive,
    )


def stock(db, product_id):
    db.expire_all()
    return db.query(Product.quantity).filter(Product.id == product_id).scalar()


def order_for(db, product, quantity=4, user_id="user-1", payment_method="card", address=None):
    store = CartStore(db, user_cart_key(user_id))
    store.add_item(product.id, quantity)
    return place_order(db, store, user_id=user_id, shipping_address=dict(address or ADDRESS), payment_method=payment_method)


def stripe_signature(payload: str, secret: str = "whsec_test", timestamp=None) -> str:
    """A Stripe-Signature header the way Stripe signs webhook deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def intent_event(order_id, intent_id="pi_1", succeeded=True, amount_received=None) -> str:
    intent = {"id": intent_id, "object": "payment_intent", "metadata": {"order_id": str(order_id)}}
    if amount_received is not None:
        intent["amount_received"] = amount_received
    return json.dumps(
        {
            "id": f"evt_{intent_id}",
            "object": "event",
            "type": "payment_intent.succeeded" if succeeded else "payment_intent.payment_failed",
            "data": {"object": intent},
        }
    )


def post_stripe_event(client, payload: str, signature=None):
    return client.post(
        "/payments/webhook",
        content=payload,
        headers={
            "Stripe-Signature": signature or stripe_signature(payload),
            "Content-Type": "application/json",
        },
    )
