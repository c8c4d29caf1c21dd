import json
import time
from types import SimpleNamespace

import pytest
import requests

from threadcart import auth, config, notifications
from threadcart.routers import payment_router

from conftest import (
    ADDRESS,
    ADMIN_HEADERS,
    CUSTOMER_HEADERS,
    OTHER_HEADERS,
    intent_event,
    post_stripe_event,
    stock,
    stripe_signature,
)

SESSION = {"X-Cart-Session": "browser-42"}


def _place_via_api(client, catalog, quantity=4, payment_method="card"):
    r = client.post("/cart/items", json={"product_id": catalog.bolt.id, "quantity": quantity}, headers=CUSTOMER_HEADERS)
    assert r.status_code == 201, r.text
    r = client.post(
        "/checkout/orders",
        json={"shipping_address": ADDRESS, "payment_method": payment_method},
        headers=CUSTOMER_HEADERS,
    )
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/").json()["service"] == "ThreadCart"


def test_catalog_browsing(client, catalog):
    categories = client.get("/categories").json()
    assert [c["name"] for c in categories] == ["Bolts & Nuts"]

    subs = client.get(f"/categories/{catalog.category.id}/subcategories").json()
    assert [s["name"] for s in subs] == ["Hex"]

    products = client.get("/products", params={"sub_cat_id": catalog.subcategory.id}).json()
    assert {p["name"] for p in products} == {"M8 Hex Bolt", "M8 Hex Nut"}

    assert client.get("/products/9999").status_code == 404


def test_product_filters(client, catalog):
    by_material = client.get("/products", params={"material": ["Stainless Steel"]}).json()
    assert [p["name"] for p in by_material] == ["M8 Hex Bolt"]

    by_search = client.get("/products", params={"search": "HN-M8"}).json()
    assert [p["name"] for p in by_search] == ["M8 Hex Nut"]


def test_pincode_check(client, catalog):
    ok = client.get("/pincodes/400001/check").json()
    assert ok["valid"] is True
    assert ok["city"] == "Mumbai"
    assert ok["delivery_days"] == 2

    assert client.get("/pincodes/999999/check").json()["valid"] is False
    assert client.get("/pincodes/110001/check").json()["valid"] is False
    assert client.get("/pincodes/12ab/check").json()["valid"] is False


def test_anonymous_cart_needs_session_header(client, catalog):
    r = client.get("/cart/")
    assert r.status_code == 401

    r = client.post("/cart/items", json={"product_id": catalog.bolt.id, "quantity": 2}, headers=SESSION)
    assert r.status_code == 201
    body = r.json()
    assert body["total_quantity"] == 2
    assert body["totals"]["shipping"] is None
    assert body["totals"]["subtotal"] == "100.00"


def test_cart_operations(client, catalog):
    client.post("/cart/items", json={"product_id": catalog.bolt.id, "quantity": 2}, headers=CUSTOMER_HEADERS)
    client.post("/cart/items", json={"product_id": catalog.nut.id, "quantity": 4}, headers=CUSTOMER_HEADERS)

    assert client.get("/cart/count", headers=CUSTOMER_HEADERS).json() == {"total_quantity": 6, "item_count": 2}

    r = client.put(f"/cart/items/{catalog.bolt.id}", json={"quantity": 5}, headers=CUSTOMER_HEADERS)
    assert r.status_code == 200
    item = client.get(f"/cart/items/{catalog.bolt.id}", headers=CUSTOMER_HEADERS).json()
    assert item == {"product_id": catalog.bolt.id, "in_cart": True, "quantity": 5}

    r = client.delete(f"/cart/items/{catalog.nut.id}", headers=CUSTOMER_HEADERS)
    assert [line["product_id"] for line in r.json()["items"]] == [catalog.bolt.id]

    assert client.delete("/cart/", headers=CUSTOMER_HEADERS).status_code == 204
    assert client.get("/cart/", headers=CUSTOMER_HEADERS).json()["items"] == []


def test_cart_over_stock_error_body(client, catalog):
    r = client.post("/cart/items", json={"product_id": catalog.bolt.id, "quantity": 11}, headers=CUSTOMER_HEADERS)

    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["error"] == "out_of_stock"
    assert detail["available"] == 10
    assert detail["requested"] == 11


def test_cart_validate_endpoint(client, db, catalog):
    client.post("/cart/items", json={"product_id": catalog.bolt.id, "quantity": 6}, headers=CUSTOMER_HEADERS)
    r = client.patch(f"/admin/products/{catalog.bolt.id}", json={"quantity": 2}, headers=ADMIN_HEADERS)
    assert r.status_code == 200

    result = client.get("/cart/validate", headers=CUSTOMER_HEADERS).json()

    assert result["is_valid"] is False
    assert result["issues"][0]["issue_type"] == "insufficient_stock"


def test_merge_on_login(client, catalog):
    client.post("/cart/items", json={"product_id": catalog.nut.id, "quantity": 3}, headers=SESSION)

    r = client.post("/cart/merge", headers={**CUSTOMER_HEADERS, **SESSION})

    assert r.status_code == 200
    body = r.json()
    assert body["merged_count"] == 1
    assert body["cart"]["total_quantity"] == 3
    assert client.get("/cart/", headers=SESSION).json()["items"] == []


def test_quote(client, catalog):
    client.post("/cart/items", json={"product_id": catalog.bolt.id, "quantity": 4}, headers=CUSTOMER_HEADERS)

    r = client.post("/checkout/quote", json={"pincode": "400001"}, headers=CUSTOMER_HEADERS)
    assert r.status_code == 200
    totals = r.json()["totals"]
    assert totals == {"subtotal": "200.00", "tax": "36.00", "shipping": "0.00", "total": "236.00"}

    r = client.post("/checkout/quote", json={"pincode": "999999"}, headers=CUSTOMER_HEADERS)
    assert r.status_code == 422
    assert r.json()["detail"]["error"] == "unserviceable_area"


def test_checkout_flow(client, db, catalog):
    order = _place_via_api(client, catalog)

    assert order["status"] == "pending"
    assert order["grand_total"] == "236.00"
    assert order["shipping_address"]["postal_code"] == "400001"
    assert stock(db, catalog.bolt.id) == 6
    assert client.get("/cart/", headers=CUSTOMER_HEADERS).json()["items"] == []

    mine = client.get("/orders/me", headers=CUSTOMER_HEADERS).json()
    assert mine["total"] == 1
    assert mine["orders"][0]["order_number"] == order["order_number"]


def test_checkout_requires_sign_in(client, catalog):
    r = client.post("/checkout/orders", json={"shipping_address": ADDRESS, "payment_method": "cod"}, headers=SESSION)
    assert r.status_code in (401, 403)


def test_checkout_price_changed(client, db, catalog):
    client.post("/cart/items", json={"product_id": catalog.bolt.id, "quantity": 4}, headers=CUSTOMER_HEADERS)
    client.patch(f"/admin/products/{catalog.bolt.id}", json={"price": "60.00"}, headers=ADMIN_HEADERS)

    r = client.post(
        "/checkout/orders",
        json={"shipping_address": ADDRESS, "payment_method": "cod"},
        headers=CUSTOMER_HEADERS,
    )

    assert r.status_code == 409
    detail = r.json()["detail"]
    assert detail["error"] == "price_changed"
    assert detail["changes"][0]["new_price"] == "60.00"
    assert stock(db, catalog.bolt.id) == 10


def test_orders_are_private(client, catalog):
    order = _place_via_api(client, catalog)

    assert client.get(f"/orders/{order['id']}", headers=CUSTOMER_HEADERS).status_code == 200
    assert client.get(f"/orders/{order['id']}", headers=OTHER_HEADERS).status_code == 404
    assert client.post(f"/orders/{order['id']}/cancel", headers=OTHER_HEADERS).status_code == 404
    assert client.get(f"/orders/{order['id']}", headers=ADMIN_HEADERS).status_code == 200


def test_customer_cancel(client, db, catalog):
    order = _place_via_api(client, catalog)

    r = client.post(f"/orders/{order['id']}/cancel", headers=CUSTOMER_HEADERS)

    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert stock(db, catalog.bolt.id) == 10

    r = client.post(f"/orders/{order['id']}/cancel", headers=CUSTOMER_HEADERS)
    assert r.status_code == 409
    assert r.json()["detail"]["error"] == "invalid_transition"


def test_tracking_and_invoice(client, catalog):
    order = _place_via_api(client, catalog)

    tracking = client.get(f"/orders/{order['id']}/tracking", headers=CUSTOMER_HEADERS).json()
    assert tracking["current_status"] == "pending"
    assert tracking["history"][0]["is_current"] is True

    r = client.get(f"/orders/{order['id']}/invoice", headers=CUSTOMER_HEADERS)
    assert r.status_code == 200
    assert order["order_number"] in r.text
    assert "M8 Hex Bolt" in r.text

    r = client.post(
        f"/orders/{order['id']}/invoice/email",
        json={"email": "accounts@acmebuild.in"},
        headers=CUSTOMER_HEADERS,
    )
    assert r.status_code == 202
    # email is switched off in tests
    assert r.json()["queued"] is False


def test_payment_webhook_is_idempotent(client, db, catalog):
    order = _place_via_api(client, catalog)
    payload = intent_event(order["id"], "pi_abc", amount_received=23600)

    first = post_stripe_event(client, payload).json()
    second = post_stripe_event(client, payload).json()

    assert first == {
        "received": True,
        "order_id": order["id"],
        "applied": True,
        "status": "paid",
        "payment_status": "paid",
    }
    assert second["applied"] is False
    assert stock(db, catalog.bolt.id) == 6
    assert client.get(f"/orders/{order['id']}", headers=CUSTOMER_HEADERS).json()["payment_id"] == "pi_abc"


def test_payment_webhook_failed_intent(client, catalog):
    order = _place_via_api(client, catalog)

    r = post_stripe_event(client, intent_event(order["id"], "pi_declined", succeeded=False))

    assert r.json()["payment_status"] == "failed"
    assert r.json()["status"] == "pending"


def test_payment_webhook_amount_mismatch(client, catalog):
    order = _place_via_api(client, catalog)

    r = post_stripe_event(client, intent_event(order["id"], "pi_short", amount_received=100))

    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "validation_error"


def test_payment_webhook_unknown_order(client, catalog):
    r = post_stripe_event(client, intent_event(999, "pi_x"))
    assert r.status_code == 404


def test_payment_webhook_acknowledges_other_events(client, catalog):
    payload = json.dumps({"id": "evt_2", "type": "charge.refunded", "data": {"object": {"id": "ch_1"}}})

    r = post_stripe_event(client, payload)

    assert r.status_code == 200
    assert r.json() == {"received": True, "applied": False}


def test_payment_webhook_signature(client, catalog):
    order = _place_via_api(client, catalog)
    payload = intent_event(order["id"], "pi_sig")

    r = client.post("/payments/webhook", content=payload)
    assert r.status_code == 400

    r = post_stripe_event(client, payload, signature=stripe_signature(payload, secret="whsec_other"))
    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "unauthorized"

    stale = stripe_signature(payload, timestamp=int(time.time()) - 3600)
    assert post_stripe_event(client, payload, signature=stale).status_code == 403

    r = post_stripe_event(client, payload)
    assert r.status_code == 200
    assert r.json()["status"] == "paid"


def test_payment_webhook_needs_secret(client, catalog, monkeypatch):
    monkeypatch.setattr(payment_router, "STRIPE_WEBHOOK_SECRET", "")
    payload = intent_event(1, "pi_cfg")

    assert post_stripe_event(client, payload).status_code == 500


def test_payment_webhook_rejects_malformed_body(client):
    assert post_stripe_event(client, "not json").status_code == 422
    assert post_stripe_event(client, "[1, 2]").status_code == 422


def test_create_payment_intent(client, catalog, monkeypatch):
    created = []

    def fake_create(**kwargs):
        created.append(kwargs)
        return SimpleNamespace(id="pi_new", client_secret="pi_new_secret_123")

    monkeypatch.setattr(payment_router, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(payment_router.stripe.PaymentIntent, "create", fake_create)
    order = _place_via_api(client, catalog)

    r = client.post("/payments/intent", json={"order_id": order["id"]}, headers=CUSTOMER_HEADERS)

    assert r.status_code == 201, r.text
    assert r.json()["client_secret"] == "pi_new_secret_123"
    assert r.json()["amount"] == "236.00"
    [kwargs] = created
    assert kwargs["amount"] == 23600
    assert kwargs["currency"] == "inr"
    assert kwargs["metadata"]["order_id"] == str(order["id"])

    # someone else's order
    assert client.post("/payments/intent", json={"order_id": order["id"]}, headers=OTHER_HEADERS).status_code == 404


def test_payment_intent_only_for_unpaid_card_orders(client, catalog, monkeypatch):
    monkeypatch.setattr(payment_router, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(
        payment_router.stripe.PaymentIntent,
        "create",
        lambda **kwargs: SimpleNamespace(id="pi_new", client_secret="secret"),
    )
    cod = _place_via_api(client, catalog, quantity=1, payment_method="cod")
    r = client.post("/payments/intent", json={"order_id": cod["id"]}, headers=CUSTOMER_HEADERS)
    assert r.status_code == 400

    card = _place_via_api(client, catalog, quantity=1)
    post_stripe_event(client, intent_event(card["id"], "pi_done"))
    r = client.post("/payments/intent", json={"order_id": card["id"]}, headers=CUSTOMER_HEADERS)
    assert r.status_code == 400
    assert r.json()["detail"]["payment_status"] == "paid"


def test_address_book(client, catalog):
    payload = {
        "full_name": "Asha Patel",
        "phone": "9876543210",
        "address_line1": "12 Marine Drive",
        "pincode": "560001",
    }
    r = client.post("/addresses/", json=payload, headers=CUSTOMER_HEADERS)
    assert r.status_code == 201
    address = r.json()
    assert address["city"] == "Bengaluru"
    assert address["is_default"] is True

    r = client.post("/addresses/", json={**payload, "pincode": "999999"}, headers=CUSTOMER_HEADERS)
    assert r.status_code == 422

    assert len(client.get("/addresses/", headers=CUSTOMER_HEADERS).json()) == 1
    assert client.get("/addresses/", headers=OTHER_HEADERS).json() == []
    assert client.delete(f"/addresses/{address['id']}", headers=OTHER_HEADERS).status_code == 404
    assert client.delete(f"/addresses/{address['id']}", headers=CUSTOMER_HEADERS).status_code == 204


def test_deleting_default_address_promotes_newest(client, catalog):
    base = {"full_name": "Asha Patel", "phone": "9876543210", "pincode": "560001"}
    first = client.post("/addresses/", json={**base, "address_line1": "Office"}, headers=CUSTOMER_HEADERS).json()
    client.post("/addresses/", json={**base, "address_line1": "Warehouse"}, headers=CUSTOMER_HEADERS)
    newest = client.post("/addresses/", json={**base, "address_line1": "Home"}, headers=CUSTOMER_HEADERS).json()
    assert first["is_default"] is True
    assert newest["is_default"] is False

    assert client.delete(f"/addresses/{first['id']}", headers=CUSTOMER_HEADERS).status_code == 204

    addresses = client.get("/addresses/", headers=CUSTOMER_HEADERS).json()
    assert [a["address_line1"] for a in addresses if a["is_default"]] == ["Home"]


def test_contact_submission(client):
    r = client.post(
        "/contact/",
        json={"name": "Ravi", "email": "ravi@acmebuild.in", "subject": "Bulk order", "message": "Need 5000 M8 bolts"},
    )
    assert r.status_code == 201
    assert r.json()["status"] == "new"


class _FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = json.dumps(self._payload)

    def json(self):
        return self._payload


def test_resolve_token_maps_provider_user(monkeypatch):
    calls = []

    def fake_get(url, headers, timeout):
        calls.append((url, headers))
        return _FakeResponse(200, {"id": 7, "email": "Owner@ThreadCart.in"})

    monkeypatch.setattr(auth.requests, "get", fake_get)

    user = auth.resolve_token("tok")

    assert user == {"id": "7", "email": "owner@threadcart.in", "is_admin": False}
    assert calls[0][0].endswith("/auth/v1/user")
    assert calls[0][1]["Authorization"] == "Bearer tok"
    # listed in ADMIN_EMAILS
    assert auth.is_admin(user)


def test_resolve_token_errors(monkeypatch):
    from fastapi import HTTPException

    monkeypatch.setattr(auth.requests, "get", lambda *a, **kw: _FakeResponse(401))
    with pytest.raises(HTTPException) as exc:
        auth.resolve_token("expired")
    assert exc.value.status_code == 401

    def unreachable(*a, **kw):
        raise requests.exceptions.ConnectionError("refused")

    monkeypatch.setattr(auth.requests, "get", unreachable)
    with pytest.raises(HTTPException) as exc:
        auth.resolve_token("tok")
    assert exc.value.status_code == 503


def test_new_order_mails_admins(client, catalog, monkeypatch):
    sent = []
    monkeypatch.setattr(config, "ADMIN_NOTIFICATION_EMAILS", ["sales@threadcart.in"])
    monkeypatch.setattr(notifications, "send_email_quietly", lambda **kwargs: sent.append(kwargs))

    order = _place_via_api(client, catalog, quantity=2)

    [mail] = sent
    assert mail["to_email"] == "sales@threadcart.in"
    assert order["order_number"] in mail["subject"]
    assert "M8 Hex Bolt" in mail["body"]


def test_quote_request_mails_admins(client, monkeypatch):
    sent = []
    monkeypatch.setattr(config, "ADMIN_NOTIFICATION_EMAILS", ["sales@threadcart.in"])
    monkeypatch.setattr(notifications, "send_email_quietly", lambda **kwargs: sent.append(kwargs))

    r = client.post(
        "/quotes/",
        json={"name": "Meera", "email": "purchase@acmebuild.in", "message": "Price for 20k M6 screws?"},
        headers=CUSTOMER_HEADERS,
    )

    assert r.status_code == 201
    assert r.json()["user_id"] == "user-1"
    [mail] = sent
    assert mail["subject"] == "New quote request from Meera - ThreadCart"
    assert r.json()["request_number"] in mail["body"]


def test_quote_request_validation(client):
    r = client.post("/quotes/", json={"name": "Meera", "email": "not-an-email", "message": "hi"})
    assert r.status_code == 422


def test_invoice_pdf_download(client, catalog):
    order = _place_via_api(client, catalog, quantity=1)

    r = client.get(f"/orders/{order['id']}/invoice.pdf", headers=CUSTOMER_HEADERS)

    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert f"invoice-{order['order_number']}.pdf" in r.headers["content-disposition"]
    assert r.content.startswith(b"%PDF")
    assert client.get(f"/orders/{order['id']}/invoice.pdf", headers=OTHER_HEADERS).status_code == 404
