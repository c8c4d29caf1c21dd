import smtplib

from fastapi import BackgroundTasks

from threadcart import config, emailer, invoice, notifications
from threadcart.models import QuoteRequest

from conftest import order_for


def test_render_invoice(db, catalog):
    order = order_for(db, catalog.bolt, quantity=4)

    text = invoice.render_invoice(order)

    assert order.order_number in text
    assert "M8 Hex Bolt" in text
    assert "Rs. 200.00" in text
    assert "GST (18%)" in text
    assert "Rs. 36.00" in text
    assert "FREE" in text
    assert "Rs. 236.00" in text
    assert "Cash on Delivery" not in text
    assert "Payment Status: PENDING" in text


def test_invoice_shows_gstin_and_billing_address(db, catalog):
    order = order_for(db, catalog.bolt, quantity=1, payment_method="cod")
    order.gst_number = "27AAPFU0939F1ZV"
    order.billing_address = {**order.shipping_address, "full_name": "Patel Traders"}

    text = invoice.render_invoice(order)

    assert "Customer GSTIN: 27AAPFU0939F1ZV" in text
    assert "Bill To:" in text
    assert "Patel Traders" in text
    assert "Cash on Delivery" in text


def test_queue_invoice_email_respects_switch(db, catalog, monkeypatch):
    order = order_for(db, catalog.bolt, quantity=1)

    tasks = BackgroundTasks()
    assert invoice.queue_invoice_email(tasks, order, "buyer@acmebuild.in") is False
    assert tasks.tasks == []

    monkeypatch.setattr(invoice, "INVOICE_EMAIL_ENABLED", True)
    assert invoice.queue_invoice_email(tasks, order, "buyer@acmebuild.in") is True
    [task] = tasks.tasks
    assert task.kwargs["to_email"] == "buyer@acmebuild.in"
    assert order.order_number in task.kwargs["body"]


def test_send_email_quietly_swallows_smtp_failures(monkeypatch):
    def broken_smtp(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, "busy")

    monkeypatch.setattr(emailer.smtplib, "SMTP", broken_smtp)

    assert emailer.send_email_quietly(to_email="a@acmebuild.in", subject="Invoice", body="...") is False


def test_send_email_uses_configured_server(monkeypatch):
    sent = []

    class FakeSMTP:
        def __init__(self, host, port, timeout):
            self.host, self.port = host, port

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def send_message(self, msg):
            sent.append(msg)

    monkeypatch.setattr(emailer.smtplib, "SMTP", FakeSMTP)

    assert emailer.send_email_quietly(to_email="a@acmebuild.in", subject="Invoice TC1", body="hello") is True
    assert sent[0]["To"] == "a@acmebuild.in"
    assert sent[0]["Subject"] == "Invoice TC1"


def test_render_invoice_pdf(db, catalog):
    order = order_for(db, catalog.bolt, quantity=4)
    order.shipping_address = {**order.shipping_address, "full_name": "Asha Pâtel ₹"}

    pdf = invoice.render_invoice_pdf(order)

    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 500


def test_order_alert_lists_items_and_totals(db, catalog):
    order = order_for(db, catalog.bolt, quantity=4)

    body = notifications.render_order_alert(order)

    assert f"New order {order.order_number}" in body
    assert "1. M8 Hex Bolt" in body
    assert "Qty: 4 x Rs. 50.00 = Rs. 200.00" in body
    assert "GSTIN: Not provided" in body
    assert "Shipping: FREE" in body
    assert "Grand total: Rs. 236.00" in body


def test_order_alert_goes_to_every_admin(db, catalog, monkeypatch):
    order = order_for(db, catalog.bolt, quantity=1)
    tasks = BackgroundTasks()

    assert notifications.queue_order_alert(tasks, order) == []
    assert tasks.tasks == []

    monkeypatch.setattr(config, "ADMIN_NOTIFICATION_EMAILS", ["sales@threadcart.in", "ops@threadcart.in"])
    assert notifications.queue_order_alert(tasks, order) == ["sales@threadcart.in", "ops@threadcart.in"]
    assert [t.kwargs["to_email"] for t in tasks.tasks] == ["sales@threadcart.in", "ops@threadcart.in"]
    assert order.order_number in tasks.tasks[0].kwargs["subject"]


def test_quote_alert_body(db):
    quote = QuoteRequest(
        request_number="QR-20260101-000001",
        name="Meera",
        email="purchase@acmebuild.in",
        company_name="Acme Build",
        message="Need 10k M12 nuts",
    )

    body = notifications.render_quote_alert(quote)

    assert "Request ID: QR-20260101-000001" in body
    assert "Company: Acme Build" in body
    assert "Phone: Not provided" in body
    assert body.rstrip().endswith("Need 10k M12 nuts")
