"""Invoices for finalized orders, as plain text or PDF."""
from __future__ import annotations

from decimal import Decimal

from fpdf import FPDF

from .config import GST_RATE, INVOICE_EMAIL_ENABLED
from .emailer import send_email_quietly
from .models import Order

COMPANY_NAME = "ThreadCart"
COMPANY_TAGLINE = "Premium Fasteners & Hardware"

_PAYMENT_METHOD_LABELS = {
    "card": "Card (Stripe)",
    "cod": "Cash on Delivery",
    "bank_transfer": "Bank Transfer",
}


def format_inr(amount) -> str:
    return f"Rs. {Decimal(str(amount)):,.2f}"


def _address_lines(address: dict) -> list[str]:
    lines = [address["full_name"], address["address_line1"]]
    if address.get("address_line2"):
        lines.append(address["address_line2"])
    lines.append(f"{address['city']}, {address['state']} - {address['postal_code']}")
    lines.append(f"Phone: +91 {address['phone']}")
    return lines


def render_invoice(order: Order) -> str:
    width = 72
    rule = "-" * width
    created = order.created_at.strftime("%d %B %Y") if order.created_at else ""
    paid = order.payment_status in ("paid", "refunded")

    out = [
        f"{COMPANY_NAME}".ljust(width - 7) + "INVOICE",
        COMPANY_TAGLINE,
        rule,
        f"Invoice Number: {order.order_number}".ljust(48) + f"Date: {created}",
        f"Payment Status: {'PAID' if paid else 'PENDING'}".ljust(48)
        + f"Payment: {_PAYMENT_METHOD_LABELS.get(order.payment_method, order.payment_method)}",
    ]
    if order.gst_number:
        out.append(f"Customer GSTIN: {order.gst_number}")
    out.append(rule)

    out.append("Ship To:")
    out.extend(f"  {line}" for line in _address_lines(order.shipping_address))
    if order.billing_address:
        out.append("Bill To:")
        out.extend(f"  {line}" for line in _address_lines(order.billing_address))
    out.append(rule)

    out.append(f"{'Item':<36}{'Qty':>6}{'Price':>14}{'Amount':>16}")
    out.append(rule)
    for item in order.items:
        amount = Decimal(str(item.price_at_purchase)) * item.quantity
        out.append(
            f"{item.product_name[:35]:<36}{item.quantity:>6}"
            f"{format_inr(item.price_at_purchase):>14}{format_inr(amount):>16}"
        )
    out.append(rule)

    shipping = Decimal(str(order.shipping_charge))
    gst_pct = (GST_RATE * 100).normalize()
    out.append(f"{'Subtotal:':>56}{format_inr(order.subtotal):>16}")
    out.append(f"{f'GST ({gst_pct}%):':>56}{format_inr(order.tax):>16}")
    out.append(f"{'Shipping:':>56}{('FREE' if shipping == 0 else format_inr(shipping)):>16}")
    out.append(f"{'Grand Total:':>56}{format_inr(order.grand_total):>16}")
    out.append(rule)
    out.append("Thank you for shopping with ThreadCart!")
    return "\n".join(out) + "\n"


def render_invoice_pdf(order: Order) -> bytes:
    """The text invoice laid out on an A4 page in a monospace font."""
    pdf = FPDF(format="A4")
    pdf.set_title(f"Invoice {order.order_number}")
    pdf.set_author(COMPANY_NAME)
    pdf.add_page()
    pdf.set_font("Courier", size=9)
    # core PDF fonts only cover latin-1
    text = render_invoice(order).encode("latin-1", "replace").decode("latin-1")
    pdf.multi_cell(0, 4.5, text)
    return bytes(pdf.output())


def queue_invoice_email(background_tasks, order: Order, to_email: str) -> bool:
    """Render now, send after the response; the session is gone by then."""
    if not INVOICE_EMAIL_ENABLED:
        return False
    background_tasks.add_task(
        send_email_quietly,
        to_email=to_email,
        subject=f"Your {COMPANY_NAME} invoice {order.order_number}",
        body=render_invoice(order),
    )
    return True
