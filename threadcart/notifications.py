"""Emails to the store admins: new orders and bulk quote requests."""
from __future__ import annotations

import logging

from . import config
from .emailer import send_email_quietly
from .invoice import COMPANY_NAME, format_inr
from .models import Order, QuoteRequest

logger = logging.getLogger(__name__)


def _one_line_address(address: dict) -> str:
    parts = [
        address.get("address_line1"),
        address.get("address_line2"),
        address.get("city"),
        address.get("state"),
        address.get("postal_code"),
        address.get("country"),
    ]
    return ", ".join(p for p in parts if p)


def render_order_alert(order: Order) -> str:
    address = order.shipping_address or {}
    shipping = order.shipping_charge or 0
    lines = [
        f"New order {order.order_number}",
        "",
        f"Customer: {address.get('full_name')}",
        f"Phone: {address.get('phone')}",
        f"GSTIN: {order.gst_number or 'Not provided'}",
        f"Ship to: {_one_line_address(address)}",
        "",
        f"Items ({len(order.items)}):",
    ]
    for index, item in enumerate(order.items, start=1):
        total = item.price_at_purchase * item.quantity
        lines.append(f"{index}. {item.product_name}")
        lines.append(f"   Qty: {item.quantity} x {format_inr(item.price_at_purchase)} = {format_inr(total)}")
    lines += [
        "",
        f"Subtotal: {format_inr(order.subtotal)}",
        f"GST: {format_inr(order.tax)}",
        f"Shipping: {'FREE' if shipping == 0 else format_inr(shipping)}",
        f"Grand total: {format_inr(order.grand_total)}",
        "",
        f"Payment: {order.payment_method.upper()} ({order.payment_status})",
        f"Status: {order.status}",
    ]
    if order.created_at is not None:
        lines.append(f"Placed: {order.created_at:%d %B %Y %H:%M} UTC")
    return "\n".join(lines) + "\n"


def render_quote_alert(quote: QuoteRequest) -> str:
    lines = [
        "NEW QUOTE REQUEST",
        "",
        f"Request ID: {quote.request_number}",
        "",
        f"Name: {quote.name}",
        f"Email: {quote.email}",
        f"Phone: {quote.phone or 'Not provided'}",
    ]
    if quote.company_name:
        lines.append(f"Company: {quote.company_name}")
    if quote.gst_number:
        lines.append(f"GSTIN: {quote.gst_number}")
    lines += ["", "Message:", quote.message]
    return "\n".join(lines) + "\n"


def _queue_for_admins(background_tasks, subject: str, body: str) -> list[str]:
    recipients = list(config.ADMIN_NOTIFICATION_EMAILS)
    if not recipients:
        logger.info("no ADMIN_NOTIFICATION_EMAILS configured, skipping '%s'", subject)
        return []
    for email in recipients:
        background_tasks.add_task(send_email_quietly, to_email=email, subject=subject, body=body)
    return recipients


def queue_order_alert(background_tasks, order: Order) -> list[str]:
    """Mail every admin about a new order. Returns the recipients queued."""
    return _queue_for_admins(
        background_tasks,
        f"New order {order.order_number} - {format_inr(order.grand_total)}",
        render_order_alert(order),
    )


def queue_quote_alert(background_tasks, quote: QuoteRequest) -> list[str]:
    return _queue_for_admins(
        background_tasks,
        f"New quote request from {quote.name} - {COMPANY_NAME}",
        render_quote_alert(quote),
    )
