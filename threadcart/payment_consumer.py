from __future__ import annotations

import logging
from typing import Any, Dict

from . import lifecycle
from .database import SessionLocal
from .errors import StoreError
from .messaging import emit_order_event, start_consumer_in_thread

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED_QUEUE = "threadcart.payment.succeeded.q"
PAYMENT_FAILED_QUEUE = "threadcart.payment.failed.q"


def apply_payment_event(db, payload: Dict[str, Any]):
    """Apply one gateway event. Shared by the webhook and the broker consumer.

    Expected payload:
    {
      "order_id": 123,
      "payment_id": "pay_...",
      "status": "succeeded" | "failed",
      "amount": 236.00 (optional)
    }

    Returns ``(order, applied)``; ``applied`` is False for a replay.
    """
    succeeded = payload.get("status") == "succeeded"
    order, applied = lifecycle.record_payment(
        db,
        int(payload["order_id"]),
        str(payload["payment_id"]),
        succeeded=succeeded,
        amount=payload.get("amount"),
    )
    if applied and succeeded and order.status == lifecycle.PAID:
        emit_order_event("order.paid", order, payment_id=order.payment_id)
    return order, applied


def _handle(payload: Dict[str, Any], status: str) -> None:
    if not payload.get("order_id") or not payload.get("payment_id"):
        logger.warning("dropping payment event without order_id/payment_id: %s", payload)
        return

    db = SessionLocal()
    try:
        apply_payment_event(db, {**payload, "status": status})
    except StoreError as e:
        # unknown order or amount mismatch: retrying will not help
        logger.warning("payment event for order %s rejected: %s", payload.get("order_id"), e.message)
    finally:
        db.close()


def _handle_payment_succeeded(payload: Dict[str, Any]) -> None:
    _handle(payload, "succeeded")


def _handle_payment_failed(payload: Dict[str, Any]) -> None:
    _handle(payload, "failed")


def start_payment_consumers() -> None:
    start_consumer_in_thread(
        queue_name=PAYMENT_SUCCEEDED_QUEUE,
        binding_keys=["payment.succeeded"],
        handler=_handle_payment_succeeded,
    )
    start_consumer_in_thread(
        queue_name=PAYMENT_FAILED_QUEUE,
        binding_keys=["payment.failed"],
        handler=_handle_payment_failed,
    )
