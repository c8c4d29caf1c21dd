from __future__ import annotations

import datetime as dt
import json
import logging
import threading
import time
from typing import Callable, Iterable

import pika

from .config import EVENTS_EXCHANGE, RABBITMQ_URL

logger = logging.getLogger(__name__)


def messaging_enabled() -> bool:
    return bool(RABBITMQ_URL)


def _connect() -> pika.BlockingConnection:
    params = pika.URLParameters(RABBITMQ_URL)
    params.heartbeat = 30
    params.blocked_connection_timeout = 30
    return pika.BlockingConnection(params)


def publish_event(routing_key: str, payload: dict) -> None:
    connection = _connect()
    try:
        ch = connection.channel()
        ch.exchange_declare(exchange=EVENTS_EXCHANGE, exchange_type="topic", durable=True)
        body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
        ch.basic_publish(
            exchange=EVENTS_EXCHANGE,
            routing_key=routing_key,
            body=body,
            properties=pika.BasicProperties(
                content_type="application/json",
                delivery_mode=2,  # persistent
            ),
        )
    finally:
        connection.close()


def order_event_payload(event: str, order, **extra) -> dict:
    return {
        "event": event,
        "occurred_at": dt.datetime.now(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
        "order_id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "grand_total": str(order.grand_total),
        "items": [{"product_id": i.product_id, "quantity": i.quantity} for i in order.items],
        **extra,
    }


def emit_order_event(event: str, order, **extra) -> None:
    """Fire-and-forget publish; the order is already committed."""
    if not messaging_enabled():
        return
    try:
        publish_event(event, order_event_payload(event, order, **extra))
    except Exception:
        logger.exception("failed to publish %s for order %s", event, order.id)


def start_consumer_in_thread(
    *,
    queue_name: str,
    binding_keys: Iterable[str],
    handler: Callable[[dict], None],
    prefetch_count: int = 10,
    daemon: bool = True,
) -> None:
    def _run() -> None:
        while True:
            connection = None
            try:
                connection = _connect()
                ch = connection.channel()
                ch.exchange_declare(exchange=EVENTS_EXCHANGE, exchange_type="topic", durable=True)

                ch.queue_declare(queue=queue_name, durable=True)
                for key in binding_keys:
                    ch.queue_bind(exchange=EVENTS_EXCHANGE, queue=queue_name, routing_key=key)

                ch.basic_qos(prefetch_count=prefetch_count)

                def _on_message(ch_, method, properties, body: bytes):
                    try:
                        payload = json.loads(body.decode("utf-8"))
                        handler(payload)
                        ch_.basic_ack(delivery_tag=method.delivery_tag)
                    except Exception:
                        logger.exception("consumer handler failed. queue=%s", queue_name)
                        # no requeue: avoids poison-message loops
                        ch_.basic_nack(delivery_tag=method.delivery_tag, requeue=False)

                ch.basic_consume(queue=queue_name, on_message_callback=_on_message, auto_ack=False)
                ch.start_consuming()
            except Exception:
                logger.warning("consumer %s lost broker connection, retrying", queue_name)
                time.sleep(3)
            finally:
                try:
                    if connection is not None and connection.is_open:
                        connection.close()
                except Exception:
                    pass

    t = threading.Thread(target=_run, name=f"consumer:{queue_name}", daemon=daemon)
    t.start()
