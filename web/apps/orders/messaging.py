"""RabbitMQ transport for order events.

With several web workers each process has its own ``BroadcastHub``. In
``rabbitmq`` mode the order service publishes to a topic exchange instead
of the local hub, and every process runs a ``RabbitMQRelay`` thread that
consumes the exchange into its local hub. Each winery's events use the
routing key ``winery.<id>``.

Delivery stays at-most-once: messages are transient, the relay queue is
exclusive and auto-deleted, and nothing is redelivered to a process that
was not connected when the event was published.
"""

import json
import logging
import threading
import time
from typing import Optional

import pika
from pydantic import ValidationError

from .domain import BroadcastPort, OrderEvent
from .fanout import BroadcastHub
from .schemas import OrderEventDTO

logger = logging.getLogger(__name__)


def routing_key_for(winery_id: int) -> str:
    return f"winery.{winery_id}"


class RabbitMQBroadcaster(BroadcastPort):
    """Publish order events to a topic exchange.

    The blocking connection is opened lazily and re-opened after a failure.
    Publishing is serialized with a lock because a pika channel is not
    thread-safe and gunicorn ``gthread`` workers share this instance.
    """

    def __init__(self, url: str, exchange: str):
        self.url = url
        self.exchange = exchange
        self._lock = threading.Lock()
        self._connection = None
        self._channel = None

    def _ensure_channel(self):
        if self._connection is None or self._connection.is_closed:
            self._connection = pika.BlockingConnection(pika.URLParameters(self.url))
            self._channel = self._connection.channel()
            self._channel.exchange_declare(exchange=self.exchange, exchange_type="topic", durable=True)
        return self._channel

    def publish(self, event: OrderEvent) -> None:
        body = json.dumps(OrderEventDTO.from_event(event).to_json())
        with self._lock:
            try:
                self._ensure_channel().basic_publish(
                    exchange=self.exchange,
                    routing_key=routing_key_for(event.winery_id),
                    body=body,
                    properties=pika.BasicProperties(content_type="application/json", delivery_mode=1),
                )
            except pika.exceptions.AMQPError:
                self.close()
                raise
        logger.debug("event sent", extra={"event": event.type.value, "order_id": event.order.id})

    def close(self) -> None:
        conn, self._connection, self._channel = self._connection, None, None
        if conn is not None and conn.is_open:
            try:
                conn.close()
            except pika.exceptions.AMQPError:
                logger.warning("error closing RabbitMQ connection", exc_info=True)


class RabbitMQRelay(threading.Thread):
    """Consume the event exchange and feed the process-local hub."""

    def __init__(self, hub: BroadcastHub, url: str, exchange: str, reconnect_delay: float = 5.0):
        super().__init__(name="order-event-relay", daemon=True)
        self.hub = hub
        self.url = url
        self.exchange = exchange
        self.reconnect_delay = reconnect_delay
        self._stopping = threading.Event()

    def handle(self, body: bytes) -> Optional[OrderEvent]:
        """Decode one message and hand it to the hub. Bad payloads are logged and dropped."""
        try:
            event = OrderEventDTO.model_validate(json.loads(body)).to_event()
        except (ValueError, ValidationError):
            logger.warning("undecodable order event dropped", exc_info=True)
            return None
        self.hub.publish(event)
        return event

    def _on_message(self, channel, method, properties, body):
        self.handle(body)

    def consume_once(self) -> None:
        connection = pika.BlockingConnection(pika.URLParameters(self.url))
        try:
            channel = connection.channel()
            channel.exchange_declare(exchange=self.exchange, exchange_type="topic", durable=True)
            result = channel.queue_declare(queue="", exclusive=True, auto_delete=True)
            queue_name = result.method.queue
            channel.queue_bind(exchange=self.exchange, queue=queue_name, routing_key="winery.*")
            channel.basic_consume(queue=queue_name, on_message_callback=self._on_message, auto_ack=True)
            logger.info("event relay listening", extra={"exchange": self.exchange})
            while not self._stopping.is_set():
                connection.process_data_events(time_limit=1)
        finally:
            if connection.is_open:
                connection.close()

    def run(self) -> None:
        while not self._stopping.is_set():
            try:
                self.consume_once()
            except pika.exceptions.AMQPError as e:
                logger.warning("event relay disconnected, retrying", extra={"error": str(e)})
                self._stopping.wait(self.reconnect_delay)

    def stop(self) -> None:
        self._stopping.set()
