import json
import logging
import time

import pika

from ..config import EVENTS_EXCHANGE, RABBITMQ_HOST
from ..errors import NotificationFailed

logger = logging.getLogger(__name__)


class RabbitMQProducer:
    """
    Handles the connection to RabbitMQ and publishing of events.
    Connecting is retried a few times in case the broker is still booting.
    """

    def __init__(self, host=RABBITMQ_HOST, exchange_name=EVENTS_EXCHANGE, exchange_type="topic",
                 attempts=3, retry_delay=1.0):
        self.host = host
        self.exchange_name = exchange_name
        self.exchange_type = exchange_type
        self.attempts = attempts
        self.retry_delay = retry_delay
        self.connection = None
        self.channel = None

    def connect(self):
        """Establishes a connection to RabbitMQ with bounded retry logic."""
        for attempt in range(1, self.attempts + 1):
            try:
                parameters = pika.ConnectionParameters(
                    host=self.host,
                    heartbeat=600,
                    blocked_connection_timeout=300,
                )
                self.connection = pika.BlockingConnection(parameters)
                self.channel = self.connection.channel()
                # Declare the exchange (durable ensures it survives restarts)
                self.channel.exchange_declare(
                    exchange=self.exchange_name,
                    exchange_type=self.exchange_type,
                    durable=True,
                )
                return
            except pika.exceptions.AMQPConnectionError:
                logger.warning("RabbitMQ not ready (attempt %s/%s)", attempt, self.attempts)
                if attempt == self.attempts:
                    raise
                time.sleep(self.retry_delay)

    def publish(self, routing_key, message):
        """
        Publishes a message to the exchange with a specific routing key.

        Args:
            routing_key (str): The topic key (e.g., 'order.confirmed').
            message (dict): The JSON-serializable payload to send.
        """
        if not self.connection or self.connection.is_closed:
            self.connect()

        self.channel.basic_publish(
            exchange=self.exchange_name,
            routing_key=routing_key,
            body=json.dumps(message),
            properties=pika.BasicProperties(
                delivery_mode=2,  # Make message persistent
                content_type="application/json",
            ),
        )
        logger.info("Sent event '%s' for order %s", routing_key, message.get("orderId"))

    def close(self):
        """Closes the connection cleanly."""
        if self.connection and not self.connection.is_closed:
            self.connection.close()


class OrderNotifier:
    """
    Hands order confirmations to whatever renders and sends the email.

    Delivery happens outside this service; a failure here never touches the
    order, it only tells the caller the confirmation did not go out.
    """

    routing_key = "order.confirmed"

    def __init__(self, producer_factory=RabbitMQProducer):
        self.producer_factory = producer_factory

    def dispatch(self, payload: dict) -> None:
        producer = self.producer_factory()
        try:
            producer.publish(routing_key=self.routing_key, message=payload)
        except Exception:
            logger.exception("Failed to publish confirmation for order %s", payload.get("orderId"))
            raise NotificationFailed()
        finally:
            producer.close()


def confirmation_payload(order) -> dict:
    """Build the message the confirmation mailer expects from a serialized order (OrderOut)."""
    data = order.model_dump(mode="json", by_alias=True)
    return {
        "orderId": data["id"],
        "items": data["items"],
        "total": data["total"],
        "subtotal": data["subtotal"],
        "discounts": data["discounts"],
        "gstAmount": data["gstAmount"],
        "address": data["address"],
        "phone": data["phone"],
        "payment": data["payment"],
    }
