"""
Domain event emitters.

``payment.success`` / ``payment.failed`` go to a durable RabbitMQ topic
exchange when a broker is configured; otherwise they are only logged.
Consumers must be idempotent on ``paymentId`` because delivery is
at-least-once.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import aio_pika
import structlog

from paybroker.core.exceptions import TransportError

logger = structlog.get_logger(__name__)


class EventEmitter(ABC):
    """Publish interface consumed by the orchestrator and the outbox worker."""

    @abstractmethod
    async def publish(
        self, topic: str, payload: Dict[str, Any], message_id: Optional[str] = None
    ) -> None:
        """
        Publish one event.

        Raises:
            TransportError: If the event could not be handed to the bus
        """

    async def close(self) -> None:
        return None


class LoggingEventEmitter(EventEmitter):
    """Emitter used when no broker is configured."""

    async def publish(
        self, topic: str, payload: Dict[str, Any], message_id: Optional[str] = None
    ) -> None:
        try:
            body = json.dumps(payload, default=str)
        except (TypeError, ValueError) as e:
            raise TransportError(f"Event payload is not serializable: {e}", topic=topic)
        logger.info("event_emitted", topic=topic, message_id=message_id, payload=body)


class RabbitMQEventEmitter(EventEmitter):
    """
    Publishes to a durable topic exchange with persistent delivery.

    The connection is opened lazily and shared; ``connect_robust`` handles
    reconnects after broker restarts.
    """

    def __init__(self, url: str, exchange_name: str = "payments"):
        self.url = url
        self.exchange_name = exchange_name
        self._connection: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._exchange: Optional[aio_pika.abc.AbstractExchange] = None
        self._lock = asyncio.Lock()

    async def _get_exchange(self) -> aio_pika.abc.AbstractExchange:
        async with self._lock:
            if self._exchange is None:
                self._connection = await aio_pika.connect_robust(self.url)
                self._channel = await self._connection.channel(publisher_confirms=True)
                self._exchange = await self._channel.declare_exchange(
                    self.exchange_name, aio_pika.ExchangeType.TOPIC, durable=True
                )
                logger.info("rabbitmq_exchange_declared", exchange=self.exchange_name)
            return self._exchange

    async def publish(
        self, topic: str, payload: Dict[str, Any], message_id: Optional[str] = None
    ) -> None:
        try:
            exchange = await self._get_exchange()
            message = aio_pika.Message(
                body=json.dumps(payload, default=str).encode("utf-8"),
                content_type="application/json",
                delivery_mode=aio_pika.DeliveryMode.PERSISTENT,
                message_id=message_id,
                type=topic,
            )
            await exchange.publish(message, routing_key=topic)
        except Exception as e:
            logger.error("rabbitmq_publish_failed", topic=topic, message_id=message_id, error=str(e))
            raise TransportError(f"Failed to publish {topic}: {e}", topic=topic)

        logger.info("event_published", topic=topic, message_id=message_id)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
        self._connection = None
        self._channel = None
        self._exchange = None


def build_event_emitter(rabbitmq_url: Optional[str], exchange_name: str = "payments") -> EventEmitter:
    """Pick the broker-backed emitter when a URL is configured."""
    if rabbitmq_url:
        return RabbitMQEventEmitter(rabbitmq_url, exchange_name)
    return LoggingEventEmitter()
