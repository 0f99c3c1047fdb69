"""Publishing notifications to a RabbitMQ queue."""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from typing import Any, Callable

import pika

from delaynotify.config import ConsumerConfig, RabbitConfig
from delaynotify.retry import RetryStrategy

logger = logging.getLogger(__name__)

CONNECTION_NAME = "delayed-notifier"
CONTENT_TYPE = "application/json"
CONNECT_TIMEOUT = timedelta(seconds=10)
HEARTBEAT = timedelta(seconds=30)


def build_amqp_url(config: RabbitConfig) -> str:
    """Return the AMQP URL for the configured broker."""
    return f"amqp://{config.user}:{config.password}@{config.host_name}:{config.port}{config.vhost}"


class Publisher:
    """Publishes message bodies straight into one durable queue."""

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        queue: str,
        strategy: RetryStrategy | None = None,
    ) -> None:
        self.queue = queue
        self._factory = connection_factory
        self._strategy = strategy or RetryStrategy()
        self._connection: Any = None
        self._channel: Any = None
        self._lock = threading.Lock()

    def __enter__(self) -> Publisher:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _open_channel(self) -> Any:
        if self._channel is not None and self._channel.is_open:
            return self._channel
        if self._connection is None or not self._connection.is_open:
            self._connection = self._factory()
        channel = self._connection.channel()
        channel.queue_declare(queue=self.queue, durable=True, auto_delete=False)
        self._channel = channel
        return channel

    def _reset(self) -> None:
        connection, self._connection, self._channel = self._connection, None, None
        if connection is not None and connection.is_open:
            try:
                connection.close()
            except Exception:
                logger.debug("error while closing RabbitMQ connection", exc_info=True)

    def _publish_once(self, body: bytes) -> None:
        channel = self._open_channel()
        try:
            channel.basic_publish(
                exchange="",
                routing_key=self.queue,
                body=body,
                properties=pika.BasicProperties(content_type=CONTENT_TYPE),
            )
        except Exception:
            self._reset()
            raise

    def publish(self, body: bytes) -> None:
        """Publish ``body`` to the queue, reconnecting and retrying on failure."""
        with self._lock:
            self._strategy.call(self._publish_once, body)

    def close(self) -> None:
        with self._lock:
            self._reset()


def connect_rabbit(config: RabbitConfig, consumer_config: ConsumerConfig) -> Publisher:
    """Connect to RabbitMQ, declare the queue and return a publisher for it."""
    strategy = RetryStrategy(
        attempts=consumer_config.retry_count,
        delay=consumer_config.retry_delay,
        backoff=float(consumer_config.backoff),
    )
    parameters = pika.URLParameters(build_amqp_url(config))
    parameters.heartbeat = int(HEARTBEAT.total_seconds())
    parameters.socket_timeout = CONNECT_TIMEOUT.total_seconds()
    parameters.client_properties = {"connection_name": CONNECTION_NAME}

    publisher = Publisher(lambda: pika.BlockingConnection(parameters), config.queue, strategy)
    try:
        strategy.call(publisher._open_channel)
    except Exception:
        publisher.close()
        raise
    logger.info("RabbitMQ started, queue %s", config.queue)
    return publisher