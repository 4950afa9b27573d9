"""Thin Kafka transport built on aiokafka.

The client is constructed explicitly by a composition root (``flowrelay.main``
or ``flowrelay.worker``) and shared by the publisher and the consumer. Producer
and consumer connect lazily, exactly once, behind per-handle locks.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer

from ..errors import BrokerUnavailable

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

TEST_EVENTS = "test-events"
WORKFLOW_EVENTS = "workflow-events"


@dataclass(frozen=True)
class BrokerMessage:
    """A consumed record, detached from the aiokafka type."""

    topic: str
    partition: int
    offset: int
    key: Optional[str]
    value: bytes


MessageHandler = Callable[[BrokerMessage], Awaitable[Any]]


class BrokerClient:
    """connect / disconnect / send / subscribe / run over one producer and one consumer."""

    def __init__(
        self,
        settings: Settings,
        producer_factory: Callable[[], Any] | None = None,
        consumer_factory: Callable[[], Any] | None = None,
    ) -> None:
        self._settings = settings
        self._producer_factory = producer_factory or self._default_producer
        self._consumer_factory = consumer_factory or self._default_consumer
        self._producer: Any = None
        self._consumer: Any = None
        self._producer_lock = asyncio.Lock()
        self._consumer_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def _default_producer(self) -> AIOKafkaProducer:
        # Idempotent writes; aiokafka keeps one in-flight batch per partition.
        return AIOKafkaProducer(
            bootstrap_servers=self._settings.broker_list(),
            client_id=self._settings.kafka_client_id,
            enable_idempotence=True,
            acks="all",
        )

    def _default_consumer(self) -> AIOKafkaConsumer:
        return AIOKafkaConsumer(
            bootstrap_servers=self._settings.broker_list(),
            client_id=self._settings.kafka_client_id,
            group_id=self._settings.kafka_group_id,
            session_timeout_ms=self._settings.kafka_session_timeout_ms,
            heartbeat_interval_ms=self._settings.kafka_heartbeat_interval_ms,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self._producer is not None

    @property
    def is_consumer_connected(self) -> bool:
        return self._consumer is not None

    async def connect(self) -> None:
        """Start the producer. Safe to call repeatedly and concurrently."""
        if self._producer is not None:
            return
        async with self._producer_lock:
            if self._producer is not None:
                return
            producer = self._producer_factory()
            try:
                await producer.start()
            except Exception as exc:
                await _stop_quietly(producer, "producer")
                raise BrokerUnavailable(f"Failed to connect Kafka producer: {exc}") from exc
            self._producer = producer
            logger.info("Kafka producer connected", extra={"brokers": self._settings.kafka_brokers})

    async def connect_consumer(self) -> None:
        """Start the group consumer. Safe to call repeatedly and concurrently."""
        if self._consumer is not None:
            return
        async with self._consumer_lock:
            if self._consumer is not None:
                return
            consumer = self._consumer_factory()
            try:
                await consumer.start()
            except Exception as exc:
                await _stop_quietly(consumer, "consumer")
                raise BrokerUnavailable(f"Failed to connect Kafka consumer: {exc}") from exc
            self._consumer = consumer
            logger.info(
                "Kafka consumer connected",
                extra={"group_id": self._settings.kafka_group_id},
            )

    async def disconnect(self) -> None:
        """Stop producer and consumer. Errors are logged, never raised."""
        await self.disconnect_producer()
        await self.disconnect_consumer()

    async def disconnect_producer(self) -> None:
        async with self._producer_lock:
            producer, self._producer = self._producer, None
        if producer is not None:
            if await _stop_quietly(producer, "producer"):
                logger.info("Kafka producer disconnected")

    async def disconnect_consumer(self) -> None:
        async with self._consumer_lock:
            consumer, self._consumer = self._consumer, None
        if consumer is not None:
            if await _stop_quietly(consumer, "consumer"):
                logger.info("Kafka consumer disconnected")

    # ------------------------------------------------------------------
    # Produce / consume
    # ------------------------------------------------------------------

    async def send(self, topic: str, key: str, value: bytes) -> None:
        """Send one record and wait for the broker acknowledgement."""
        await self.connect()
        try:
            await self._producer.send_and_wait(topic, value=value, key=key.encode("utf-8"))
        except Exception as exc:
            raise BrokerUnavailable(f"Failed to send to {topic}: {exc}") from exc

    async def subscribe(self, topic: str) -> None:
        await self.connect_consumer()
        self._consumer.subscribe([topic])
        logger.info("Subscribed to topic", extra={"topic": topic})

    async def run(self, handler: MessageHandler) -> None:
        """Feed consumed records to ``handler`` one at a time until stopped."""
        if self._consumer is None:
            raise BrokerUnavailable("Consumer is not connected")
        async for record in self._consumer:
            key = record.key.decode("utf-8", errors="replace") if record.key else None
            await handler(
                BrokerMessage(
                    topic=record.topic,
                    partition=record.partition,
                    offset=record.offset,
                    key=key,
                    value=record.value or b"",
                )
            )


async def _stop_quietly(handle: Any, role: str) -> bool:
    try:
        await handle.stop()
        return True
    except Exception:
        logger.warning("Failed to stop Kafka %s", role, exc_info=True)
        return False
