"""Workflow event consumer.

STOPPED -> STARTING -> RUNNING -> STOPPED, with DEGRADED standing in for
RUNNING when the broker cannot be reached: the service stays up and ready
and logs a heartbeat instead of consuming.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from pydantic import ValidationError

from ..errors import UnknownEventType
from .broker import WORKFLOW_EVENTS, BrokerClient, BrokerMessage
from .schema import (
    EventType,
    WorkflowCreated,
    WorkflowDeleted,
    WorkflowEvent,
    WorkflowPublished,
    WorkflowTemplateUpdated,
    WorkflowUpdated,
    decode_event,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[WorkflowEvent], Union[Awaitable[Any], Any]]

_TEMPLATE_PREVIEW_CHARS = 50


class ConsumerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"


class WorkflowEventConsumer:
    """Consumes workflow-events and dispatches each event to its handlers."""

    def __init__(
        self,
        broker: BrokerClient | None,
        topic: str = WORKFLOW_EVENTS,
        heartbeat_interval: float = 5.0,
    ) -> None:
        self.broker = broker
        self.topic = topic
        self.heartbeat_interval = heartbeat_interval
        self.state = ConsumerState.STOPPED
        self.processed_count = 0
        self.failed_count = 0
        self._task: asyncio.Task | None = None
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)
        self._register_default_handlers()

    @property
    def is_ready(self) -> bool:
        return self.state in (ConsumerState.RUNNING, ConsumerState.DEGRADED)

    def register_handler(self, event_type: str | EventType, handler: EventHandler) -> None:
        key = event_type.value if isinstance(event_type, EventType) else event_type
        self._handlers[key].append(handler)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.state is not ConsumerState.STOPPED:
            logger.info("Workflow consumer already running", extra={"state": self.state.value})
            return

        self.state = ConsumerState.STARTING
        logger.info("Starting workflow event consumer", extra={"topic": self.topic})

        if self.broker is None:
            self._enter_degraded("broker disabled")
            return

        try:
            await self.broker.connect_consumer()
            await self.broker.subscribe(self.topic)
        except Exception as exc:
            self._enter_degraded(str(exc))
            return

        self.state = ConsumerState.RUNNING
        self._task = asyncio.create_task(self._consume(), name="workflow-event-consumer")
        logger.info("Workflow event consumer listening", extra={"topic": self.topic})

    async def stop(self) -> None:
        logger.info("Stopping workflow event consumer", extra={"state": self.state.value})
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.warning("Consumer task ended with an error", exc_info=True)

        if self.broker is not None:
            try:
                await self.broker.disconnect_consumer()
            except Exception:
                logger.warning("Error disconnecting consumer", exc_info=True)
        self.state = ConsumerState.STOPPED

    def _enter_degraded(self, reason: str) -> None:
        logger.warning(
            "Broker unavailable, falling back to heartbeat mode",
            extra={"reason": reason},
        )
        self.state = ConsumerState.DEGRADED
        self._task = asyncio.create_task(self._heartbeat(), name="workflow-event-heartbeat")

    async def _heartbeat(self) -> None:
        while self.state is ConsumerState.DEGRADED:
            logger.info("Workflow consumer is active and ready", extra={"mode": "degraded"})
            await asyncio.sleep(self.heartbeat_interval)

    async def _consume(self) -> None:
        try:
            await self.broker.run(self._on_message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Workflow consume loop terminated")
        else:
            logger.warning("Workflow consume loop ended", extra={"topic": self.topic})
        # Nothing is consuming any more; a later start() reconnects.
        self.state = ConsumerState.STOPPED
        await self.broker.disconnect_consumer()

    async def _on_message(self, message: BrokerMessage) -> None:
        await self.handle_message(
            message.value,
            context={"topic": message.topic, "partition": message.partition, "offset": message.offset},
        )

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def handle_message(self, raw: bytes | str, context: dict[str, Any] | None = None) -> bool:
        """Decode and process one message. Never raises; returns whether it was processed."""
        context = context or {}
        try:
            event = decode_event(raw)
        except UnknownEventType as exc:
            logger.info("Ignoring unknown workflow event type", extra={**context, "event_type": exc.event_type})
            return False
        except (ValueError, ValidationError) as exc:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            self.failed_count += 1
            logger.error("Malformed workflow event", extra={**context, "error": str(exc)})
            return False

        logger.info(
            "Received workflow event",
            extra={**context, "event_type": event.type, "workflow_id": event.workflow_id},
        )

        ok = True
        for handler in self._handlers.get(event.type, []):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                ok = False
                logger.exception(
                    "Workflow event handler failed",
                    extra={"event_type": event.type, "workflow_id": event.workflow_id},
                )

        if ok:
            self.processed_count += 1
        else:
            self.failed_count += 1
        return ok

    # ------------------------------------------------------------------
    # Default accounting hooks
    # ------------------------------------------------------------------

    def _register_default_handlers(self) -> None:
        self.register_handler(EventType.CREATED, self._on_created)
        self.register_handler(EventType.PUBLISHED, self._on_published)
        self.register_handler(EventType.TEMPLATE_UPDATED, self._on_template_updated)
        self.register_handler(EventType.UPDATED, self._on_updated)
        self.register_handler(EventType.DELETED, self._on_deleted)

    @staticmethod
    def _on_created(event: WorkflowCreated) -> None:
        logger.info(
            "Workflow created",
            extra={
                "workflow_id": event.workflow_id,
                "user_id": event.user_id,
                "workflow_name": event.payload.name,
                "description": event.payload.description,
            },
        )

    @staticmethod
    def _on_published(event: WorkflowPublished) -> None:
        logger.info(
            "Workflow published",
            extra={
                "workflow_id": event.workflow_id,
                "user_id": event.user_id,
                "published": event.payload.published,
            },
        )

    @staticmethod
    def _on_template_updated(event: WorkflowTemplateUpdated) -> None:
        template = event.payload.template
        if len(template) > _TEMPLATE_PREVIEW_CHARS:
            template = template[:_TEMPLATE_PREVIEW_CHARS] + "..."
        logger.info(
            "Template updated",
            extra={
                "workflow_id": event.workflow_id,
                "user_id": event.user_id,
                "channel_type": event.payload.channel_type,
                "template": template,
            },
        )

    @staticmethod
    def _on_updated(event: WorkflowUpdated) -> None:
        logger.info(
            "Workflow updated",
            extra={
                "workflow_id": event.workflow_id,
                "user_id": event.user_id,
                "fields": sorted(event.payload.changes),
            },
        )

    @staticmethod
    def _on_deleted(event: WorkflowDeleted) -> None:
        logger.info("Workflow deleted", extra={"workflow_id": event.workflow_id, "user_id": event.user_id})
