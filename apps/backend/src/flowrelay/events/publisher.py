"""Workflow event publisher.

``publish`` never raises: a broker outage must not fail the store operation
that triggered the event. Every event is written to the local audit log
first, so events that miss the broker remain observable.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from ..errors import BrokerUnavailable, UnknownEventType
from .broker import TEST_EVENTS, BrokerClient
from .schema import (
    CreatedPayload,
    DeletedPayload,
    EventType,
    PublishedPayload,
    TemplateUpdatedPayload,
    TestEventMessage,
    UpdatedPayload,
    WorkflowEvent,
    build_event,
)
from .sinks import EventSink, LocalLogSink

logger = logging.getLogger(__name__)


class WorkflowEventPublisher:
    """Turns lifecycle changes into events and hands them to a sink."""

    def __init__(
        self,
        sink: EventSink | None = None,
        audit_sink: EventSink | None = None,
        broker: BrokerClient | None = None,
    ) -> None:
        # sink=None means degraded-by-configuration: audit log only.
        self.sink = sink
        self.audit_sink = audit_sink or LocalLogSink()
        self.broker = broker

    async def publish(
        self,
        event_type: str | EventType,
        workflow_id: str,
        user_id: str,
        payload: BaseModel | dict[str, Any] | None = None,
    ) -> Optional[WorkflowEvent]:
        """Build and emit one event. Returns it, or None if it could not be built."""
        try:
            event = build_event(event_type, workflow_id, user_id, payload)
        except (UnknownEventType, ValidationError) as exc:
            logger.error(
                "Rejected workflow event",
                extra={"event_type": str(event_type), "workflow_id": workflow_id, "error": str(exc)},
            )
            return None

        audit = await self.audit_sink.emit(event)
        if not audit.ok:
            logger.warning("Audit sink failed", extra={"error": audit.error})

        if self.sink is None:
            return event

        result = await self.sink.emit(event)
        if result.ok:
            logger.debug(
                "Event published",
                extra={"event_type": event.type, "workflow_id": event.workflow_id, "sink": self.sink.name},
            )
        else:
            logger.warning(
                "Broker unavailable, event logged only",
                extra={
                    "event_type": event.type,
                    "workflow_id": event.workflow_id,
                    "sink": self.sink.name,
                    "error": result.error,
                },
            )
        return event

    # ------------------------------------------------------------------
    # Typed helpers
    # ------------------------------------------------------------------

    async def publish_workflow_created(
        self, workflow_id: str, user_id: str, name: str, description: str
    ) -> Optional[WorkflowEvent]:
        return await self.publish(
            EventType.CREATED, workflow_id, user_id, CreatedPayload(name=name, description=description)
        )

    async def publish_workflow_updated(
        self, workflow_id: str, user_id: str, changes: dict[str, Any]
    ) -> Optional[WorkflowEvent]:
        return await self.publish(EventType.UPDATED, workflow_id, user_id, UpdatedPayload(changes=changes))

    async def publish_workflow_published(
        self, workflow_id: str, user_id: str, published: bool
    ) -> Optional[WorkflowEvent]:
        return await self.publish(
            EventType.PUBLISHED, workflow_id, user_id, PublishedPayload(published=published)
        )

    async def publish_workflow_template_updated(
        self, workflow_id: str, user_id: str, channel_type: str, template: str
    ) -> Optional[WorkflowEvent]:
        return await self.publish(
            EventType.TEMPLATE_UPDATED,
            workflow_id,
            user_id,
            TemplateUpdatedPayload(channel_type=channel_type, template=template),
        )

    async def publish_workflow_deleted(self, workflow_id: str, user_id: str) -> Optional[WorkflowEvent]:
        return await self.publish(EventType.DELETED, workflow_id, user_id, DeletedPayload())

    # ------------------------------------------------------------------
    # Diagnostics
    # ------------------------------------------------------------------

    async def send_test_message(self, message: str, user_id: str | None = None) -> TestEventMessage:
        """Send a probe message to the test-events topic. Raises BrokerUnavailable."""
        if self.broker is None:
            raise BrokerUnavailable("Broker is disabled")
        test_message = TestEventMessage(message=message, user_id=user_id)
        await self.broker.connect()
        await self.broker.send(TEST_EVENTS, key=user_id or "anonymous", value=test_message.encode())
        logger.info("Test message sent", extra={"user_id": user_id or "anonymous"})
        return test_message
