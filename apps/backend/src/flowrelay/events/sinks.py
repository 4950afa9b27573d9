"""Event sinks: where a published workflow event ends up.

Sinks report failure through ``SinkResult`` instead of raising, so the
publisher can fall back without exception-driven control flow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .broker import WORKFLOW_EVENTS, BrokerClient
from .schema import WorkflowEvent

AUDIT_LOGGER = "flowrelay.events.audit"


@dataclass(frozen=True)
class SinkResult:
    ok: bool
    error: Optional[str] = None


class EventSink(Protocol):
    name: str

    async def emit(self, event: WorkflowEvent) -> SinkResult: ...


class BrokerSink:
    """Deliver events to the workflow-events topic, keyed by workflow id."""

    name = "broker"

    def __init__(self, broker: BrokerClient, topic: str = WORKFLOW_EVENTS) -> None:
        self.broker = broker
        self.topic = topic

    async def emit(self, event: WorkflowEvent) -> SinkResult:
        try:
            await self.broker.connect()
            await self.broker.send(topic=self.topic, key=event.workflow_id, value=event.encode())
        except Exception as exc:
            return SinkResult(ok=False, error=str(exc) or type(exc).__name__)
        return SinkResult(ok=True)


class LocalLogSink:
    """Write events to the audit logger. Used alone when no broker is configured."""

    name = "local_log"

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(AUDIT_LOGGER)

    async def emit(self, event: WorkflowEvent) -> SinkResult:
        self.logger.info(
            "Workflow event",
            extra={
                "event_type": event.type,
                "workflow_id": event.workflow_id,
                "user_id": event.user_id,
                "event_timestamp": event.timestamp.isoformat(),
                "data": event.payload.model_dump(by_alias=True),
            },
        )
        return SinkResult(ok=True)
