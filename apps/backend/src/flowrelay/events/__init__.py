"""Workflow lifecycle events: schema, broker transport, publisher and consumer."""

from .broker import TEST_EVENTS, WORKFLOW_EVENTS, BrokerClient, BrokerMessage
from .consumer import ConsumerState, WorkflowEventConsumer
from .publisher import WorkflowEventPublisher
from .schema import EventType, WorkflowEvent, build_event, decode_event
from .sinks import BrokerSink, EventSink, LocalLogSink, SinkResult

__all__ = [
    "TEST_EVENTS",
    "WORKFLOW_EVENTS",
    "BrokerClient",
    "BrokerMessage",
    "BrokerSink",
    "ConsumerState",
    "EventSink",
    "EventType",
    "LocalLogSink",
    "SinkResult",
    "WorkflowEvent",
    "WorkflowEventConsumer",
    "WorkflowEventPublisher",
    "build_event",
    "decode_event",
]
