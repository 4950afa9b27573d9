"""Workflow lifecycle events.

Each event type carries its own payload model. The wire shape is

    {"type": ..., "workflowId": ..., "userId": ..., "timestamp": ..., "data": {...}}

and decoding goes through ``EVENT_TYPES``, a type -> model dispatch table.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from ..errors import UnknownEventType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    CREATED = "workflow.created"
    PUBLISHED = "workflow.published"
    TEMPLATE_UPDATED = "workflow.template_updated"
    UPDATED = "workflow.updated"
    DELETED = "workflow.deleted"


# ----------------------------------------------------------------------
# Payloads
# ----------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)


class CreatedPayload(_Payload):
    name: str
    description: str = ""


class PublishedPayload(_Payload):
    published: bool


class TemplateUpdatedPayload(_Payload):
    channel_type: str = Field(alias="channelType")  # "Discord" | "Slack" | "Notion"
    template: str


class UpdatedPayload(_Payload):
    changes: dict[str, Any] = {}


class DeletedPayload(_Payload):
    pass


# ----------------------------------------------------------------------
# Events
# ----------------------------------------------------------------------


class _WorkflowEventBase(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    workflow_id: str = Field(alias="workflowId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    timestamp: datetime = Field(default_factory=_utcnow)

    def encode(self) -> bytes:
        """Serialize to the UTF-8 JSON wire shape."""
        return self.model_dump_json(by_alias=True).encode("utf-8")


class WorkflowCreated(_WorkflowEventBase):
    type: Literal["workflow.created"] = "workflow.created"
    payload: CreatedPayload = Field(alias="data")


class WorkflowPublished(_WorkflowEventBase):
    type: Literal["workflow.published"] = "workflow.published"
    payload: PublishedPayload = Field(alias="data")


class WorkflowTemplateUpdated(_WorkflowEventBase):
    type: Literal["workflow.template_updated"] = "workflow.template_updated"
    payload: TemplateUpdatedPayload = Field(alias="data")


class WorkflowUpdated(_WorkflowEventBase):
    type: Literal["workflow.updated"] = "workflow.updated"
    payload: UpdatedPayload = Field(alias="data", default_factory=UpdatedPayload)


class WorkflowDeleted(_WorkflowEventBase):
    type: Literal["workflow.deleted"] = "workflow.deleted"
    payload: DeletedPayload = Field(alias="data", default_factory=DeletedPayload)


WorkflowEvent = Union[
    WorkflowCreated,
    WorkflowPublished,
    WorkflowTemplateUpdated,
    WorkflowUpdated,
    WorkflowDeleted,
]

EVENT_TYPES: dict[str, type[_WorkflowEventBase]] = {
    EventType.CREATED.value: WorkflowCreated,
    EventType.PUBLISHED.value: WorkflowPublished,
    EventType.TEMPLATE_UPDATED.value: WorkflowTemplateUpdated,
    EventType.UPDATED.value: WorkflowUpdated,
    EventType.DELETED.value: WorkflowDeleted,
}


def build_event(
    event_type: str | EventType,
    workflow_id: str,
    user_id: str,
    payload: BaseModel | dict[str, Any] | None = None,
) -> WorkflowEvent:
    """Construct a typed event. Raises UnknownEventType or a validation error."""
    key = event_type.value if isinstance(event_type, EventType) else event_type
    cls = EVENT_TYPES.get(key)
    if cls is None:
        raise UnknownEventType(key)

    fields: dict[str, Any] = {"workflow_id": workflow_id, "user_id": user_id}
    if payload is not None:
        fields["payload"] = payload
    return cls.model_validate(fields)  # type: ignore[return-value]


def decode_event(raw: bytes | str) -> WorkflowEvent:
    """Decode a wire message into its typed event.

    Raises ValueError on malformed JSON or a non-object document,
    UnknownEventType for types not in the dispatch table and a pydantic
    ValidationError when the payload does not match its type.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("Workflow event must be a JSON object")

    event_type = data.get("type")
    cls = EVENT_TYPES.get(event_type) if isinstance(event_type, str) else None
    if cls is None:
        raise UnknownEventType(str(event_type))
    if "data" not in data or data["data"] is None:
        data = {k: v for k, v in data.items() if k != "data"}
    return cls.model_validate(data)  # type: ignore[return-value]


class TestEventMessage(BaseModel):
    """Diagnostic message sent to the test-events topic."""

    __test__ = False  # not a pytest test class

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: Literal["test.message"] = "test.message"
    message: str
    timestamp: datetime = Field(default_factory=_utcnow)
    user_id: Optional[str] = Field(default=None, alias="userId")

    def encode(self) -> bytes:
        return self.model_dump_json(by_alias=True, exclude_none=True).encode("utf-8")
