"""API models for FlowRelay."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from .dispatch import Destination
from .executions.schema import ActivityType, ExecutionStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TestMessageRequest(_CamelModel):
    """Diagnostic message for the test-events topic."""

    __test__ = False

    message: Optional[str] = Field(None, description="Text to send; required")
    user_id: Optional[str] = Field(None, alias="userId")


class ConsumerActionRequest(BaseModel):
    action: str = Field(..., description="'start' or 'stop'")


class TestEventRequest(_CamelModel):
    """Manually trigger a workflow lifecycle event."""

    __test__ = False

    event_type: str = Field(..., alias="eventType")
    workflow_id: str = Field(..., alias="workflowId")
    user_id: str = Field(..., alias="userId")
    data: Optional[dict[str, Any]] = None


class WorkflowCreateRequest(_CamelModel):
    user_id: str = Field(..., alias="userId")
    name: str
    description: str = ""


class PublishRequest(_CamelModel):
    user_id: str = Field(..., alias="userId")
    publish: bool


class TemplateRequest(_CamelModel):
    user_id: str = Field(..., alias="userId")
    type: str = Field(..., description="Discord | Slack | Notion")
    content: str
    channels: Optional[list[Destination]] = None
    access_token: Optional[str] = Field(None, alias="accessToken")
    notion_db_id: Optional[str] = Field(None, alias="notionDbId")
    webhook_url: Optional[str] = Field(None, alias="webhookUrl")


class NotifyRequest(BaseModel):
    type: str = Field("Slack", description="Discord | Slack | Notion")
    content: Optional[str] = None


class SlackChannelsRequest(_CamelModel):
    access_token: str = Field(..., alias="accessToken")


class ExecutionStartRequest(_CamelModel):
    workflow_id: str = Field(..., alias="workflowId")
    user_id: str = Field(..., alias="userId")
    metadata: dict[str, Any] = {}


class ExecutionCompleteRequest(BaseModel):
    status: ExecutionStatus
    error: Optional[str] = None


class ActivityRequest(_CamelModel):
    user_id: str = Field(..., alias="userId")
    type: ActivityType
    message: str
    service: Optional[str] = None
    workflow_name: Optional[str] = Field(None, alias="workflowName")
    metadata: dict[str, Any] = {}


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str = "FlowRelay Backend"
    consumer: str = "stopped"
