"""Pydantic models for stored workflow records."""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Workflow(BaseModel):
    """A stored workflow.

    ``nodes`` and ``edges`` are the editor's graph document; they are stored
    and returned as-is and never interpreted here.
    """

    id: str
    user_id: str
    name: str
    description: str = ""
    publish: bool = False

    nodes: Optional[Any] = None
    edges: Optional[Any] = None

    discord_template: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    slack_template: Optional[str] = None
    slack_access_token: Optional[str] = None
    slack_channels: list[str] = []
    notion_template: Optional[str] = None
    notion_access_token: Optional[str] = None
    notion_db_id: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class WorkflowPatch(BaseModel):
    """Partial update. Only fields that were explicitly set are applied.

    ``slack_channels`` is merged into the stored selection (set union),
    every other field overwrites.
    """

    name: Optional[str] = None
    description: Optional[str] = None
    publish: Optional[bool] = None
    nodes: Optional[Any] = None
    edges: Optional[Any] = None
    discord_template: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    slack_template: Optional[str] = None
    slack_access_token: Optional[str] = None
    slack_channels: Optional[list[str]] = None
    notion_template: Optional[str] = None
    notion_access_token: Optional[str] = None
    notion_db_id: Optional[str] = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class NodesEdges(BaseModel):
    nodes: Any
    edges: Any
