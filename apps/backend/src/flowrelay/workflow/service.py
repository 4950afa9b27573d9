"""Workflow operations that report their lifecycle as events.

Each operation writes to the store first and publishes only after the write
succeeded. Store errors propagate; publishing never does.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional, Sequence

import httpx

from ..dispatch import BaseDispatcher, BatchSummary, Destination, get_dispatcher
from ..events.publisher import WorkflowEventPublisher
from .schema import Workflow, WorkflowPatch
from .store import WorkflowStore

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

TEMPLATE_TYPES = ("Discord", "Slack", "Notion")
_SECRET_SUFFIXES = ("_token", "_webhook_url")


class WorkflowService:
    def __init__(
        self,
        store: WorkflowStore,
        publisher: WorkflowEventPublisher,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.http = http_client
        # Dispatch retry budget; None keeps the RetryPolicy defaults.
        self.settings = settings

    async def create_workflow(self, user_id: str, name: str, description: str = "") -> Workflow:
        workflow = self.store.create_workflow(user_id, name, description)
        await self.publisher.publish_workflow_created(workflow.id, user_id, name, description)
        logger.info("Workflow created", extra={"workflow_id": workflow.id, "user_id": user_id})
        return workflow

    async def publish_workflow(self, workflow_id: str, user_id: str, state: bool) -> str:
        workflow = self.store.update_workflow(workflow_id, WorkflowPatch(publish=state))
        await self.publisher.publish_workflow_published(workflow_id, user_id, state)
        return "Workflow published" if workflow.publish else "Workflow unpublished"

    async def update_template(
        self,
        workflow_id: str,
        user_id: str,
        channel_type: str,
        content: str,
        channels: Optional[Sequence[Destination]] = None,
        access_token: Optional[str] = None,
        notion_db_id: Optional[str] = None,
        webhook_url: Optional[str] = None,
    ) -> str:
        """Save a node template for one destination type."""
        # Unset credentials leave the stored ones untouched.
        if channel_type == "Discord":
            fields = {"discord_template": content, "discord_webhook_url": webhook_url}
        elif channel_type == "Slack":
            fields = {"slack_template": content, "slack_access_token": access_token}
            if channels:
                fields["slack_channels"] = [channel.value for channel in channels]
        elif channel_type == "Notion":
            fields = {
                "notion_template": content,
                "notion_access_token": access_token,
                "notion_db_id": notion_db_id,
            }
        else:
            raise ValueError(f"Unknown template type: {channel_type!r}; expected one of {TEMPLATE_TYPES}")

        patch = WorkflowPatch(**{key: value for key, value in fields.items() if value is not None})
        self.store.update_workflow(workflow_id, patch)
        await self.publisher.publish_workflow_template_updated(workflow_id, user_id, channel_type, content)
        return f"{channel_type} template saved"

    async def update_workflow(self, workflow_id: str, user_id: str, patch: WorkflowPatch) -> Workflow:
        workflow = self.store.update_workflow(workflow_id, patch)
        await self.publisher.publish_workflow_updated(workflow_id, user_id, _redact(patch.changes()))
        return workflow

    async def delete_workflow(self, workflow_id: str, user_id: str) -> bool:
        deleted = self.store.delete_workflow(workflow_id)
        if deleted:
            await self.publisher.publish_workflow_deleted(workflow_id, user_id)
        return deleted

    def _dispatcher(self, channel_type: str) -> BaseDispatcher:
        if self.http is None:
            raise RuntimeError("WorkflowService was built without an HTTP client")
        return get_dispatcher(channel_type, self.http, self.settings)

    async def notify_channels(
        self,
        workflow_id: str,
        content: Optional[str] = None,
        channel_type: str = "Slack",
    ) -> BatchSummary:
        """Send to the destinations saved with the workflow's ``channel_type`` template.

        ``content`` defaults to the stored template of that type.
        """
        workflow = self.store.get_workflow(workflow_id)
        if channel_type == "Slack":
            credential = workflow.slack_access_token
            targets = list(workflow.slack_channels)
            template = workflow.slack_template
        elif channel_type == "Discord":
            credential = None
            targets = [workflow.discord_webhook_url] if workflow.discord_webhook_url else []
            template = workflow.discord_template
        elif channel_type == "Notion":
            credential = workflow.notion_access_token
            targets = [workflow.notion_db_id] if workflow.notion_db_id else []
            template = workflow.notion_template
        else:
            raise ValueError(f"Unknown template type: {channel_type!r}; expected one of {TEMPLATE_TYPES}")

        dispatcher = self._dispatcher(channel_type)
        summary = await dispatcher.send_to_destinations(
            credential or "",
            [Destination(label=t, value=t) for t in targets],
            content if content is not None else template or "",
        )
        logger.info(
            "Workflow notification sent",
            extra={"workflow_id": workflow_id, "channel_type": channel_type, "result": summary.message},
        )
        return summary

    async def list_slack_channels(self, access_token: str) -> list[Destination]:
        """Channels the Slack bot can post to; [] once rate-limit retries are spent."""
        return await self._dispatcher("Slack").list_channels_or_empty(access_token)


def _redact(changes: dict) -> dict:
    """Keep credentials out of event payloads."""
    return {
        key: ("***" if key.endswith(_SECRET_SUFFIXES) and value else value)
        for key, value in changes.items()
    }
