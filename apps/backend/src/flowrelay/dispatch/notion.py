"""Notion dispatcher: each message becomes a page in a database."""

from __future__ import annotations

from .base import BaseDispatcher
from .registry import register

_NOTION_API = "https://api.notion.com/v1"
_NOTION_VERSION = "2022-06-28"


@register
class NotionDispatcher(BaseDispatcher):
    """Destination value is a database id; the credential is the integration token.

    The database is expected to have a title property called ``Name``.
    """

    service_name = "notion"

    async def send_one(self, credential: str, destination: str, content: str) -> None:
        resp = await self.http.post(
            f"{_NOTION_API}/pages",
            headers={
                "Authorization": f"Bearer {credential}",
                "Notion-Version": _NOTION_VERSION,
                "Content-Type": "application/json",
            },
            json={
                "parent": {"database_id": destination},
                "properties": {"Name": {"title": [{"text": {"content": content}}]}},
            },
        )
        self._raise_for_status(resp)
