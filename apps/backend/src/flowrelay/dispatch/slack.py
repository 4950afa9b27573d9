"""Slack Web API dispatcher."""

from __future__ import annotations

import logging

import httpx

from ..errors import DispatchError, RateLimited, RetriesExhausted
from .base import BaseDispatcher, Destination
from .registry import register

logger = logging.getLogger(__name__)

_SLACK_API = "https://slack.com/api"

# Slack has used both spellings for the throttling error code.
_RATE_LIMIT_CODES = {"ratelimited", "rate_limited"}


@register
class SlackDispatcher(BaseDispatcher):
    """Posts to Slack channels with a bot token.

    Scopes needed: channels:read, groups:read, chat:write
    """

    service_name = "slack"

    @staticmethod
    def _headers(token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json;charset=utf-8",
        }

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def send_one(self, credential: str, destination: str, content: str) -> None:
        """chat.postMessage to one channel id."""
        resp = await self.http.post(
            f"{_SLACK_API}/chat.postMessage",
            headers=self._headers(credential),
            json={"channel": destination, "text": content},
        )
        data = self._check(resp)
        logger.debug("Slack message posted", extra={"channel": destination, "ts": data.get("ts")})

    async def list_channels(self, token: str) -> list[Destination]:
        """Channels the bot is a member of, as selectable destinations."""

        async def _list() -> list[Destination]:
            resp = await self.http.get(
                f"{_SLACK_API}/conversations.list",
                headers=self._headers(token),
                params={"types": "public_channel,private_channel", "limit": 200},
            )
            data = self._check(resp)
            return [
                Destination(label=ch["name"], value=ch["id"])
                for ch in data.get("channels") or []
                if ch.get("is_member")
            ]

        return await self.retry.run(_list, description="slack conversations.list")

    async def list_channels_or_empty(self, token: str) -> list[Destination]:
        """Read-path variant of ``list_channels``: degrades to [] once retries are spent."""
        try:
            return await self.list_channels(token)
        except RetriesExhausted:
            logger.warning("Slack channel listing gave up after rate limits", exc_info=True)
            return []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check(self, resp: httpx.Response) -> dict:
        """Return the JSON body of a successful call or raise the mapped error."""
        self._raise_for_status(resp)
        data = resp.json()
        if not data.get("ok"):
            error_code = data.get("error", "unknown")
            if error_code in _RATE_LIMIT_CODES:
                retry_after = (data.get("response_metadata") or {}).get("retry_after")
                raise RateLimited(
                    "Slack rate limit hit",
                    float(retry_after) if retry_after is not None else self._retry_after_header(resp),
                )
            self._map_error(error_code)
        return data

    def _map_error(self, error_code: str) -> None:
        mapping: dict[str, tuple[str, str]] = {
            "not_in_channel": ("Bot is not in the channel", "permission_denied"),
            "channel_not_found": ("Channel not found", "not_found"),
            "missing_scope": ("Bot missing required Slack scope", "permission_denied"),
            "invalid_auth": ("Slack token is invalid", "permission_denied"),
            "not_authed": ("Slack token missing", "permission_denied"),
        }
        msg, etype = mapping.get(error_code, (f"Slack API error: {error_code}", "connector_error"))
        raise DispatchError(msg, etype)
