"""Discord webhook dispatcher.

A destination is a webhook URL; Discord webhooks need no separate credential,
so ``credential`` is ignored.
"""

from __future__ import annotations

import httpx

from ..errors import RateLimited
from .base import BaseDispatcher
from .registry import register


@register
class DiscordDispatcher(BaseDispatcher):
    service_name = "discord"

    async def send_one(self, credential: str, destination: str, content: str) -> None:
        resp = await self.http.post(destination, json={"content": content})
        if resp.status_code == 429:
            raise RateLimited("Discord rate limit hit", self._retry_after(resp))
        self._raise_for_status(resp)

    def _retry_after(self, resp: httpx.Response) -> float | None:
        # Discord reports the delay in the JSON body, seconds as a float.
        try:
            value = resp.json().get("retry_after")
        except ValueError:
            value = None
        if value is not None:
            return float(value)
        return self._retry_after_header(resp)
