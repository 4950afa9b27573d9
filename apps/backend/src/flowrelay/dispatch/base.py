"""Base interface for all destination dispatchers."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional, Sequence

import httpx
from pydantic import BaseModel

from ..errors import DispatchError, RateLimited
from .retry import RetryPolicy

if TYPE_CHECKING:
    from ..config import Settings

logger = logging.getLogger(__name__)

CONTENT_EMPTY = "Content is empty"
CHANNEL_NOT_SELECTED = "Channel not selected"
SEND_FAILED = "Message could not be sent"
SEND_OK = "Success"


class Destination(BaseModel):
    """A selectable delivery target; ``value`` is the service's opaque id."""

    label: str = ""
    value: str


class DispatchResult(BaseModel):
    destination: str
    ok: bool
    error: Optional[str] = None


class BatchSummary(BaseModel):
    message: str


class BaseDispatcher(ABC):
    """Abstract base for destination clients.

    Subclasses implement ``send_one``; fan-out, retry and result collection
    live here. ``send_one`` signals throttling by raising ``RateLimited``.
    """

    service_name: str = ""

    def __init__(self, http_client: httpx.AsyncClient, retry_policy: RetryPolicy | None = None) -> None:
        self.http = http_client
        self.retry = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient) -> BaseDispatcher:
        """Construct this dispatcher with the retry budget from Settings."""
        policy = RetryPolicy(
            max_attempts=settings.dispatch_max_attempts,
            default_delay=settings.dispatch_default_retry_after,
        )
        return cls(http_client, policy)

    @abstractmethod
    async def send_one(self, credential: str, destination: str, content: str) -> None:
        """Deliver ``content`` to a single destination, once."""
        ...

    async def send(self, credential: str, destination: str, content: str) -> None:
        """Deliver to one destination, retrying on rate limits."""
        await self.retry.run(
            lambda: self.send_one(credential, destination, content),
            description=f"{self.service_name} send to {destination}",
        )

    async def dispatch(
        self, credential: str, destinations: Sequence[Destination], content: str
    ) -> list[DispatchResult]:
        """Send to every destination concurrently and report each outcome."""

        async def _one(dest: Destination) -> DispatchResult:
            try:
                await self.send(credential, dest.value, content)
            except Exception as exc:
                logger.warning(
                    "Dispatch failed",
                    extra={"service": self.service_name, "destination": dest.value, "error": str(exc)},
                )
                return DispatchResult(destination=dest.value, ok=False, error=str(exc) or type(exc).__name__)
            return DispatchResult(destination=dest.value, ok=True)

        return list(await asyncio.gather(*(_one(d) for d in destinations)))

    async def send_to_destinations(
        self, credential: str, destinations: Sequence[Destination], content: str
    ) -> BatchSummary:
        """Summary contract: one message for the whole batch."""
        if not content:
            return BatchSummary(message=CONTENT_EMPTY)
        if not destinations:
            return BatchSummary(message=CHANNEL_NOT_SELECTED)

        results = await self.dispatch(credential, destinations, content)
        if not all(r.ok for r in results):
            return BatchSummary(message=SEND_FAILED)
        return BatchSummary(message=SEND_OK)

    @staticmethod
    def _retry_after_header(response: httpx.Response) -> float | None:
        value = response.headers.get("retry-after")
        if value is None:
            return None
        try:
            return float(value)
        except ValueError:
            return None

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Map HTTP status to RateLimited / DispatchError."""
        if response.status_code == 429:
            raise RateLimited(f"{self.service_name} rate limit hit", self._retry_after_header(response))
        if response.is_error:
            raise DispatchError(
                f"{self.service_name} API error: HTTP {response.status_code}",
                "connector_error",
            )
