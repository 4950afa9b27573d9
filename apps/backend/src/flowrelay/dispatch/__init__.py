"""Destination dispatchers with rate-limit aware retry.

Usage:
    from flowrelay.dispatch import get_dispatcher

    slack = get_dispatcher("slack", http_client, settings)
    summary = await slack.send_to_destinations(token, destinations, content)
"""

from __future__ import annotations

from .base import BaseDispatcher, BatchSummary, Destination, DispatchResult
from .registry import get_dispatcher, list_available
from .retry import RetryPolicy

# Import all built-in dispatchers to trigger @register decoration
from . import discord, notion, slack  # noqa: E402, F401

__all__ = [
    "BaseDispatcher",
    "BatchSummary",
    "Destination",
    "DispatchResult",
    "RetryPolicy",
    "get_dispatcher",
    "list_available",
]
