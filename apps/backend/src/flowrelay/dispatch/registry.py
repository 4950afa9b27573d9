"""Dispatcher registry: maps destination types to dispatcher classes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Type

import httpx

from .base import BaseDispatcher

if TYPE_CHECKING:
    from ..config import Settings


# Populated via the @register decorator when the dispatcher modules import
_REGISTRY: dict[str, Type[BaseDispatcher]] = {}


def register(cls: Type[BaseDispatcher]) -> Type[BaseDispatcher]:
    """Class decorator that registers a dispatcher under its service name."""
    _REGISTRY[cls.service_name] = cls
    return cls


def list_available() -> list[str]:
    return sorted(_REGISTRY)


def get_dispatcher(
    channel_type: str,
    http_client: httpx.AsyncClient,
    settings: Settings | None = None,
) -> BaseDispatcher:
    """Instantiate the dispatcher for ``channel_type`` ("Slack", "discord", ...)."""
    cls = _REGISTRY.get(channel_type.lower())
    if cls is None:
        raise ValueError(f"Unknown destination type: {channel_type}")
    if settings is not None:
        return cls.from_settings(settings, http_client)
    return cls(http_client)
