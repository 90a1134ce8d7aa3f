"""FastAPI dependency wiring.

Routers declare a ``_get_services`` stub; :func:`wire_dependencies` points
every stub at the process-wide :class:`Services` created in the lifespan.
Tests override the stubs directly with in-memory doubles.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from staysync.config import StaySyncConfig
from staysync.services import Services, open_services

logger = logging.getLogger(__name__)

_services: Services | None = None


async def init_services(config: StaySyncConfig) -> Services:
    """Create the Services singleton. Called once during app startup."""
    global _services  # noqa: PLW0603
    _services = await open_services(config)
    return _services


async def shutdown_services() -> None:
    """Close the Services singleton. Called during app shutdown."""
    global _services  # noqa: PLW0603
    if _services is not None:
        await _services.close()
        _services = None


def get_services() -> Services:
    """FastAPI dependency: provides the Services singleton."""
    if _services is None:
        raise RuntimeError("Services not initialized; call init_services() first")
    return _services


def wire_dependencies(app: FastAPI) -> None:
    """Override all router-level ``_get_services`` stubs with the singleton."""
    from staysync.api.routers import cleaning, export, sync

    for module in (cleaning, export, sync):
        app.dependency_overrides[module._get_services] = get_services
