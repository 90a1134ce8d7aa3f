"""Manual sync trigger for inbound OTA feeds."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from staysync.api.models import ApiResponse
from staysync.api.models.sync import SyncRequest
from staysync.feeds.models import BatchSyncResult
from staysync.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync", tags=["sync"])


def _get_services() -> Services:
    """Dependency stub; overridden at app startup or in tests."""
    raise RuntimeError("Services not initialized")


@router.post("", response_model=ApiResponse[BatchSyncResult])
async def trigger_sync(
    request: SyncRequest,
    services: Services = Depends(_get_services),
) -> ApiResponse[BatchSyncResult]:
    """Sync one property's feeds, or every active feed when ``all`` is set."""
    property_ids = request.property_ids()
    logger.info("Sync requested: property_ids=%s debug=%s", property_ids, request.debug)
    batch = await services.engine.sync_all(property_ids, debug=request.debug)
    return ApiResponse[BatchSyncResult](data=batch)
