"""Cleaning task auto-assignment endpoint."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from staysync.api.models import ApiResponse
from staysync.api.models.cleaning import AutoAssignRequest, AutoAssignResponse
from staysync.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cleaning", tags=["cleaning"])


def _get_services() -> Services:
    """Dependency stub; overridden at app startup or in tests."""
    raise RuntimeError("Services not initialized")


@router.post("/auto-assign", response_model=ApiResponse[AutoAssignResponse])
async def auto_assign(
    request: AutoAssignRequest,
    services: Services = Depends(_get_services),
) -> ApiResponse[AutoAssignResponse]:
    result = await services.scheduler.auto_assign(
        request.property_id,
        request.from_date,
        request.to_date,
        strategy=request.strategy,
    )
    return ApiResponse[AutoAssignResponse](data=AutoAssignResponse.from_result(result))
