"""Token-protected outbound iCalendar feed.

OTAs poll ``GET /api/export/{property_id}.ics?token=...``. Responses carry a
strong ETag so unchanged calendars are answered with 304.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header, Query, Response

from staysync.api.middleware import error_response
from staysync.feeds.export import ExportVariant
from staysync.services import Services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/export", tags=["export"])

CALENDAR_MEDIA_TYPE = "text/calendar; charset=utf-8"


def _get_services() -> Services:
    """Dependency stub; overridden at app startup or in tests."""
    raise RuntimeError("Services not initialized")


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """True when an ``If-None-Match`` header value covers *etag* (unquoted)."""
    if not if_none_match:
        return False
    for candidate in if_none_match.split(","):
        candidate = candidate.strip()
        if candidate == "*":
            return True
        if candidate.startswith("W/"):
            candidate = candidate[2:]
        if candidate.strip('"') == etag:
            return True
    return False


@router.get("/{property_id}.ics")
async def export_feed(
    property_id: str,
    token: str | None = Query(default=None),
    variant: ExportVariant = Query(default=ExportVariant.BLOCKS),
    if_none_match: str | None = Header(default=None),
    services: Services = Depends(_get_services),
) -> Response:
    if not token or not await services.properties.verify_export_token(property_id, token):
        logger.info("Rejected export request for property=%s (bad token)", property_id)
        return error_response(401, "UNAUTHORIZED", "Missing or invalid export token")

    exported = await services.exporter.export_calendar(property_id, variant)
    headers = {
        "ETag": f'"{exported.etag}"',
        "Cache-Control": f"public, s-maxage={services.config.export.cache_max_age}",
    }
    if etag_matches(if_none_match, exported.etag):
        return Response(status_code=304, headers=headers)

    headers["Content-Disposition"] = f'inline; filename="{exported.filename}"'
    return Response(content=exported.content, media_type=CALENDAR_MEDIA_TYPE, headers=headers)
