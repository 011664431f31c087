"""Places discovery endpoints: start a search, continue it by cursor."""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException

from apps.api.schemas.search import ContinueSearchRequest, DiscoveryResponse, ErrorResponse
from apps.places.errors import DiscoveryError
from apps.places.services.discovery_service import PlacesDiscoveryService, get_discovery_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/places/discover", tags=["discovery"])

_ERROR_RESPONSES = {400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


def _request_id(header_value: Optional[str]) -> str:
    return header_value or uuid.uuid4().hex[:12]


def _to_http(exc: DiscoveryError) -> HTTPException:
    if exc.status_code >= 500:
        logger.error("Discovery failed: %s", exc.message)
    return HTTPException(status_code=exc.status_code, detail=exc.to_detail())


@router.post("", response_model=DiscoveryResponse, responses=_ERROR_RESPONSES, summary="Start a places search")
async def start_discovery(
    body: Dict[str, Any] = Body(...),
    x_request_id: Optional[str] = Header(None),
    service: PlacesDiscoveryService = Depends(get_discovery_service),
):
    """
    Start a new search and return its first page.

    The body is the raw query (optionally wrapped as ``{"query": {...}}``):
    lat/lng, radiusMeters, one of quickFilter / activityType / placeCategory /
    keyword, plus optional budget, who, placesFilters, time context and perPage.
    """
    try:
        page = await service.start_search(body, req_id=_request_id(x_request_id))
    except DiscoveryError as exc:
        raise _to_http(exc)
    return page.to_response()


@router.post("/continue", response_model=DiscoveryResponse, responses=_ERROR_RESPONSES,
             summary="Next page of an existing search")
async def continue_discovery(
    request: ContinueSearchRequest,
    x_request_id: Optional[str] = Header(None),
    service: PlacesDiscoveryService = Depends(get_discovery_service),
):
    try:
        page = await service.continue_search(
            request.cursor_id,
            request.per_page,
            request.query_hash,
            debug=request.debug,
            req_id=_request_id(x_request_id),
        )
    except DiscoveryError as exc:
        raise _to_http(exc)
    return page.to_response()
