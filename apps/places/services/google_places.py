#!/usr/bin/env python3
"""Google Places API (New) client used by the discovery engine"""

import logging
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from apps.core.config import settings
from apps.places.services.who_profile import WHO_ATTRIBUTE_FIELDS

logger = logging.getLogger(__name__)

BASE_URL = "https://places.googleapis.com/v1"
NEARBY_PATH = "places:searchNearby"
TEXT_PATH = "places:searchText"

BASE_FIELDS = (
    "id",
    "displayName",
    "types",
    "primaryType",
    "location",
    "shortFormattedAddress",
    "photos",
    "priceLevel",
    "rating",
    "userRatingCount",
    "regularOpeningHours",
    "utcOffsetMinutes",
    "timeZone",
    "allowsDogs",
)
NOW_FIELDS = ("currentOpeningHours",)

MIN_API_KEY_LENGTH = 10


def build_field_mask(*, include_who: bool = True, include_now: bool = False, paged: bool = False) -> str:
    fields = list(BASE_FIELDS)
    if include_who:
        fields.extend(WHO_ATTRIBUTE_FIELDS)
    if include_now:
        fields.extend(NOW_FIELDS)
    mask = ",".join(f"places.{f}" for f in fields)
    if paged:
        mask += ",nextPageToken"
    return mask


def has_usable_api_key(key: Optional[str]) -> bool:
    return bool(key) and len(key.strip()) > MIN_API_KEY_LENGTH


class GooglePlacesError(Exception):
    """Provider call failed; ``normalized`` is safe to log"""

    def __init__(self, message: str, status: Optional[int] = None, provider_status: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.provider_status = provider_status

    @property
    def normalized(self) -> Dict[str, Any]:
        return {"status": self.status, "message": self.message, "providerStatus": self.provider_status}


@dataclass
class ProviderPage:
    places: List[Dict[str, Any]] = field(default_factory=list)
    next_page_token: Optional[str] = None


class PlacesProvider(ABC):
    """Async place search; one provider call per invocation."""

    name = "provider"

    @abstractmethod
    async def fetch_nearby_places(
        self,
        *,
        lat: float,
        lng: float,
        radius_meters: float,
        included_types: List[str],
        excluded_types: List[str],
        rank_preference: Optional[str] = None,
        max_result_count: int = 20,
        include_now: bool = False,
    ) -> ProviderPage:
        ...

    @abstractmethod
    async def fetch_places_text(
        self,
        *,
        text_query: str,
        lat: float,
        lng: float,
        radius_meters: float,
        page_token: Optional[str] = None,
        max_result_count: int = 20,
        include_now: bool = False,
    ) -> ProviderPage:
        ...

    def is_configured(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None


class GooglePlaces(PlacesProvider):
    """Google Places (New) over httpx with per-status counters"""

    name = "google"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.key = api_key if api_key is not None else settings.google_maps_api_key
        self.timeout = timeout or settings.google_places_timeout_s
        self.stats = Counter()
        self._client = client
        self._owns_client = client is None

    def is_configured(self) -> bool:
        return has_usable_api_key(self.key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=BASE_URL, timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, body: Dict[str, Any], field_mask: str) -> Dict[str, Any]:
        headers = {
            "X-Goog-Api-Key": self.key,
            "X-Goog-FieldMask": field_mask,
            "Content-Type": "application/json",
        }
        try:
            response = await self._get_client().post(f"/{path}", json=body, headers=headers)
        except httpx.HTTPError as e:
            self.stats["TRANSPORT"] += 1
            raise GooglePlacesError(f"Request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        error = data.get("error") if isinstance(data, dict) else None
        if response.status_code >= 400 or error:
            error = error or {}
            provider_status = error.get("status", "UNKNOWN")
            self.stats[provider_status] += 1
            if provider_status == "RESOURCE_EXHAUSTED":
                message = "Rate limit exceeded"
            elif provider_status == "PERMISSION_DENIED":
                message = "API key invalid or request denied"
            elif provider_status == "INVALID_ARGUMENT":
                message = f"Invalid request parameters: {error.get('message', '')}".strip()
            else:
                message = f"API error: {provider_status} - {error.get('message', 'Unknown error')}"
            raise GooglePlacesError(message, status=response.status_code, provider_status=provider_status)

        self.stats["OK"] += 1
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _circle(lat: float, lng: float, radius_meters: float) -> Dict[str, Any]:
        return {"circle": {"center": {"latitude": lat, "longitude": lng}, "radius": float(radius_meters)}}

    async def fetch_nearby_places(
        self,
        *,
        lat: float,
        lng: float,
        radius_meters: float,
        included_types: List[str],
        excluded_types: List[str],
        rank_preference: Optional[str] = None,
        max_result_count: int = 20,
        include_now: bool = False,
    ) -> ProviderPage:
        body: Dict[str, Any] = {
            "maxResultCount": max_result_count,
            "locationRestriction": self._circle(lat, lng, radius_meters),
            "includedTypes": included_types,
        }
        if excluded_types:
            body["excludedTypes"] = excluded_types
        if rank_preference:
            body["rankPreference"] = rank_preference

        data = await self._post(NEARBY_PATH, body, build_field_mask(include_now=include_now))
        return ProviderPage(places=data.get("places") or [])

    async def fetch_places_text(
        self,
        *,
        text_query: str,
        lat: float,
        lng: float,
        radius_meters: float,
        page_token: Optional[str] = None,
        max_result_count: int = 20,
        include_now: bool = False,
    ) -> ProviderPage:
        body: Dict[str, Any] = {
            "textQuery": text_query,
            "pageSize": max_result_count,
            "locationBias": self._circle(lat, lng, radius_meters),
        }
        if page_token:
            body["pageToken"] = page_token

        data = await self._post(TEXT_PATH, body, build_field_mask(include_now=include_now, paged=True))
        return ProviderPage(places=data.get("places") or [], next_page_token=data.get("nextPageToken") or None)
