"""
Candidate filter pipeline.

``evaluate_candidate`` is pure: one raw provider place in, either an accepted
CuratedPlace or a rejection reason out. Rules run in a fixed order and the
first rejection wins.
"""

import math
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from apps.places.dto import CuratedPlace, GeoPoint, SearchState, TimeContext
from apps.places.services.date_night import date_night_reject
from apps.places.services.fast_food import is_fast_food
from apps.places.services.opening_hours import effective_time_context, is_open_at_target
from apps.places.services.who_profile import (
    passes_who_guardrails,
    read_bool_attr,
    score_place_for_who,
)

EARTH_RADIUS_M = 6371000.0
METERS_PER_MILE = 1609.34

_COUNTRY_CLUB = re.compile(r"Country Club|Golf Course|Golf Club|Links", re.IGNORECASE)

PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
    "PRICE_LEVEL_UNSPECIFIED": None,
}


@dataclass
class CandidateVerdict:
    ok: bool
    reason: Optional[str] = None
    place: Optional[CuratedPlace] = None


def normalize_price_tier(price_level: Any) -> Optional[int]:
    """Provider price level (enum name or int) to a 0..4 tier."""
    if isinstance(price_level, bool):
        return None
    if isinstance(price_level, int):
        return price_level if 0 <= price_level <= 4 else None
    if isinstance(price_level, str):
        return PRICE_LEVELS.get(price_level.strip().upper())
    return None


def haversine_meters(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def _display_name(place: Dict[str, Any]) -> str:
    display = place.get("displayName")
    if isinstance(display, dict):
        return display.get("text") or ""
    return place.get("name") or ""


def to_curated_place(
    place: Dict[str, Any],
    origin_lat: float,
    origin_lng: float,
    radius_meters: float,
) -> Optional[CuratedPlace]:
    """Map a raw place; None when it has no coordinates, lies outside the radius or is a golf club."""
    location = place.get("location") or {}
    lat = location.get("latitude")
    lng = location.get("longitude")
    if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None

    meters = haversine_meters(origin_lat, origin_lng, lat, lng)
    if meters > radius_meters:
        return None

    name = _display_name(place)
    if _COUNTRY_CLUB.search(name):
        return None

    place_id = place.get("id")
    if not place_id:
        return None

    photos = place.get("photos") or []
    photo_name = photos[0].get("name") if photos and isinstance(photos[0], dict) else None
    current = place.get("currentOpeningHours") or {}

    return CuratedPlace(
        place_id=str(place_id),
        name=name,
        types=[t for t in (place.get("types") or []) if isinstance(t, str)],
        address=place.get("shortFormattedAddress") or place.get("formattedAddress"),
        location=GeoPoint(lat=lat, lng=lng),
        distance=round(meters / METERS_PER_MILE, 2),
        photo_name=photo_name,
        rating=place.get("rating"),
        user_rating_count=place.get("userRatingCount"),
        price_tier=normalize_price_tier(place.get("priceLevel")),
        pet_friendly=read_bool_attr(place, "allowsDogs"),
        open_now=current.get("openNow") if isinstance(current.get("openNow"), bool) else None,
        opening_hours=place.get("regularOpeningHours"),
    )


def passes_places_filters(
    place: Dict[str, Any],
    state: SearchState,
    time_ctx: TimeContext,
    open_at_target: Optional[bool],
) -> bool:
    query = state.query
    filters = query.places_filters

    # unknown hours or an uncomputable context never reject
    if filters.open_now_only and time_ctx.can_compute and open_at_target is False:
        return False

    if filters.dog_friendly and read_bool_attr(place, "allowsDogs") is not True:
        return False

    for wanted, attr in (
        (filters.outdoor_seating, "outdoorSeating"),
        (filters.live_music, "liveMusic"),
        (filters.reservable, "reservable"),
    ):
        if wanted and read_bool_attr(place, attr) is False:
            return False

    if filters.avoid_fast_food and is_fast_food(_display_name(place), place.get("types") or []):
        return False

    if query.family_friendly and read_bool_attr(place, "goodForChildren") is False:
        return False

    return True


def budget_ok(tier: Optional[int], max_tier: Optional[int], include_unpriced: bool) -> bool:
    if max_tier is None:
        return True
    if tier is None:
        return include_unpriced
    return tier <= max_tier


def evaluate_candidate(
    place: Dict[str, Any],
    state: SearchState,
    target_at: datetime,
    base_time_ctx: TimeContext,
) -> CandidateVerdict:
    types = [t for t in (place.get("types") or []) if isinstance(t, str)]

    if any(t in state.excluded_types for t in types):
        return CandidateVerdict(False, "excludedType")

    if state.query.quick_filter == "dateNight":
        rejected, _ = date_night_reject(_display_name(place), types)
        if rejected:
            return CandidateVerdict(False, "dateNightReject")

    time_ctx = effective_time_context(base_time_ctx, place)
    open_at_target = is_open_at_target(place, target_at, time_ctx) if time_ctx.can_compute else None

    if not passes_places_filters(place, state, time_ctx, open_at_target):
        return CandidateVerdict(False, "placesFiltersReject")

    if not passes_who_guardrails(place, state.who_profile):
        return CandidateVerdict(False, "whoGuardrailReject")

    who_score = score_place_for_who(place, state.who_profile)

    tier = normalize_price_tier(place.get("priceLevel"))
    if not budget_ok(tier, state.query.max_tier, state.query.include_unpriced):
        return CandidateVerdict(False, "excludedBudget")

    mapped = to_curated_place(place, state.query.lat, state.query.lng, state.query.radius_meters)
    if mapped is None:
        return CandidateVerdict(False, "mapReject")

    mapped.open_at_target = open_at_target
    mapped.who_score = who_score
    return CandidateVerdict(True, place=mapped)
