"""Deterministic hashes over canonical query fields."""

import hashlib
import json
from typing import Any, Dict, List, Optional

from apps.places.dto import SearchQuery


def stable_json(payload: Any) -> str:
    """JSON with recursively sorted keys, so field order never changes the output."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def sha1_of(payload: Any) -> str:
    return hashlib.sha1(stable_json(payload).encode("utf-8")).hexdigest()


def client_hash_payload(query: SearchQuery) -> Dict[str, Any]:
    """Only fields a client controls; used to validate cursor reuse."""
    return {
        "lat": query.lat,
        "lng": query.lng,
        "radiusMeters": query.radius_meters,
        "activityType": query.activity_type,
        "quickFilter": query.quick_filter,
        "placeCategory": query.place_category,
        "diningMode": query.dining_mode,
        "budget": query.budget,
        "includeUnpriced": query.include_unpriced,
        "keyword": query.keyword,
        "vibes": query.vibes,
        "placesFilters": query.places_filters.model_dump(),
        "eventFilters": query.event_filters,
        "familyFriendly": query.family_friendly,
        "who": query.who,
        "whenAtISO": query.when_at_iso,
        "when": query.when,
        "timeZone": query.time_context.time_zone,
        "tzOffsetMinutes": query.time_context.tz_offset_minutes,
        "mode": query.mode,
        "eventCategory": query.event_category,
    }


def compute_query_hash(query: SearchQuery) -> str:
    return sha1_of(client_hash_payload(query))


def compute_engine_hash(
    query: SearchQuery,
    *,
    excluded_types: List[str],
    rank_preference: Optional[str],
    target_at_iso: str,
    text_fallback_query: Optional[str],
) -> str:
    """Client fields plus derived execution settings; for debug correlation only."""
    payload = client_hash_payload(query)
    payload.update({
        "perPage": query.per_page,
        "maxTier": query.max_tier,
        "excludedTypes": sorted(excluded_types),
        "rankPreference": rank_preference,
        "targetAtISO": target_at_iso,
        "textFallbackQuery": text_fallback_query,
    })
    return sha1_of(payload)
