"""Turns a raw client query into a canonical SearchQuery."""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from apps.places.dto import PlacesFilters, SearchQuery, TimeContext
from apps.places.errors import QueryValidationError
from apps.places.services.opening_hours import is_valid_time_zone

logger = logging.getLogger(__name__)

MIN_PER_PAGE = 5
MAX_PER_PAGE = 25
DEFAULT_PER_PAGE = 15
MAX_RADIUS_METERS = 50000
MAX_TZ_OFFSET_MINUTES = 14 * 60
MAX_VIBES = 2

MODES = {"places", "events", "mixed"}
PLACE_CATEGORIES = {"any", "food_drink", "entertainment", "outdoor", "indoor", "family", "nightlife"}
PLACE_CATEGORY_ALIASES = {"outdoors": "outdoor", "food-drink": "food_drink"}
WHEN_VALUES = {"any", "now", "today", "tomorrow", "this_weekend", "weekend", "date"}
EVENT_SORTS = {"date", "distance", "relevance"}
BUDGET_TIERS = {"$": 1, "$$": 2, "$$$": 3, "$$$$": 4}

INVALID_RADIUS = f"Invalid radius (meters). Must be 0 < radius <= {MAX_RADIUS_METERS}"


def unwrap_query(body: Any) -> Dict[str, Any]:
    """Accept either the bare query or ``{"query": {...}}``."""
    if isinstance(body, dict) and isinstance(body.get("query"), dict):
        return body["query"]
    if isinstance(body, dict):
        return body
    raise QueryValidationError("Invalid query object")


def parse_per_page(raw: Any, fallback: int = DEFAULT_PER_PAGE) -> int:
    try:
        n = float(raw)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(n):
        return fallback
    return min(MAX_PER_PAGE, max(MIN_PER_PAGE, int(math.floor(n))))


def parse_bool(value: Any, fallback: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value == "true":
        return True
    if value == "false":
        return False
    return fallback


def parse_str(value: Any, max_len: int = 120) -> Optional[str]:
    if not isinstance(value, str):
        return None
    s = value.strip()
    if not s:
        return None
    return s[:max_len]


def parse_enum(value: Any, allowed, fallback=None):
    s = value.strip() if isinstance(value, str) else ""
    if not s:
        return fallback
    return s if s in allowed else fallback


def _finite(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None or value == "":
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def parse_budget(value: Any) -> Optional[str]:
    s = value.strip() if isinstance(value, str) else ""
    return s if s in BUDGET_TIERS else None


def budget_to_max_tier(budget: Optional[str]) -> Optional[int]:
    return BUDGET_TIERS.get(budget) if budget else None


def parse_vibes(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    out: List[str] = []
    seen = set()
    for item in value:
        if not isinstance(item, str):
            continue
        s = item.strip()
        if not s or s.lower() in seen:
            continue
        seen.add(s.lower())
        out.append(s)
        if len(out) >= MAX_VIBES:
            break
    return out


def parse_when(value: Any) -> Optional[Any]:
    if isinstance(value, dict):
        kind = parse_enum(value.get("kind"), {"date"})
        date = parse_str(value.get("date"), max_len=32)
        if kind == "date" and date:
            return {"kind": kind, "date": date}
        return None
    s = parse_enum(value, WHEN_VALUES)
    if not s or s == "any":
        return None
    return s


def parse_when_at_iso(value: Any) -> Optional[str]:
    """ISO instant normalized to UTC, None when unparseable."""
    s = parse_str(value, max_len=64)
    if not s:
        return None
    try:
        parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_time_zone(value: Any) -> Optional[str]:
    s = parse_str(value, max_len=64)
    if s and not is_valid_time_zone(s):
        logger.debug("Dropping unknown time zone %r", s)
        return None
    return s


def parse_tz_offset(value: Any) -> Optional[int]:
    n = _finite(value)
    if n is None or abs(n) > MAX_TZ_OFFSET_MINUTES:
        return None
    return int(n)


def parse_places_filters(value: Any) -> PlacesFilters:
    if not isinstance(value, dict):
        return PlacesFilters()
    avoid = value.get("avoid") if isinstance(value.get("avoid"), dict) else {}
    return PlacesFilters(
        open_now_only=parse_bool(value.get("openNowOnly")),
        dog_friendly=parse_bool(value.get("dogFriendly")),
        outdoor_seating=parse_bool(value.get("outdoorSeating")),
        live_music=parse_bool(value.get("liveMusic")),
        reservable=parse_bool(value.get("reservable")),
        avoid_bars=parse_bool(avoid.get("bars")),
        avoid_fast_food=parse_bool(avoid.get("fastFood")),
    )


def parse_event_filters(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        return {}
    return {
        "category": parse_str(value.get("category"), max_len=40),
        "freeOnly": parse_bool(value.get("freeOnly")),
        "sort": parse_enum(value.get("sort"), EVENT_SORTS, "date"),
    }


def parse_place_category(value: Any) -> Optional[str]:
    s = value.strip().lower() if isinstance(value, str) else ""
    s = PLACE_CATEGORY_ALIASES.get(s, s)
    category = parse_enum(s, PLACE_CATEGORIES)
    return None if category in (None, "any") else category


def parse_dining_mode(value: Any) -> Optional[str]:
    s = value.strip().lower() if isinstance(value, str) else ""
    if not s:
        return None
    return "quick_bite" if s in ("quick_bite", "quickbite", "quick") else "sit_down"


def normalize_query(body: Any) -> SearchQuery:
    """
    Validate and canonicalize a new-search request.

    Only coordinates and radius are hard errors; everything else degrades
    to its default when malformed.
    """
    q = unwrap_query(body)

    lat = _finite(q.get("lat"))
    lng = _finite(q.get("lng"))
    if lat is None or lng is None or not -90 <= lat <= 90 or not -180 <= lng <= 180:
        raise QueryValidationError("Invalid lat/lng")

    radius = _finite(q["radiusMeters"] if "radiusMeters" in q else q.get("radius"))
    if radius is None or radius <= 0 or radius > MAX_RADIUS_METERS:
        raise QueryValidationError(INVALID_RADIUS)

    budget = parse_budget(q.get("budget"))
    event_category = parse_str(q.get("eventCategory"), max_len=40)
    prefetch_all = q.get("prefetchAll")

    return SearchQuery(
        lat=lat,
        lng=lng,
        radius_meters=radius,
        per_page=parse_per_page(q.get("perPage")),
        mode=parse_enum(q.get("mode"), MODES, "places"),
        activity_type=parse_str(q.get("activityType"), max_len=40),
        quick_filter=parse_str(q.get("quickFilter"), max_len=40),
        place_category=parse_place_category(q.get("placeCategory")),
        dining_mode=parse_dining_mode(q.get("diningMode")),
        budget=budget,
        max_tier=budget_to_max_tier(budget),
        include_unpriced=parse_bool(q.get("includeUnpriced"), True),
        keyword=parse_str(q.get("keyword"), max_len=80),
        vibes=parse_vibes(q.get("vibes")),
        who=(parse_str(q.get("who"), max_len=40) or "").lower() or None,
        family_friendly=parse_bool(q.get("familyFriendly")),
        places_filters=parse_places_filters(q.get("placesFilters")),
        event_filters=parse_event_filters(q.get("eventFilters")),
        event_category=None if event_category == "any" else event_category,
        when=parse_when(q.get("when")),
        when_at_iso=parse_when_at_iso(q.get("whenAtISO")),
        time_context=TimeContext(
            time_zone=parse_time_zone(q.get("timeZone", q.get("timezone"))),
            tz_offset_minutes=parse_tz_offset(q.get("tzOffsetMinutes", q.get("tzOffset"))),
        ),
        prefetch_all=prefetch_all if isinstance(prefetch_all, bool) else None,
        debug=parse_bool(q.get("debug")),
    )


def resolve_target_at(query: SearchQuery, now: datetime) -> datetime:
    """The instant "open at target" is evaluated against."""
    if query.when_at_iso:
        return datetime.fromisoformat(query.when_at_iso.replace("Z", "+00:00"))
    return now
