"""Plans the search streams (nearby type groups + text streams) for a canonical query."""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from apps.places.dto import SearchQuery, StreamSlot, StreamSpec
from apps.places.errors import QueryValidationError
from apps.places.services.search_catalog import SearchCatalog

logger = logging.getLogger(__name__)

GROUP_SIZE = 3
MAX_NEARBY_GROUPS = 4
MAX_KEYWORD_HINTS = 3
NEARBY_MAX_RESULT_COUNT = 20
TEXT_MAX_RESULT_COUNT = 20

DINING = "Dining"
WHATS_CLOSE = "whatsClose"

VALID_PLACE_TYPE = re.compile(r"^[a-z_]+$")

MISSING_SELECTOR = "Missing search selector: send quickFilter, activityType, placeCategory, or keyword"


@dataclass
class StreamPlan:
    streams: List[StreamSlot]
    excluded_types: List[str]
    rank_preference: Optional[str] = None
    text_fallback_query: Optional[str] = None
    included_types: List[str] = field(default_factory=list)


def _unique(items) -> List[str]:
    out: List[str] = []
    for item in items:
        if item and item not in out:
            out.append(item)
    return out


def has_selector(query: SearchQuery) -> bool:
    return bool(query.quick_filter or query.activity_type or query.place_category or query.keyword)


def _combo_entries(query: SearchQuery, catalog: SearchCatalog) -> List[Dict[str, str]]:
    combo = catalog.quick_filter_combo(query.quick_filter)
    if combo:
        return combo
    if query.activity_type == DINING and not query.place_category:
        dining_types = catalog.dining_types(query.dining_mode or "sit_down")
        return [{"type": t} for t in dining_types]
    category = query.place_category or catalog.category_for_activity(query.activity_type)
    return catalog.category_combo(category)


def group_types(types: List[str], size: int = GROUP_SIZE, max_groups: int = MAX_NEARBY_GROUPS) -> List[List[str]]:
    groups = [types[i:i + size] for i in range(0, len(types), size)]
    return groups[:max_groups]


def is_valid_nearby_types(types: List[str]) -> bool:
    return bool(types) and all(isinstance(t, str) and VALID_PLACE_TYPE.match(t) for t in types)


def resolve_excluded_types(query: SearchQuery, catalog: SearchCatalog, included: List[str]) -> List[str]:
    excluded = catalog.excluded_types
    if query.activity_type == DINING:
        excluded = [t for t in excluded if t != "meal_takeaway"]
    # a type the plan asks for explicitly is never also excluded
    return [t for t in excluded if t not in included]


def resolve_rank_preference(query: SearchQuery) -> Optional[str]:
    if query.activity_type == DINING or query.quick_filter == WHATS_CLOSE:
        return "DISTANCE"
    return None


def plan_streams(query: SearchQuery, catalog: SearchCatalog) -> StreamPlan:
    """
    Build the stream list:
      * one nearby stream per group of up to 3 place types (max 4 groups)
      * a primary text stream for the user's keyword
      * a fallback text stream from curated keyword hints, only without a keyword
    """
    if not has_selector(query):
        raise QueryValidationError(MISSING_SELECTOR)

    entries = _combo_entries(query, catalog)
    types = [
        e["type"] for e in entries
        if e.get("type") and e["type"] != "establishment" and not e.get("keyword")
    ]
    keyword_hints = _unique(e.get("keyword") for e in entries)

    if query.places_filters.avoid_bars:
        types = [t for t in types if t != "bar"]

    types = _unique(types)
    typed_selector = bool(query.quick_filter or query.activity_type or query.place_category)
    if not types and typed_selector:
        types = [t for t in catalog.fallback_types
                 if not (query.places_filters.avoid_bars and t == "bar")]

    text_fallback_query = " ".join(keyword_hints[:MAX_KEYWORD_HINTS]) or None

    streams: List[StreamSlot] = []
    for i, group in enumerate(group_types(types)):
        streams.append(StreamSlot(
            stream_id=f"nearby:{i}",
            spec=StreamSpec(
                kind="nearby",
                stage="primary",
                included_types=group,
                max_result_count=NEARBY_MAX_RESULT_COUNT,
            ),
        ))

    if query.keyword:
        streams.append(StreamSlot(
            stream_id="text:primary",
            spec=StreamSpec(kind="text", stage="primary", text_query=query.keyword,
                            max_result_count=TEXT_MAX_RESULT_COUNT),
        ))
    elif text_fallback_query:
        streams.append(StreamSlot(
            stream_id="text:fallback",
            spec=StreamSpec(kind="text", stage="fallback", text_query=text_fallback_query,
                            max_result_count=TEXT_MAX_RESULT_COUNT),
        ))

    if not streams:
        raise QueryValidationError("No search streams could be built for this query")

    plan = StreamPlan(
        streams=streams,
        excluded_types=resolve_excluded_types(query, catalog, types),
        rank_preference=resolve_rank_preference(query),
        text_fallback_query=text_fallback_query,
        included_types=types,
    )
    logger.debug(
        "Planned %d streams (types=%s, fallback=%r)",
        len(streams), types, text_fallback_query,
    )
    return plan
