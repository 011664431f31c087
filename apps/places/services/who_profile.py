"""Persona ("who") profiles: guardrails and scoring."""

from typing import Any, Dict, Optional, Set

from apps.places.dto import WhoProfile

WHO_SCORE_MIN = -10
WHO_SCORE_MAX = 10
TYPE_BOOST = 2
TYPE_PENALTY = 2

_PROFILES: Dict[str, Dict[str, Any]] = {
    "solo": {
        "boost_types": ["cafe", "library", "book_store", "park", "museum", "art_gallery"],
        "penalize_types": ["night_club", "casino"],
    },
    "date": {
        "boost_types": ["restaurant", "art_gallery", "performing_arts_theater",
                        "movie_theater", "tourist_attraction"],
        "penalize_types": ["fast_food_restaurant", "meal_takeaway", "gas_station"],
        "boost_attrs": {"reservable": 1, "outdoorSeating": 1, "liveMusic": 1},
    },
    "friends": {
        "boost_types": ["bar", "bowling_alley", "movie_theater", "amusement_park"],
        "boost_attrs": {"goodForGroups": 2, "liveMusic": 1, "goodForWatchingSports": 1},
    },
    "family": {
        "hard_exclude_types": ["night_club", "casino"],
        "boost_types": ["park", "zoo", "aquarium", "museum", "movie_theater",
                        "amusement_park", "playground", "bowling_alley"],
        "penalize_types": ["bar"],
        "boost_attrs": {"goodForChildren": 3, "menuForChildren": 1},
        "disallow_if_false": ["goodForChildren"],
    },
}

# Provider attributes the personas read; requested in the field mask
WHO_ATTRIBUTE_FIELDS = (
    "goodForChildren",
    "goodForGroups",
    "goodForWatchingSports",
    "outdoorSeating",
    "liveMusic",
    "reservable",
    "menuForChildren",
)


def resolve_who_profile(who: Optional[str], place_category: Optional[str] = None) -> Optional[WhoProfile]:
    """Profile for a persona key, or None for unknown/empty personas."""
    key = (who or "").strip().lower()
    spec = _PROFILES.get(key)
    if spec is None:
        return None
    profile = WhoProfile(key=key, **spec)
    if key == "family" and place_category == "nightlife":
        # nightlife explicitly asked for; do not fight the category
        profile.penalize_types = [t for t in profile.penalize_types if t != "bar"]
    return profile


def read_bool_attr(place: Dict[str, Any], attr: str) -> Optional[bool]:
    """Tri-state read: True/False when the provider says so, None otherwise."""
    value = place.get(attr)
    if isinstance(value, bool):
        return value
    if isinstance(value, dict) and isinstance(value.get("value"), bool):
        return value["value"]
    return None


def place_type_set(place: Dict[str, Any]) -> Set[str]:
    types = set(t for t in (place.get("types") or []) if isinstance(t, str))
    primary = place.get("primaryType")
    if isinstance(primary, str) and primary:
        types.add(primary)
    return types


def passes_who_guardrails(place: Dict[str, Any], profile: Optional[WhoProfile]) -> bool:
    if profile is None:
        return True
    types = place_type_set(place)
    if any(t in types for t in profile.hard_exclude_types):
        return False
    # only an explicit False disqualifies; unknown never does
    for attr in profile.disallow_if_false:
        if read_bool_attr(place, attr) is False:
            return False
    return True


def score_place_for_who(place: Dict[str, Any], profile: Optional[WhoProfile]) -> int:
    if profile is None:
        return 0
    types = place_type_set(place)
    score = 0
    score += TYPE_BOOST * sum(1 for t in profile.boost_types if t in types)
    score -= TYPE_PENALTY * sum(1 for t in profile.penalize_types if t in types)
    for attr, weight in profile.boost_attrs.items():
        if read_bool_attr(place, attr) is True:
            score += weight
    return max(WHO_SCORE_MIN, min(WHO_SCORE_MAX, score))
