"""Curated search combos (quick filters, categories, exclusions) loaded from YAML."""

import logging
from typing import Any, Dict, List, Optional

from apps.core.config import settings
from apps.core.config_cache import load_yaml_cached

logger = logging.getLogger(__name__)


def _t(place_type: str) -> Dict[str, str]:
    return {"type": place_type}


def _kw(keyword: str) -> Dict[str, str]:
    return {"type": "establishment", "keyword": keyword}


DEFAULT_CATALOG: Dict[str, Any] = {
    "excluded_types": [
        "school", "doctor", "hospital", "lodging", "airport",
        "store", "storage", "golf_course", "meal_takeaway", "casino",
    ],
    "fallback_types": [
        "restaurant", "cafe", "bar", "park",
        "tourist_attraction", "museum", "movie_theater", "bowling_alley",
    ],
    "quick_filters": {
        "dateNight": [_kw("topgolf"), _kw("escape room"), _t("bowling_alley"),
                      _t("movie_theater"), _t("restaurant"), _t("bar")],
        "drinksAndDining": [_t("restaurant"), _t("bar"), _t("cafe"),
                            _kw("cocktail bar wine bar brewery")],
        "outdoor": [_t("park"), _t("tourist_attraction"), _t("campground"),
                    _t("natural_feature"), _t("botanical_garden")],
        "movieNight": [_t("movie_theater"), _kw("drive-in movie theater imax")],
        "gaming": [_kw("arcade"), _t("bowling_alley"), _kw("laser tag"), _kw("escape room")],
        "artAndCulture": [_t("museum"), _t("art_gallery"), _kw("theater performing arts")],
        "familyFun": [_t("zoo"), _t("aquarium"), _t("museum"), _t("park"), _t("amusement_park"),
                      _kw("trampoline park family entertainment")],
        "petFriendly": [_kw("pet friendly"), _t("park")],
        "liveMusic": [_kw("live music"), _kw("jazz"), _kw("concert"), _t("bar")],
        "whatsClose": [_t("establishment")],
    },
    "place_categories": {
        "food_drink": [_t("restaurant"), _t("bar"), _t("cafe")],
        "entertainment": [_t("movie_theater"), _t("bowling_alley"), _t("museum"), _t("art_gallery"),
                          _t("tourist_attraction"), _kw("escape room comedy club arcade"), _t("casino")],
        "outdoor": [_t("park"), _t("natural_feature"), _t("campground"),
                    _t("tourist_attraction"), _t("botanical_garden")],
        "indoor": [_t("museum"), _t("art_gallery"), _t("movie_theater"), _t("bowling_alley"),
                   _t("gym"), _t("aquarium"), _t("casino"),
                   _kw("escape room indoor mini golf trampoline")],
        "family": [_t("zoo"), _t("aquarium"), _t("museum"), _t("park"), _t("amusement_park"),
                   _kw("children museum family entertainment playground")],
        "nightlife": [_t("bar"), _t("night_club"), _kw("cocktail lounge live music")],
        "any": [_t("establishment")],
    },
    "activity_categories": {
        "Dining": "food_drink",
        "Entertainment": "entertainment",
        "Outdoor": "outdoor",
        "Indoor": "indoor",
        "Family": "family",
    },
    "dining_types": {
        "sit_down": ["restaurant", "bar", "cafe"],
        "quick_bite": ["cafe", "bakery", "meal_takeaway"],
    },
}


class SearchCatalog:
    """Read-only view over the combos config"""

    def __init__(self, data: Dict[str, Any]):
        self._data = data

    @property
    def excluded_types(self) -> List[str]:
        return list(self._data.get("excluded_types") or [])

    @property
    def fallback_types(self) -> List[str]:
        return list(self._data.get("fallback_types") or [])

    def quick_filter_combo(self, name: Optional[str]) -> List[Dict[str, str]]:
        if not name:
            return []
        return list((self._data.get("quick_filters") or {}).get(name) or [])

    def category_combo(self, category: Optional[str]) -> List[Dict[str, str]]:
        if not category:
            return []
        return list((self._data.get("place_categories") or {}).get(category) or [])

    def category_for_activity(self, activity_type: Optional[str]) -> Optional[str]:
        if not activity_type:
            return None
        return (self._data.get("activity_categories") or {}).get(activity_type)

    def dining_types(self, dining_mode: str) -> List[str]:
        return list((self._data.get("dining_types") or {}).get(dining_mode) or [])

    def known_quick_filters(self) -> List[str]:
        return sorted((self._data.get("quick_filters") or {}).keys())


def load_search_catalog(path: Optional[str] = None) -> SearchCatalog:
    """Catalog from the YAML file (TTL cached), defaults filling any missing section."""
    data = load_yaml_cached(path or settings.search_streams_config, default=DEFAULT_CATALOG)
    return SearchCatalog(data)
