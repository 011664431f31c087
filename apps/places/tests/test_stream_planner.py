import pytest

from apps.places.errors import QueryValidationError
from apps.places.services.query_normalizer import normalize_query
from apps.places.services.stream_planner import (
    MISSING_SELECTOR,
    group_types,
    is_valid_nearby_types,
    plan_streams,
)

ORIGIN = {"lat": 41.88, "lng": -87.63, "radiusMeters": 8000}


def _plan(catalog, **fields):
    return plan_streams(normalize_query({**ORIGIN, **fields}), catalog)


def test_dining_plans_only_nearby_restaurant_bar_cafe(catalog):
    plan = _plan(catalog, activityType="Dining", budget="$$")
    assert [s.spec.kind for s in plan.streams] == ["nearby"]
    assert plan.streams[0].spec.included_types == ["restaurant", "bar", "cafe"]
    assert "meal_takeaway" not in plan.excluded_types
    assert "school" in plan.excluded_types
    assert plan.rank_preference == "DISTANCE"
    assert plan.text_fallback_query is None


def test_quick_bite_dining_types(catalog):
    plan = _plan(catalog, activityType="Dining", diningMode="quick_bite")
    assert plan.streams[0].spec.included_types == ["cafe", "bakery", "meal_takeaway"]
    assert "meal_takeaway" not in plan.excluded_types


def test_quick_filter_groups_types_and_adds_fallback_text(catalog):
    plan = _plan(catalog, quickFilter="familyFun")
    nearby = [s for s in plan.streams if s.spec.kind == "nearby"]
    assert [s.spec.included_types for s in nearby] == [
        ["zoo", "aquarium", "museum"],
        ["park", "amusement_park"],
    ]
    text = plan.streams[-1]
    assert text.stream_id == "text:fallback"
    assert text.spec.stage == "fallback"
    assert text.spec.text_query == "trampoline park family entertainment"
    assert plan.rank_preference is None


def test_keyword_gets_primary_text_stream_and_suppresses_fallback(catalog):
    plan = _plan(catalog, quickFilter="familyFun", keyword="laser maze")
    text_streams = [s for s in plan.streams if s.spec.kind == "text"]
    assert len(text_streams) == 1
    assert text_streams[0].spec.stage == "primary"
    assert text_streams[0].spec.text_query == "laser maze"


def test_keyword_only_search_has_single_text_stream(catalog):
    plan = _plan(catalog, keyword="ramen")
    assert [s.stream_id for s in plan.streams] == ["text:primary"]


def test_avoid_bars_falls_back_to_broad_types(catalog):
    plan = _plan(catalog, quickFilter="liveMusic", placesFilters={"avoid": {"bars": True}})
    types = [t for s in plan.streams if s.spec.kind == "nearby" for t in s.spec.included_types]
    assert "bar" not in types
    assert types[:3] == ["restaurant", "cafe", "park"]
    assert plan.text_fallback_query == "live music jazz concert"


def test_whats_close_uses_fallback_types_and_distance_rank(catalog):
    plan = _plan(catalog, quickFilter="whatsClose")
    assert plan.rank_preference == "DISTANCE"
    assert all(s.spec.kind == "nearby" for s in plan.streams)
    assert len(plan.streams) == 3


def test_explicitly_requested_type_is_not_excluded(catalog):
    plan = _plan(catalog, placeCategory="entertainment")
    assert "casino" not in plan.excluded_types
    assert "school" in plan.excluded_types


def test_missing_selector_is_rejected(catalog):
    with pytest.raises(QueryValidationError) as exc:
        _plan(catalog)
    assert exc.value.message == MISSING_SELECTOR
    assert exc.value.status_code == 400


def test_grouping_caps_stream_count():
    types = [f"type_{c}" for c in "abcdefghijklmn"]
    groups = group_types(types)
    assert len(groups) == 4
    assert all(len(g) == 3 for g in groups)


def test_nearby_type_validation():
    assert is_valid_nearby_types(["restaurant", "night_club"])
    assert not is_valid_nearby_types(["Night Club"])
    assert not is_valid_nearby_types([])
