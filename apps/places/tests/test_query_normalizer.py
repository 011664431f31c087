import pytest

from apps.places.errors import QueryValidationError
from apps.places.services.query_hash import compute_engine_hash, compute_query_hash
from apps.places.services.query_normalizer import (
    INVALID_RADIUS,
    normalize_query,
    parse_per_page,
)

BASE = {"lat": 41.88, "lng": -87.63, "radiusMeters": 8000, "activityType": "Dining"}


def _q(**overrides):
    return normalize_query({**BASE, **overrides})


@pytest.mark.parametrize("radius", [0, -5, 50001, "wide", None])
def test_radius_outside_bounds_is_rejected(radius):
    with pytest.raises(QueryValidationError) as exc:
        _q(radiusMeters=radius)
    assert exc.value.status_code == 400
    assert exc.value.message == INVALID_RADIUS


def test_radius_upper_bound_and_legacy_alias():
    assert _q(radiusMeters=50000).radius_meters == 50000
    body = {k: v for k, v in BASE.items() if k != "radiusMeters"}
    assert normalize_query({**body, "radius": 1200}).radius_meters == 1200


def test_bad_coordinates_are_rejected():
    with pytest.raises(QueryValidationError, match="Invalid lat/lng"):
        _q(lat="nan")
    with pytest.raises(QueryValidationError):
        _q(lng=None)


def test_wrapped_query_is_unwrapped():
    query = normalize_query({"query": {**BASE, "keyword": "  tacos  "}})
    assert query.keyword == "tacos"
    assert query.activity_type == "Dining"


def test_per_page_is_clamped():
    assert parse_per_page(100) == 25
    assert parse_per_page(2) == 5
    assert parse_per_page("12.9") == 12
    assert parse_per_page("abc") == 15
    assert _q().per_page == 15


def test_budget_maps_to_price_tier():
    assert _q(budget="$$").max_tier == 2
    assert _q(budget="$$$$").max_tier == 4
    cheap = _q(budget="cheap")
    assert cheap.budget is None and cheap.max_tier is None


def test_include_unpriced_defaults_true():
    assert _q().include_unpriced is True
    assert _q(includeUnpriced=False).include_unpriced is False
    assert _q(includeUnpriced="false").include_unpriced is False


def test_vibes_deduped_case_insensitively_and_capped():
    assert _q(vibes=["Chill", "chill", " cozy ", "loud", 7]).vibes == ["Chill", "cozy"]


def test_time_context_aliases_and_bounds():
    query = _q(timezone="America/Chicago", tzOffset=-300.7)
    assert query.time_context.time_zone == "America/Chicago"
    assert query.time_context.tz_offset_minutes == -300
    assert _q(tzOffsetMinutes=900).time_context.tz_offset_minutes is None
    assert _q(timeZone="Not/AZone").time_context.time_zone is None


def test_place_category_aliases_and_any():
    assert _q(placeCategory="outdoors").place_category == "outdoor"
    assert _q(placeCategory="food-drink").place_category == "food_drink"
    assert _q(placeCategory="any").place_category is None
    assert _q(placeCategory="bogus").place_category is None


def test_when_and_when_at_iso():
    assert _q(when="weekend").when == "weekend"
    assert _q(when="whenever").when is None
    assert _q(when={"kind": "date", "date": "2026-10-17"}).when == {"kind": "date", "date": "2026-10-17"}
    assert _q(whenAtISO="2026-10-17T01:00:00-05:00").when_at_iso == "2026-10-17T06:00:00Z"
    assert _q(whenAtISO="not a date").when_at_iso is None


def test_dining_mode_and_places_filters():
    query = _q(diningMode="quick", placesFilters={"openNowOnly": True, "avoid": {"bars": True}})
    assert query.dining_mode == "quick_bite"
    assert query.places_filters.open_now_only is True
    assert query.places_filters.avoid_bars is True
    assert query.places_filters.dog_friendly is False
    assert _q(diningMode="fancy").dining_mode == "sit_down"


def test_query_hash_ignores_key_order_and_paging():
    a = normalize_query({"lat": 41.88, "lng": -87.63, "radiusMeters": 8000, "keyword": "jazz", "perPage": 10})
    b = normalize_query({"keyword": "jazz", "perPage": 20, "radiusMeters": 8000, "lng": -87.63, "lat": 41.88})
    assert compute_query_hash(a) == compute_query_hash(b)

    kwargs = dict(excluded_types=["school"], rank_preference=None,
                  target_at_iso="2026-10-17T06:00:00+00:00", text_fallback_query=None)
    assert compute_engine_hash(a, **kwargs) != compute_engine_hash(b, **kwargs)


def test_query_hash_changes_with_client_fields():
    assert compute_query_hash(_q(keyword="jazz")) != compute_query_hash(_q(keyword="blues"))
    assert compute_query_hash(_q(who="family")) != compute_query_hash(_q())
