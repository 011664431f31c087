import asyncio
import json

import httpx
import pytest

from apps.places.services import discovery_service
from apps.places.services.google_places import (
    BASE_URL,
    GooglePlaces,
    GooglePlacesError,
    build_field_mask,
    has_usable_api_key,
)

KEY = "test-key-0123456789"


class Recorder:
    """MockTransport handler that records requests and replays one canned response"""

    def __init__(self, response=None, error=None):
        self.response = response or httpx.Response(200, json={"places": []})
        self.error = error
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response

    @property
    def last_body(self):
        return json.loads(self.requests[-1].content)

    @property
    def last_mask(self):
        return self.requests[-1].headers["X-Goog-FieldMask"]


def _client(recorder):
    return GooglePlaces(
        api_key=KEY,
        client=httpx.AsyncClient(transport=httpx.MockTransport(recorder), base_url=BASE_URL),
    )


def _nearby(google, **overrides):
    kwargs = dict(lat=41.88, lng=-87.63, radius_meters=5000, included_types=["bar"], excluded_types=[])
    kwargs.update(overrides)
    return asyncio.run(google.fetch_nearby_places(**kwargs))


def _text(google, **overrides):
    kwargs = dict(text_query="jazz", lat=41.88, lng=-87.63, radius_meters=5000)
    kwargs.update(overrides)
    return asyncio.run(google.fetch_places_text(**kwargs))


def test_nearby_body_omits_empty_exclusions_and_rank():
    recorder = Recorder(httpx.Response(200, json={"places": [{"id": "a"}]}))
    google = _client(recorder)

    page = _nearby(google)

    request = recorder.requests[0]
    assert request.url.path.endswith("places:searchNearby")
    assert request.headers["X-Goog-Api-Key"] == KEY
    body = recorder.last_body
    assert body["includedTypes"] == ["bar"]
    assert "excludedTypes" not in body and "rankPreference" not in body
    assert body["locationRestriction"]["circle"]["radius"] == 5000.0
    assert [p["id"] for p in page.places] == ["a"]
    assert page.next_page_token is None
    assert "currentOpeningHours" not in recorder.last_mask
    assert google.stats["OK"] == 1


def test_nearby_body_carries_exclusions_rank_and_now_fields():
    recorder = Recorder()
    _nearby(_client(recorder), excluded_types=["school"], rank_preference="DISTANCE", include_now=True)

    body = recorder.last_body
    assert body["excludedTypes"] == ["school"]
    assert body["rankPreference"] == "DISTANCE"
    assert "places.currentOpeningHours" in recorder.last_mask.split(",")


def test_text_search_pages_with_token():
    recorder = Recorder(httpx.Response(200, json={"places": [{"id": "t1"}], "nextPageToken": "next"}))
    google = _client(recorder)

    first = _text(google)
    assert "pageToken" not in recorder.last_body
    assert first.next_page_token == "next"

    _text(google, page_token="next")
    body = recorder.last_body
    assert body["pageToken"] == "next"
    assert body["textQuery"] == "jazz"
    assert recorder.requests[-1].url.path.endswith("places:searchText")
    assert recorder.last_mask.endswith(",nextPageToken")


def test_field_mask_shape():
    assert build_field_mask(include_who=False).startswith("places.id,places.displayName")
    assert "nextPageToken" not in build_field_mask()
    assert "places.goodForChildren" in build_field_mask().split(",")


@pytest.mark.parametrize(
    "status,payload,provider_status,message",
    [
        (429, {"error": {"status": "RESOURCE_EXHAUSTED", "message": "quota"}}, "RESOURCE_EXHAUSTED",
         "Rate limit exceeded"),
        (403, {"error": {"status": "PERMISSION_DENIED"}}, "PERMISSION_DENIED",
         "API key invalid or request denied"),
        (400, {"error": {"status": "INVALID_ARGUMENT", "message": "bad type"}}, "INVALID_ARGUMENT",
         "Invalid request parameters: bad type"),
    ],
)
def test_provider_errors_are_normalized(status, payload, provider_status, message):
    google = _client(Recorder(httpx.Response(status, json=payload)))

    with pytest.raises(GooglePlacesError) as exc:
        _nearby(google)

    assert exc.value.normalized == {"status": status, "message": message, "providerStatus": provider_status}
    assert google.stats[provider_status] == 1


def test_non_json_server_error_is_normalized():
    google = _client(Recorder(httpx.Response(503, text="upstream unavailable")))
    with pytest.raises(GooglePlacesError) as exc:
        _text(google)
    assert exc.value.normalized == {
        "status": 503,
        "message": "API error: UNKNOWN - Unknown error",
        "providerStatus": "UNKNOWN",
    }


def test_transport_error_is_normalized():
    google = _client(Recorder(error=httpx.ConnectError("connection refused")))
    with pytest.raises(GooglePlacesError) as exc:
        _nearby(google)
    assert exc.value.normalized == {
        "status": None,
        "message": "Request failed: connection refused",
        "providerStatus": None,
    }
    assert google.stats["TRANSPORT"] == 1


def test_api_key_check():
    assert has_usable_api_key(KEY)
    assert not has_usable_api_key("short")
    assert not has_usable_api_key(None)
    assert not GooglePlaces(api_key="").is_configured()


def test_owned_client_is_closed_but_injected_client_is_not():
    google = GooglePlaces(api_key=KEY)
    owned = google._get_client()
    asyncio.run(google.aclose())
    assert owned.is_closed

    injected = httpx.AsyncClient(transport=httpx.MockTransport(Recorder()), base_url=BASE_URL)
    asyncio.run(GooglePlaces(api_key=KEY, client=injected).aclose())
    assert not injected.is_closed


def test_global_service_is_closed_on_shutdown(monkeypatch, service_factory, fake_provider_cls):
    closed = []

    class ClosingProvider(fake_provider_cls):
        async def aclose(self):
            closed.append("provider")

    monkeypatch.setattr(discovery_service, "_discovery_service", service_factory(ClosingProvider()))

    asyncio.run(discovery_service.close_discovery_service())

    assert closed == ["provider"]
    assert discovery_service._discovery_service is None
