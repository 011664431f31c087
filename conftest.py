import os
from typing import Any, Dict, List, Optional

import pytest

os.environ.setdefault("DATABASE_URL", "postgresql+psycopg://pd:pd@localhost:5432/pd")

from apps.core.cache import TTLCache  # noqa: E402
from apps.core.feature_flags import reset_feature_flags  # noqa: E402
from apps.places.services.cursor_store import MemoryCursorStore  # noqa: E402
from apps.places.services.discovery_service import PlacesDiscoveryService  # noqa: E402
from apps.places.services.google_places import GooglePlacesError, PlacesProvider, ProviderPage  # noqa: E402
from apps.places.services.search_catalog import DEFAULT_CATALOG, SearchCatalog  # noqa: E402

ORIGIN = (41.88, -87.63)
START_MS = 1_760_000_000_000


class FakeClock:
    """Millisecond clock that only moves when the fake sleep is awaited"""

    def __init__(self, start_ms: int = START_MS):
        self.now_ms = start_ms
        self.sleeps: List[float] = []

    def __call__(self) -> int:
        return self.now_ms

    def seconds(self) -> float:
        return self.now_ms / 1000

    def advance(self, ms: int) -> None:
        self.now_ms += ms

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now_ms += int(seconds * 1000)


class FakeProvider(PlacesProvider):
    """
    Canned provider. Nearby results are keyed by the comma-joined included
    types, text results by query as a list of pages chained with tokens.
    """

    name = "fake"

    def __init__(
        self,
        nearby: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        text: Optional[Dict[str, List[List[Dict[str, Any]]]]] = None,
        failing: Optional[set] = None,
        configured: bool = True,
    ):
        self.nearby = nearby or {}
        self.text = text or {}
        self.failing = set(failing or ())
        self.configured = configured
        self.calls: List[Dict[str, Any]] = []

    def is_configured(self) -> bool:
        return self.configured

    async def fetch_nearby_places(self, *, included_types, excluded_types, **kwargs) -> ProviderPage:
        key = ",".join(included_types)
        self.calls.append({"kind": "nearby", "key": key, "excluded": list(excluded_types), **kwargs})
        if key in self.failing:
            raise GooglePlacesError("boom", status=503, provider_status="UNAVAILABLE")
        return ProviderPage(places=list(self.nearby.get(key, [])))

    async def fetch_places_text(self, *, text_query, page_token=None, **kwargs) -> ProviderPage:
        self.calls.append({"kind": "text", "key": text_query, "page_token": page_token, **kwargs})
        if text_query in self.failing:
            raise GooglePlacesError("boom", status=503, provider_status="UNAVAILABLE")
        pages = self.text.get(text_query, [])
        index = int(page_token.split("-")[1]) if page_token else 0
        places = pages[index] if index < len(pages) else []
        next_token = f"tok-{index + 1}" if index + 1 < len(pages) else None
        return ProviderPage(places=list(places), next_page_token=next_token)


class FakePromoStore:
    def __init__(self, records: Optional[Dict[str, Dict[str, List[Dict[str, Any]]]]] = None, fail: bool = False):
        self.records = records or {}
        self.fail = fail
        self.requested: List[List[str]] = []

    async def load_for_places(self, place_ids):
        self.requested.append(list(place_ids))
        if self.fail:
            raise RuntimeError("promo store down")
        return {pid: self.records[pid] for pid in place_ids if pid in self.records}


def build_place(
    place_id: str,
    *,
    types=("restaurant",),
    name: Optional[str] = None,
    lat: float = ORIGIN[0] + 0.001,
    lng: float = ORIGIN[1] + 0.001,
    price_level: Any = None,
    **extra: Any,
) -> Dict[str, Any]:
    place = {
        "id": place_id,
        "displayName": {"text": name or f"Place {place_id}"},
        "types": list(types),
        "location": {"latitude": lat, "longitude": lng},
        "shortFormattedAddress": f"{place_id} Main St",
    }
    if price_level is not None:
        place["priceLevel"] = price_level
    place.update(extra)
    return place


@pytest.fixture(autouse=True)
def _clean_feature_flags(monkeypatch):
    for name in (
        "PLACES_PREFETCH_ALL",
        "PLACES_FALLBACK_POLICY",
        "ENFORCE_QUERYHASH_ON_CURSOR",
        "ENABLE_CURSOR_OP_LOCK",
        "PLACES_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_feature_flags()
    yield
    reset_feature_flags()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_place():
    return build_place


@pytest.fixture
def fake_provider_cls():
    return FakeProvider


@pytest.fixture
def promo_store_cls():
    return FakePromoStore


@pytest.fixture
def catalog():
    return SearchCatalog(DEFAULT_CATALOG)


@pytest.fixture
def memory_store(clock):
    return MemoryCursorStore(cache=TTLCache(900, max_entries=100, clock=clock.seconds), ttl_seconds=900)


@pytest.fixture
def service_factory(clock, memory_store, catalog):
    def _build(provider, promo_store=None, **kwargs):
        return PlacesDiscoveryService(
            provider=provider,
            promo_store=promo_store or FakePromoStore(),
            cursor_store=kwargs.pop("cursor_store", memory_store),
            catalog_loader=lambda: catalog,
            clock_ms=clock,
            sleep=clock.sleep,
            **kwargs,
        )
    return _build
