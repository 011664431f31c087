#!/usr/bin/env python3
"""
Pydantic DTOs for the discovery flow.

SearchState is the single persisted record per cursor. It is serialized to JSON
between requests and owns its streams (spec + meta pairs), the pending queue
and the dedup set.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

AUDIT_MAX_ENTRIES = 12

REJECTION_REASONS = (
    "excludedType",
    "dateNightReject",
    "placesFiltersReject",
    "whoGuardrailReject",
    "excludedBudget",
    "mapReject",
)


class TimeContext(BaseModel):
    """Where the target instant is interpreted: an IANA zone, or a fixed offset"""

    time_zone: Optional[str] = None
    tz_offset_minutes: Optional[int] = None

    @property
    def can_compute(self) -> bool:
        return bool(self.time_zone) or self.tz_offset_minutes is not None


class PlacesFilters(BaseModel):
    open_now_only: bool = False
    dog_friendly: bool = False
    outdoor_seating: bool = False
    live_music: bool = False
    reservable: bool = False
    avoid_bars: bool = False
    avoid_fast_food: bool = False


class SearchQuery(BaseModel):
    """Canonical query. Built once by the normalizer, never mutated afterwards."""

    lat: float
    lng: float
    radius_meters: float
    per_page: int = 15
    mode: str = "places"
    activity_type: Optional[str] = None
    quick_filter: Optional[str] = None
    place_category: Optional[str] = None
    dining_mode: Optional[str] = None
    budget: Optional[str] = None
    max_tier: Optional[int] = None
    include_unpriced: bool = True
    keyword: Optional[str] = None
    vibes: List[str] = Field(default_factory=list)
    who: Optional[str] = None
    family_friendly: bool = False
    places_filters: PlacesFilters = Field(default_factory=PlacesFilters)
    event_filters: Dict[str, Any] = Field(default_factory=dict)
    event_category: Optional[str] = None
    when: Optional[Any] = None
    when_at_iso: Optional[str] = None
    time_context: TimeContext = Field(default_factory=TimeContext)
    prefetch_all: Optional[bool] = None
    debug: bool = False


class WhoProfile(BaseModel):
    key: str
    boost_types: List[str] = Field(default_factory=list)
    penalize_types: List[str] = Field(default_factory=list)
    hard_exclude_types: List[str] = Field(default_factory=list)
    boost_attrs: Dict[str, int] = Field(default_factory=dict)
    disallow_if_false: List[str] = Field(default_factory=list)


class StreamSpec(BaseModel):
    kind: Literal["nearby", "text"]
    stage: Literal["primary", "fallback"] = "primary"
    included_types: List[str] = Field(default_factory=list)
    text_query: Optional[str] = None
    max_result_count: int = 20


class StreamMeta(BaseModel):
    fetched: bool = False
    exhausted: bool = False
    next_page_token: Optional[str] = None
    token_ready_at_ms: int = 0
    calls: int = 0
    failures: int = 0


class StreamSlot(BaseModel):
    """One stream and its pagination state, addressed by a stable id"""

    stream_id: str
    spec: StreamSpec
    meta: StreamMeta = Field(default_factory=StreamMeta)

    def is_waiting_on_token(self, now_ms: int) -> bool:
        return (
            self.spec.kind == "text"
            and bool(self.meta.next_page_token)
            and now_ms < self.meta.token_ready_at_ms
        )

    def is_eligible(self, now_ms: int) -> bool:
        return not self.meta.exhausted and not self.is_waiting_on_token(now_ms)

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.stream_id,
            "kind": self.spec.kind,
            "stage": self.spec.stage,
            "types": self.spec.included_types,
            "text": self.spec.text_query,
            "exhausted": self.meta.exhausted,
            "hasToken": bool(self.meta.next_page_token),
            "calls": self.meta.calls,
        }


class GeoPoint(BaseModel):
    lat: float
    lng: float


class CuratedPlace(BaseModel):
    """A filtered, mapped candidate as served to clients"""

    model_config = ConfigDict(populate_by_name=True)

    place_id: str
    name: str = ""
    types: List[str] = Field(default_factory=list)
    address: Optional[str] = None
    location: GeoPoint
    distance: float = Field(description="miles from the search origin")
    photo_name: Optional[str] = Field(None, alias="photoName")
    rating: Optional[float] = None
    user_rating_count: Optional[int] = Field(None, alias="userRatingCount")
    price_tier: Optional[int] = Field(None, alias="priceTier")
    pet_friendly: Optional[bool] = Field(None, alias="petFriendly")
    open_now: Optional[bool] = Field(None, alias="openNow")
    opening_hours: Optional[Dict[str, Any]] = Field(None, alias="openingHours")
    open_at_target: Optional[bool] = Field(None, alias="openAtTarget")
    who_score: int = Field(0, alias="whoScore")
    promotions: List[Dict[str, Any]] = Field(default_factory=list)
    events: List[Dict[str, Any]] = Field(default_factory=list)
    promo_rank: int = Field(0, alias="promoRank")
    hydrated: bool = False

    def to_client(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude={"hydrated"})


class SearchTotals(BaseModel):
    google_calls: int = 0
    results_seen: int = 0
    added: int = 0
    dup: int = 0
    missing_id: int = 0
    rejections: Dict[str, int] = Field(default_factory=lambda: {r: 0 for r in REJECTION_REASONS})

    def reject(self, reason: str) -> None:
        self.rejections[reason] = self.rejections.get(reason, 0) + 1

    def to_client(self) -> Dict[str, Any]:
        return {
            "googleCalls": self.google_calls,
            "resultsSeen": self.results_seen,
            "added": self.added,
            "dup": self.dup,
            "missingId": self.missing_id,
            **self.rejections,
        }


class AuditEntry(BaseModel):
    t: int
    kind: Literal["create", "serve"]
    req_id: Optional[str] = None
    before: int = 0
    after: int = 0
    per_page: Optional[int] = None
    served_head: List[str] = Field(default_factory=list)
    remaining_head_after: List[str] = Field(default_factory=list)
    version: int = 0
    page_no: int = 0
    streams: Optional[int] = None


class SearchState(BaseModel):
    """Mutable engine state for one logical search"""

    cursor_id: str
    query: SearchQuery
    query_hash: str
    engine_hash: str
    target_at: datetime
    excluded_types: List[str] = Field(default_factory=list)
    rank_preference: Optional[str] = None
    who_profile: Optional[WhoProfile] = None
    text_fallback_query: Optional[str] = None
    streams: List[StreamSlot] = Field(default_factory=list)
    cursor_index: int = 0
    fallback_armed: bool = False
    pending: List[CuratedPlace] = Field(default_factory=list)
    seen_ids: Set[str] = Field(default_factory=set)
    totals: SearchTotals = Field(default_factory=SearchTotals)
    page_no: int = 0
    version: int = 0
    audit: List[AuditEntry] = Field(default_factory=list)
    created_at_ms: int = 0
    last_served_at_ms: Optional[int] = None
    last_served_req_id: Optional[str] = None

    def any_remaining(self) -> bool:
        """True while some stream can still produce results."""
        return any(not slot.meta.exhausted for slot in self.streams)

    def get_stream(self, stream_id: str) -> Optional[StreamSlot]:
        for slot in self.streams:
            if slot.stream_id == stream_id:
                return slot
        return None

    def add_audit(self, entry: AuditEntry) -> None:
        self.audit.append(entry)
        if len(self.audit) > AUDIT_MAX_ENTRIES:
            self.audit = self.audit[-AUDIT_MAX_ENTRIES:]

    def take_page(self, per_page: int) -> List[CuratedPlace]:
        page = self.pending[:per_page]
        self.pending = self.pending[per_page:]
        return page

    def pending_head(self, n: int = 3) -> List[str]:
        return [p.place_id for p in self.pending[:n]]

    def debug_snapshot(self) -> Dict[str, Any]:
        return {
            "totals": self.totals.to_client(),
            "auditLen": len(self.audit),
            "audit": [a.model_dump() for a in self.audit],
            "pendingHead": self.pending_head(5),
            "fallbackArmed": self.fallback_armed,
            "cursorIndex": self.cursor_index,
            "engineHash": self.engine_hash,
            "streams": [s.summary() for s in self.streams],
        }

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: str) -> "SearchState":
        return cls.model_validate_json(payload)
