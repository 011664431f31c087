#!/usr/bin/env python3
"""Places discovery service: new searches and cursor continuations"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apps.core.config import settings
from apps.core.feature_flags import get_cursor_config, get_fallback_policy, is_places_debug, is_prefetch_all_enabled
from apps.places.dto import AuditEntry, CuratedPlace, SearchState
from apps.places.errors import ConfigurationError
from apps.places.services.cursor_store import CursorStore, create_cursor_store
from apps.places.services.discovery_engine import (
    MAX_SINGLE_WAIT_MS,
    PREFETCH_BUFFER,
    TOKEN_WAIT_PADDING_MS,
    DiscoveryEngine,
)
from apps.places.services.google_places import GooglePlaces, PlacesProvider
from apps.places.services.pagination import ServedPage, serve_from_cursor, serve_page
from apps.places.services.promotions import PromoEventHydrator, PromoEventStore, SqlPromoEventStore
from apps.places.services.query_hash import compute_engine_hash, compute_query_hash
from apps.places.services.query_normalizer import normalize_query, parse_per_page, resolve_target_at
from apps.places.services.search_catalog import SearchCatalog, load_search_catalog
from apps.places.services.stream_planner import plan_streams
from apps.places.services.who_profile import resolve_who_profile

logger = logging.getLogger(__name__)

API_KEY_MISSING = "Server misconfigured (Google API key missing)."


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class DiscoveryPage:
    curated_places: List[CuratedPlace]
    meta: Dict[str, Any]

    def to_response(self) -> Dict[str, Any]:
        return {
            "curatedPlaces": [p.to_client() for p in self.curated_places],
            "meta": self.meta,
        }


class PlacesDiscoveryService:
    """Wires normalizer, planner, engine, hydrator and cursor store together"""

    def __init__(
        self,
        provider: PlacesProvider,
        promo_store: PromoEventStore,
        cursor_store: CursorStore,
        *,
        catalog_loader: Callable[[], SearchCatalog] = load_search_catalog,
        clock_ms: Callable[[], int] = _now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        prefetch_all: Optional[bool] = None,
        fallback_policy: Optional[str] = None,
    ):
        self.provider = provider
        self.cursor_store = cursor_store
        self.catalog_loader = catalog_loader
        self.clock_ms = clock_ms
        self.sleep = sleep
        self._prefetch_all = prefetch_all
        self.engine = DiscoveryEngine(
            provider,
            PromoEventHydrator(promo_store),
            clock_ms=clock_ms,
            sleep=sleep,
            fallback_policy=fallback_policy or get_fallback_policy(),
        )

    async def aclose(self) -> None:
        await self.provider.aclose()
        await self.cursor_store.aclose()

    def _prefetch_enabled(self, requested: Optional[bool]) -> bool:
        if requested is not None:
            return requested
        if self._prefetch_all is not None:
            return self._prefetch_all
        return is_prefetch_all_enabled()

    def _debug_enabled(self, requested: bool) -> bool:
        return requested or is_places_debug()

    def build_state(self, body: Any) -> SearchState:
        """Normalize the request and plan its streams into a fresh SearchState."""
        query = normalize_query(body)
        plan = plan_streams(query, self.catalog_loader())
        now_ms = self.clock_ms()
        target_at = resolve_target_at(query, datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc))

        state = SearchState(
            cursor_id=uuid.uuid4().hex,
            query=query,
            query_hash=compute_query_hash(query),
            engine_hash=compute_engine_hash(
                query,
                excluded_types=plan.excluded_types,
                rank_preference=plan.rank_preference,
                target_at_iso=target_at.isoformat(),
                text_fallback_query=plan.text_fallback_query,
            ),
            target_at=target_at,
            excluded_types=plan.excluded_types,
            rank_preference=plan.rank_preference,
            who_profile=resolve_who_profile(query.who, query.place_category),
            text_fallback_query=plan.text_fallback_query,
            streams=plan.streams,
            created_at_ms=now_ms,
        )
        return state

    async def _fill_lazily(self, state: SearchState, per_page: int) -> None:
        await self.engine.fill_for_page(state, per_page)
        if state.pending or not state.any_remaining():
            return
        # nothing to serve yet but a text stream is about to become ready
        delay = self.engine.soonest_token_delay_ms(state, self.clock_ms())
        if delay is not None and 0 < delay <= MAX_SINGLE_WAIT_MS:
            await self.sleep((delay + TOKEN_WAIT_PADDING_MS) / 1000)
            await self.engine.fill_for_page(state, per_page)

    async def _refill_for_continuation(self, state: SearchState, per_page: int) -> None:
        if not state.any_remaining() or len(state.pending) >= per_page + PREFETCH_BUFFER:
            return
        if self.engine.remaining_call_budget(state) <= 0:
            return
        await self._fill_lazily(state, per_page)

    def _meta(
        self,
        state: SearchState,
        served: ServedPage,
        per_page: int,
        started_ms: int,
        debug: bool,
    ) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "cursor": served.cursor,
            "perPage": per_page,
            "hasMore": served.has_more,
            "queryHash": state.query_hash,
            "pageNo": served.page_no,
            "version": served.version,
            "remainingBefore": served.remaining_before,
            "remainingAfter": served.remaining_after,
            "servedHead": served.served_head,
            "remainingHead": served.remaining_head,
            "storage": self.cursor_store.kind,
            "provider": getattr(self.provider, "name", "provider"),
            "elapsedMs": max(0, self.clock_ms() - started_ms),
        }
        if debug:
            meta["debug"] = state.debug_snapshot()
        return meta

    async def start_search(self, body: Any, req_id: Optional[str] = None) -> DiscoveryPage:
        started_ms = self.clock_ms()
        if not self.provider.is_configured():
            raise ConfigurationError(API_KEY_MISSING)

        state = self.build_state(body)
        query = state.query
        state.add_audit(AuditEntry(
            t=started_ms, kind="create", req_id=req_id, streams=len(state.streams),
        ))
        logger.info(
            "Created search cursor=%s streams=%d hash=%s",
            state.cursor_id[:8], len(state.streams), state.query_hash[:10],
        )

        if self._prefetch_enabled(query.prefetch_all):
            await self.engine.prefetch_all_results(state)
        else:
            await self._fill_lazily(state, query.per_page)

        served = await serve_page(
            self.cursor_store, state, query.per_page, now_ms=self.clock_ms(), req_id=req_id
        )
        return DiscoveryPage(
            curated_places=served.items,
            meta=self._meta(state, served, query.per_page, started_ms, self._debug_enabled(query.debug)),
        )

    async def continue_search(
        self,
        cursor_id: str,
        per_page: Any = None,
        query_hash: Optional[str] = None,
        *,
        debug: bool = False,
        req_id: Optional[str] = None,
    ) -> DiscoveryPage:
        started_ms = self.clock_ms()
        cursor_cfg = get_cursor_config()
        page_size = parse_per_page(per_page)

        state, served = await serve_from_cursor(
            self.cursor_store,
            cursor_id,
            page_size,
            query_hash,
            now_ms=self.clock_ms,
            req_id=req_id,
            enforce_query_hash=cursor_cfg["enforce_query_hash"],
            use_lock=cursor_cfg["op_lock"],
            refill=lambda s: self._refill_for_continuation(s, page_size),
        )
        return DiscoveryPage(
            curated_places=served.items,
            meta=self._meta(state, served, page_size, started_ms, self._debug_enabled(debug or state.query.debug)),
        )


# Global instance
_discovery_service: Optional[PlacesDiscoveryService] = None


def get_discovery_service() -> PlacesDiscoveryService:
    """Get global discovery service instance."""
    global _discovery_service
    if _discovery_service is None:
        _discovery_service = PlacesDiscoveryService(
            provider=GooglePlaces(),
            promo_store=SqlPromoEventStore(),
            cursor_store=create_cursor_store(settings),
        )
    return _discovery_service


def reset_discovery_service() -> None:
    global _discovery_service
    _discovery_service = None


async def close_discovery_service() -> None:
    """Release provider and cursor store connections of the global instance, if one was built."""
    global _discovery_service
    if _discovery_service is not None:
        await _discovery_service.aclose()
        _discovery_service = None
