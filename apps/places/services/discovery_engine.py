"""
Discovery engine: pumps a search's streams through the candidate filters into
its pending queue, under per-request and per-search call/result budgets.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from apps.core.feature_flags import FALLBACK_POLICY_ALWAYS, FALLBACK_POLICY_WHEN_UNDERFILLED
from apps.places.dto import SearchState, StreamSlot
from apps.places.services.candidate_filters import evaluate_candidate
from apps.places.services.google_places import GooglePlacesError, PlacesProvider, ProviderPage
from apps.places.services.stream_planner import is_valid_nearby_types

logger = logging.getLogger(__name__)

TOKEN_DELAY_MS = 1500
PREFETCH_BUFFER = 12
MAX_GOOGLE_CALLS_PER_REQUEST = 20
PREFETCH_ALL_CHUNK = 80
MAX_GOOGLE_CALLS_PER_SEARCH = 250
MAX_TOTAL_RESULTS = 600
MAX_TOKEN_WAIT_MS = 12000
MAX_SINGLE_WAIT_MS = 2000
TOKEN_WAIT_PADDING_MS = 25
MAX_STREAM_FAILURES = 3


def _now_ms() -> int:
    return int(time.time() * 1000)


class DiscoveryEngine:
    """Fill loop over a SearchState; the provider, hydrator, clock and sleep are injected."""

    def __init__(
        self,
        provider: PlacesProvider,
        hydrator: Any,
        *,
        clock_ms: Callable[[], int] = _now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        fallback_policy: str = FALLBACK_POLICY_ALWAYS,
    ):
        self.provider = provider
        self.hydrator = hydrator
        self.clock_ms = clock_ms
        self.sleep = sleep
        self.fallback_policy = fallback_policy

    # stream scheduling

    def remaining_call_budget(self, state: SearchState) -> int:
        return max(0, MAX_GOOGLE_CALLS_PER_SEARCH - state.totals.google_calls)

    def _fallback_gated(self, state: SearchState, slot: StreamSlot) -> bool:
        return (
            self.fallback_policy == FALLBACK_POLICY_WHEN_UNDERFILLED
            and slot.spec.stage == "fallback"
            and not state.fallback_armed
        )

    def _maybe_arm_fallback(self, state: SearchState, want: int) -> None:
        if self.fallback_policy != FALLBACK_POLICY_WHEN_UNDERFILLED or state.fallback_armed:
            return
        primaries = [s for s in state.streams if s.spec.stage == "primary"]
        has_fallback = any(s.spec.stage == "fallback" for s in state.streams)
        if has_fallback and all(s.meta.exhausted for s in primaries) and len(state.pending) < want:
            state.fallback_armed = True
            logger.info("Fallback streams armed for cursor %s (pending=%d, want=%d)",
                        state.cursor_id[:8], len(state.pending), want)

    def next_eligible_index(self, state: SearchState, now_ms: int) -> Optional[int]:
        """Round-robin from ``state.cursor_index``; skips exhausted, token-delayed and gated streams."""
        n = len(state.streams)
        if n == 0:
            return None
        start = state.cursor_index % n
        for offset in range(n):
            idx = (start + offset) % n
            slot = state.streams[idx]
            if slot.is_eligible(now_ms) and not self._fallback_gated(state, slot):
                return idx
        return None

    def soonest_token_delay_ms(self, state: SearchState, now_ms: int) -> Optional[int]:
        waits = [
            slot.meta.token_ready_at_ms - now_ms
            for slot in state.streams
            if not slot.meta.exhausted and slot.is_waiting_on_token(now_ms)
        ]
        return min(waits) if waits else None

    # provider calls

    async def _call_stream(self, state: SearchState, slot: StreamSlot) -> ProviderPage:
        query = state.query
        include_now = query.when == "now"
        if slot.spec.kind == "nearby":
            return await self.provider.fetch_nearby_places(
                lat=query.lat,
                lng=query.lng,
                radius_meters=query.radius_meters,
                included_types=slot.spec.included_types,
                excluded_types=[t for t in state.excluded_types if t not in slot.spec.included_types],
                rank_preference=state.rank_preference,
                max_result_count=slot.spec.max_result_count,
                include_now=include_now,
            )
        return await self.provider.fetch_places_text(
            text_query=slot.spec.text_query or "",
            lat=query.lat,
            lng=query.lng,
            radius_meters=query.radius_meters,
            page_token=slot.meta.next_page_token,
            max_result_count=slot.spec.max_result_count,
            include_now=include_now,
        )

    def _on_success(self, slot: StreamSlot, page: ProviderPage, now_ms: int) -> None:
        meta = slot.meta
        meta.fetched = True
        if slot.spec.kind == "nearby":
            meta.exhausted = True
            return
        if page.next_page_token:
            meta.next_page_token = page.next_page_token
            meta.token_ready_at_ms = now_ms + TOKEN_DELAY_MS
        else:
            meta.next_page_token = None
            meta.exhausted = True

    def _on_failure(self, state: SearchState, slot: StreamSlot, error: Exception, now_ms: int) -> None:
        meta = slot.meta
        meta.failures += 1
        if isinstance(error, GooglePlacesError):
            normalized = error.normalized
        else:
            normalized = {"status": None, "message": str(error), "providerStatus": None}
        logger.warning(
            "Provider call failed for stream %s: %s",
            slot.stream_id, normalized["message"],
            extra={"cursor": state.cursor_id[:8], "provider_error": normalized},
        )
        if slot.spec.kind == "text" and meta.next_page_token and meta.failures < MAX_STREAM_FAILURES:
            meta.token_ready_at_ms = now_ms + TOKEN_DELAY_MS
            return
        meta.exhausted = True

    def _admit(self, state: SearchState, places: List[Dict[str, Any]]) -> None:
        target_at = state.target_at
        base_ctx = state.query.time_context
        totals = state.totals
        for place in places:
            if len(state.pending) >= MAX_TOTAL_RESULTS:
                break
            totals.results_seen += 1
            place_id = place.get("id") if isinstance(place, dict) else None
            if not place_id:
                totals.missing_id += 1
                continue
            place_id = str(place_id)
            if place_id in state.seen_ids:
                totals.dup += 1
                continue

            verdict = evaluate_candidate(place, state, target_at, base_ctx)
            if not verdict.ok:
                totals.reject(verdict.reason)
                continue

            state.seen_ids.add(place_id)
            state.pending.append(verdict.place)
            totals.added += 1

    # fill drivers

    async def fill_pending(self, state: SearchState, want_count: int, max_calls: int) -> int:
        """
        Pump streams until ``pending`` holds ``want_count`` items, the call budget
        for this invocation is spent, or no stream is eligible. Returns calls made.
        """
        want = min(want_count, MAX_TOTAL_RESULTS)
        max_calls = min(max_calls, self.remaining_call_budget(state))
        calls = 0
        while len(state.pending) < want and calls < max_calls:
            self._maybe_arm_fallback(state, want)
            now_ms = self.clock_ms()
            idx = self.next_eligible_index(state, now_ms)
            if idx is None:
                break
            slot = state.streams[idx]
            state.cursor_index = (idx + 1) % len(state.streams)

            if slot.spec.kind == "nearby" and not is_valid_nearby_types(slot.spec.included_types):
                logger.warning("Skipping nearby stream %s with invalid types %s",
                               slot.stream_id, slot.spec.included_types)
                slot.meta.exhausted = True
                continue

            calls += 1
            state.totals.google_calls += 1
            slot.meta.calls += 1
            try:
                page = await self._call_stream(state, slot)
            except Exception as e:
                # any provider failure is contained to its stream
                self._on_failure(state, slot, e, self.clock_ms())
                continue

            self._on_success(slot, page, self.clock_ms())
            self._admit(state, page.places)

        logger.debug(
            "fill_pending cursor=%s want=%d pending=%d calls=%d remaining=%s",
            state.cursor_id[:8], want, len(state.pending), calls, state.any_remaining(),
        )
        return calls

    async def prefetch_all_results(self, state: SearchState) -> int:
        """Materialize the whole search in chunks, waiting out page tokens, then hydrate and sort."""
        calls_at_start = state.totals.google_calls
        waited_ms = 0
        while (
            state.any_remaining()
            and len(state.pending) < MAX_TOTAL_RESULTS
            and state.totals.google_calls < MAX_GOOGLE_CALLS_PER_SEARCH
        ):
            want = min(MAX_TOTAL_RESULTS, len(state.pending) + PREFETCH_ALL_CHUNK)
            made = await self.fill_pending(state, want, self.remaining_call_budget(state))
            if made > 0:
                continue
            if not state.any_remaining():
                break

            delay = self.soonest_token_delay_ms(state, self.clock_ms())
            if delay is None or delay <= 0 or waited_ms >= MAX_TOKEN_WAIT_MS:
                break
            wait_ms = min(delay + TOKEN_WAIT_PADDING_MS, MAX_SINGLE_WAIT_MS, MAX_TOKEN_WAIT_MS - waited_ms)
            logger.debug("Waiting %dms for page token (cursor=%s)", wait_ms, state.cursor_id[:8])
            await self.sleep(wait_ms / 1000)
            waited_ms += wait_ms

        await self.hydrator.hydrate_and_sort(state)
        calls = state.totals.google_calls - calls_at_start
        logger.info(
            "Prefetched cursor=%s pending=%d calls=%d waited_ms=%d remaining=%s",
            state.cursor_id[:8], len(state.pending), calls, waited_ms, state.any_remaining(),
        )
        return calls

    async def fill_for_page(self, state: SearchState, per_page: int) -> int:
        """Lazy mode: top up enough for one page plus a buffer, then hydrate and sort."""
        calls = await self.fill_pending(
            state,
            per_page + PREFETCH_BUFFER,
            min(MAX_GOOGLE_CALLS_PER_REQUEST, self.remaining_call_budget(state)),
        )
        await self.hydrator.hydrate_and_sort(state)
        return calls
