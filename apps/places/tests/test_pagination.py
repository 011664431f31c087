import asyncio
from datetime import datetime, timezone

import pytest

from apps.places.dto import AUDIT_MAX_ENTRIES, CuratedPlace, GeoPoint, SearchQuery, SearchState, StreamSlot, StreamSpec
from apps.places.errors import CursorNotFoundError, CursorQueryMismatchError, QueryValidationError
from apps.places.services.pagination import serve_from_cursor, serve_page


def _state(n_pending, *, exhausted=True, cursor_id="cur1"):
    slot = StreamSlot(stream_id="nearby:0", spec=StreamSpec(kind="nearby", included_types=["bar"]))
    slot.meta.exhausted = exhausted
    return SearchState(
        cursor_id=cursor_id,
        query=SearchQuery(lat=41.88, lng=-87.63, radius_meters=8000, quick_filter="liveMusic"),
        query_hash="hash-1",
        engine_hash="e",
        target_at=datetime(2026, 10, 17, 6, 0, tzinfo=timezone.utc),
        streams=[slot],
        pending=[
            CuratedPlace(place_id=f"p{i:02d}", location=GeoPoint(lat=41.88, lng=-87.63), distance=1.0)
            for i in range(n_pending)
        ],
        seen_ids={f"p{i:02d}" for i in range(n_pending)},
    )


def _continue(store, cursor_id, per_page, query_hash=None, clock=lambda: 1, **kwargs):
    return asyncio.run(serve_from_cursor(store, cursor_id, per_page, query_hash, now_ms=clock, **kwargs))


def test_short_final_page_drains_and_deletes(memory_store):
    state = _state(10)
    asyncio.run(memory_store.set(state))

    loaded, served = _continue(memory_store, "cur1", 15, "hash-1")

    assert len(served.items) == 10
    assert served.has_more is False
    assert served.cursor is None
    assert served.remaining_before == 10 and served.remaining_after == 0
    assert asyncio.run(memory_store.get("cur1")) is None


def test_pages_never_repeat_and_persist_progress(memory_store):
    asyncio.run(memory_store.set(_state(40)))
    seen = []
    for expected_page in (1, 2, 3):
        state, served = _continue(memory_store, "cur1", 15, "hash-1")
        seen += [p.place_id for p in served.items]
        assert served.page_no == expected_page
        assert served.version == expected_page
    assert len(seen) == 40 and len(set(seen)) == 40
    assert served.cursor is None


def test_has_more_while_streams_remain(memory_store):
    state = _state(0, exhausted=False)
    served = asyncio.run(serve_page(memory_store, state, 15, now_ms=5))
    assert served.items == []
    assert served.has_more is True
    assert served.cursor == "cur1"
    assert asyncio.run(memory_store.get("cur1")) is not None


def test_hash_mismatch_rejects_without_serving(memory_store):
    asyncio.run(memory_store.set(_state(10)))
    with pytest.raises(CursorQueryMismatchError) as exc:
        _continue(memory_store, "cur1", 5, "some-other-hash")
    assert exc.value.status_code == 400
    stored = asyncio.run(memory_store.get("cur1"))
    assert len(stored.pending) == 10 and stored.version == 0


def test_missing_cursor_and_enforced_hash(memory_store):
    with pytest.raises(CursorNotFoundError) as exc:
        _continue(memory_store, "nope", 5)
    assert exc.value.status_code == 404

    asyncio.run(memory_store.set(_state(10)))
    with pytest.raises(CursorQueryMismatchError):
        _continue(memory_store, "cur1", 5, None, enforce_query_hash=True)
    with pytest.raises(QueryValidationError):
        _continue(memory_store, "   ", 5)


def test_held_lock_does_not_block_continuation(memory_store):
    class LockedStore(type(memory_store)):
        released = []

        async def acquire_lock(self, cursor_id, owner):
            return False

        async def release_lock(self, cursor_id, owner):
            self.released.append(owner)

    store = LockedStore(cache=memory_store.cache)
    asyncio.run(store.set(_state(10)))
    _, served = _continue(store, "cur1", 5, "hash-1", use_lock=True, req_id="r1")
    assert len(served.items) == 5
    assert LockedStore.released == []


def test_serve_audit_entries_are_bounded(memory_store):
    state = _state(50)
    for i in range(20):
        asyncio.run(serve_page(memory_store, state, 1, now_ms=1000 + i, req_id=f"r{i}"))
    assert len(state.audit) == AUDIT_MAX_ENTRIES
    last = state.audit[-1]
    assert last.kind == "serve"
    assert last.req_id == "r19"
    assert last.before == 31 and last.after == 30
    assert last.served_head == ["p19"]
    assert last.remaining_head_after == ["p20", "p21", "p22"]
    assert state.last_served_req_id == "r19"


def test_refill_runs_before_serving(memory_store):
    asyncio.run(memory_store.set(_state(0, exhausted=False)))

    async def refill(state):
        state.pending.append(CuratedPlace(place_id="fresh", location=GeoPoint(lat=0, lng=0), distance=0.1))
        state.streams[0].meta.exhausted = True

    _, served = _continue(memory_store, "cur1", 5, refill=refill)
    assert [p.place_id for p in served.items] == ["fresh"]
    assert served.cursor is None
