"""Serving fixed-size pages off a SearchState and persisting what remains."""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from apps.places.dto import AuditEntry, CuratedPlace, SearchState
from apps.places.errors import CursorNotFoundError, CursorQueryMismatchError, QueryValidationError
from apps.places.services.cursor_store import CursorStore

logger = logging.getLogger(__name__)

AUDIT_HEAD_SIZE = 3

CURSOR_EXPIRED = "Invalid or expired cursor. Start a new search."
QUERY_CHANGED = "Query changed. Start a new search (reset cursor)."
QUERY_HASH_REQUIRED = "queryHash is required to continue a search."


@dataclass
class ServedPage:
    items: List[CuratedPlace]
    cursor: Optional[str]
    has_more: bool
    remaining_before: int
    remaining_after: int
    page_no: int
    version: int
    served_head: List[str] = field(default_factory=list)
    remaining_head: List[str] = field(default_factory=list)


def parse_cursor(raw) -> Optional[str]:
    return raw.strip() if isinstance(raw, str) and raw.strip() else None


@asynccontextmanager
async def cursor_lock(store: CursorStore, cursor_id: str, owner: str, enabled: bool):
    """Advisory lock around a continuation. Never blocks: if not acquired the caller proceeds unlocked."""
    acquired = False
    if enabled:
        acquired = await store.acquire_lock(cursor_id, owner)
        if not acquired:
            logger.warning("Cursor %s is locked by another request; continuing unlocked", cursor_id[:8])
    try:
        yield acquired
    finally:
        if acquired:
            await store.release_lock(cursor_id, owner)


async def load_for_continuation(
    store: CursorStore,
    cursor_id: str,
    query_hash: Optional[str],
    *,
    enforce_query_hash: bool = False,
) -> SearchState:
    """Load state for a continuation, rejecting unknown cursors and changed queries."""
    if enforce_query_hash and not query_hash:
        raise CursorQueryMismatchError(QUERY_HASH_REQUIRED)
    state = await store.get(cursor_id)
    if state is None:
        raise CursorNotFoundError(CURSOR_EXPIRED)
    if query_hash and query_hash != state.query_hash:
        logger.info("Query hash mismatch on cursor %s", cursor_id[:8])
        raise CursorQueryMismatchError(QUERY_CHANGED)
    return state


async def serve_page(
    store: CursorStore,
    state: SearchState,
    per_page: int,
    *,
    now_ms: int,
    req_id: Optional[str] = None,
) -> ServedPage:
    """Splice one page off ``pending``; persist the state if anything is left, delete it otherwise."""
    before = len(state.pending)
    items = state.take_page(per_page)
    state.version += 1
    state.page_no += 1
    state.last_served_at_ms = now_ms
    state.last_served_req_id = req_id

    served_head = [p.place_id for p in items[:AUDIT_HEAD_SIZE]]
    remaining_head = state.pending_head(AUDIT_HEAD_SIZE)
    state.add_audit(AuditEntry(
        t=now_ms,
        kind="serve",
        req_id=req_id,
        before=before,
        after=len(state.pending),
        per_page=per_page,
        served_head=served_head,
        remaining_head_after=remaining_head,
        version=state.version,
        page_no=state.page_no,
    ))

    has_more = bool(state.pending) or state.any_remaining()
    if has_more:
        await store.set(state)
        cursor = state.cursor_id
    else:
        await store.delete(state.cursor_id)
        cursor = None

    logger.info(
        "Served page %d for cursor %s: %d items, %d left, has_more=%s",
        state.page_no, state.cursor_id[:8], len(items), len(state.pending), has_more,
    )
    return ServedPage(
        items=items,
        cursor=cursor,
        has_more=has_more,
        remaining_before=before,
        remaining_after=len(state.pending),
        page_no=state.page_no,
        version=state.version,
        served_head=served_head,
        remaining_head=remaining_head,
    )


async def serve_from_cursor(
    store: CursorStore,
    cursor_id: str,
    per_page: int,
    query_hash: Optional[str] = None,
    *,
    now_ms: Callable[[], int],
    req_id: Optional[str] = None,
    enforce_query_hash: bool = False,
    use_lock: bool = False,
    refill: Optional[Callable[[SearchState], Awaitable[None]]] = None,
) -> tuple:
    """
    Continue a search: load, guard the query hash, optionally top up
    ``pending`` through ``refill``, then serve one page.

    Returns ``(state, served_page)``.
    """
    cursor_id = parse_cursor(cursor_id)
    if not cursor_id:
        raise QueryValidationError("Missing cursorId")

    async with cursor_lock(store, cursor_id, req_id or "anonymous", use_lock):
        state = await load_for_continuation(
            store, cursor_id, query_hash, enforce_query_hash=enforce_query_hash
        )
        if refill is not None:
            await refill(state)
        served = await serve_page(store, state, per_page, now_ms=now_ms(), req_id=req_id)
    return state, served
