#!/usr/bin/env python3
"""Promotion/event hydration and final ordering of pending places"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from apps.core.db import SessionLocal, get_engine
from apps.places.dto import CuratedPlace, SearchState, TimeContext
from apps.places.models import Event, Promotion

logger = logging.getLogger(__name__)

ACTIVE = "active"
UPCOMING = "upcoming"

PROMO_RANK_ACTIVE = 2
PROMO_RANK_UPCOMING = 1

_OPEN_RANK = {True: 0, None: 1, False: 2}


class PromoEventStore(ABC):
    """Batch lookup of schedule records keyed by provider place id"""

    @abstractmethod
    async def load_for_places(self, place_ids: List[str]) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        """``{place_id: {"promotions": [...], "events": [...]}}`` for ids that have any."""


class SqlPromoEventStore(PromoEventStore):
    """Reads promotions/events through SQLAlchemy in a worker thread"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def _load_sync(self, place_ids: List[str]) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        if self.session_factory is SessionLocal:
            get_engine()
        out: Dict[str, Dict[str, List[Dict[str, Any]]]] = defaultdict(lambda: {"promotions": [], "events": []})
        db = self.session_factory()
        try:
            for row in db.query(Promotion).filter(Promotion.place_id.in_(place_ids)).all():
                out[row.place_id]["promotions"].append(row.to_record())
            for row in db.query(Event).filter(Event.place_id.in_(place_ids)).all():
                out[row.place_id]["events"].append(row.to_record())
        finally:
            db.close()
        return dict(out)

    async def load_for_places(self, place_ids: List[str]) -> Dict[str, Dict[str, List[Dict[str, Any]]]]:
        if not place_ids:
            return {}
        return await asyncio.to_thread(self._load_sync, list(place_ids))


def local_datetime(target: datetime, ctx: TimeContext) -> datetime:
    """Target instant as naive local time; UTC when the context is unknown."""
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    if ctx.time_zone:
        try:
            return target.astimezone(ZoneInfo(ctx.time_zone)).replace(tzinfo=None)
        except (ZoneInfoNotFoundError, ValueError):
            pass
    utc = target.astimezone(timezone.utc).replace(tzinfo=None)
    if ctx.tz_offset_minutes is not None:
        return utc + timedelta(minutes=ctx.tz_offset_minutes)
    return utc


def parse_hhmm(value: Any) -> Optional[int]:
    """'HH:MM' (or 'HH:MM:SS') to minutes after midnight."""
    if not isinstance(value, str) or ":" not in value:
        return None
    parts = value.strip().split(":")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except (ValueError, IndexError):
        return None
    if not (0 <= hour <= 24 and 0 <= minute < 60):
        return None
    return hour * 60 + minute


def matches_day(record: Dict[str, Any], day: date) -> bool:
    if record.get("recurring"):
        wanted = {str(d).strip().lower() for d in (record.get("recurringDays") or [])}
        return day.strftime("%A").lower() in wanted
    raw = record.get("date")
    if not raw:
        return False
    return str(raw)[:10] == day.isoformat()


def classify_schedule(record: Dict[str, Any], local_now: datetime, *, require_end: bool) -> Optional[str]:
    """ACTIVE, UPCOMING (later today) or None for one promotion/event record."""
    today = local_now.date()
    is_today = matches_day(record, today)
    is_yesterday = matches_day(record, today - timedelta(days=1))

    if record.get("allDay"):
        return ACTIVE if is_today else None

    start = parse_hhmm(record.get("startTime"))
    end = parse_hhmm(record.get("endTime"))
    if start is None:
        return None
    now = local_now.hour * 60 + local_now.minute

    if end is not None:
        if end >= start:
            if is_today and start <= now <= end:
                return ACTIVE
        elif (is_today and now >= start) or (is_yesterday and now <= end):
            # window crosses midnight
            return ACTIVE

    if is_today and start > now and (end is not None or not require_end):
        return UPCOMING
    return None


def tag_records(
    records: List[Dict[str, Any]], local_now: datetime, *, noun: str, require_end: bool
) -> Tuple[List[Dict[str, Any]], bool, bool]:
    tagged: List[Dict[str, Any]] = []
    any_active = any_upcoming = False
    for record in records:
        state = classify_schedule(record, local_now, require_end=require_end)
        if state is None:
            continue
        any_active = any_active or state == ACTIVE
        any_upcoming = any_upcoming or state == UPCOMING
        tagged.append({**record, "kind": f"{state}{noun}"})
    return tagged, any_active, any_upcoming


def sort_key(place: CuratedPlace) -> Tuple[int, int, int, float, str]:
    return (
        _OPEN_RANK.get(place.open_at_target, 1),
        -(len(place.promotions) + len(place.events)),
        -place.who_score,
        place.distance,
        place.place_id,
    )


class PromoEventHydrator:
    """Attaches promotions/events to pending places and orders the queue"""

    def __init__(self, store: PromoEventStore):
        self.store = store

    def annotate(self, place: CuratedPlace, records: Dict[str, List[Dict[str, Any]]], local_now: datetime) -> None:
        promos, promo_active, promo_upcoming = tag_records(
            records.get("promotions") or [], local_now, noun="Promo", require_end=True
        )
        events, event_active, event_upcoming = tag_records(
            records.get("events") or [], local_now, noun="Event", require_end=False
        )
        place.promotions = promos
        place.events = events
        if promo_active or event_active:
            place.promo_rank = PROMO_RANK_ACTIVE
        elif promo_upcoming or event_upcoming:
            place.promo_rank = PROMO_RANK_UPCOMING
        else:
            place.promo_rank = 0
        place.hydrated = True

    async def hydrate_and_sort(self, state: SearchState) -> None:
        fresh = [p for p in state.pending if not p.hydrated]
        if fresh:
            # store failures propagate; unranked pages are worse than a failed request
            by_place = await self.store.load_for_places([p.place_id for p in fresh])
            local_now = local_datetime(state.target_at, state.query.time_context)
            for place in fresh:
                self.annotate(place, by_place.get(place.place_id) or {}, local_now)
            logger.debug("Hydrated %d places for cursor %s", len(fresh), state.cursor_id[:8])
        state.pending.sort(key=sort_key)
