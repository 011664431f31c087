"""Open-at-target computation over provider weekly opening periods."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apps.places.dto import TimeContext

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 1440
MINUTES_PER_WEEK = 7 * MINUTES_PER_DAY


def is_valid_time_zone(name: Optional[str]) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
        return True
    except (ZoneInfoNotFoundError, ValueError):
        return False


def local_day_minute(target: datetime, ctx: TimeContext) -> Optional[Tuple[int, int]]:
    """
    (day, minuteOfDay) of ``target`` in the context's local time.
    Day follows the provider convention: 0 = Sunday .. 6 = Saturday.
    """
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)

    local = None
    if ctx.time_zone:
        try:
            local = target.astimezone(ZoneInfo(ctx.time_zone))
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown time zone %r, trying offset", ctx.time_zone)
    if local is None and ctx.tz_offset_minutes is not None:
        local = target.astimezone(timezone.utc) + timedelta(minutes=ctx.tz_offset_minutes)
    if local is None:
        return None

    day = (local.weekday() + 1) % 7
    return day, local.hour * 60 + local.minute


def _point_minutes(point: Dict[str, Any]) -> Optional[int]:
    try:
        day = int(point.get("day"))
        hour = int(point.get("hour", 0))
        minute = int(point.get("minute", 0))
    except (TypeError, ValueError):
        return None
    if not 0 <= day <= 6:
        return None
    return day * MINUTES_PER_DAY + hour * 60 + minute


def _periods(place: Dict[str, Any]) -> List[Dict[str, Any]]:
    for key in ("regularOpeningHours", "currentOpeningHours"):
        hours = place.get(key)
        if isinstance(hours, dict) and isinstance(hours.get("periods"), list) and hours["periods"]:
            return hours["periods"]
    return []


def is_open_in_periods(periods: List[Dict[str, Any]], day: int, minute_of_day: int) -> Optional[bool]:
    """Containment of the instant in any [open, close) period, week wrap included."""
    if not periods:
        return None
    t0 = day * MINUTES_PER_DAY + minute_of_day
    # the +1 week copy catches periods that wrap past Saturday night
    candidates = (t0, t0 + MINUTES_PER_WEEK)
    for period in periods:
        if not isinstance(period, dict):
            continue
        start = _point_minutes(period.get("open") or {})
        if start is None:
            continue
        close = period.get("close")
        if not close:
            return True
        end = _point_minutes(close)
        if end is None:
            continue
        if end <= start:
            end += MINUTES_PER_WEEK
        if any(start <= t < end for t in candidates):
            return True
    return False


def is_open_at_target(place: Dict[str, Any], target: datetime, ctx: TimeContext) -> Optional[bool]:
    """True/False when computable, None when hours or time context are unknown."""
    local = local_day_minute(target, ctx)
    if local is None:
        return None
    return is_open_in_periods(_periods(place), *local)


def effective_time_context(base: TimeContext, place: Dict[str, Any]) -> TimeContext:
    """The search's context when usable, else whatever the place declares about itself."""
    if base.can_compute:
        return base
    tz = place.get("timeZone")
    tz_id = tz.get("id") if isinstance(tz, dict) else tz
    if isinstance(tz_id, str) and is_valid_time_zone(tz_id):
        return TimeContext(time_zone=tz_id)
    offset = place.get("utcOffsetMinutes")
    if isinstance(offset, (int, float)) and not isinstance(offset, bool):
        return TimeContext(tz_offset_minutes=int(offset))
    return base
