from datetime import datetime, timezone

from apps.places.dto import TimeContext
from apps.places.services.opening_hours import (
    effective_time_context,
    is_open_at_target,
    is_open_in_periods,
    local_day_minute,
)

CHICAGO = TimeContext(time_zone="America/Chicago")
FRI_NIGHT_TO_SAT = [{"open": {"day": 5, "hour": 21, "minute": 0}, "close": {"day": 6, "hour": 2, "minute": 0}}]
SAT_NIGHT_TO_SUN = [{"open": {"day": 6, "hour": 22, "minute": 0}, "close": {"day": 0, "hour": 2, "minute": 0}}]


def _place(periods):
    return {"regularOpeningHours": {"periods": periods}}


def test_local_day_minute_uses_sunday_zero():
    # 2026-10-18 is a Sunday
    target = datetime(2026, 10, 18, 17, 30, tzinfo=timezone.utc)
    assert local_day_minute(target, CHICAGO) == (0, 12 * 60 + 30)
    assert local_day_minute(target, TimeContext(tz_offset_minutes=60)) == (0, 18 * 60 + 30)
    assert local_day_minute(target, TimeContext()) is None


def test_open_past_midnight_friday_into_saturday():
    saturday_1am = datetime(2026, 10, 17, 6, 0, tzinfo=timezone.utc)
    assert is_open_at_target(_place(FRI_NIGHT_TO_SAT), saturday_1am, CHICAGO) is True
    saturday_3am = datetime(2026, 10, 17, 8, 0, tzinfo=timezone.utc)
    assert is_open_at_target(_place(FRI_NIGHT_TO_SAT), saturday_3am, CHICAGO) is False


def test_period_wrapping_the_week_boundary():
    sunday_1am = datetime(2026, 10, 18, 6, 0, tzinfo=timezone.utc)
    assert is_open_at_target(_place(SAT_NIGHT_TO_SUN), sunday_1am, CHICAGO) is True
    saturday_11pm = datetime(2026, 10, 18, 4, 0, tzinfo=timezone.utc)
    assert is_open_at_target(_place(SAT_NIGHT_TO_SUN), saturday_11pm, CHICAGO) is True


def test_open_without_close_is_always_open():
    assert is_open_in_periods([{"open": {"day": 0, "hour": 0, "minute": 0}}], 3, 600) is True


def test_unknown_hours_or_context_is_none():
    target = datetime(2026, 10, 17, 6, 0, tzinfo=timezone.utc)
    assert is_open_at_target({}, target, CHICAGO) is None
    assert is_open_at_target(_place(FRI_NIGHT_TO_SAT), target, TimeContext()) is None


def test_effective_context_falls_back_to_place():
    assert effective_time_context(CHICAGO, {"utcOffsetMinutes": 60}) is CHICAGO
    assert effective_time_context(TimeContext(), {"utcOffsetMinutes": -300}).tz_offset_minutes == -300
    assert effective_time_context(TimeContext(), {"timeZone": {"id": "Europe/Paris"}}).time_zone == "Europe/Paris"
    assert not effective_time_context(TimeContext(), {}).can_compute
