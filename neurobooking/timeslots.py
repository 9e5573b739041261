import datetime as dt
from datetime import datetime, timedelta, tzinfo

from neurobooking.errors import InvalidRequest
from neurobooking.models import DutyPeriod

# Local hours [start, end) covered by each duty period
DUTY_PERIOD_HOURS: dict[DutyPeriod, tuple[int, int]] = {
    DutyPeriod.MORNING: (8, 14),
    DutyPeriod.AFTERNOON: (14, 20),
}


def _require_wall_clock(start_time: dt.time) -> None:
    # hours are local to the hospital; an offset would shift them silently
    if start_time.tzinfo is not None:
        raise InvalidRequest(
            f"Start time {start_time.isoformat()} must be a local time without a UTC offset"
        )


def classify_duty_period(start_time: dt.time) -> DutyPeriod:
    """Return the duty period whose shift pool serves a surgery starting at `start_time`."""
    _require_wall_clock(start_time)
    for period, (first_hour, end_hour) in DUTY_PERIOD_HOURS.items():
        if first_hour <= start_time.hour < end_hour:
            return period
    raise InvalidRequest(
        f"Start time {start_time.isoformat(timespec='minutes')} is outside the "
        "bookable hours 08:00-20:00"
    )


def local_start(on: dt.date, start_time: dt.time, tz: tzinfo) -> datetime:
    _require_wall_clock(start_time)
    return datetime.combine(on, start_time, tzinfo=tz)


def day_bounds(on: dt.date, tz: tzinfo) -> tuple[datetime, datetime]:
    start = datetime.combine(on, dt.time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def overlaps(
    a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime
) -> bool:
    """Half-open interval test: [a_start, a_end) and [b_start, b_end) share an instant."""
    return a_start < b_end and b_start < a_end
