import datetime as dt
import logging
from datetime import timedelta, tzinfo

from neurobooking.errors import InvalidRequest
from neurobooking.models import SurgeryStatus
from neurobooking.stores import SurgeryStore, Tx
from neurobooking.timeslots import day_bounds, local_start, overlaps

logger = logging.getLogger(__name__)


def _require_positive(duration_minutes: int) -> None:
    if duration_minutes is None or duration_minutes <= 0:
        raise InvalidRequest("estimated_duration must be greater than zero")


async def has_conflict(
    surgeries: SurgeryStore,
    surgeon_id: str,
    hospital_id: str,
    on: dt.date,
    start_time: dt.time,
    duration_minutes: int,
    *,
    tz: tzinfo,
    tx: Tx | None = None,
) -> bool:
    """
    True when the surgeon already has a scheduled surgery at this hospital
    whose [start, start + duration) overlaps the requested interval.
    """
    _require_positive(duration_minutes)

    start = local_start(on, start_time, tz)
    end = start + timedelta(minutes=duration_minutes)

    for surgery in await surgeries.list_surgeries_by(
        hospital_id=hospital_id,
        surgeon_id=surgeon_id,
        status=SurgeryStatus.SCHEDULED,
        date_range=day_bounds(on, tz),
        tx=tx,
    ):
        if overlaps(surgery.start, surgery.end, start, end):
            logger.info(
                "surgeon=%s hospital=%s: %s-%s overlaps surgery %s",
                surgeon_id,
                hospital_id,
                start.isoformat(),
                end.isoformat(),
                surgery.id,
            )
            return True
    return False


async def find_busy_surgeons(
    surgeries: SurgeryStore,
    hospital_id: str,
    on: dt.date,
    start_time: dt.time,
    duration_minutes: int,
    *,
    tz: tzinfo,
) -> set[str]:
    """Surgeons with a scheduled surgery at the hospital overlapping the requested slot."""
    _require_positive(duration_minutes)

    start = local_start(on, start_time, tz)
    end = start + timedelta(minutes=duration_minutes)
    return {
        s.surgeon_id
        for s in await surgeries.list_surgeries_by(
            hospital_id=hospital_id,
            status=SurgeryStatus.SCHEDULED,
            date_range=day_bounds(on, tz),
        )
        if overlaps(s.start, s.end, start, end)
    }
