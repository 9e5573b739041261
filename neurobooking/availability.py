import datetime as dt
import logging
from collections.abc import Sequence

from neurobooking.errors import InvalidRequest
from neurobooking.stores import ShiftStore
from neurobooking.timeslots import classify_duty_period

logger = logging.getLogger(__name__)


async def resolve_available(
    shifts: ShiftStore,
    hospital_id: str,
    on: dt.date,
    start_time: dt.time,
) -> dict[str, str]:
    """
    Map each neurophysiologist with an open shift in the duty period of
    `start_time` to one default shift id (the lowest one they hold).

    An empty mapping means nobody is free; that is a normal outcome.
    """
    if not hospital_id:
        raise InvalidRequest("hospital_id is required")
    period = classify_duty_period(start_time)

    candidates: dict[str, str] = {}
    for shift in await shifts.get_open_shifts(hospital_id, on, period):
        # shifts come ordered by id, so the first one seen is the lowest
        candidates.setdefault(shift.neurophysiologist_id, shift.id)

    logger.debug(
        "hospital=%s date=%s period=%s: %d neurophysiologists available",
        hospital_id,
        on,
        period,
        len(candidates),
    )
    return dict(sorted(candidates.items()))


async def rebind_shifts(
    shifts: ShiftStore,
    hospital_id: str,
    on: dt.date,
    start_time: dt.time,
    neurophysiologist_ids: Sequence[str],
) -> list[str | None]:
    """
    Look up the current open shift for each selected neurophysiologist.

    The result lines up with `neurophysiologist_ids`; None marks a
    neurophysiologist who no longer has an open shift in that period.
    """
    if not hospital_id:
        raise InvalidRequest("hospital_id is required")
    period = classify_duty_period(start_time)

    bound: list[str | None] = []
    for neurophysiologist_id in neurophysiologist_ids:
        open_shifts = await shifts.get_open_shifts(
            hospital_id, on, period, neurophysiologist_id=neurophysiologist_id
        )
        bound.append(open_shifts[0].id if open_shifts else None)

    missing = [n for n, s in zip(neurophysiologist_ids, bound) if s is None]
    if missing:
        logger.info(
            "hospital=%s date=%s period=%s: no open shift for %s",
            hospital_id,
            on,
            period,
            ", ".join(missing),
        )
    return bound
