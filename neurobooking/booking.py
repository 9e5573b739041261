import datetime as dt
import logging
import uuid
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from neurobooking import availability, conflicts
from neurobooking.catalog import SurgeryTypeCatalog
from neurobooking.config import Settings
from neurobooking.errors import (
    InvalidRequest,
    SchedulingConflict,
    ShiftNoLongerAvailable,
    SurgeryNotFound,
)
from neurobooking.models import (
    DutyPeriod,
    Material,
    Shift,
    Surgery,
    SurgeryDraft,
    SurgeryStatus,
)
from neurobooking.notifier import NotifyFn, notify_surgery_booked
from neurobooking.stores import Database, ShiftStore, SurgeryStore, bounded
from neurobooking.timeslots import classify_duty_period, local_start

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]
IdFn = Callable[[], str]


def _new_id() -> str:
    return uuid.uuid4().hex


class BookingService:
    """
    Entry point of the booking core.

    Reads (availability, rebinding, conflict checks) run without
    coordination. Every write runs inside one database transaction and
    either commits completely or not at all. All operations take an
    optional `timeout` in seconds; when it expires the call raises
    StorageFailure and nothing is written.
    """

    def __init__(
        self,
        db: Database,
        *,
        settings: Settings | None = None,
        catalog: SurgeryTypeCatalog | None = None,
        notify: NotifyFn = notify_surgery_booked,
        now_fn: NowFn | None = None,
        id_fn: IdFn = _new_id,
    ) -> None:
        self.db = db
        self.settings = settings or Settings()
        self.catalog = catalog or SurgeryTypeCatalog()
        self.shifts = ShiftStore(db)
        self.surgeries = SurgeryStore(db)
        self.notify = notify
        self.now_fn = now_fn or (lambda: datetime.now(UTC))
        self.id_fn = id_fn

    def _timeout(self, timeout: float | None) -> float:
        return self.settings.storage_timeout if timeout is None else timeout

    async def resolve_available(
        self,
        hospital_id: str,
        on: dt.date,
        start_time: dt.time,
        *,
        timeout: float | None = None,
    ) -> dict[str, str]:
        async with bounded(self._timeout(timeout), "resolve_available"):
            return await availability.resolve_available(
                self.shifts, hospital_id, on, start_time
            )

    async def rebind_shifts(
        self,
        hospital_id: str,
        on: dt.date,
        start_time: dt.time,
        neurophysiologist_ids: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> list[str | None]:
        async with bounded(self._timeout(timeout), "rebind_shifts"):
            return await availability.rebind_shifts(
                self.shifts, hospital_id, on, start_time, neurophysiologist_ids
            )

    async def has_conflict(
        self,
        surgeon_id: str,
        hospital_id: str,
        on: dt.date,
        start_time: dt.time,
        duration_minutes: int,
        *,
        timeout: float | None = None,
    ) -> bool:
        async with bounded(self._timeout(timeout), "has_conflict"):
            return await conflicts.has_conflict(
                self.surgeries,
                surgeon_id,
                hospital_id,
                on,
                start_time,
                duration_minutes,
                tz=self.settings.tzinfo,
            )

    async def busy_surgeons(
        self,
        hospital_id: str,
        on: dt.date,
        start_time: dt.time,
        duration_minutes: int,
        *,
        timeout: float | None = None,
    ) -> set[str]:
        async with bounded(self._timeout(timeout), "busy_surgeons"):
            return await conflicts.find_busy_surgeons(
                self.surgeries,
                hospital_id,
                on,
                start_time,
                duration_minutes,
                tz=self.settings.tzinfo,
            )

    async def get_surgery(
        self, surgery_id: str, *, timeout: float | None = None
    ) -> Surgery:
        async with bounded(self._timeout(timeout), "get_surgery"):
            surgery = await self.surgeries.get_surgery(surgery_id)
        if surgery is None:
            raise SurgeryNotFound(f"Surgery {surgery_id} not found")
        return surgery

    def _validate_draft(
        self, draft: SurgeryDraft, shift_ids: Sequence[str]
    ) -> tuple[DutyPeriod, int, list[Material]]:
        for field in ("hospital_id", "surgeon_id", "surgery_type"):
            if not getattr(draft, field).strip():
                raise InvalidRequest(f"{field} is required")

        neurophysiologist_ids = draft.neurophysiologist_ids
        if not neurophysiologist_ids or not all(neurophysiologist_ids):
            raise InvalidRequest("At least one neurophysiologist must be selected")
        if len(set(neurophysiologist_ids)) != len(neurophysiologist_ids):
            raise InvalidRequest("Neurophysiologists must not be repeated")
        if len(shift_ids) != len(neurophysiologist_ids):
            raise InvalidRequest(
                f"Got {len(shift_ids)} shift ids for "
                f"{len(neurophysiologist_ids)} neurophysiologists"
            )
        if not all(shift_ids) or len(set(shift_ids)) != len(shift_ids):
            raise InvalidRequest("Shift ids must be non-empty and distinct")

        period = classify_duty_period(draft.start_time)

        duration = draft.estimated_duration
        if duration is None:
            duration = self.catalog.get_default_duration(draft.surgery_type)
            if duration is None:
                raise InvalidRequest(
                    f"Unknown surgery type {draft.surgery_type!r} and no "
                    "estimated_duration given"
                )
        if duration <= 0:
            raise InvalidRequest("estimated_duration must be greater than zero")

        materials = draft.materials
        if materials is None:
            materials = self.catalog.get_materials(draft.surgery_type)
        return period, duration, materials

    async def commit_booking(
        self,
        draft: SurgeryDraft,
        shift_ids: Sequence[str],
        *,
        timeout: float | None = None,
    ) -> str:
        """
        Create the surgery and book every shift in `shift_ids` as one unit.

        `shift_ids[i]` must be the open shift of `draft.neurophysiologist_ids[i]`.
        Raises InvalidRequest, SchedulingConflict, ShiftNoLongerAvailable or
        StorageFailure; on any of them the store is left untouched. Returns
        the new surgery id.
        """
        period, duration, materials = self._validate_draft(draft, shift_ids)

        now = self.now_fn()
        surgery = Surgery(
            id=self.id_fn(),
            hospital_id=draft.hospital_id,
            room_id=draft.room_id,
            surgeon_id=draft.surgeon_id,
            neurophysiologist_ids=list(draft.neurophysiologist_ids),
            shift_ids=list(shift_ids),
            surgery_type=draft.surgery_type,
            patient_name=draft.patient_name,
            start=local_start(draft.date, draft.start_time, self.settings.tzinfo),
            estimated_duration=duration,
            notes=draft.notes,
            materials=materials,
            status=SurgeryStatus.SCHEDULED,
            booked_by=draft.booked_by,
            created_at=now,
            updated_at=now,
        )

        async with bounded(self._timeout(timeout), "commit_booking"):
            async with self.db.transaction() as tx:
                if await conflicts.has_conflict(
                    self.surgeries,
                    draft.surgeon_id,
                    draft.hospital_id,
                    draft.date,
                    draft.start_time,
                    duration,
                    tz=self.settings.tzinfo,
                    tx=tx,
                ):
                    raise SchedulingConflict(
                        f"Surgeon {draft.surgeon_id} already has a surgery at "
                        f"hospital {draft.hospital_id} overlapping "
                        f"{surgery.start.isoformat()}"
                    )

                current = [
                    await self.shifts.get_shift(shift_id, tx) for shift_id in shift_ids
                ]

                # ownership is checked for every shift before any availability verdict
                for neurophysiologist_id, shift_id, shift in zip(
                    draft.neurophysiologist_ids, shift_ids, current
                ):
                    if shift is not None and (
                        shift.neurophysiologist_id != neurophysiologist_id
                        or shift.hospital_id != draft.hospital_id
                        or shift.date != draft.date
                        or shift.period != period
                    ):
                        raise InvalidRequest(
                            f"Shift {shift_id} is not a {period} shift of "
                            f"{neurophysiologist_id} at {draft.hospital_id} "
                            f"on {draft.date}"
                        )

                unavailable = [
                    shift_id
                    for shift_id, shift in zip(shift_ids, current)
                    if shift is None or shift.booked
                ]
                if unavailable:
                    logger.warning(
                        "booking for surgeon=%s lost the race on shifts %s",
                        draft.surgeon_id,
                        ", ".join(unavailable),
                    )
                    raise ShiftNoLongerAvailable(unavailable)

                await self.surgeries.create_surgery(tx, surgery)
                for shift_id in shift_ids:
                    await self.shifts.set_shift_booked(tx, shift_id, surgery.id, now)

        logger.info(
            "booked surgery %s: surgeon=%s hospital=%s start=%s duration=%d shifts=%s",
            surgery.id,
            surgery.surgeon_id,
            surgery.hospital_id,
            surgery.start.isoformat(),
            surgery.estimated_duration,
            ", ".join(surgery.shift_ids),
        )

        try:
            await self.notify(surgery.id)
        except Exception:
            logger.exception("notification for surgery %s failed", surgery.id)

        return surgery.id

    async def _set_status(
        self,
        surgery_id: str,
        status: SurgeryStatus,
        *,
        release: bool,
        timeout: float | None,
    ) -> Surgery:
        now = self.now_fn()
        async with bounded(self._timeout(timeout), f"set status {status}"):
            async with self.db.transaction() as tx:
                surgery = await self.surgeries.get_surgery(surgery_id, tx)
                if surgery is None:
                    raise SurgeryNotFound(f"Surgery {surgery_id} not found")
                if surgery.status != SurgeryStatus.SCHEDULED:
                    raise InvalidRequest(
                        f"Surgery {surgery_id} is {surgery.status}, not scheduled"
                    )
                if release:
                    for shift in await self.shifts.shifts_for_surgery(surgery_id, tx):
                        await self.shifts.release_shift(tx, shift.id, now)
                updated = surgery.model_copy(
                    update={"status": status, "updated_at": now}
                )
                await self.surgeries.save_surgery(tx, updated)

        logger.info("surgery %s is now %s", surgery_id, status)
        return updated

    async def cancel_surgery(
        self, surgery_id: str, *, timeout: float | None = None
    ) -> Surgery:
        """Cancel a scheduled surgery and free every shift it consumed, atomically."""
        return await self._set_status(
            surgery_id, SurgeryStatus.CANCELLED, release=True, timeout=timeout
        )

    async def complete_surgery(
        self, surgery_id: str, *, timeout: float | None = None
    ) -> Surgery:
        return await self._set_status(
            surgery_id, SurgeryStatus.COMPLETED, release=False, timeout=timeout
        )

    async def release_shifts(
        self, shift_ids: Sequence[str], *, timeout: float | None = None
    ) -> list[Shift]:
        """
        Compensating operation: mark the given shifts unbooked again.

        A shift still consumed by a scheduled surgery cannot be freed on its
        own: that surgery is cancelled in the same unit of work and every
        shift it holds is released with it. Unknown ids abort the whole call.
        Returns every released shift, requested ones first.
        """
        if not shift_ids:
            raise InvalidRequest("No shift ids given")

        now = self.now_fn()
        released: list[Shift] = []
        cancelled: list[str] = []
        async with bounded(self._timeout(timeout), "release_shifts"):
            async with self.db.transaction() as tx:
                requested = {
                    shift_id: await self.shifts.get_shift(shift_id, tx)
                    for shift_id in shift_ids
                }
                missing = [i for i, shift in requested.items() if shift is None]
                if missing:
                    raise InvalidRequest(f"Unknown shifts: {', '.join(missing)}")

                to_release = list(requested)
                surgery_ids = sorted(
                    {s.surgery_id for s in requested.values() if s.surgery_id}
                )
                for surgery_id in surgery_ids:
                    surgery = await self.surgeries.get_surgery(surgery_id, tx)
                    if surgery is None or surgery.status != SurgeryStatus.SCHEDULED:
                        continue
                    await self.surgeries.save_surgery(
                        tx,
                        surgery.model_copy(
                            update={"status": SurgeryStatus.CANCELLED, "updated_at": now}
                        ),
                    )
                    cancelled.append(surgery_id)
                    for shift in await self.shifts.shifts_for_surgery(surgery_id, tx):
                        if shift.id not in to_release:
                            to_release.append(shift.id)

                for shift_id in to_release:
                    released.append(await self.shifts.release_shift(tx, shift_id, now))

        if cancelled:
            logger.warning(
                "releasing shifts cancelled scheduled surgeries %s",
                ", ".join(cancelled),
            )
        logger.info("released shifts %s", ", ".join(s.id for s in released))
        return released

    async def declare_shift(
        self,
        neurophysiologist_id: str,
        hospital_id: str,
        on: dt.date,
        period: DutyPeriod,
        *,
        room_id: str | None = None,
        timeout: float | None = None,
    ) -> Shift:
        """Register an open shift; one per neurophysiologist, hospital, day and period."""
        if not neurophysiologist_id or not hospital_id:
            raise InvalidRequest("neurophysiologist_id and hospital_id are required")

        now = self.now_fn()
        shift = Shift(
            id=self.id_fn(),
            hospital_id=hospital_id,
            neurophysiologist_id=neurophysiologist_id,
            date=on,
            period=period,
            room_id=room_id,
            created_at=now,
            updated_at=now,
        )
        async with bounded(self._timeout(timeout), "declare_shift"):
            async with self.db.transaction() as tx:
                duplicate = any(
                    s.neurophysiologist_id == neurophysiologist_id
                    and s.hospital_id == hospital_id
                    and s.date == on
                    and s.period == period
                    for s in await self.shifts.list_shifts(tx)
                )
                if duplicate:
                    raise InvalidRequest(
                        f"{neurophysiologist_id} already has a {period} shift "
                        f"at {hospital_id} on {on}"
                    )
                await self.shifts.add_shift(tx, shift)
        return shift
