"""
Shift and surgery accessors over the key/value database.

Reads without a transaction see committed state only. Writes always go
through a transaction so they commit together with the rest of the unit of
work.
"""

import asyncio
import datetime as dt
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from neurobooking.database import InMemoryKeyValueDatabase, Transaction
from neurobooking.errors import StorageFailure
from neurobooking.models import DutyPeriod, Shift, Surgery, SurgeryStatus

Record = Shift | Surgery
Database = InMemoryKeyValueDatabase[str, Record]
Tx = Transaction[str, Record]


def shift_key(shift_id: str) -> str:
    return f"shift:{shift_id}"


def surgery_key(surgery_id: str) -> str:
    return f"surgery:{surgery_id}"


@asynccontextmanager
async def bounded(timeout: float, operation: str) -> AsyncIterator[None]:
    """Run the enclosed store calls under a deadline; expiry is a StorageFailure."""
    try:
        async with asyncio.timeout(timeout):
            yield
    except TimeoutError as exc:
        raise StorageFailure(f"{operation} timed out after {timeout}s") from exc


class ShiftStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def _source(self, tx: Tx | None) -> Database | Tx:
        return tx if tx is not None else self.db

    async def get_shift(self, shift_id: str, tx: Tx | None = None) -> Shift | None:
        shift = self._source(tx).get(shift_key(shift_id))
        return shift if isinstance(shift, Shift) else None

    async def list_shifts(self, tx: Tx | None = None) -> list[Shift]:
        return sorted(
            (s for s in self._source(tx).all() if isinstance(s, Shift)),
            key=lambda s: s.id,
        )

    async def get_open_shifts(
        self,
        hospital_id: str,
        on: dt.date,
        period: DutyPeriod,
        *,
        neurophysiologist_id: str | None = None,
    ) -> list[Shift]:
        """Unbooked shifts for a hospital, day and duty period, ordered by shift id."""
        return [
            s
            for s in await self.list_shifts()
            if s.hospital_id == hospital_id
            and s.date == on
            and s.period == period
            and not s.booked
            and (
                neurophysiologist_id is None
                or s.neurophysiologist_id == neurophysiologist_id
            )
        ]

    async def shifts_for_surgery(
        self, surgery_id: str, tx: Tx | None = None
    ) -> list[Shift]:
        return [s for s in await self.list_shifts(tx) if s.surgery_id == surgery_id]

    async def add_shift(self, tx: Tx, shift: Shift) -> str:
        tx.put(shift_key(shift.id), shift)
        return shift.id

    async def set_shift_booked(
        self, tx: Tx, shift_id: str, surgery_id: str, now: datetime
    ) -> Shift:
        shift = await self.get_shift(shift_id, tx)
        if shift is None:
            raise KeyError(shift_id)
        booked = shift.model_copy(
            update={"booked": True, "surgery_id": surgery_id, "updated_at": now}
        )
        tx.put(shift_key(shift_id), booked)
        return booked

    async def release_shift(self, tx: Tx, shift_id: str, now: datetime) -> Shift:
        shift = await self.get_shift(shift_id, tx)
        if shift is None:
            raise KeyError(shift_id)
        released = shift.model_copy(
            update={"booked": False, "surgery_id": None, "updated_at": now}
        )
        tx.put(shift_key(shift_id), released)
        return released


class SurgeryStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def _source(self, tx: Tx | None) -> Database | Tx:
        return tx if tx is not None else self.db

    async def get_surgery(
        self, surgery_id: str, tx: Tx | None = None
    ) -> Surgery | None:
        surgery = self._source(tx).get(surgery_key(surgery_id))
        return surgery if isinstance(surgery, Surgery) else None

    async def create_surgery(self, tx: Tx, record: Surgery) -> str:
        if tx.get(surgery_key(record.id)) is not None:
            raise KeyError(f"surgery {record.id} already exists")
        tx.put(surgery_key(record.id), record)
        return record.id

    async def save_surgery(self, tx: Tx, record: Surgery) -> None:
        tx.put(surgery_key(record.id), record)

    async def list_surgeries_by(
        self,
        *,
        hospital_id: str,
        surgeon_id: str | None = None,
        status: SurgeryStatus | None = None,
        date_range: tuple[datetime, datetime] | None = None,
        tx: Tx | None = None,
    ) -> list[Surgery]:
        """
        Surgeries at a hospital, optionally narrowed to one surgeon, one
        status and a `[from, to)` window on the start instant. Ordered by start.
        """
        surgeries = [
            s
            for s in self._source(tx).all()
            if isinstance(s, Surgery)
            and s.hospital_id == hospital_id
            and (surgeon_id is None or s.surgeon_id == surgeon_id)
            and (status is None or s.status == status)
            and (
                date_range is None
                or date_range[0] <= s.start < date_range[1]
            )
        ]
        return sorted(surgeries, key=lambda s: (s.start, s.id))
