"""
Shift and surgery records read and written by the booking core.
"""

import datetime as dt
from datetime import datetime, timedelta
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class DutyPeriod(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"


class SurgeryStatus(StrEnum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Shift(BaseModel):
    id: str
    hospital_id: str
    neurophysiologist_id: str
    date: dt.date
    period: DutyPeriod
    room_id: str | None = None
    booked: bool = False  # True once a surgery consumed this shift
    surgery_id: str | None = None  # Surgery that consumed it, by id only
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @model_validator(mode="after")
    def booked_and_surgery_move_together(self) -> "Shift":
        if self.booked != (self.surgery_id is not None):
            raise ValueError("booked and surgery_id must be set together")
        return self


class Material(BaseModel):
    name: str
    quantity: int = Field(gt=0)
    ref: str | None = None  # Supplier reference code
    id: str | None = None


class BookedBy(BaseModel):
    id: str
    name: str
    role: str
    email: str | None = None


class SurgeryType(BaseModel):
    id: str
    name: str
    estimated_duration: int = Field(gt=0)
    materials: list[Material] = Field(default_factory=list)


class Surgery(BaseModel):
    id: str
    hospital_id: str
    surgeon_id: str
    neurophysiologist_ids: list[str] = Field(min_length=1)
    shift_ids: list[str] = Field(min_length=1)
    surgery_type: str
    start: datetime
    estimated_duration: int = Field(gt=0)  # minutes
    room_id: str | None = None
    patient_name: str = ""
    notes: str = ""
    materials: list[Material] = Field(default_factory=list)
    status: SurgeryStatus = SurgeryStatus.SCHEDULED
    booked_by: BookedBy | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.estimated_duration)

    @model_validator(mode="after")
    def one_shift_per_neurophysiologist(self) -> "Surgery":
        if len(self.shift_ids) != len(self.neurophysiologist_ids):
            raise ValueError(
                "shift_ids and neurophysiologist_ids must have the same length"
            )
        return self


class SurgeryDraft(BaseModel):
    """
    A booking request as received from the caller.

    Nothing here is enforced beyond types: the booking service validates the
    draft itself so that every rejection surfaces as InvalidRequest.
    """

    hospital_id: str
    surgeon_id: str
    neurophysiologist_ids: list[str]
    surgery_type: str
    date: dt.date
    start_time: dt.time
    estimated_duration: int | None = None  # None -> catalog default
    room_id: str | None = None
    patient_name: str = ""
    notes: str = ""
    materials: list[Material] | None = None  # None -> catalog materials
    booked_by: BookedBy | None = None
