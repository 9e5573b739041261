import datetime as dt
from datetime import UTC, datetime

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from neurobooking.booking import BookingService
from neurobooking.catalog import SurgeryTypeCatalog
from neurobooking.config import Settings
from neurobooking.database import InMemoryKeyValueDatabase
from neurobooking.errors import CUSTOM_ERRORS, BookingError, ShiftNoLongerAvailable
from neurobooking.logger import configure_logging
from neurobooking.models import DutyPeriod, Shift, Surgery, SurgeryDraft, SurgeryType
from neurobooking.notifier import notify_surgery_booked
from neurobooking.stores import Record

router = APIRouter()


class RebindRequest(BaseModel):
    date: dt.date
    start_time: dt.time
    neurophysiologist_ids: list[str]


class BookingRequest(BaseModel):
    draft: SurgeryDraft
    shift_ids: list[str]


class DeclareShiftRequest(BaseModel):
    neurophysiologist_id: str
    hospital_id: str
    date: dt.date
    period: DutyPeriod
    room_id: str | None = None


class ReleaseShiftsRequest(BaseModel):
    shift_ids: list[str] = Field(min_length=1)


def _service(request: Request) -> BookingService:
    return request.app.state.booking_service


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/hospitals/{hospital_id}/availability")
async def get_availability(
    hospital_id: str,
    request: Request,
    date: dt.date = Query(...),
    start_time: dt.time = Query(...),
) -> dict:
    candidates = await _service(request).resolve_available(
        hospital_id, date, start_time
    )
    return {
        "hospital_id": hospital_id,
        "date": date.isoformat(),
        "start_time": start_time.isoformat(timespec="minutes"),
        "candidates": candidates,
    }


@router.post("/hospitals/{hospital_id}/availability/rebind")
async def rebind_selection(
    hospital_id: str, body: RebindRequest, request: Request
) -> dict:
    bound = await _service(request).rebind_shifts(
        hospital_id, body.date, body.start_time, body.neurophysiologist_ids
    )
    return {
        "hospital_id": hospital_id,
        "shift_ids": bound,
        "unavailable": [
            n for n, s in zip(body.neurophysiologist_ids, bound) if s is None
        ],
    }


@router.get("/hospitals/{hospital_id}/busy-surgeons")
async def get_busy_surgeons(
    hospital_id: str,
    request: Request,
    date: dt.date = Query(...),
    start_time: dt.time = Query(...),
    duration: int = Query(...),
) -> dict:
    busy = await _service(request).busy_surgeons(
        hospital_id, date, start_time, duration
    )
    return {"hospital_id": hospital_id, "surgeon_ids": sorted(busy)}


@router.post("/shifts", status_code=201)
async def declare_shift(body: DeclareShiftRequest, request: Request) -> Shift:
    return await _service(request).declare_shift(
        body.neurophysiologist_id,
        body.hospital_id,
        body.date,
        body.period,
        room_id=body.room_id,
    )


@router.post("/shifts/release")
async def release_shifts(body: ReleaseShiftsRequest, request: Request) -> dict:
    released = await _service(request).release_shifts(body.shift_ids)
    return {"released": [s.id for s in released]}


@router.post("/surgeries", status_code=201)
async def book_surgery(body: BookingRequest, request: Request) -> dict:
    surgery_id = await _service(request).commit_booking(body.draft, body.shift_ids)
    return {"status": "booked", "surgery_id": surgery_id}


@router.get("/surgeries/{surgery_id}")
async def get_surgery(surgery_id: str, request: Request) -> Surgery:
    return await _service(request).get_surgery(surgery_id)


@router.post("/surgeries/{surgery_id}/cancel")
async def cancel_surgery(surgery_id: str, request: Request) -> Surgery:
    return await _service(request).cancel_surgery(surgery_id)


@router.post("/surgeries/{surgery_id}/complete")
async def complete_surgery(surgery_id: str, request: Request) -> Surgery:
    return await _service(request).complete_surgery(surgery_id)


@router.get("/surgery-types")
async def list_surgery_types(request: Request) -> list[SurgeryType]:
    return _service(request).catalog.all()


async def booking_error_handler(request: Request, exc: Exception) -> JSONResponse:
    body: dict = {"error": type(exc).__name__, "detail": str(exc)}
    if isinstance(exc, ShiftNoLongerAvailable):
        body["shift_ids"] = exc.shift_ids
    return JSONResponse(status_code=CUSTOM_ERRORS.get(type(exc), 500), content=body)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings)

    app = FastAPI(title="Neurophysiology Surgery Booking API")
    db: InMemoryKeyValueDatabase[str, Record] = InMemoryKeyValueDatabase()
    app.state.database = db

    app.state.now_fn = lambda: datetime.now(UTC)
    app.state.booking_service = BookingService(
        db,
        settings=settings,
        catalog=SurgeryTypeCatalog(),
        notify=notify_surgery_booked,
        now_fn=lambda: app.state.now_fn(),
    )

    app.add_exception_handler(BookingError, booking_error_handler)
    app.include_router(router)
    return app
