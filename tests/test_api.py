import asyncio
import datetime as dt
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from freezegun import freeze_time
from httpx import ASGITransport, AsyncClient

import neurobooking.api as api
from neurobooking.api import create_app
from neurobooking.config import Settings
from neurobooking.database import InMemoryKeyValueDatabase
from neurobooking.models import DutyPeriod, Shift, Surgery
from neurobooking.stores import Record, shift_key

DAY = "2025-07-02"


def _p(msg: str) -> None:
    # pytest captures stdout unless you run with -s
    print(msg, flush=True)


def _banner(name: str) -> None:
    _p("\n" + "=" * 88)
    _p(f"test: {name}")
    _p("=" * 88)


def _dump_db(app) -> None:
    db: InMemoryKeyValueDatabase[str, Record] = app.state.database
    _p("db shifts:")
    for s in sorted((s for s in db.all() if isinstance(s, Shift)), key=lambda x: x.id):
        _p(
            f"  - {s.id} | {s.neurophysiologist_id} @ {s.hospital_id} "
            f"{s.date} {s.period} | booked={s.booked} surgery_id={s.surgery_id}"
        )
    _p("db surgeries:")
    for s in sorted(
        (s for s in db.all() if isinstance(s, Surgery)), key=lambda x: x.id
    ):
        _p(
            f"  - {s.id} | surgeon={s.surgeon_id} start={s.start.isoformat()} "
            f"duration={s.estimated_duration} status={s.status} shifts={s.shift_ids}"
        )


def _booking(
    *,
    shift_ids: list[str],
    neurophysiologist_ids: list[str],
    surgeon_id: str = "surgeon-x",
    hospital_id: str = "hospital-a",
    start_time: str = "09:00",
    estimated_duration: int | None = 120,
) -> dict:
    return {
        "draft": {
            "hospital_id": hospital_id,
            "surgeon_id": surgeon_id,
            "neurophysiologist_ids": neurophysiologist_ids,
            "surgery_type": "tiroides",
            "date": DAY,
            "start_time": start_time,
            "estimated_duration": estimated_duration,
            "patient_name": "Jane Roe",
            "booked_by": {
                "id": "admin-1",
                "name": "Ana Admin",
                "role": "administrativo",
            },
        },
        "shift_ids": shift_ids,
    }


@pytest.fixture(autouse=True)
def notifier_mock(monkeypatch):
    """
    Patch the api-level import (api.py does `from neurobooking.notifier import ...`
    and hands it to the booking service in create_app).
    """
    notify = AsyncMock(return_value=None)
    monkeypatch.setattr(api, "notify_surgery_booked", notify)
    return notify


@pytest_asyncio.fixture
async def client(notifier_mock):
    app = create_app(Settings(timezone="UTC"))
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


@pytest_asyncio.fixture
async def setup_test_data(client: AsyncClient):
    app = client._transport.app
    db: InMemoryKeyValueDatabase[str, Record] = app.state.database

    shifts = [
        Shift(
            id="shift-1",
            hospital_id="hospital-a",
            neurophysiologist_id="neuro-1",
            date=dt.date(2025, 7, 2),
            period=DutyPeriod.MORNING,
        ),
        Shift(
            id="shift-2",
            hospital_id="hospital-a",
            neurophysiologist_id="neuro-2",
            date=dt.date(2025, 7, 2),
            period=DutyPeriod.MORNING,
            booked=True,
            surgery_id="earlier-surgery",
        ),
        Shift(
            id="shift-3",
            hospital_id="hospital-a",
            neurophysiologist_id="neuro-3",
            date=dt.date(2025, 7, 2),
            period=DutyPeriod.MORNING,
        ),
        Shift(
            id="shift-4",
            hospital_id="hospital-a",
            neurophysiologist_id="neuro-1",
            date=dt.date(2025, 7, 2),
            period=DutyPeriod.AFTERNOON,
        ),
        Shift(
            id="shift-5",
            hospital_id="hospital-b",
            neurophysiologist_id="neuro-1",
            date=dt.date(2025, 7, 2),
            period=DutyPeriod.MORNING,
        ),
    ]
    for shift in shifts:
        db.put(shift_key(shift.id), shift)


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    _banner("health_check returns ok")
    resp = await client.get("/health")
    _p(f"GET /health -> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_availability_lists_only_open_shifts(
    client: AsyncClient, setup_test_data
) -> None:
    _banner("availability returns open shifts of the requested duty period")
    _dump_db(client._transport.app)

    morning = await client.get(
        "/hospitals/hospital-a/availability",
        params={"date": DAY, "start_time": "09:00"},
    )
    afternoon = await client.get(
        "/hospitals/hospital-a/availability",
        params={"date": DAY, "start_time": "14:00"},
    )
    _p(f"morning -> {morning.json()}")
    _p(f"afternoon -> {afternoon.json()}")

    assert morning.status_code == 200
    assert morning.json()["candidates"] == {"neuro-1": "shift-1", "neuro-3": "shift-3"}
    assert afternoon.json()["candidates"] == {"neuro-1": "shift-4"}


@pytest.mark.asyncio
async def test_availability_outside_hours_is_bad_request(
    client: AsyncClient, setup_test_data
) -> None:
    _banner("availability rejects a start time outside 08:00-20:00")
    resp = await client.get(
        "/hospitals/hospital-a/availability",
        params={"date": DAY, "start_time": "07:00"},
    )
    _p(f"-> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidRequest"


@pytest.mark.asyncio
async def test_availability_with_utc_offset_is_bad_request(
    client: AsyncClient, setup_test_data
) -> None:
    _banner("availability rejects a start time that carries a UTC offset")
    resp = await client.get(
        "/hospitals/hospital-a/availability",
        params={"date": DAY, "start_time": "09:00+05:00"},
    )
    _p(f"-> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidRequest"


@pytest.mark.asyncio
async def test_rebind_reports_unavailable(
    client: AsyncClient, setup_test_data
) -> None:
    _banner("rebind returns one shift id per selection, null when taken")
    resp = await client.post(
        "/hospitals/hospital-a/availability/rebind",
        json={
            "date": DAY,
            "start_time": "10:00",
            "neurophysiologist_ids": ["neuro-1", "neuro-2"],
        },
    )
    _p(f"-> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 200
    assert resp.json()["shift_ids"] == ["shift-1", None]
    assert resp.json()["unavailable"] == ["neuro-2"]


@pytest.mark.asyncio
async def test_book_surgery_marks_shifts(
    client: AsyncClient, setup_test_data, notifier_mock
) -> None:
    _banner("booking creates the surgery and books its shifts")
    app = client._transport.app
    db: InMemoryKeyValueDatabase[str, Record] = app.state.database

    with freeze_time("2025-07-01 12:00:00", real_asyncio=True):
        resp = await client.post(
            "/surgeries",
            json=_booking(
                shift_ids=["shift-1", "shift-3"],
                neurophysiologist_ids=["neuro-1", "neuro-3"],
            ),
        )
    _p(f"POST /surgeries -> status={resp.status_code}, body={resp.json()}")
    _dump_db(app)

    assert resp.status_code == 201
    surgery_id = resp.json()["surgery_id"]

    surgery = (await client.get(f"/surgeries/{surgery_id}")).json()
    assert surgery["status"] == "scheduled"
    assert surgery["neurophysiologist_ids"] == ["neuro-1", "neuro-3"]
    assert surgery["booked_by"]["role"] == "administrativo"
    assert surgery["created_at"].startswith("2025-07-01T12:00:00")
    assert len(surgery["materials"]) == 8

    for shift_id in ("shift-1", "shift-3"):
        shift = db.get(shift_key(shift_id))
        assert isinstance(shift, Shift)
        assert shift.booked is True
        assert shift.surgery_id == surgery_id

    notifier_mock.assert_awaited_once_with(surgery_id)


@pytest.mark.asyncio
async def test_book_zero_duration_is_bad_request(
    client: AsyncClient, setup_test_data
) -> None:
    _banner("zero duration draft is rejected before touching the store")
    resp = await client.post(
        "/surgeries",
        json=_booking(
            shift_ids=["shift-1"],
            neurophysiologist_ids=["neuro-1"],
            estimated_duration=0,
        ),
    )
    _p(f"-> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 400
    assert resp.json()["error"] == "InvalidRequest"


@pytest.mark.asyncio
async def test_only_one_booking_wins_a_shift(
    client: AsyncClient, setup_test_data
) -> None:
    _banner("race: two bookings on the same shift -> only one wins")
    app = client._transport.app

    r1, r2 = await asyncio.gather(
        client.post(
            "/surgeries",
            json=_booking(
                shift_ids=["shift-1"],
                neurophysiologist_ids=["neuro-1"],
                surgeon_id="surgeon-x",
            ),
        ),
        client.post(
            "/surgeries",
            json=_booking(
                shift_ids=["shift-1"],
                neurophysiologist_ids=["neuro-1"],
                surgeon_id="surgeon-y",
            ),
        ),
    )
    _p(f"first:  {r1.status_code} {r1.json()}")
    _p(f"second: {r2.status_code} {r2.json()}")
    _dump_db(app)

    statuses = sorted([r1.status_code, r2.status_code])
    assert statuses == [201, 409]
    loser = r1 if r1.status_code == 409 else r2
    winner = r2 if loser is r1 else r1
    assert loser.json()["error"] == "ShiftNoLongerAvailable"
    assert loser.json()["shift_ids"] == ["shift-1"]

    shift = app.state.database.get(shift_key("shift-1"))
    assert shift.surgery_id == winner.json()["surgery_id"]


@pytest.mark.asyncio
async def test_surgeon_conflict_only_at_same_hospital(
    client: AsyncClient, setup_test_data
) -> None:
    _banner("surgeon double-booking is a conflict at the same hospital only")
    first = await client.post(
        "/surgeries",
        json=_booking(shift_ids=["shift-1"], neurophysiologist_ids=["neuro-1"]),
    )
    assert first.status_code == 201

    busy = await client.get(
        "/hospitals/hospital-a/busy-surgeons",
        params={"date": DAY, "start_time": "10:00", "duration": 120},
    )
    _p(f"busy surgeons -> {busy.json()}")
    assert busy.json()["surgeon_ids"] == ["surgeon-x"]

    same_hospital = await client.post(
        "/surgeries",
        json=_booking(
            shift_ids=["shift-3"],
            neurophysiologist_ids=["neuro-3"],
            start_time="10:00",
        ),
    )
    other_hospital = await client.post(
        "/surgeries",
        json=_booking(
            shift_ids=["shift-5"],
            neurophysiologist_ids=["neuro-1"],
            hospital_id="hospital-b",
            start_time="10:00",
        ),
    )
    _p(f"same hospital -> {same_hospital.status_code} {same_hospital.json()}")
    _p(f"other hospital -> {other_hospital.status_code} {other_hospital.json()}")

    assert same_hospital.status_code == 409
    assert same_hospital.json()["error"] == "SchedulingConflict"
    assert other_hospital.status_code == 201


@pytest.mark.asyncio
async def test_cancel_releases_shifts(client: AsyncClient, setup_test_data) -> None:
    _banner("cancelling a surgery frees its shifts")
    app = client._transport.app
    booked = await client.post(
        "/surgeries",
        json=_booking(shift_ids=["shift-1"], neurophysiologist_ids=["neuro-1"]),
    )
    surgery_id = booked.json()["surgery_id"]

    resp = await client.post(f"/surgeries/{surgery_id}/cancel")
    _p(f"cancel -> status={resp.status_code}, body={resp.json()}")
    _dump_db(app)

    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    shift = app.state.database.get(shift_key("shift-1"))
    assert shift.booked is False
    assert shift.surgery_id is None

    again = await client.post(f"/surgeries/{surgery_id}/cancel")
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_complete_surgery(client: AsyncClient, setup_test_data) -> None:
    _banner("completing a surgery keeps its shifts booked")
    booked = await client.post(
        "/surgeries",
        json=_booking(shift_ids=["shift-1"], neurophysiologist_ids=["neuro-1"]),
    )
    surgery_id = booked.json()["surgery_id"]

    resp = await client.post(f"/surgeries/{surgery_id}/complete")
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"
    assert client._transport.app.state.database.get(shift_key("shift-1")).booked


@pytest.mark.asyncio
async def test_unknown_surgery_is_not_found(client: AsyncClient) -> None:
    _banner("unknown surgery ids return 404")
    resp = await client.get("/surgeries/nonexistent")
    _p(f"-> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 404
    assert "not found" in resp.json()["detail"].lower()

    cancel = await client.post("/surgeries/nonexistent/cancel")
    assert cancel.status_code == 404


@pytest.mark.asyncio
async def test_release_shifts(client: AsyncClient, setup_test_data) -> None:
    _banner("release is the compensating operation for booked shifts")
    resp = await client.post("/shifts/release", json={"shift_ids": ["shift-2"]})
    _p(f"-> status={resp.status_code}, body={resp.json()}")
    assert resp.status_code == 200
    assert resp.json() == {"released": ["shift-2"]}

    unknown = await client.post("/shifts/release", json={"shift_ids": ["nope"]})
    assert unknown.status_code == 400


@pytest.mark.asyncio
async def test_declare_shift_then_book_it(client: AsyncClient) -> None:
    _banner("a declared shift shows up in availability")
    body = {
        "neurophysiologist_id": "neuro-9",
        "hospital_id": "hospital-c",
        "date": DAY,
        "period": "afternoon",
    }
    created = await client.post("/shifts", json=body)
    _p(f"POST /shifts -> status={created.status_code}, body={created.json()}")
    assert created.status_code == 201
    shift_id = created.json()["id"]

    duplicate = await client.post("/shifts", json=body)
    assert duplicate.status_code == 400

    resp = await client.get(
        "/hospitals/hospital-c/availability",
        params={"date": DAY, "start_time": "16:30"},
    )
    assert resp.json()["candidates"] == {"neuro-9": shift_id}


@pytest.mark.asyncio
async def test_surgery_types(client: AsyncClient) -> None:
    _banner("surgery type catalog is exposed")
    resp = await client.get("/surgery-types")
    assert resp.status_code == 200
    types = {t["id"]: t for t in resp.json()}
    assert set(types) == {
        "tumores_tronco",
        "tumor_medular",
        "tiroides",
        "tumor_cerebral",
        "nervio_periferico",
    }
    assert types["tumor_cerebral"]["estimated_duration"] == 360
