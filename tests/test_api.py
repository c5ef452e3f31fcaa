"""HTTP surface, driven in-process through httpx's ASGI transport."""
import httpx
import pytest

from table_booking.api import app, get_service
from table_booking.db import get_session

from conftest import DAY


@pytest.fixture
async def client(session_factory, make_service):
    async def override_session():
        async with session_factory() as session:
            yield session

    async def override_service():
        async with session_factory() as session:
            yield make_service(session)

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_service] = override_service
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


def booking_json(**overrides):
    data = {
        "guest_name": "Ada Lovelace",
        "email": "ada@example.com",
        "phone": "+1 (312) 555-0101",
        "date": DAY.isoformat(),
        "time": "19:00",
        "party_size": 2,
    }
    data.update(overrides)
    return data


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


async def test_create_and_fetch_reservation(client):
    response = await client.post("/reservations", json=booking_json())

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "confirmed"
    assert body["evaluation"]["decision"] == "auto_confirm"
    reservation = body["reservation"]
    assert reservation["date"] == "2025-12-15"
    assert reservation["time"] == "19:00"

    fetched = await client.get(f"/reservations/{reservation['id']}")
    assert fetched.json()["phone"] == "+1 (312) 555-0101"

    listed = await client.get("/reservations", params={"date": "2025-12-15"})
    assert [r["id"] for r in listed.json()] == [reservation["id"]]


async def test_rejection_is_a_normal_response(client):
    response = await client.post("/reservations", json=booking_json(time="23:30"))

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["reservation"] is None


async def test_invalid_input_is_422(client):
    assert (await client.post("/reservations", json=booking_json(phone="555-0101"))).status_code == 422
    assert (await client.post("/reservations", json=booking_json(time="7pm"))).status_code == 422
    assert (await client.post("/reservations", json=booking_json(party_size=0))).status_code == 422
    assert (await client.post("/reservations", json=booking_json(email="not-an-email"))).status_code == 422


async def test_evaluate_and_staff_edit_validate_like_create(client):
    too_big = await client.post(
        "/capacity/evaluate", json={"date": "2025-12-15", "time": "19:00", "party_size": 21}
    )
    assert too_big.status_code == 422

    created = (await client.post("/reservations", json=booking_json())).json()["reservation"]
    bad_email = await client.patch(f"/reservations/{created['id']}", json={"email": "not-an-email"})
    assert bad_email.status_code == 422

    good_email = await client.patch(f"/reservations/{created['id']}", json={"email": "ada@lovelace.dev"})
    assert good_email.json()["email"] == "ada@lovelace.dev"


async def test_unknown_reservation_is_404(client):
    assert (await client.get("/reservations/999")).status_code == 404
    assert (await client.get("/public/reservations/nope")).status_code == 404
    assert (await client.get("/waitlist/999")).status_code == 404


async def test_cancel_twice_is_409(client):
    created = (await client.post("/reservations", json=booking_json())).json()["reservation"]

    first = await client.post(f"/reservations/{created['id']}/cancel")
    second = await client.post(f"/reservations/{created['id']}/cancel")

    assert first.status_code == 200
    assert first.json()["reservation"]["status"] == "cancelled"
    assert first.json()["promoted"] is False
    assert second.status_code == 409


async def test_guest_self_service(client):
    created = (await client.post("/reservations", json=booking_json())).json()["reservation"]
    token = created["cancel_token"]

    assert (await client.get(f"/public/reservations/{token}")).json()["id"] == created["id"]

    edited = await client.patch(f"/public/reservations/{token}", json={"party_size": 4})
    assert edited.status_code == 200
    assert edited.json()["reservation"]["status"] == "pending"

    cancelled = await client.post(f"/public/reservations/{token}/cancel")
    assert cancelled.json()["reservation"]["status"] == "cancelled"

    history = (await client.get(f"/reservations/{created['id']}/history")).json()["history"]
    assert [h["change_type"] for h in history] == ["created", "confirmed", "updated", "cancelled"]


async def test_capacity_endpoints(client):
    await client.post("/reservations", json=booking_json(party_size=4))

    slots = (await client.get("/capacity/slots", params={"date": "2025-12-15"})).json()["slots"]
    assert len(slots) == 20
    assert next(s for s in slots if s["time"] == "19:00")["reservation_count"] == 1

    evaluation = await client.post(
        "/capacity/evaluate", json={"date": "2025-12-15", "time": "19:30", "party_size": 8}
    )
    assert evaluation.json()["decision"] == "pending"
    assert evaluation.json()["metadata"]["total_guests"] == 4


async def test_waitlist_endpoints(client):
    await client.put("/settings", json={"max_reservations_per_slot": 1})
    await client.post("/reservations", json=booking_json())
    waitlisted = (await client.post("/reservations", json=booking_json(guest_name="Grace"))).json()

    assert waitlisted["status"] == "waitlisted"
    entries = (await client.get("/waitlist", params={"status": "waiting"})).json()
    assert [e["guest_name"] for e in entries] == ["Grace"]
    entry = await client.get(f"/waitlist/{waitlisted['waitlist_entry']['id']}")
    assert entry.json()["status"] == "waiting"

    expired = await client.post("/waitlist/expire")
    assert expired.json() == {"expired": 0}


async def test_settings_endpoints(client):
    current = (await client.get("/settings")).json()
    assert current["total_capacity"] == 82
    assert len(current["operating_hours"]) == 7

    updated = await client.put("/settings", json={"bar_seats": 18})
    assert updated.json()["total_capacity"] == 88

    broken = await client.put("/settings", json={"dining_room_seats": 0, "bar_seats": 0, "outdoor_seats": 0})
    assert broken.status_code == 500
    assert (await client.get("/settings")).json()["total_capacity"] == 88


async def test_dashboard_stats(client):
    # Fixed clock: Monday 1 Dec 2025, noon
    await client.post("/reservations", json=booking_json(date="2025-12-01", time="19:00", party_size=2))
    await client.post("/reservations", json=booking_json(date="2025-12-01", time="20:30", party_size=7))
    await client.post("/reservations", json=booking_json(date="2025-12-05", time="18:00", party_size=3))
    await client.post("/reservations", json=booking_json(party_size=4))  # DAY, two weeks out

    stats = (await client.get("/dashboard/stats")).json()

    assert stats["today"] == {
        "total_reservations": 2,
        "confirmed": 1,
        "pending": 1,
        "cancelled": 0,
        "total_guests": 9,
        "average_party_size": 4.5,
    }
    assert stats["upcoming"] == {"next_7_days": 3, "next_30_days": 4, "waitlist_count": 0}
    capacity = stats["capacity"]
    assert capacity["current_occupancy"] == 2
    assert capacity["max_capacity"] == 82
    assert capacity["utilization_percent"] == 2.44
    assert capacity["peak_hour_today"] == "19:00"
    assert capacity["available_slots"] == 20

    activity = stats["recent_activity"]
    assert len(activity) == 7  # created (x4) + auto-confirmed (x3)
    assert {a["type"] for a in activity} == {"created", "confirmed"}
    assert all(a["message"].startswith("Ada Lovelace's reservation") for a in activity)
