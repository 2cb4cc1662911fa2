import pytest
from uuid import uuid4

from fastapi.testclient import TestClient
from config import Settings
from main import app, _repo, create_app
from repository import InMemoryBookingRepository, StoreFailure

client = TestClient(app)


@pytest.fixture(autouse=True)
def reset_repository():
    """Clear repository before each test."""
    _repo.reset()
    yield


def unique_position() -> str:
    """Generate a unique position for test isolation."""
    return f"POS_{uuid4().hex[:8].upper()}"


def owner(vid: str) -> dict:
    return {"ivao-vid": vid}


def book(position: str, start: str, end: str, vid: str = "111"):
    return client.post(
        "/bookings",
        json={"position": position, "fromDate": start, "toDate": end},
        headers=owner(vid),
    )


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_create_booking_success():
    position = unique_position()
    response = book(position, "2030-01-01T10:00:00Z", "2030-01-01T11:00:00Z")
    assert response.status_code == 201
    data = response.json()
    assert data["id"]
    assert data["position"] == position
    assert data["fromDate"] == "2030-01-01T10:00:00Z"
    assert data["toDate"] == "2030-01-01T11:00:00Z"
    assert data["owner"] == "111"


def test_create_booking_normalizes_offset_to_utc():
    response = book(unique_position(), "2030-01-01T12:00:00+02:00", "2030-01-01T13:00:00+02:00")
    assert response.status_code == 201
    assert response.json()["fromDate"] == "2030-01-01T10:00:00Z"


def test_create_booking_missing_owner():
    response = client.post(
        "/bookings",
        json={
            "position": unique_position(),
            "fromDate": "2030-01-01T10:00:00Z",
            "toDate": "2030-01-01T11:00:00Z"
        }
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "Missing owner header."


def test_create_booking_start_not_before_end():
    response = book(unique_position(), "2030-01-01T12:00:00Z", "2030-01-01T11:00:00Z")
    assert response.status_code == 422
    assert response.json()["detail"] == "Validation error: fromDate must be before toDate."


def test_create_booking_invalid_timestamp():
    response = book(unique_position(), "2030-01-01T10:00:00", "2030-01-01T11:00:00Z")  # Missing timezone
    assert response.status_code == 422
    assert response.json()["detail"] == (
        "Validation error: fromDate and toDate must be ISO-8601 timestamps with timezone."
    )


def test_create_booking_empty_position():
    response = book("", "2030-01-01T10:00:00Z", "2030-01-01T11:00:00Z")
    assert response.status_code == 422


def test_create_booking_position_overlap():
    position = unique_position()
    book(position, "2030-01-01T10:00:00Z", "2030-01-01T11:00:00Z", vid="111")

    response = book(position, "2030-01-01T10:30:00Z", "2030-01-01T11:30:00Z", vid="222")
    assert response.status_code == 409
    assert response.json()["detail"] == "Overlap conflict: position already booked in this interval."


def test_create_booking_owner_overlap():
    book(unique_position(), "2030-01-01T10:00:00Z", "2030-01-01T11:00:00Z", vid="111")

    response = book(unique_position(), "2030-01-01T10:00:00Z", "2030-01-01T11:00:00Z", vid="111")
    assert response.status_code == 409
    assert response.json()["detail"] == "Overlap conflict: owner already has a booking in this interval."


def test_create_booking_back_to_back_no_conflict():
    position = unique_position()
    book(position, "2030-01-01T10:00:00Z", "2030-01-01T11:00:00Z", vid="111")

    response = book(position, "2030-01-01T11:00:00Z", "2030-01-01T12:00:00Z", vid="222")
    assert response.status_code == 201
    data = response.json()
    assert data["fromDate"] == "2030-01-01T11:00:00Z"
    assert data["toDate"] == "2030-01-01T12:00:00Z"


def test_list_future_bookings_ordered():
    book("SBSP_TWR", "2030-01-03T12:00:00Z", "2030-01-03T13:00:00Z", vid="1")
    book("SBSP_APP", "2030-01-03T12:00:00Z", "2030-01-03T13:00:00Z", vid="2")
    book("SBSP_APP", "2030-01-03T10:00:00Z", "2030-01-03T11:00:00Z", vid="3")

    response = client.get("/bookings/future")
    assert response.status_code == 200
    data = response.json()
    assert [(b["position"], b["fromDate"]) for b in data] == [
        ("SBSP_APP", "2030-01-03T10:00:00Z"),
        ("SBSP_APP", "2030-01-03T12:00:00Z"),
        ("SBSP_TWR", "2030-01-03T12:00:00Z"),
    ]


def test_list_future_excludes_past_bookings():
    book(unique_position(), "2001-01-01T10:00:00Z", "2001-01-01T11:00:00Z")

    response = client.get("/bookings/future")
    assert response.status_code == 200
    assert response.json() == []


def test_list_bookings_for_date():
    position = unique_position()
    book(position, "2030-01-03T23:00:00Z", "2030-01-04T01:00:00Z", vid="1")
    book(position, "2030-01-04T10:00:00Z", "2030-01-04T11:00:00Z", vid="2")
    book(position, "2030-01-05T10:00:00Z", "2030-01-05T11:00:00Z", vid="3")

    response = client.get("/bookings/date/2030-01-04")
    assert response.status_code == 200
    data = response.json()
    assert [b["fromDate"] for b in data] == ["2030-01-03T23:00:00Z", "2030-01-04T10:00:00Z"]


def test_list_bookings_for_invalid_date():
    response = client.get("/bookings/date/not-a-date")
    assert response.status_code == 422
    assert response.json()["detail"] == "Validation error: invalid date."


def test_update_booking_success():
    position = unique_position()
    booking_id = book(position, "2030-01-02T10:00:00Z", "2030-01-02T11:00:00Z").json()["id"]

    response = client.put(
        f"/bookings/{booking_id}",
        json={"fromDate": "2030-01-02T10:30:00Z", "toDate": "2030-01-02T11:30:00Z"},
        headers=owner("111"),
    )
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == booking_id
    assert data["position"] == position
    assert data["fromDate"] == "2030-01-02T10:30:00Z"
    assert data["toDate"] == "2030-01-02T11:30:00Z"


def test_update_booking_partial_keeps_other_fields():
    booking_id = book(unique_position(), "2030-01-02T10:00:00Z", "2030-01-02T11:00:00Z").json()["id"]

    response = client.put(f"/bookings/{booking_id}", json={"position": "SBGR_TWR"}, headers=owner("111"))
    assert response.status_code == 200
    data = response.json()
    assert data["position"] == "SBGR_TWR"
    assert data["fromDate"] == "2030-01-02T10:00:00Z"
    assert data["toDate"] == "2030-01-02T11:00:00Z"


def test_update_booking_forbidden():
    booking_id = book(unique_position(), "2030-01-02T10:00:00Z", "2030-01-02T11:00:00Z").json()["id"]

    response = client.put(f"/bookings/{booking_id}", json={"position": "X"}, headers=owner("222"))
    assert response.status_code == 403
    assert response.json()["detail"] == "Not your booking."


def test_update_booking_not_found():
    response = client.put("/bookings/non_existent_booking", json={"position": "X"}, headers=owner("111"))
    assert response.status_code == 404
    assert response.json()["detail"] == "Booking not found."


def test_update_booking_position_overlap():
    position = unique_position()
    book(position, "2030-01-02T12:00:00Z", "2030-01-02T13:00:00Z", vid="222")
    booking_id = book(position, "2030-01-02T10:00:00Z", "2030-01-02T11:00:00Z", vid="111").json()["id"]

    response = client.put(
        f"/bookings/{booking_id}",
        json={"toDate": "2030-01-02T12:30:00Z"},
        headers=owner("111"),
    )
    assert response.status_code == 409


def test_delete_booking_success():
    booking_id = book(unique_position(), "2030-01-02T10:00:00Z", "2030-01-02T11:00:00Z").json()["id"]

    delete_response = client.delete(f"/bookings/{booking_id}", headers=owner("111"))
    assert delete_response.status_code == 200
    assert delete_response.json() == {"deleted": True}
    assert client.get("/bookings/future").json() == []


def test_delete_booking_forbidden():
    booking_id = book(unique_position(), "2030-01-02T10:00:00Z", "2030-01-02T11:00:00Z").json()["id"]

    response = client.delete(f"/bookings/{booking_id}", headers=owner("222"))
    assert response.status_code == 403


def test_delete_booking_missing_owner():
    response = client.delete("/bookings/anything")
    assert response.status_code == 400


def test_delete_booking_not_found():
    response = client.delete("/bookings/non_existent_booking", headers=owner("111"))
    assert response.status_code == 404
    assert response.json()["detail"] == "Booking not found."


def test_minimum_duration_policy_and_custom_owner_header():
    settings = Settings(min_duration_minutes=30, owner_header="x-caller")
    custom = TestClient(create_app(InMemoryBookingRepository(), settings))

    too_short = custom.post(
        "/bookings",
        json={"position": "SBSP_APP", "fromDate": "2030-01-01T10:00:00Z", "toDate": "2030-01-01T10:15:00Z"},
        headers={"x-caller": "111"},
    )
    assert too_short.status_code == 422
    assert too_short.json()["detail"] == "Validation error: booking is shorter than the minimum duration."

    ok = custom.post(
        "/bookings",
        json={"position": "SBSP_APP", "fromDate": "2030-01-01T10:00:00Z", "toDate": "2030-01-01T10:30:00Z"},
        headers={"x-caller": "111"},
    )
    assert ok.status_code == 201


def test_store_failure_maps_to_service_unavailable():
    class UnavailableRepository(InMemoryBookingRepository):
        def list_future(self, now):
            raise StoreFailure("database is down")

    broken = TestClient(create_app(UnavailableRepository(), Settings()))
    response = broken.get("/bookings/future")
    assert response.status_code == 503
    assert response.json()["detail"] == "Booking store unavailable, try again later."


def test_boundary_dates_are_client_errors():
    assert client.get("/bookings/date/9999-12-31").json() == []

    response = book(unique_position(), "0001-01-01T00:00:00+01:00", "2030-01-01T11:00:00Z")
    assert response.status_code == 422
