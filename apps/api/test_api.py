"""HTTP tests for the scheduling routers"""
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from conftest import NEXT_MONDAY, NEXT_SUNDAY
from database import get_session
from main import app


@pytest.fixture
def client(session):
    def override_session():
        yield session

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app)
    app.dependency_overrides.clear()


def headers_for(role, clinic_id=None, doctor_id=None, user_id=1):
    claims = {"sub": str(user_id), "role": role}
    if clinic_id is not None:
        claims["clinic_id"] = clinic_id
    if doctor_id is not None:
        claims["doctor_id"] = doctor_id
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def reception_headers(seed):
    return headers_for("reception", clinic_id=seed.clinic.id)


def booking_payload(seed, **overrides):
    payload = {
        "patient_id": seed.patient.id,
        "doctor_id": seed.doctor.id,
        "room_id": seed.room.id,
        "appointment_type_id": seed.consultation.id,
        "appointment_date": NEXT_MONDAY.isoformat(),
        "start_time": "10:00",
        "end_time": "10:30",
    }
    payload.update(overrides)
    return payload


def test_health(client):
    assert client.get("/health").json() == {"status": "healthy"}


def test_missing_token_is_rejected(client, seed):
    response = client.get("/api/appointments")
    assert response.status_code in (401, 403)


def test_invalid_token_is_rejected(client, seed):
    response = client.get("/api/appointments", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_token_with_unknown_role_is_rejected(client, seed):
    response = client.get("/api/appointments", headers=headers_for("patient", clinic_id=seed.clinic.id))
    assert response.status_code == 401


def test_book_and_fetch(client, seed, reception_headers):
    response = client.post("/api/appointments", json=booking_payload(seed), headers=reception_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["custom_price"] == 500
    assert body["record_state"] == "active"

    fetched = client.get(f"/api/appointments/{body['id']}", headers=reception_headers)
    assert fetched.status_code == 200
    assert fetched.json()["start_time"] == "10:00"

    listed = client.get("/api/appointments", params={"date": NEXT_MONDAY.isoformat()}, headers=reception_headers)
    assert [a["id"] for a in listed.json()] == [body["id"]]


def test_conflicting_booking_returns_409_with_reasons(client, seed, reception_headers):
    client.post("/api/appointments", json=booking_payload(seed), headers=reception_headers)

    response = client.post(
        "/api/appointments",
        json=booking_payload(seed, patient_id=seed.incomplete_patient.id, room_id=seed.room_2.id),
        headers=reception_headers,
    )

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "conflict"
    assert body["reasons"] == ["Doctor is not available at this time"]


def test_conflict_check_endpoint(client, seed, reception_headers):
    client.post("/api/appointments", json=booking_payload(seed), headers=reception_headers)

    response = client.post(
        "/api/appointments/check-conflicts",
        json={
            "doctor_id": seed.doctor.id,
            "patient_id": seed.patient.id,
            "appointment_date": NEXT_MONDAY.isoformat(),
            "start_time": "10:15",
            "end_time": "10:45",
        },
        headers=reception_headers,
    )

    assert response.status_code == 200
    assert response.json()["has_conflicts"] is True
    assert len(response.json()["conflicts"]) == 2


def test_domain_validation_returns_400(client, seed, reception_headers):
    response = client.post(
        "/api/appointments", json=booking_payload(seed, start_time="11:00", end_time="10:00"), headers=reception_headers
    )

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_malformed_body_returns_422(client, seed, reception_headers):
    payload = booking_payload(seed)
    del payload["doctor_id"]

    assert client.post("/api/appointments", json=payload, headers=reception_headers).status_code == 422


def test_nurse_cannot_book(client, seed):
    response = client.post(
        "/api/appointments", json=booking_payload(seed), headers=headers_for("nurse", clinic_id=seed.clinic.id)
    )
    assert response.status_code == 403
    assert response.json()["code"] == "permission_denied"


def test_status_flow(client, seed, reception_headers):
    appointment_id = client.post("/api/appointments", json=booking_payload(seed), headers=reception_headers).json()["id"]

    transitions = client.get(f"/api/appointments/{appointment_id}/transitions", headers=reception_headers).json()
    assert [t["status"] for t in transitions] == ["confirmed", "cancelled", "requires_reschedule"]

    response = client.patch(
        f"/api/appointments/{appointment_id}/status", json={"status": "confirmed"}, headers=reception_headers
    )
    assert response.status_code == 200
    assert response.json()["status"] == "confirmed"

    response = client.patch(
        f"/api/appointments/{appointment_id}/status", json={"status": "cancelled"}, headers=reception_headers
    )
    assert response.status_code == 409
    assert response.json()["guard"] == "cancellation_reason"


def test_reschedule_endpoint(client, seed, reception_headers):
    appointment_id = client.post("/api/appointments", json=booking_payload(seed), headers=reception_headers).json()["id"]

    response = client.post(
        f"/api/appointments/{appointment_id}/reschedule",
        json={"appointment_date": NEXT_MONDAY.isoformat(), "start_time": "11:00", "end_time": "11:30"},
        headers=reception_headers,
    )

    assert response.status_code == 200
    assert response.json()["start_time"] == "11:00"


def test_soft_delete_then_purge(client, seed, reception_headers):
    appointment_id = client.post("/api/appointments", json=booking_payload(seed), headers=reception_headers).json()["id"]

    assert client.delete(f"/api/appointments/{appointment_id}/purge", headers=reception_headers).status_code == 403
    assert client.delete(f"/api/appointments/{appointment_id}", headers=reception_headers).status_code == 204
    assert client.get(f"/api/appointments/{appointment_id}", headers=reception_headers).status_code == 404

    admin_headers = headers_for("admin", user_id=3)
    assert client.delete(f"/api/appointments/{appointment_id}/purge", headers=admin_headers).status_code == 204


def test_slots_and_range(client, seed, reception_headers):
    slots = client.get(
        "/api/availability/slots",
        params={"doctor_id": seed.doctor.id, "clinic_id": seed.clinic.id, "date": NEXT_MONDAY.isoformat()},
        headers=reception_headers,
    )
    assert slots.status_code == 200
    assert slots.json()[0] == {"start_time": "09:00", "end_time": "09:30"}
    assert len(slots.json()) == 6

    days = client.get(
        "/api/availability/range",
        params={
            "doctor_id": seed.doctor.id,
            "clinic_id": seed.clinic.id,
            "start_date": NEXT_SUNDAY.isoformat(),
            "end_date": NEXT_MONDAY.isoformat(),
        },
        headers=reception_headers,
    )
    assert days.json() == [
        {"date": NEXT_SUNDAY.isoformat(), "available": False},
        {"date": NEXT_MONDAY.isoformat(), "available": True},
    ]


def test_slots_in_another_clinic_are_denied(client, seed):
    response = client.get(
        "/api/availability/slots",
        params={"doctor_id": seed.doctor.id, "clinic_id": seed.clinic.id, "date": NEXT_MONDAY.isoformat()},
        headers=headers_for("reception", clinic_id=seed.other_clinic.id),
    )
    assert response.status_code == 403


def test_slots_for_doctor_of_another_clinic_are_not_found(client, seed, reception_headers):
    response = client.get(
        "/api/availability/slots",
        params={"doctor_id": seed.other_doctor.id, "clinic_id": seed.clinic.id, "date": NEXT_MONDAY.isoformat()},
        headers=reception_headers,
    )
    assert response.status_code == 404
    assert response.json()["code"] == "referential_error"


def test_schedule_endpoints(client, seed, reception_headers):
    blocks = client.get(f"/api/schedules/doctors/{seed.doctor.id}", headers=reception_headers).json()
    assert [(b["weekday"], b["inherited"]) for b in blocks] == [(1, False), (2, True)]

    created = client.post(
        f"/api/schedules/doctors/{seed.doctor.id}",
        json={"weekday": 4, "start_time": "09:00", "end_time": "13:00"},
        headers=reception_headers,
    )
    assert created.status_code == 201

    overlap = client.post(
        f"/api/schedules/doctors/{seed.doctor.id}",
        json={"weekday": 4, "start_time": "12:00", "end_time": "14:00"},
        headers=reception_headers,
    )
    assert overlap.status_code == 409

    exception = client.post(
        f"/api/schedules/doctors/{seed.doctor.id}/exceptions",
        json={"exception_date": NEXT_MONDAY.isoformat(), "reason": "Congreso"},
        headers=reception_headers,
    )
    assert exception.status_code == 201
    assert exception.json()["start_time"] is None

    slots = client.get(
        "/api/availability/slots",
        params={"doctor_id": seed.doctor.id, "clinic_id": seed.clinic.id, "date": NEXT_MONDAY.isoformat()},
        headers=reception_headers,
    )
    assert slots.json() == []

    deleted = client.delete(f"/api/schedules/exceptions/{exception.json()['id']}", headers=reception_headers)
    assert deleted.status_code == 204


def test_clinic_block_update_endpoint(client, seed, reception_headers):
    admin_headers = headers_for("clinic_admin", clinic_id=seed.clinic.id, user_id=2)
    [tuesday] = client.get(f"/api/schedules/clinics/{seed.clinic.id}", headers=admin_headers).json()

    updated = client.put(
        f"/api/schedules/clinics/blocks/{tuesday['id']}",
        json={"weekday": 2, "start_time": "08:00", "end_time": "09:00"},
        headers=admin_headers,
    )
    assert updated.status_code == 200
    assert updated.json()["end_time"] == "09:00"

    denied = client.put(
        f"/api/schedules/clinics/blocks/{tuesday['id']}",
        json={"weekday": 2, "start_time": "08:00", "end_time": "10:00"},
        headers=reception_headers,
    )
    assert denied.status_code == 403
