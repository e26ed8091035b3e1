"""Tests for booking, editing and deleting appointments"""
import pytest
from sqlmodel import select

from conftest import NEXT_MONDAY, NEXT_TUESDAY, TODAY
from errors import ConflictError, PermissionDeniedError, ReferentialError, TransitionError, ValidationError
from models import AppointmentStatus, AuditLog, RecordState, UserRole
from permissions import ActorContext
from schemas import AppointmentCreate, AppointmentReschedule, AppointmentUpdate
from services.appointment_state import TransitionContext
from services.conflict_service import DOCTOR_CONFLICT

S = AppointmentStatus


def booking_data(seed, **overrides):
    data = dict(
        patient_id=seed.patient.id,
        doctor_id=seed.doctor.id,
        room_id=seed.room.id,
        appointment_type_id=seed.consultation.id,
        appointment_date=NEXT_MONDAY,
        start_time="10:00",
        end_time="10:30",
    )
    data.update(overrides)
    return AppointmentCreate(**data)


def update_data(appointment, **overrides):
    data = dict(
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        room_id=appointment.room_id,
        appointment_type_id=appointment.appointment_type_id,
        custom_reason=appointment.custom_reason,
        appointment_date=appointment.appointment_date,
        start_time=appointment.start_time,
        end_time=appointment.end_time,
        notes=appointment.notes,
    )
    data.update(overrides)
    return AppointmentUpdate(**data)


# Booking

def test_book_creates_pending_appointment_with_type_defaults(seed, booking, reception):
    appointment = booking.book(booking_data(seed), reception)

    assert appointment.id is not None
    assert appointment.status == S.PENDING
    assert appointment.clinic_id == seed.clinic.id
    assert appointment.custom_price == 500
    assert appointment.duration_min == 30
    assert appointment.record_state == RecordState.ACTIVE


def test_book_explicit_price_and_duration_win(seed, booking, reception):
    appointment = booking.book(booking_data(seed, custom_price=350.0, duration_min=25), reception)

    assert appointment.custom_price == 350.0
    assert appointment.duration_min == 25


def test_book_custom_reason_uses_interval_length(seed, booking, reception):
    appointment = booking.book(
        booking_data(seed, appointment_type_id=None, custom_reason=" Control ", end_time="10:45"), reception
    )

    assert appointment.custom_reason == "Control"
    assert appointment.custom_price is None
    assert appointment.duration_min == 45


@pytest.mark.parametrize("overrides", [
    dict(appointment_type_id=None, custom_reason=None),
    dict(custom_reason="Control"),
    dict(start_time="10:30", end_time="10:00"),
    dict(start_time="10:00", end_time="10:04"),
    dict(start_time="07:00", end_time="15:01"),
    dict(start_time="9:00", end_time="10:00"),
    dict(duration_min=500),
    dict(custom_price=-10.0),
])
def test_book_structural_validation(seed, booking, reception, overrides):
    with pytest.raises(ValidationError):
        booking.book(booking_data(seed, **overrides), reception)


def test_structural_errors_come_before_referential(seed, booking, reception):
    with pytest.raises(ValidationError):
        booking.book(booking_data(seed, patient_id=9999, start_time="11:00", end_time="10:00"), reception)


def test_temporal_errors_come_before_referential(seed, booking, reception):
    with pytest.raises(ValidationError, match="past"):
        booking.book(booking_data(seed, room_id=9999, appointment_date=TODAY.replace(day=1)), reception)


def test_referential_errors_come_before_conflicts(seed, booking, reception, make_appointment):
    make_appointment(NEXT_MONDAY, "10:00", "10:30")

    with pytest.raises(ReferentialError):
        booking.book(booking_data(seed, room_id=9999), reception)


def test_book_today_is_allowed(seed, booking, reception):
    appointment = booking.book(booking_data(seed, appointment_date=TODAY), reception)
    assert appointment.appointment_date == TODAY


def test_only_backfill_roles_book_in_the_past(seed, booking, reception, clinic_admin):
    past = TODAY.replace(day=3)

    with pytest.raises(ValidationError):
        booking.book(booking_data(seed, appointment_date=past), reception)

    appointment = booking.book(booking_data(seed, appointment_date=past), clinic_admin)
    assert appointment.appointment_date == past


@pytest.mark.parametrize("field, value", [
    ("doctor_id", 9999),
    ("patient_id", 9999),
    ("room_id", 9999),
    ("appointment_type_id", 9999),
])
def test_book_unknown_references(seed, booking, reception, field, value):
    with pytest.raises(ReferentialError):
        booking.book(booking_data(seed, **{field: value}), reception)


def test_book_rejects_patient_from_other_clinic(seed, booking, reception):
    with pytest.raises(ReferentialError):
        booking.book(booking_data(seed, patient_id=seed.other_patient.id), reception)


def test_book_rejects_inactive_room(seed, session, booking, reception):
    seed.room.is_active = False
    session.add(seed.room)
    session.commit()

    with pytest.raises(ReferentialError):
        booking.book(booking_data(seed), reception)


def test_book_rejects_soft_deleted_doctor(seed, session, booking, reception, clock):
    seed.doctor.deleted_at = clock()
    session.add(seed.doctor)
    session.commit()

    with pytest.raises(ReferentialError):
        booking.book(booking_data(seed), reception)


@pytest.mark.parametrize("actor_name", ["nurse", "doctor_actor"])
def test_roles_without_booking_permission(seed, booking, request, actor_name):
    with pytest.raises(PermissionDeniedError):
        booking.book(booking_data(seed), request.getfixturevalue(actor_name))


def test_book_in_another_clinic_is_denied(seed, booking):
    outsider = ActorContext(user_id=9, role=UserRole.RECEPTION, clinic_id=seed.other_clinic.id)

    with pytest.raises(PermissionDeniedError):
        booking.book(booking_data(seed), outsider)


def test_cancelled_slot_can_be_rebooked(seed, booking, reception):
    first = booking.book(booking_data(seed), reception)
    booking.transition_status(first.id, S.CANCELLED, TransitionContext(actor=reception, cancel_reason="Cambio"))

    second = booking.book(booking_data(seed), reception)
    assert second.id != first.id


# Editing

def test_update_can_overlap_its_own_previous_time(seed, booking, reception):
    appointment = booking.book(booking_data(seed), reception)

    updated = booking.update_appointment(
        appointment.id, update_data(appointment, start_time="10:15", end_time="10:45"), reception
    )

    assert (updated.start_time, updated.end_time) == ("10:15", "10:45")


def test_update_into_another_booking_conflicts(seed, booking, reception, make_appointment):
    make_appointment(NEXT_MONDAY, "11:00", "11:30", patient=seed.incomplete_patient, room=seed.room_2)
    appointment = booking.book(booking_data(seed), reception)

    with pytest.raises(ConflictError) as exc_info:
        booking.update_appointment(
            appointment.id, update_data(appointment, start_time="11:00", end_time="11:30"), reception
        )
    assert exc_info.value.reasons == [DOCTOR_CONFLICT]


def test_editing_requires_reschedule_appointment_moves_it_to_pending(seed, session, booking, reception, make_appointment):
    appointment = make_appointment(NEXT_MONDAY, "10:00", "10:30", status=S.REQUIRES_RESCHEDULE)

    updated = booking.update_appointment(
        appointment.id, update_data(appointment, appointment_date=NEXT_TUESDAY, start_time="08:00", end_time="08:30"),
        reception,
    )

    assert updated.status == S.PENDING
    [entry] = session.exec(select(AuditLog)).all()
    assert entry.transition_type == "reschedule"
    assert entry.previous_status == S.REQUIRES_RESCHEDULE
    assert entry.applied_status == S.PENDING


def test_notes_only_edit_keeps_requires_reschedule(seed, booking, reception, make_appointment):
    appointment = make_appointment(NEXT_MONDAY, "10:00", "10:30", status=S.REQUIRES_RESCHEDULE)

    updated = booking.update_appointment(appointment.id, update_data(appointment, notes="Llamar antes"), reception)

    assert updated.status == S.REQUIRES_RESCHEDULE
    assert updated.notes == "Llamar antes"


def test_reschedule_moves_to_new_time(seed, booking, reception, make_appointment):
    appointment = make_appointment(NEXT_MONDAY, "10:00", "10:30", status=S.REQUIRES_RESCHEDULE)

    updated = booking.reschedule(
        appointment.id,
        AppointmentReschedule(appointment_date=NEXT_MONDAY, start_time="11:00", end_time="11:30"),
        reception,
    )

    assert updated.start_time == "11:00"
    assert updated.status == S.PENDING


def test_terminal_appointment_accepts_informational_edits_only(seed, booking, reception, make_appointment):
    appointment = make_appointment(NEXT_MONDAY, "10:00", "10:30", status=S.PAID)

    updated = booking.update_appointment(appointment.id, update_data(appointment, notes="Factura enviada"), reception)
    assert updated.notes == "Factura enviada"

    with pytest.raises(TransitionError) as exc_info:
        booking.update_appointment(
            appointment.id, update_data(appointment, start_time="11:00", end_time="11:30"), reception
        )
    assert exc_info.value.guard == "terminal_state"


# Deleting and listing

def test_soft_delete_hides_appointment_and_frees_slot(seed, booking, reception):
    appointment = booking.book(booking_data(seed), reception)

    deleted = booking.soft_delete(appointment.id, reception)

    assert deleted.record_state == RecordState.SOFT_DELETED
    assert deleted.deleted_at is not None
    with pytest.raises(ReferentialError):
        booking.get_appointment(appointment.id, reception)
    assert booking.check_conflicts(
        seed.doctor.id, seed.patient.id, seed.room.id, NEXT_MONDAY, "10:00", "10:30"
    ) == []

    with pytest.raises(TransitionError) as exc_info:
        booking.soft_delete(appointment.id, reception)
    assert exc_info.value.guard == "record_state"


def test_hard_delete_is_admin_only_and_keeps_audit(seed, session, booking, reception, admin):
    appointment = booking.book(booking_data(seed), reception)
    booking.transition_status(appointment.id, S.CONFIRMED, TransitionContext(actor=reception))
    appointment_id = appointment.id

    with pytest.raises(PermissionDeniedError):
        booking.hard_delete(appointment_id, reception)

    booking.hard_delete(appointment_id, admin)

    with pytest.raises(ReferentialError):
        booking.get_appointment(appointment_id, admin)
    assert [e.appointment_id for e in session.exec(select(AuditLog)).all()] == [appointment_id]


def test_listing_is_scoped_by_role(seed, booking, reception, admin, doctor_actor, make_appointment):
    mine = make_appointment(NEXT_MONDAY, "10:00", "10:30")
    cancelled = make_appointment(NEXT_MONDAY, "11:00", "11:30", status=S.CANCELLED)
    make_appointment(NEXT_MONDAY, "12:00", "12:30", record_state=RecordState.SOFT_DELETED)
    elsewhere = make_appointment(NEXT_MONDAY, "10:00", "10:30", doctor=seed.other_doctor, patient=seed.other_patient)

    assert [a.id for a in booking.list_appointments(reception)] == [mine.id, cancelled.id]
    assert [a.id for a in booking.list_appointments(doctor_actor)] == [mine.id, cancelled.id]
    assert {a.id for a in booking.list_appointments(admin)} == {mine.id, cancelled.id, elsewhere.id}
    assert booking.list_appointments(reception, appointment_date=NEXT_TUESDAY) == []
