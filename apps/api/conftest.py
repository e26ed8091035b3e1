import os

# Must be set before the application modules read them at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["CACHE_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["USE_SQLITE"] = "true"

from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    Clinic,
    ClinicSchedule,
    Doctor,
    DoctorSchedule,
    Gender,
    Patient,
    Room,
    UserRole,
)
from permissions import ActorContext
from services.availability_service import AvailabilityService
from services.booking_service import BookingService
from services.schedule_service import ScheduleService
from stores import build_sql_stores

# Monday 2030-03-04 09:00 in America/Mexico_City (UTC-6)
FIXED_NOW = datetime(2030, 3, 4, 15, 0, tzinfo=timezone.utc)
TODAY = date(2030, 3, 4)
NEXT_MONDAY = date(2030, 3, 11)
NEXT_TUESDAY = date(2030, 3, 12)
NEXT_SUNDAY = date(2030, 3, 10)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def seed(session):
    """Two clinics; the first has a doctor with a Monday 09:00-12:00 block and
    clinic-wide Tuesday hours the doctor inherits."""
    clinic = Clinic(name="Centro Médico", timezone="America/Mexico_City", default_slot_minutes=30)
    other_clinic = Clinic(name="Clínica Norte", timezone="America/Mexico_City", default_slot_minutes=30)
    session.add(clinic)
    session.add(other_clinic)
    session.commit()

    doctor = Doctor(clinic_id=clinic.id, user_id=20, first_name="Ana", last_name="García")
    other_doctor = Doctor(clinic_id=other_clinic.id, user_id=21, first_name="Raúl", last_name="Soto")
    patient = Patient(
        clinic_id=clinic.id,
        first_name="Luis",
        last_name="Pérez",
        no_second_last_name=True,
        phone="5551234567",
        birth_date=date(1985, 6, 1),
        gender=Gender.MALE,
    )
    incomplete_patient = Patient(clinic_id=clinic.id, first_name="Marta", last_name="Ruiz")
    other_patient = Patient(clinic_id=other_clinic.id, first_name="Eva", last_name="Luna", phone="5550000000")
    room = Room(clinic_id=clinic.id, name="Consultorio 1")
    room_2 = Room(clinic_id=clinic.id, name="Consultorio 2")
    consultation = AppointmentType(clinic_id=clinic.id, name="Consulta general", price=500, duration_min=30)
    for record in (doctor, other_doctor, patient, incomplete_patient, other_patient, room, room_2, consultation):
        session.add(record)
    session.commit()

    session.add(DoctorSchedule(doctor_id=doctor.id, weekday=1, start_time="09:00", end_time="12:00"))
    session.add(ClinicSchedule(clinic_id=clinic.id, weekday=2, start_time="08:00", end_time="10:00"))
    session.commit()

    return SimpleNamespace(
        clinic=clinic,
        other_clinic=other_clinic,
        doctor=doctor,
        other_doctor=other_doctor,
        patient=patient,
        incomplete_patient=incomplete_patient,
        other_patient=other_patient,
        room=room,
        room_2=room_2,
        consultation=consultation,
    )


@pytest.fixture
def stores(session, clock):
    return build_sql_stores(session, clock=clock)


@pytest.fixture
def availability(stores):
    return AvailabilityService(stores)


@pytest.fixture
def booking(stores, availability, clock):
    return BookingService(stores, availability=availability, clock=clock)


@pytest.fixture
def schedules(stores, availability, clock):
    return ScheduleService(stores, availability=availability, clock=clock)


@pytest.fixture
def reception(seed):
    return ActorContext(user_id=1, role=UserRole.RECEPTION, clinic_id=seed.clinic.id)


@pytest.fixture
def clinic_admin(seed):
    return ActorContext(user_id=2, role=UserRole.CLINIC_ADMIN, clinic_id=seed.clinic.id)


@pytest.fixture
def admin():
    return ActorContext(user_id=3, role=UserRole.ADMIN)


@pytest.fixture
def doctor_actor(seed):
    return ActorContext(
        user_id=seed.doctor.user_id,
        role=UserRole.DOCTOR,
        clinic_id=seed.clinic.id,
        doctor_id=seed.doctor.id,
    )


@pytest.fixture
def nurse(seed):
    return ActorContext(user_id=4, role=UserRole.NURSE, clinic_id=seed.clinic.id)


@pytest.fixture
def make_appointment(session, seed):
    """Insert an appointment row directly, bypassing booking validation"""
    def factory(day, start, end, status=AppointmentStatus.PENDING, doctor=None, patient=None, room=None, **fields):
        appointment = Appointment(
            patient_id=(patient or seed.patient).id,
            doctor_id=(doctor or seed.doctor).id,
            clinic_id=(doctor or seed.doctor).clinic_id,
            room_id=room.id if room else None,
            appointment_date=day,
            start_time=start,
            end_time=end,
            status=status,
            custom_reason="Revisión",
            **fields,
        )
        session.add(appointment)
        session.commit()
        session.refresh(appointment)
        return appointment

    return factory
